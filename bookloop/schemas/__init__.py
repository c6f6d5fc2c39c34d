from bookloop.schemas.book import BookOut
from bookloop.schemas.borrow import (
    FineEntry,
    BorrowSnapshot,
    BorrowView,
    AdminDashboard,
    SweepReport,
)

__all__ = ["BookOut", "FineEntry", "BorrowSnapshot", "BorrowView", "AdminDashboard", "SweepReport"]
