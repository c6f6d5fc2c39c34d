#!/usr/bin/env python
"""
    Borrow Schemas for Bookloop.

    `BorrowSnapshot` is the immutable value the transition table works
    on: the engine reads one from the ORM row, the table returns a new
    one, and the engine writes it back.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

from datetime import datetime
from typing import ClassVar, Dict, List, Optional, Tuple
from pydantic import BaseModel, ConfigDict
from bookloop.core.enums import BorrowStatus, RequestType


class FineEntry(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    weeks: int
    amount: int
    calculated_at: datetime


class BorrowSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: Optional[int] = None
    book_id: int
    user_id: str
    request_type: RequestType = RequestType.BORROW
    parent_request_id: Optional[int] = None
    status: BorrowStatus = BorrowStatus.REQUESTED

    created_at: Optional[datetime] = None
    issue_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    return_date: Optional[datetime] = None
    actual_return_date: Optional[datetime] = None
    rejected_date: Optional[datetime] = None
    last_reissue_date: Optional[datetime] = None

    reissue_count: int = 0
    is_reissue_locked: bool = False
    fine: int = 0
    fine_paid: bool = False
    fine_history: Tuple[FineEntry, ...] = ()
    admin_notes: Optional[str] = None

    # fields the engine copies back onto the ORM row
    PERSISTED: ClassVar[Tuple[str, ...]] = (
        "request_type", "parent_request_id", "status",
        "created_at", "issue_date", "due_date", "return_date",
        "actual_return_date", "rejected_date", "last_reissue_date",
        "reissue_count", "is_reissue_locked", "fine", "fine_paid",
        "admin_notes",
    )


class BorrowView(BorrowSnapshot):
    """Read-side projection with fines and locks recomputed as of `as_of`."""
    as_of: datetime
    weeks_overdue: int = 0
    outstanding_fine: int = 0
    reissue_unlock_at: Optional[datetime] = None
    can_reissue: bool = False
    # rejected records only: when the same book may be requested again
    request_again_at: Optional[datetime] = None
    can_request_again: bool = False


class AdminDashboard(BaseModel):
    as_of: datetime
    total: int
    counts: Dict[str, int]
    overdue: int
    outstanding_fines: int
    records: List[BorrowView]


class SweepReport(BaseModel):
    processed: int = 0
    updated: int = 0
    failed: int = 0
