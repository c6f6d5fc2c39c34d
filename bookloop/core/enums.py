import enum


class BookStatus(str, enum.Enum):
    AVAILABLE = "Available"
    BORROWED = "Borrowed"
    RESERVED = "Reserved"
    LOST = "Lost"
    DAMAGED = "Damaged"


class RequestType(str, enum.Enum):
    BORROW = "borrow"
    REISSUE = "reissue"
    RETURN = "return"


class BorrowStatus(str, enum.Enum):
    REQUESTED = "requested"
    ISSUED = "issued"
    OVERDUE = "overdue"
    REISSUE_REQUESTED = "reissue-requested"
    RETURN_REQUESTED = "return-requested"
    RETURNED = "returned"
    FINE_PENDING = "fine-pending"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = frozenset({
    BorrowStatus.REQUESTED,
    BorrowStatus.ISSUED,
    BorrowStatus.OVERDUE,
    BorrowStatus.REISSUE_REQUESTED,
    BorrowStatus.RETURN_REQUESTED,
})

TERMINAL_STATUSES = frozenset({
    BorrowStatus.COMPLETED,
    BorrowStatus.CANCELLED,
    BorrowStatus.REJECTED,
})

# fines keep accruing until the return is confirmed
ACCRUING_STATUSES = frozenset({
    BorrowStatus.ISSUED,
    BorrowStatus.OVERDUE,
    BorrowStatus.RETURN_REQUESTED,
})

DELETABLE_STATUSES = frozenset({
    BorrowStatus.REQUESTED,
    BorrowStatus.REJECTED,
    BorrowStatus.CANCELLED,
})

UNAVAILABLE_BOOK_STATUSES = frozenset({
    BookStatus.BORROWED,
    BookStatus.LOST,
    BookStatus.DAMAGED,
})
