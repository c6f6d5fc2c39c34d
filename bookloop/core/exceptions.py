import datetime


def _jsonable(value):
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    return value


class BookloopError(Exception):
    code = "bookloop_error"

    def __init__(self, message: str = "", **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.code, "message": self.message}
        body.update((k, _jsonable(v)) for k, v in self.details.items())
        return body


# Validation: caller must correct the input and retry

class ValidationError(BookloopError):
    code = "invalid_request"


# Conflict: state does not allow the operation

class ConflictError(BookloopError):
    code = "conflict"

class BookUnavailableError(ConflictError):
    code = "book_unavailable"

class ActiveRequestExistsError(ConflictError):
    code = "active_request_exists"

class InvalidTransitionError(ConflictError):
    code = "invalid_transition"

class NotEligibleStatusError(ConflictError):
    code = "not_eligible_status"

class NotCancellableError(ConflictError):
    code = "not_cancellable"

class NoFinePendingError(ConflictError):
    code = "no_fine_pending"

class NotDeletableError(ConflictError):
    code = "not_deletable"

class ConcurrentUpdateError(ConflictError):
    code = "concurrent_update"

class FineOutstandingError(ConflictError):
    code = "fine_outstanding"

    def __init__(self, amount: int):
        super().__init__(f"Outstanding fine of {amount} must be paid first.", amount=amount)
        self.amount = amount


# Temporal policy: a cooldown or lock is still running

class TemporalPolicyError(BookloopError):
    code = "temporal_policy"

class CooldownActiveError(TemporalPolicyError):
    code = "cooldown_active"

    def __init__(self, days_left: int, unlock_at: datetime.datetime):
        super().__init__(
            f"Request rejected recently; try again in {days_left} day(s).",
            days_left=days_left, unlock_at=unlock_at)
        self.days_left = days_left
        self.unlock_at = unlock_at

class ReissueLockedError(TemporalPolicyError):
    code = "reissue_locked"

    def __init__(self, unlock_at: datetime.datetime, days_left: int = None):
        super().__init__(
            f"Reissue locked until {unlock_at.isoformat()}.",
            unlock_at=unlock_at, days_left=days_left)
        self.unlock_at = unlock_at
        self.days_left = days_left


# Not found

class NotFoundError(BookloopError):
    code = "not_found"

class BorrowNotFoundError(NotFoundError):
    code = "borrow_not_found"

class BookNotFoundError(NotFoundError):
    code = "book_not_found"

class RelatedBookMissingError(NotFoundError):
    code = "related_book_missing"


# Internal: persistence or availability failure mid-transition

class InternalError(BookloopError):
    code = "internal_error"

class PersistenceError(InternalError):
    code = "persistence_error"
