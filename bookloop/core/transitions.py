"""
    Borrow lifecycle transition table for Bookloop.

    Every status change a borrow record can undergo is one row of
    `TRANSITIONS`, keyed by (current status, trigger). A row is a pure
    function: it takes an immutable `BorrowSnapshot` and the evaluation
    instant and returns an `Outcome` holding the new snapshot plus the
    book availability effects the engine must apply alongside it.
    Guards raise the typed errors from `bookloop.core.exceptions`.

    Nothing in this module touches the database.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import datetime
import enum
from typing import Callable, Dict, NamedTuple, Optional, Sequence, Tuple

from bookloop import configs
from bookloop.core.enums import (
    BookStatus,
    BorrowStatus,
    RequestType,
    ACTIVE_STATUSES,
    UNAVAILABLE_BOOK_STATUSES,
)
from bookloop.core.exceptions import (
    ActiveRequestExistsError,
    BookUnavailableError,
    CooldownActiveError,
    FineOutstandingError,
    InvalidTransitionError,
    NoFinePendingError,
    NotCancellableError,
    NotEligibleStatusError,
    ReissueLockedError,
)
from bookloop.core.fines import calculate_fine
from bookloop.core.utils import days_until
from bookloop.schemas.borrow import BorrowSnapshot, FineEntry


class Trigger(str, enum.Enum):
    ISSUE = "issue"
    REJECT = "reject"
    CANCEL = "cancel"
    ACCRUE = "accrue"
    REQUEST_REISSUE = "request-reissue"
    APPROVE_REISSUE = "approve-reissue"
    REQUEST_RETURN = "request-return"
    CONFIRM_RETURN = "confirm-return"
    PAY_FINE = "pay-fine"


class BookEffect(str, enum.Enum):
    RESERVE = "reserve"
    RELEASE = "release"
    MARK_BORROWED = "mark-borrowed"
    MARK_AVAILABLE = "mark-available"


class Policy(NamedTuple):
    loan_period: datetime.timedelta = datetime.timedelta(days=configs.LOAN_PERIOD_DAYS)
    reissue_lock: datetime.timedelta = datetime.timedelta(days=configs.REISSUE_LOCK_DAYS)
    rejection_cooldown: datetime.timedelta = datetime.timedelta(days=configs.REJECTION_COOLDOWN_DAYS)
    fine_per_week: int = configs.FINE_PER_WEEK


DEFAULT_POLICY = Policy()


class Outcome(NamedTuple):
    snapshot: BorrowSnapshot
    effects: Tuple[BookEffect, ...] = ()
    changed: bool = True


def _unchanged(snapshot):
    return Outcome(snapshot, (), False)


def _update(snapshot, effects=(), **fields):
    return Outcome(snapshot.model_copy(update=fields), tuple(effects), True)


# Derived policy helpers, shared with the read-side projections

def reissue_unlock_at(snapshot: BorrowSnapshot, policy: Policy = DEFAULT_POLICY) -> Optional[datetime.datetime]:
    if snapshot.last_reissue_date is None:
        return None
    return snapshot.last_reissue_date + policy.reissue_lock


def is_reissue_locked(snapshot: BorrowSnapshot, now, policy: Policy = DEFAULT_POLICY) -> bool:
    unlock_at = reissue_unlock_at(snapshot, policy)
    return unlock_at is not None and now < unlock_at


def accrued_fields(snapshot: BorrowSnapshot, now, policy: Policy = DEFAULT_POLICY) -> dict:
    """Fine fields after accruing up to `now`; empty when nothing changes.

    The fine only ever grows, and it is frozen once paid or once the
    return has been confirmed.
    """
    if snapshot.fine_paid or snapshot.return_date is not None:
        return {}
    quote = calculate_fine(snapshot.due_date, now, rate=policy.fine_per_week)
    if quote.amount_due <= snapshot.fine:
        return {}
    entry = FineEntry(weeks=quote.weeks_overdue, amount=quote.amount_due, calculated_at=now)
    return {
        "fine": quote.amount_due,
        "fine_history": snapshot.fine_history + (entry,),
    }


# Transition rows

def _issue(snapshot, now, policy):
    return _update(
        snapshot, (BookEffect.MARK_BORROWED,),
        status=BorrowStatus.ISSUED,
        issue_date=now,
        due_date=now + policy.loan_period,
    )


def _reject(snapshot, now, policy):
    return _update(
        snapshot, (BookEffect.RELEASE,),
        status=BorrowStatus.REJECTED,
        rejected_date=now,
    )


def _cancel(snapshot, now, policy):
    return _update(snapshot, (BookEffect.RELEASE,), status=BorrowStatus.CANCELLED)


def _withdraw(snapshot, now, policy):
    """Cancels a pending reissue or return; the loan itself stays open.

    The pre-approval reissue lock is kept, so a withdrawn reissue cannot
    be asked for again until the window elapses.
    """
    fields = accrued_fields(snapshot, now, policy)
    fine = fields.get("fine", snapshot.fine)
    return _update(
        snapshot,
        status=BorrowStatus.OVERDUE if fine > 0 else BorrowStatus.ISSUED,
        request_type=RequestType.BORROW,
        **fields
    )


def _accrue(snapshot, now, policy):
    fields = accrued_fields(snapshot, now, policy)
    if not fields:
        return _unchanged(snapshot)
    if snapshot.status in (BorrowStatus.ISSUED, BorrowStatus.OVERDUE):
        fields["status"] = BorrowStatus.OVERDUE
    return _update(snapshot, **fields)


def _request_reissue(snapshot, now, policy):
    unlock_at = reissue_unlock_at(snapshot, policy)
    if unlock_at is not None and now < unlock_at:
        raise ReissueLockedError(unlock_at, days_left=days_until(unlock_at, now))
    fine = accrued_fields(snapshot, now, policy).get("fine", snapshot.fine)
    if fine > 0 and not snapshot.fine_paid:
        raise FineOutstandingError(fine)
    return _update(
        snapshot,
        status=BorrowStatus.REISSUE_REQUESTED,
        request_type=RequestType.REISSUE,
        last_reissue_date=now,
        is_reissue_locked=True,
    )


def _approve_reissue(snapshot, now, policy):
    return _update(
        snapshot,
        status=BorrowStatus.ISSUED,
        reissue_count=snapshot.reissue_count + 1,
        last_reissue_date=now,
        is_reissue_locked=True,
        issue_date=now,
        due_date=now + policy.loan_period,
    )


def _request_return(snapshot, now, policy):
    return _update(
        snapshot,
        status=BorrowStatus.RETURN_REQUESTED,
        request_type=RequestType.RETURN,
        **accrued_fields(snapshot, now, policy)
    )


def _confirm_return(snapshot, now, policy):
    fields = accrued_fields(snapshot, now, policy)
    fine = fields.get("fine", snapshot.fine)
    owes = fine > 0 and not snapshot.fine_paid
    return _update(
        snapshot, (BookEffect.MARK_AVAILABLE,),
        status=BorrowStatus.FINE_PENDING if owes else BorrowStatus.COMPLETED,
        return_date=now,
        actual_return_date=now,
        **fields
    )


def _pay_fine(snapshot, now, policy):
    if snapshot.fine <= 0 or snapshot.fine_paid:
        raise NoFinePendingError("No unpaid fine on this borrow.")
    return _update(snapshot, status=BorrowStatus.COMPLETED, fine_paid=True)


S = BorrowStatus
T = Trigger

TRANSITIONS: Dict[Tuple[BorrowStatus, Trigger], Callable] = {
    (S.REQUESTED, T.ISSUE): _issue,
    (S.REQUESTED, T.REJECT): _reject,

    (S.REQUESTED, T.CANCEL): _cancel,
    (S.REISSUE_REQUESTED, T.CANCEL): _withdraw,
    (S.RETURN_REQUESTED, T.CANCEL): _withdraw,

    (S.ISSUED, T.ACCRUE): _accrue,
    (S.OVERDUE, T.ACCRUE): _accrue,
    (S.RETURN_REQUESTED, T.ACCRUE): _accrue,

    (S.ISSUED, T.REQUEST_REISSUE): _request_reissue,
    (S.OVERDUE, T.REQUEST_REISSUE): _request_reissue,
    (S.REISSUE_REQUESTED, T.APPROVE_REISSUE): _approve_reissue,
    # the admin console approves a reissue by setting it back to issued
    (S.REISSUE_REQUESTED, T.ISSUE): _approve_reissue,

    (S.ISSUED, T.REQUEST_RETURN): _request_return,
    (S.OVERDUE, T.REQUEST_RETURN): _request_return,

    (S.RETURN_REQUESTED, T.CONFIRM_RETURN): _confirm_return,
    (S.ISSUED, T.CONFIRM_RETURN): _confirm_return,
    (S.OVERDUE, T.CONFIRM_RETURN): _confirm_return,

    (S.FINE_PENDING, T.PAY_FINE): _pay_fine,
}

# error raised when a trigger has no row for the current status
ILLEGAL = {
    T.CANCEL: NotCancellableError,
    T.REQUEST_REISSUE: NotEligibleStatusError,
    T.REQUEST_RETURN: NotEligibleStatusError,
    T.PAY_FINE: NoFinePendingError,
}


def apply(snapshot: BorrowSnapshot, trigger: Trigger, now: datetime.datetime,
          policy: Policy = DEFAULT_POLICY) -> Outcome:
    """Runs `trigger` against `snapshot` as of `now`.

    Accrual on a record that does not accrue is a no-op rather than an
    error, so sweeps and reads can call it on anything.
    """
    row = TRANSITIONS.get((snapshot.status, trigger))
    if row is None:
        if trigger == T.ACCRUE:
            return _unchanged(snapshot)
        error = ILLEGAL.get(trigger, InvalidTransitionError)
        raise error(f"Cannot {trigger.value} a borrow that is {snapshot.status.value}.",
                    status=snapshot.status, trigger=trigger)
    return row(snapshot, now, policy)


def check_book(outcome: Outcome, book_status: BookStatus) -> Outcome:
    """Refuses to lend out a copy that is already Borrowed, Lost or Damaged.

    Several requests may queue on one Reserved copy; only the first one
    issued gets it.
    """
    if BookEffect.MARK_BORROWED in outcome.effects and book_status in UNAVAILABLE_BOOK_STATUSES:
        raise BookUnavailableError(f"Book is {book_status.value}.", book_status=book_status)
    return outcome


def unlock_reissue(snapshot: BorrowSnapshot, now, policy: Policy = DEFAULT_POLICY) -> Outcome:
    """Clears `is_reissue_locked` once the lock window has elapsed."""
    if not snapshot.is_reissue_locked or is_reissue_locked(snapshot, now, policy):
        return _unchanged(snapshot)
    return _update(snapshot, is_reissue_locked=False)


def open_borrow_request(book_id: int, user_id: str, book_status: BookStatus,
                        existing: Sequence[BorrowSnapshot], now,
                        policy: Policy = DEFAULT_POLICY) -> Outcome:
    """Guards and builds a brand new borrow request for (book, user).

    `existing` are the user's earlier records for this book.
    """
    if any(record.status in ACTIVE_STATUSES for record in existing):
        raise ActiveRequestExistsError("You already have an active request for this book.")

    if book_status in UNAVAILABLE_BOOK_STATUSES:
        raise BookUnavailableError(f"Book is {book_status.value}.", book_status=book_status)

    rejected = [r.rejected_date for r in existing
                if r.status == S.REJECTED and r.rejected_date is not None]
    if rejected:
        unlock_at = max(rejected) + policy.rejection_cooldown
        if now < unlock_at:
            raise CooldownActiveError(days_until(unlock_at, now), unlock_at)

    snapshot = BorrowSnapshot(
        book_id=book_id,
        user_id=user_id,
        request_type=RequestType.BORROW,
        status=S.REQUESTED,
        created_at=now,
    )
    return Outcome(snapshot, (BookEffect.RESERVE,), True)
