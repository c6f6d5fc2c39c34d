"""
    Borrow Lifecycle Engine for Bookloop.

    The engine loads a borrow record, runs the matching row of the
    transition table against an immutable snapshot of it, then writes
    the new snapshot and the paired book availability change back in a
    single transaction. If anything fails after the table has accepted
    the transition, both are rolled back and the record stays in its
    pre-transition state.

    Work on one record is serialized with a process-local lock, a row
    lock where the database supports `SELECT ... FOR UPDATE`, and the
    optimistic `version` column on `BorrowRecord`.

    Scheduling is external: `recompute_overdue` and
    `unlock_expired_reissues` are meant to be called by cron (see
    scripts/sweep.py) or by an HTTP trigger.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
import threading
from contextlib import contextmanager
from typing import List, Optional

from sqlalchemy.orm.exc import StaleDataError

from bookloop.core import transitions
from bookloop.core.availability import AvailabilityTracker
from bookloop.core.db import session as default_session
from bookloop.core.enums import (
    BorrowStatus,
    RequestType,
    ACCRUING_STATUSES,
    DELETABLE_STATUSES,
)
from bookloop.core.exceptions import (
    BookloopError,
    BorrowNotFoundError,
    BookNotFoundError,
    ConcurrentUpdateError,
    NotDeletableError,
    PersistenceError,
    RelatedBookMissingError,
    ValidationError,
)
from bookloop.core.models import Book, BorrowRecord, FineHistory
from bookloop.core.transitions import Trigger, DEFAULT_POLICY, Policy
from bookloop.core.utils import as_utc
from bookloop.schemas.borrow import BorrowSnapshot, SweepReport

logger = logging.getLogger(__name__)

LOCK_STRIPES = 64
_lock_stripes = tuple(threading.RLock() for _ in range(LOCK_STRIPES))


def lock_for(key):
    # a fixed pool; unrelated keys may share a stripe
    return _lock_stripes[hash(key) % LOCK_STRIPES]


@contextmanager
def record_lock(key):
    """Serializes work on one record (or one book) in this process."""
    with lock_for(key):
        yield


def _require_id(value, name) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a positive integer.", field=name)
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a positive integer.", field=name)
    if value <= 0:
        raise ValidationError(f"{name} must be a positive integer.", field=name)
    return value


def _require_user(user_id) -> str:
    if user_id is None or isinstance(user_id, bool):
        raise ValidationError("user_id is required.", field="user_id")
    user_id = str(user_id).strip()
    if not user_id:
        raise ValidationError("user_id is required.", field="user_id")
    return user_id


class BorrowLifecycle:

    # admin targets accepted by set_status
    ADMIN_TARGETS = {
        "issued": Trigger.ISSUE,
        "reissued": Trigger.APPROVE_REISSUE,
        "rejected": Trigger.REJECT,
        "returned": Trigger.CONFIRM_RETURN,
    }

    def __init__(self, db=None, policy: Policy = DEFAULT_POLICY, tracker: AvailabilityTracker = None):
        self.db = db or default_session
        self.policy = policy
        self.tracker = tracker or AvailabilityTracker(self.db)

    # Loading

    def _load(self, borrow_id, for_update=False) -> BorrowRecord:
        query = self.db.query(BorrowRecord).filter(BorrowRecord.id == borrow_id)
        if for_update:
            query = query.with_for_update()
        if record := query.first():
            return record
        raise BorrowNotFoundError(f"Borrow {borrow_id} not found.", borrow_id=borrow_id)

    def _book_for(self, record) -> Book:
        book = self.db.query(Book).filter(Book.id == record.book_id).with_for_update().first()
        if book:
            return book
        raise RelatedBookMissingError(
            f"Book {record.book_id} for borrow {record.id} not found.",
            borrow_id=record.id, book_id=record.book_id)

    def get(self, borrow_id) -> BorrowRecord:
        return self._load(_require_id(borrow_id, "borrow_id"))

    def get_book(self, book_id) -> Book:
        return self.tracker.get(_require_id(book_id, "book_id"))

    def list_for_user(self, user_id) -> List[BorrowRecord]:
        return self.db.query(BorrowRecord).filter(
            BorrowRecord.user_id == _require_user(user_id)
        ).order_by(BorrowRecord.created_at.desc(), BorrowRecord.id.desc()).all()

    def list_all(self, offset=None, limit=None) -> List[BorrowRecord]:
        return self.db.query(BorrowRecord).order_by(
            BorrowRecord.created_at.desc(), BorrowRecord.id.desc()
        ).offset(offset).limit(limit).all()

    # Writing

    def _write(self, record: BorrowRecord, before: BorrowSnapshot, after: BorrowSnapshot):
        for field in BorrowSnapshot.PERSISTED:
            value = getattr(after, field)
            if getattr(before, field) != value:
                setattr(record, field, value)
        for entry in after.fine_history[len(before.fine_history):]:
            record.fine_history.append(FineHistory(
                weeks=entry.weeks,
                amount=entry.amount,
                calculated_at=entry.calculated_at,
            ))

    def _commit(self, action: str):
        try:
            self.db.commit()
        except StaleDataError as e:
            self.db.rollback()
            logger.warning(f"{action}: concurrent update, rolled back")
            raise ConcurrentUpdateError(f"{action}: record changed concurrently; retry.") from e
        except Exception as e:
            self.db.rollback()
            logger.exception(f"{action}: commit failed, rolled back")
            raise PersistenceError(f"Failed to {action}: {str(e)}.") from e

    def _transition(self, borrow_id, trigger: Trigger, now=None, admin_notes=None,
                    require_book=False):
        """Runs one transition on one record.

        Returns (record, changed).
        """
        now = as_utc(now)
        with record_lock(borrow_id):
            try:
                record = self._load(borrow_id, for_update=True)
                book = self._book_for(record) if require_book else None
                before = BorrowSnapshot.model_validate(record)
                outcome = transitions.apply(before, trigger, now, self.policy)
                if outcome.effects:
                    book = book or self._book_for(record)
                    transitions.check_book(outcome, book.status)
            except BookloopError as e:
                self.db.rollback()
                logger.debug(f"borrow {borrow_id}: {trigger.value} refused ({e.code})")
                raise

            if not outcome.changed and admin_notes is None:
                self.db.rollback()
                return record, False

            try:
                after = outcome.snapshot
                if admin_notes is not None:
                    after = after.model_copy(update={"admin_notes": admin_notes})
                self._write(record, before, after)
                for effect in outcome.effects:
                    self.tracker.apply(book, effect)
            except BookloopError:
                self.db.rollback()
                raise
            except Exception as e:
                self.db.rollback()
                logger.exception(f"borrow {borrow_id}: {trigger.value} failed, rolled back")
                raise PersistenceError(f"Failed to {trigger.value} borrow {borrow_id}: {str(e)}.") from e

            self._commit(f"{trigger.value} borrow {borrow_id}")
            logger.info(f"borrow {borrow_id}: {before.status.value} -> {after.status.value} ({trigger.value})")
            return record, True

    # Operations

    def create_borrow_request(self, book_id, user_id, now=None) -> BorrowRecord:
        """Opens a new borrow request and reserves the book.

        Raises:
            ValidationError: malformed book_id or user_id.
            BookNotFoundError: no such book.
            ActiveRequestExistsError: the user already has an active record for it.
            BookUnavailableError: the book is Borrowed, Lost or Damaged.
            CooldownActiveError: a rejection for this pair is less than 12 days old.
        """
        book_id = _require_id(book_id, "book_id")
        user_id = _require_user(user_id)
        now = as_utc(now)

        with record_lock(("book", book_id)):
            try:
                book = self.db.query(Book).filter(Book.id == book_id).with_for_update().first()
                if book is None:
                    raise BookNotFoundError(f"Book {book_id} not found.", book_id=book_id)
                existing = [
                    BorrowSnapshot.model_validate(record)
                    for record in BorrowRecord.for_book_and_user(self.db, book_id, user_id)
                ]
                outcome = transitions.open_borrow_request(
                    book_id, user_id, book.status, existing, now, self.policy)
            except BookloopError as e:
                self.db.rollback()
                logger.debug(f"borrow request book={book_id} user={user_id} refused ({e.code})")
                raise

            try:
                snapshot = outcome.snapshot
                record = BorrowRecord(
                    book_id=snapshot.book_id,
                    user_id=snapshot.user_id,
                    **{field: getattr(snapshot, field) for field in BorrowSnapshot.PERSISTED}
                )
                self.db.add(record)
                for effect in outcome.effects:
                    self.tracker.apply(book, effect)
            except Exception as e:
                self.db.rollback()
                logger.exception(f"borrow request book={book_id} user={user_id} failed")
                raise PersistenceError(f"Failed to create borrow request: {str(e)}.") from e

            self._commit(f"create borrow request for book {book_id}")
            logger.info(f"borrow {record.id}: requested book={book_id} user={user_id}")
            return record

    def set_status(self, borrow_id, target_status, admin_notes: Optional[str] = None, now=None) -> BorrowRecord:
        """Admin transition: issue, approve a reissue, reject or confirm a return.

        `target_status` is one of issued, reissued, rejected, returned.
        """
        borrow_id = _require_id(borrow_id, "borrow_id")
        target = getattr(target_status, "value", target_status)
        if target not in self.ADMIN_TARGETS:
            raise ValidationError(
                f"Invalid status value '{target}'.", status=target,
                allowed=sorted(self.ADMIN_TARGETS))
        record, _ = self._transition(
            borrow_id, self.ADMIN_TARGETS[target], now, admin_notes=admin_notes, require_book=True)
        return record

    def request_reissue(self, borrow_id, now=None) -> BorrowRecord:
        record, _ = self._transition(_require_id(borrow_id, "borrow_id"), Trigger.REQUEST_REISSUE, now)
        return record

    def request_return(self, borrow_id, now=None) -> BorrowRecord:
        record, _ = self._transition(_require_id(borrow_id, "borrow_id"), Trigger.REQUEST_RETURN, now)
        return record

    def cancel_request(self, borrow_id, now=None) -> BorrowRecord:
        record, _ = self._transition(_require_id(borrow_id, "borrow_id"), Trigger.CANCEL, now)
        return record

    def pay_fine(self, borrow_id, now=None) -> BorrowRecord:
        record, _ = self._transition(_require_id(borrow_id, "borrow_id"), Trigger.PAY_FINE, now)
        return record

    def refresh(self, borrow_id, now=None) -> BorrowRecord:
        """Recomputes the fine of one record on read and persists any increase."""
        record, _ = self._transition(_require_id(borrow_id, "borrow_id"), Trigger.ACCRUE, now)
        return record

    def delete_request(self, borrow_id) -> bool:
        """Deletes a requested, rejected or cancelled record.

        Issued and finished records are kept for audit.
        """
        borrow_id = _require_id(borrow_id, "borrow_id")
        with record_lock(borrow_id):
            try:
                record = self._load(borrow_id, for_update=True)
                if record.status not in DELETABLE_STATUSES:
                    raise NotDeletableError(
                        f"Cannot delete a borrow that is {record.status.value}.",
                        status=record.status)
                if record.status == BorrowStatus.REQUESTED and record.request_type == RequestType.BORROW:
                    if book := Book.exists(self.db, record.book_id):
                        self.tracker.release(book)
                self.db.delete(record)
            except BookloopError:
                self.db.rollback()
                raise
            self._commit(f"delete borrow {borrow_id}")
            logger.info(f"borrow {borrow_id}: deleted")
            return True

    # Books

    def add_book(self, title: str) -> Book:
        if not title or not str(title).strip():
            raise ValidationError("title is required.", field="title")
        book = Book(title=str(title).strip())
        self.db.add(book)
        self._commit("add book")
        return book

    def override_book_status(self, book_id, status) -> Book:
        """Administrative availability change (Lost, Damaged, back to Available)."""
        book_id = _require_id(book_id, "book_id")
        try:
            book = self.tracker.override(book_id, status)
        except BookloopError:
            self.db.rollback()
            raise
        self._commit(f"override book {book_id}")
        return book

    # Sweeps

    def recompute_overdue(self, as_of=None) -> SweepReport:
        """Accrues fines on every issued, overdue or return-requested record.

        A failure on one record is logged and counted; the sweep moves on.
        """
        as_of = as_utc(as_of)
        ids = [row.id for row in self.db.query(BorrowRecord.id).filter(
            BorrowRecord.status.in_(list(ACCRUING_STATUSES)),
            BorrowRecord.due_date.isnot(None),
            BorrowRecord.due_date < as_of,
            BorrowRecord.fine_paid.is_(False),
        ).order_by(BorrowRecord.id)]
        self.db.rollback()
        report = self._sweep("recompute overdue", ids, Trigger.ACCRUE, as_of)
        logger.info(f"Fine check: {report.updated} fines updated, {report.failed} failed, as of {as_of.isoformat()}")
        return report

    def unlock_expired_reissues(self, as_of=None) -> SweepReport:
        """Clears `is_reissue_locked` wherever the 30-day window has elapsed."""
        as_of = as_utc(as_of)
        ids = [row.id for row in self.db.query(BorrowRecord.id).filter(
            BorrowRecord.is_reissue_locked.is_(True),
        ).order_by(BorrowRecord.id)]
        self.db.rollback()
        report = self._sweep("unlock reissues", ids, None, as_of)
        logger.info(f"Auto-unlock: {report.updated} reissues unlocked as of {as_of.isoformat()}")
        return report

    def _sweep(self, name, ids, trigger, as_of) -> SweepReport:
        report = SweepReport()
        for borrow_id in ids:
            report.processed += 1
            try:
                if trigger is None:
                    changed = self._unlock(borrow_id, as_of)
                else:
                    _, changed = self._transition(borrow_id, trigger, as_of)
            except Exception:
                self.db.rollback()
                report.failed += 1
                logger.exception(f"{name}: borrow {borrow_id} failed, skipped")
                continue
            if changed:
                report.updated += 1
        return report

    def _unlock(self, borrow_id, as_of) -> bool:
        with record_lock(borrow_id):
            record = self._load(borrow_id, for_update=True)
            before = BorrowSnapshot.model_validate(record)
            outcome = transitions.unlock_reissue(before, as_of, self.policy)
            if not outcome.changed:
                self.db.rollback()
                return False
            self._write(record, before, outcome.snapshot)
            self._commit(f"unlock reissue on borrow {borrow_id}")
            logger.info(f"borrow {borrow_id}: reissue unlocked")
            return True
