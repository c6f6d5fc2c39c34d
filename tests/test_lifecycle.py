#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
    tests.test_lifecycle
    ~~~~~~~~~~~~~~~~~~~~

    The borrow lifecycle engine against an in-memory database.

    :copyright: (c) 2025 by AUTHORS.
    :license: see LICENSE for more details.
"""

import pytest
from unittest import mock

from bookloop.core.enums import BookStatus, BorrowStatus, RequestType
from bookloop.core.exceptions import (
    ActiveRequestExistsError,
    BookNotFoundError,
    BookUnavailableError,
    BorrowNotFoundError,
    CooldownActiveError,
    FineOutstandingError,
    InvalidTransitionError,
    NoFinePendingError,
    NotDeletableError,
    PersistenceError,
    RelatedBookMissingError,
    ReissueLockedError,
    ValidationError,
)
from bookloop.core import lifecycle as lifecycle_module
from bookloop.core.models import BorrowRecord, FineHistory
from tests.conftest import T0, days, book_status


def test_borrow_request_reserves_book(lifecycle, make_book):
    book_id = make_book()
    record = lifecycle.create_borrow_request(book_id, "alice", now=T0)
    assert record.status == BorrowStatus.REQUESTED
    assert record.request_type == RequestType.BORROW
    assert record.created_at == T0
    assert record.fine == 0
    assert book_status(lifecycle, book_id) == BookStatus.RESERVED


def test_borrow_request_for_missing_book(lifecycle):
    with pytest.raises(BookNotFoundError):
        lifecycle.create_borrow_request(404, "alice", now=T0)


@pytest.mark.parametrize("book_id,user_id", [(0, "alice"), (-3, "alice"), ("abc", "alice"), (True, "alice"), (1, ""), (1, None)])
def test_borrow_request_validates_input(lifecycle, make_book, book_id, user_id):
    make_book()
    with pytest.raises(ValidationError):
        lifecycle.create_borrow_request(book_id, user_id, now=T0)


def test_second_active_request_is_refused(lifecycle, make_book):
    book_id = make_book()
    lifecycle.create_borrow_request(book_id, "alice", now=T0)
    with pytest.raises(ActiveRequestExistsError):
        lifecycle.create_borrow_request(book_id, "alice", now=T0 + days(1))


def test_request_for_borrowed_book_is_refused(lifecycle, issued):
    book_id = lifecycle.get(issued).book_id
    with pytest.raises(BookUnavailableError):
        lifecycle.create_borrow_request(book_id, "bob", now=T0 + days(1))


def test_reserved_book_can_still_be_requested(lifecycle, make_book):
    book_id = make_book()
    lifecycle.create_borrow_request(book_id, "alice", now=T0)
    record = lifecycle.create_borrow_request(book_id, "bob", now=T0)
    assert record.status == BorrowStatus.REQUESTED


def test_rejection_cooldown(lifecycle, make_book):
    book_id = make_book()
    borrow_id = lifecycle.create_borrow_request(book_id, "alice", now=T0).id
    lifecycle.set_status(borrow_id, "rejected", admin_notes="missing card", now=T0)

    rejected = lifecycle.get(borrow_id)
    assert rejected.status == BorrowStatus.REJECTED
    assert rejected.rejected_date == T0
    assert rejected.admin_notes == "missing card"
    assert book_status(lifecycle, book_id) == BookStatus.AVAILABLE

    with pytest.raises(CooldownActiveError) as exc:
        lifecycle.create_borrow_request(book_id, "alice", now=T0 + days(11))
    assert exc.value.days_left == 1

    record = lifecycle.create_borrow_request(book_id, "alice", now=T0 + days(12))
    assert record.status == BorrowStatus.REQUESTED


def test_cooldown_is_per_user(lifecycle, make_book):
    book_id = make_book()
    borrow_id = lifecycle.create_borrow_request(book_id, "alice", now=T0).id
    lifecycle.set_status(borrow_id, "rejected", now=T0)
    assert lifecycle.create_borrow_request(book_id, "bob", now=T0 + days(1)).status == BorrowStatus.REQUESTED


def test_issue_marks_book_borrowed(lifecycle, issued):
    record = lifecycle.get(issued)
    assert record.status == BorrowStatus.ISSUED
    assert record.issue_date == T0
    assert record.due_date == T0 + days(30)
    assert book_status(lifecycle, record.book_id) == BookStatus.BORROWED


def test_reissue_approval_and_lock(lifecycle, issued):
    lifecycle.request_reissue(issued, now=T0 + days(5))
    record = lifecycle.get(issued)
    assert record.status == BorrowStatus.REISSUE_REQUESTED
    assert record.is_reissue_locked

    lifecycle.set_status(issued, "issued", now=T0 + days(5))
    record = lifecycle.get(issued)
    assert record.status == BorrowStatus.ISSUED
    assert record.reissue_count == 1
    assert record.due_date == T0 + days(35)
    assert book_status(lifecycle, record.book_id) == BookStatus.BORROWED

    with pytest.raises(ReissueLockedError) as exc:
        lifecycle.request_reissue(issued, now=T0 + days(15))
    assert exc.value.unlock_at == T0 + days(35)
    assert exc.value.days_left == 20


def test_reissued_admin_target(lifecycle, issued):
    lifecycle.request_reissue(issued, now=T0 + days(5))
    record = lifecycle.set_status(issued, "reissued", now=T0 + days(6))
    assert record.status == BorrowStatus.ISSUED
    assert record.reissue_count == 1


def test_reissue_with_outstanding_fine(lifecycle, issued):
    with pytest.raises(FineOutstandingError):
        lifecycle.request_reissue(issued, now=T0 + days(40))
    assert lifecycle.get(issued).status == BorrowStatus.ISSUED


def test_unlock_sweep_at_exact_boundary(lifecycle, issued):
    lifecycle.request_reissue(issued, now=T0 + days(5))
    lifecycle.set_status(issued, "issued", now=T0 + days(5))

    report = lifecycle.unlock_expired_reissues(as_of=T0 + days(34))
    assert (report.processed, report.updated) == (1, 0)
    assert lifecycle.get(issued).is_reissue_locked

    report = lifecycle.unlock_expired_reissues(as_of=T0 + days(35))
    assert (report.processed, report.updated, report.failed) == (1, 1, 0)
    assert not lifecycle.get(issued).is_reissue_locked

    record = lifecycle.request_reissue(issued, now=T0 + days(35))
    assert record.status == BorrowStatus.REISSUE_REQUESTED


def test_late_return_then_payment(lifecycle, issued):
    due = T0 + days(30)
    lifecycle.request_return(issued, now=due + days(21))
    record = lifecycle.get(issued)
    assert record.status == BorrowStatus.RETURN_REQUESTED
    assert record.request_type == RequestType.RETURN
    assert record.fine == 240

    lifecycle.set_status(issued, "returned", now=due + days(21))
    record = lifecycle.get(issued)
    assert record.status == BorrowStatus.FINE_PENDING
    assert record.fine == 240
    assert record.return_date == due + days(21)
    assert book_status(lifecycle, record.book_id) == BookStatus.AVAILABLE

    lifecycle.pay_fine(issued, now=due + days(22))
    record = lifecycle.get(issued)
    assert record.status == BorrowStatus.COMPLETED
    assert record.fine_paid
    assert record.fine == 240

    lifecycle.refresh(issued, now=due + days(100))
    assert lifecycle.get(issued).fine == 240


def test_on_time_return_completes(lifecycle, issued):
    lifecycle.request_return(issued, now=T0 + days(10))
    record = lifecycle.set_status(issued, "returned", now=T0 + days(11))
    assert record.status == BorrowStatus.COMPLETED
    assert record.fine == 0
    with pytest.raises(NoFinePendingError):
        lifecycle.pay_fine(issued, now=T0 + days(12))


def test_no_path_from_requested_to_completed(lifecycle, make_book):
    borrow_id = lifecycle.create_borrow_request(make_book(), "alice", now=T0).id
    with pytest.raises(ValidationError):
        lifecycle.set_status(borrow_id, "completed", now=T0)
    with pytest.raises(InvalidTransitionError):
        lifecycle.set_status(borrow_id, "returned", now=T0)
    with pytest.raises(NoFinePendingError):
        lifecycle.pay_fine(borrow_id, now=T0)
    assert lifecycle.get(borrow_id).status == BorrowStatus.REQUESTED


def test_set_status_on_missing_borrow(lifecycle):
    with pytest.raises(BorrowNotFoundError):
        lifecycle.set_status(999, "issued", now=T0)


def test_set_status_with_missing_book(lifecycle, db_session):
    record = BorrowRecord(book_id=999, user_id="alice", status=BorrowStatus.REQUESTED, created_at=T0)
    db_session.add(record)
    db_session.commit()
    with pytest.raises(RelatedBookMissingError):
        lifecycle.set_status(record.id, "issued", now=T0)


def test_cancel_borrow_request_frees_book(lifecycle, make_book):
    book_id = make_book()
    borrow_id = lifecycle.create_borrow_request(book_id, "alice", now=T0).id
    record = lifecycle.cancel_request(borrow_id, now=T0)
    assert record.status == BorrowStatus.CANCELLED
    assert book_status(lifecycle, book_id) == BookStatus.AVAILABLE


def test_fine_is_monotonic_across_sweeps(lifecycle, issued):
    due = T0 + days(30)
    report = lifecycle.recompute_overdue(as_of=due + days(8))
    assert (report.processed, report.updated) == (1, 1)
    assert lifecycle.get(issued).fine == 160
    assert lifecycle.get(issued).status == BorrowStatus.OVERDUE

    lifecycle.recompute_overdue(as_of=due + days(3))
    assert lifecycle.get(issued).fine == 160

    lifecycle.recompute_overdue(as_of=due + days(15))
    record = lifecycle.get(issued)
    assert record.fine == 240
    assert [(h.weeks, h.amount) for h in record.fine_history] == [(2, 160), (3, 240)]


def test_recompute_is_idempotent(lifecycle, issued):
    as_of = T0 + days(40)
    lifecycle.recompute_overdue(as_of=as_of)
    report = lifecycle.recompute_overdue(as_of=as_of)
    assert report.updated == 0
    assert lifecycle.get(issued).fine == 160


def test_sweep_skips_failing_record(lifecycle, make_book):
    ids = []
    for user in ("alice", "bob"):
        borrow_id = lifecycle.create_borrow_request(make_book(), user, now=T0).id
        lifecycle.set_status(borrow_id, "issued", now=T0)
        ids.append(borrow_id)
    bad, good = ids

    real_transition = lifecycle._transition

    def flaky(borrow_id, trigger, now=None, **kwargs):
        if borrow_id == bad:
            raise RuntimeError("boom")
        return real_transition(borrow_id, trigger, now, **kwargs)

    with mock.patch.object(lifecycle, "_transition", side_effect=flaky):
        report = lifecycle.recompute_overdue(as_of=T0 + days(40))

    assert (report.processed, report.updated, report.failed) == (2, 1, 1)
    assert lifecycle.get(good).fine == 160
    assert lifecycle.get(bad).fine == 0


def test_failed_availability_update_rolls_back(lifecycle, make_book):
    book_id = make_book()
    borrow_id = lifecycle.create_borrow_request(book_id, "alice", now=T0).id

    with mock.patch.object(lifecycle.tracker, "apply", side_effect=RuntimeError("disk full")):
        with pytest.raises(PersistenceError):
            lifecycle.set_status(borrow_id, "issued", now=T0)

    record = lifecycle.get(borrow_id)
    assert record.status == BorrowStatus.REQUESTED
    assert record.issue_date is None
    assert book_status(lifecycle, book_id) == BookStatus.RESERVED


def test_delete_requested_releases_book(lifecycle, db_session, make_book):
    book_id = make_book()
    borrow_id = lifecycle.create_borrow_request(book_id, "alice", now=T0).id
    assert lifecycle.delete_request(borrow_id)
    assert db_session.get(BorrowRecord, borrow_id) is None
    assert book_status(lifecycle, book_id) == BookStatus.AVAILABLE


def test_delete_issued_is_refused(lifecycle, issued):
    with pytest.raises(NotDeletableError):
        lifecycle.delete_request(issued)
    assert lifecycle.get(issued).status == BorrowStatus.ISSUED


def test_delete_cascades_fine_history(lifecycle, db_session, make_book):
    borrow_id = lifecycle.create_borrow_request(make_book(), "alice", now=T0).id
    lifecycle.cancel_request(borrow_id, now=T0)
    db_session.add(FineHistory(borrow_id=borrow_id, weeks=1, amount=80, calculated_at=T0))
    db_session.commit()
    lifecycle.delete_request(borrow_id)
    assert db_session.query(FineHistory).count() == 0


def test_override_book_status(lifecycle, make_book):
    book_id = make_book()
    assert lifecycle.override_book_status(book_id, "Lost").status == BookStatus.LOST
    with pytest.raises(BookUnavailableError):
        lifecycle.create_borrow_request(book_id, "alice", now=T0)
    with pytest.raises(ValidationError):
        lifecycle.override_book_status(book_id, "Misplaced")


def test_list_for_user(lifecycle, make_book):
    first = lifecycle.create_borrow_request(make_book("A"), "alice", now=T0).id
    second = lifecycle.create_borrow_request(make_book("B"), "alice", now=T0 + days(1)).id
    lifecycle.create_borrow_request(make_book("C"), "bob", now=T0)
    assert [r.id for r in lifecycle.list_for_user("alice")] == [second, first]
    assert len(lifecycle.list_all()) == 3


def test_cancelled_return_request_keeps_fine_collectable(lifecycle, issued):
    due = T0 + days(30)
    lifecycle.request_return(issued, now=due + days(21))
    record = lifecycle.cancel_request(issued, now=due + days(21))
    assert record.status == BorrowStatus.OVERDUE
    assert record.request_type == RequestType.BORROW
    assert record.fine == 240
    assert not record.fine_paid
    assert book_status(lifecycle, record.book_id) == BookStatus.BORROWED

    report = lifecycle.recompute_overdue(as_of=due + days(29))
    assert (report.processed, report.updated) == (1, 1)
    assert lifecycle.get(issued).fine == 400

    lifecycle.set_status(issued, "returned", now=due + days(29))
    lifecycle.pay_fine(issued, now=due + days(29))
    record = lifecycle.get(issued)
    assert record.status == BorrowStatus.COMPLETED
    assert book_status(lifecycle, record.book_id) == BookStatus.AVAILABLE


def test_cancelled_reissue_request_keeps_loan(lifecycle, issued):
    lifecycle.request_reissue(issued, now=T0 + days(5))
    record = lifecycle.cancel_request(issued, now=T0 + days(6))
    assert record.status == BorrowStatus.ISSUED
    assert record.due_date == T0 + days(30)
    assert record.reissue_count == 0
    with pytest.raises(NotDeletableError):
        lifecycle.delete_request(issued)


def test_one_copy_is_not_issued_twice(lifecycle, make_book):
    book_id = make_book()
    alice = lifecycle.create_borrow_request(book_id, "alice", now=T0).id
    bob = lifecycle.create_borrow_request(book_id, "bob", now=T0).id
    lifecycle.set_status(alice, "issued", now=T0)

    with pytest.raises(BookUnavailableError):
        lifecycle.set_status(bob, "issued", now=T0)
    assert lifecycle.get(bob).status == BorrowStatus.REQUESTED
    assert book_status(lifecycle, book_id) == BookStatus.BORROWED

    lifecycle.set_status(bob, "rejected", now=T0)
    lifecycle.set_status(alice, "returned", now=T0 + days(10))
    assert book_status(lifecycle, book_id) == BookStatus.AVAILABLE
    record = lifecycle.create_borrow_request(book_id, "carol", now=T0 + days(10))
    assert lifecycle.set_status(record.id, "issued", now=T0 + days(10)).status == BorrowStatus.ISSUED


def test_issue_refused_for_lost_copy(lifecycle, make_book):
    book_id = make_book()
    borrow_id = lifecycle.create_borrow_request(book_id, "alice", now=T0).id
    lifecycle.override_book_status(book_id, "Lost")
    with pytest.raises(BookUnavailableError):
        lifecycle.set_status(borrow_id, "issued", now=T0)
    assert book_status(lifecycle, book_id) == BookStatus.LOST


def test_record_locks_come_from_a_fixed_pool():
    first = lifecycle_module.lock_for(("book", 1))
    assert lifecycle_module.lock_for(("book", 1)) is first
    locks = {id(lifecycle_module.lock_for(key)) for key in range(10000)}
    locks |= {id(lifecycle_module.lock_for(("book", key))) for key in range(10000)}
    assert len(locks) <= lifecycle_module.LOCK_STRIPES


def test_borrow_requests_serialize_per_book(lifecycle, make_book):
    book_id = make_book()
    with mock.patch.object(lifecycle_module, "record_lock",
                           wraps=lifecycle_module.record_lock) as locked:
        lifecycle.create_borrow_request(book_id, "alice", now=T0)
        lifecycle.create_borrow_request(book_id, "bob", now=T0)
    assert [c.args for c in locked.call_args_list] == [(("book", book_id),), (("book", book_id),)]
