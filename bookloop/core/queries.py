"""
    Lifecycle Query Service for Bookloop.

    Read-only projections for the student and admin views. Fines and
    reissue locks are recomputed as of the read instant with the same
    transition rows the engine uses, but nothing is written back: the
    sweeps (or `BorrowLifecycle.refresh`) persist accruals.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

from collections import Counter
from typing import List

from bookloop.core import transitions
from bookloop.core.db import session as default_session
from bookloop.core.enums import BorrowStatus
from bookloop.core.fines import calculate_fine
from bookloop.core.models import BorrowRecord
from bookloop.core.transitions import Trigger, DEFAULT_POLICY, Policy
from bookloop.core.utils import as_utc
from bookloop.schemas.borrow import AdminDashboard, BorrowSnapshot, BorrowView

REISSUABLE = (BorrowStatus.ISSUED, BorrowStatus.OVERDUE)


class LifecycleQueries:

    def __init__(self, db=None, policy: Policy = DEFAULT_POLICY):
        self.db = db or default_session
        self.policy = policy

    def project(self, snapshot: BorrowSnapshot, now=None) -> BorrowView:
        now = as_utc(now)
        current = transitions.apply(snapshot, Trigger.ACCRUE, now, self.policy).snapshot
        current = transitions.unlock_reissue(current, now, self.policy).snapshot

        weeks = 0
        if current.return_date is None:
            weeks = calculate_fine(current.due_date, now, rate=self.policy.fine_per_week).weeks_overdue
        outstanding = 0 if current.fine_paid else current.fine
        locked = transitions.is_reissue_locked(current, now, self.policy)
        request_again_at = None
        if current.status == BorrowStatus.REJECTED and current.rejected_date is not None:
            request_again_at = current.rejected_date + self.policy.rejection_cooldown
        return BorrowView(
            **dict(current),
            as_of=now,
            weeks_overdue=weeks,
            outstanding_fine=outstanding,
            reissue_unlock_at=transitions.reissue_unlock_at(current, self.policy) if locked else None,
            can_reissue=current.status in REISSUABLE and not locked and outstanding == 0,
            request_again_at=request_again_at,
            can_request_again=request_again_at is not None and now >= request_again_at,
        )

    def _views(self, records, now) -> List[BorrowView]:
        return [self.project(BorrowSnapshot.model_validate(r), now) for r in records]

    def student_view(self, user_id, now=None) -> List[BorrowView]:
        """A student's borrows, newest first."""
        now = as_utc(now)
        records = self.db.query(BorrowRecord).filter(
            BorrowRecord.user_id == str(user_id)
        ).order_by(BorrowRecord.created_at.desc(), BorrowRecord.id.desc()).all()
        return self._views(records, now)

    def admin_dashboard(self, now=None, offset=None, limit=None) -> AdminDashboard:
        now = as_utc(now)
        records = self.db.query(BorrowRecord).order_by(
            BorrowRecord.created_at.desc(), BorrowRecord.id.desc()
        ).offset(offset).limit(limit).all()
        views = self._views(records, now)
        counts = Counter(view.status.value for view in views)
        return AdminDashboard(
            as_of=now,
            total=len(views),
            counts={status.value: counts.get(status.value, 0) for status in BorrowStatus},
            overdue=counts.get(BorrowStatus.OVERDUE.value, 0),
            outstanding_fines=sum(view.outstanding_fine for view in views),
            records=views,
        )
