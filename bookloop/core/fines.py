"""
    Fine Calculator for Bookloop.

    Overdue fines step weekly: the number of whole days past the due
    date is rounded up to whole weeks, so one day late owes a full
    week. This is the only place the formula lives; the lifecycle
    engine and the read-side projections both call it.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import math
from typing import NamedTuple

from bookloop.configs import FINE_PER_WEEK
from bookloop.core.utils import as_utc

DAYS_PER_WEEK = 7


class FineQuote(NamedTuple):
    amount_due: int
    weeks_overdue: int


NO_FINE = FineQuote(0, 0)


def calculate_fine(due_date, now=None, rate: int = FINE_PER_WEEK) -> FineQuote:
    """Returns the fine accrued on `due_date` as of `now`.

    Args:
        due_date: datetime or date the book was due; None means not issued.
        now: evaluation instant (defaults to the current UTC time).
        rate: currency units charged per started week.

    Returns:
        FineQuote(amount_due, weeks_overdue); (0, 0) when not overdue.
    """
    if due_date is None:
        return NO_FINE
    due = as_utc(due_date)
    now = as_utc(now)
    if now <= due:
        return NO_FINE
    weeks = math.ceil((now - due).days / DAYS_PER_WEEK)
    return FineQuote(weeks * rate, weeks)
