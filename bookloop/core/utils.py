import datetime
import math
import logging

logger = logging.getLogger(__name__)

ONE_DAY = datetime.timedelta(days=1)


def utcnow() -> datetime.datetime:
    """Naive UTC now; every timestamp in the db is stored naive UTC."""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def as_utc(when=None) -> datetime.datetime:
    """Normalizes `when` (datetime, date or None) to a naive UTC datetime.
    None means now.
    """
    if when is None:
        return utcnow()
    if isinstance(when, datetime.datetime):
        if when.tzinfo is not None:
            return when.astimezone(datetime.timezone.utc).replace(tzinfo=None)
        return when
    if isinstance(when, datetime.date):
        return datetime.datetime.combine(when, datetime.time.min)
    raise TypeError(f"Expected a date or datetime, got {type(when).__name__}")


def days_until(unlock_at: datetime.datetime, now: datetime.datetime) -> int:
    """Whole days remaining until `unlock_at`, rounded up; 0 once reached."""
    if now >= unlock_at:
        return 0
    return math.ceil((unlock_at - now) / ONE_DAY)
