"""Time utilities (IST)."""

from datetime import date, datetime, timedelta, tzinfo
from zoneinfo import ZoneInfo

IST = ZoneInfo("Asia/Kolkata")


def now_ist_naive() -> datetime:
    """
    Current time in IST, returned as naive datetime for DB storage.
    """
    return datetime.now(IST).replace(tzinfo=None)


def to_ist(dt: datetime, naive_assumed_tz: tzinfo = IST) -> datetime:
    """Convert datetime to IST timezone-aware value."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=naive_assumed_tz)
    return dt.astimezone(IST)


def to_ist_naive(dt: datetime) -> datetime:
    """
    Normalize any datetime to naive IST for comparisons against DB values.

    Naive inputs are assumed to already be IST.
    """
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(IST).replace(tzinfo=None)


def settlement_date(executed_at: datetime, days: int = 2) -> date:
    """T+N settlement date (calendar days)."""
    return (executed_at + timedelta(days=days)).date()


def to_iso(dt: datetime | None) -> str | None:
    """ISO string with IST offset, or None."""
    if dt is None:
        return None
    return to_ist(dt).isoformat()
