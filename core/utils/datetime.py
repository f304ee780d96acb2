"""Datetime utilities for common operations."""

from datetime import datetime, date, timezone
from typing import Optional


def now() -> datetime:
    """Get current datetime in UTC."""
    return datetime.now(timezone.utc)


def today() -> date:
    """Get current date in UTC."""
    return datetime.now(timezone.utc).date()


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to an aware UTC datetime.

    Naive values are assumed to already be UTC (SQLite drops tzinfo on
    round-trip, PostgreSQL keeps it).

    Args:
        dt: Datetime to normalize

    Returns:
        Aware UTC datetime, or None
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _as_date(value: datetime | date) -> date:
    if isinstance(value, datetime):
        return as_utc(value).date()
    return value


def completed_years(born: datetime | date, as_of: datetime | date) -> int:
    """
    Age in completed years on a given day.

    Args:
        born: Date of birth
        as_of: Reference day

    Returns:
        Whole years elapsed, never negative
    """
    born_day = _as_date(born)
    ref_day = _as_date(as_of)
    years = ref_day.year - born_day.year
    if (ref_day.month, ref_day.day) < (born_day.month, born_day.day):
        years -= 1
    return max(0, years)


def months_between(start: datetime | date, end: datetime | date) -> int:
    """
    Calendar months from start to end, ignoring the day of month.

    Args:
        start: Start date
        end: End date

    Returns:
        Number of months, 0 when end precedes start
    """
    start_day = _as_date(start)
    end_day = _as_date(end)
    months = (end_day.year - start_day.year) * 12 + (end_day.month - start_day.month)
    return max(0, months)
