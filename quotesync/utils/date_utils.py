# quotesync/utils/date_utils.py
"""
Date utility functions shared by the sync planner, the gap filler and the
providers.

All instants are timezone-aware UTC. A "day" is a UTC calendar date.

Usage:
    from quotesync.utils.date_utils import get_days_between, start_of_day

    for day in get_days_between(start_date, end_date):
        ...
"""

from datetime import date, datetime, time, timedelta, timezone


def get_days_between(start_date: date, end_date: date) -> list[date]:
    """
    Every calendar day from start_date to end_date, both inclusive.

    Returns an empty list when start_date is after end_date.

    Example:
        >>> get_days_between(date(2024, 1, 30), date(2024, 2, 1))
        [date(2024, 1, 30), date(2024, 1, 31), date(2024, 2, 1)]
    """
    days = []
    current = start_date

    while current <= end_date:
        days.append(current)
        current += timedelta(days=1)

    return days


def start_of_day(d: date) -> datetime:
    """Midnight UTC of the given day."""
    return datetime.combine(d, time.min, tzinfo=timezone.utc)


def noon_of_day(d: date) -> datetime:
    """12:00 UTC of the given day. Used as the canonical time of daily quotes."""
    return datetime.combine(d, time(12, 0), tzinfo=timezone.utc)


def end_of_day(d: date) -> datetime:
    """23:59:59 UTC of the given day."""
    return datetime.combine(d, time(23, 59, 59), tzinfo=timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """
    Attach UTC to naive datetimes and convert aware ones to UTC.

    SQLite returns naive datetimes even for timezone-aware columns.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def epoch_to_datetime(value: int | float | None) -> datetime:
    """
    Convert an epoch value that may be in seconds or milliseconds.

    Values above 1e12 are treated as milliseconds. Missing or non-positive
    values fall back to the current time.
    """
    if value is None or value <= 0:
        return utc_now()
    if value > 1_000_000_000_000:
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    return datetime.fromtimestamp(value, tz=timezone.utc)
