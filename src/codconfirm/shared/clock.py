"""
Time helpers. Persisted timestamps are always UTC.
"""

from collections.abc import Callable
from datetime import date, datetime, time, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Convert an aware datetime to UTC; naive values are taken as UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def get_clock() -> Callable[[], datetime]:
    """FastAPI dependency; tests override it to freeze time."""
    return utcnow


def day_start(value: date | None) -> datetime | None:
    """Inclusive lower bound for a calendar-day filter (UTC)."""
    return datetime.combine(value, time.min, tzinfo=timezone.utc) if value else None


def day_end(value: date | None) -> datetime | None:
    """Inclusive upper bound for a calendar-day filter (UTC)."""
    return datetime.combine(value, time.max, tzinfo=timezone.utc) if value else None
