"""
Business-hour window arithmetic.

Pure functions; callers pass `now` already converted to the business time zone.
"""

from datetime import datetime, timedelta


def is_within_business_hours(now: datetime, hour_start: int, hour_end: int) -> bool:
    """True when `now.hour` lies in `[hour_start, hour_end)`."""
    return hour_start <= now.hour < hour_end


def next_eligible_time(
    now: datetime,
    wait_minutes: int,
    hour_start: int,
    hour_end: int,
) -> tuple[datetime, bool]:
    """Compute the next moment an action may run inside business hours.

    Args:
        now: Current time in the business time zone.
        wait_minutes: Delay to add before the action is eligible.
        hour_start: First business hour (inclusive).
        hour_end: End of business hours (exclusive).

    Returns:
        `(scheduled_at, fell_outside)`. When `now + wait_minutes` is inside the
        window it is returned untouched with `fell_outside=False`; otherwise the
        time snaps to `hour_start:00:00.000`, on the following day when the
        window has already closed, and `fell_outside=True`.
    """
    candidate = now + timedelta(minutes=wait_minutes)
    if is_within_business_hours(candidate, hour_start, hour_end):
        return candidate, False

    window_closed = candidate.hour >= hour_end or (
        now.hour >= hour_end and candidate.date() == now.date()
    )
    if window_closed:
        candidate = candidate + timedelta(days=1)

    rolled = candidate.replace(hour=hour_start, minute=0, second=0, microsecond=0)
    return rolled, True
