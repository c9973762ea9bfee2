"""
Subscription expiry calculator.

Pure functions over (plan, updated_at, now). Expiry is always re-derived as
updated_at + plan duration; there is no stored expiry column.
"""
from datetime import datetime, timezone
from typing import Optional, Union

from config.plans import SECONDS_PER_DAY, duration_days

Instant = Union[datetime, int, float]


def to_epoch_seconds(instant: Instant) -> float:
    """Normalize a datetime (naive datetimes are UTC) or epoch number to epoch seconds."""
    if isinstance(instant, datetime):
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        return instant.timestamp()
    return float(instant)


def to_naive_utc(epoch_seconds: float) -> datetime:
    """Epoch seconds to the naive UTC datetime stored in the database."""
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc).replace(tzinfo=None)


def expiry_instant(plan: Optional[str], updated_at: Instant) -> Optional[int]:
    """
    Epoch second at which the plan lapses, or None if it never does.

    Free and unrecognized plan names never lapse.
    """
    days = duration_days(plan)
    if days is None:
        return None
    return int(to_epoch_seconds(updated_at)) + days * SECONDS_PER_DAY


def is_expired(plan: Optional[str], updated_at: Instant, now: Instant) -> bool:
    days = duration_days(plan)
    if days is None:
        return False
    return to_epoch_seconds(now) > to_epoch_seconds(updated_at) + days * SECONDS_PER_DAY


def days_remaining(plan: Optional[str], updated_at: Instant, now: Instant) -> Optional[int]:
    """Whole days left before the plan lapses (0 once lapsed), None for non-expiring plans."""
    expires_at = expiry_instant(plan, updated_at)
    if expires_at is None:
        return None
    remaining = expires_at - to_epoch_seconds(now)
    return max(0, int(remaining // SECONDS_PER_DAY))
