"""Datetime utilities for timezone-aware UTC timestamps.

SQLite hands DateTime columns back as naive values even when an aware
datetime was stored, so anything comparing a loaded column against
``utc_now()`` should normalize it with ``as_utc()`` first.

Usage:
    from src.utils.datetime_utils import utc_now, as_utc

    timestamp = utc_now()

    # For SQLAlchemy Column defaults
    created_at = Column(DateTime, default=utc_now)

    if as_utc(lot.expires_at) < utc_now():
        ...
"""

from datetime import date, datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime.

    Returns:
        Current UTC datetime with timezone info
    """
    return datetime.now(timezone.utc)


def utc_today() -> date:
    """Return the current UTC calendar date."""
    return utc_now().date()


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to a naive datetime; convert an aware one to UTC.

    Args:
        value: Datetime loaded from the database or supplied by a caller

    Returns:
        Timezone-aware UTC datetime, or None when value is None
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
