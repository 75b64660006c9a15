"""
Date and time helpers.

All timestamps are handled as UTC. SQLite hands datetimes back without
tzinfo, so values read from storage go through ``as_utc`` before they are
compared or serialized.
"""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return ``value`` as an aware UTC datetime; naive values are assumed UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def month_key(value: datetime) -> str:
    """Calendar month of ``value`` in UTC, formatted ``YYYY-MM``."""
    return as_utc(value).strftime("%Y-%m")
