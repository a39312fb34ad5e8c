"""
Datetime utility functions.
"""

from datetime import datetime
from typing import Optional
import pytz


def utcnow() -> datetime:
    """
    Get current UTC datetime using pytz.UTC.

    Returns:
        Current UTC datetime with pytz timezone information
    """
    return datetime.now(pytz.UTC)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to naive datetimes and convert aware ones to UTC.

    Some drivers (SQLite) hand back naive datetimes for timezone-aware columns;
    every value written by this application is UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return pytz.UTC.localize(value)
    return value.astimezone(pytz.UTC)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 string for an optional datetime, normalized to UTC."""
    value = ensure_utc(value)
    return value.isoformat() if value else None


def hours_until(value: datetime, now: Optional[datetime] = None) -> float:
    """Hours from now until value (negative if value is in the past)."""
    now = now or utcnow()
    return (ensure_utc(value) - now).total_seconds() / 3600
