"""Timestamp utilities for UTC handling and datetime parsing.

Every timestamp stored or compared by the core is timezone-aware UTC.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Ensure a datetime is timezone-aware and in UTC.

    Naive values are treated as UTC; aware values are converted.

    Args:
        dt: Datetime to convert (can be None)

    Returns:
        Timezone-aware datetime in UTC, or None if input is None

    Example:
        >>> ensure_utc(datetime(2025, 9, 1, 8, 0)).tzinfo == timezone.utc
        True
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_iso_datetime(iso_string: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 string ("2025-09-01T08:00:00Z", "2025-09-01") to UTC.

    Returns:
        Timezone-aware datetime in UTC, or None if the string is empty or
        cannot be parsed
    """
    if not iso_string or not iso_string.strip():
        return None

    cleaned = iso_string.strip()
    if cleaned.endswith("Z"):
        cleaned = cleaned[:-1] + "+00:00"

    try:
        return ensure_utc(datetime.fromisoformat(cleaned))
    except ValueError:
        return None


def format_timestamp(dt: datetime, include_microseconds: bool = False) -> str:
    """Format a datetime as ISO 8601 in UTC with a 'Z' suffix.

    Example:
        >>> format_timestamp(datetime(2025, 9, 1, 8, 0, tzinfo=timezone.utc))
        '2025-09-01T08:00:00Z'
    """
    dt_utc = ensure_utc(dt)
    if dt_utc is None:
        return ""
    if include_microseconds:
        return dt_utc.strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    return dt_utc.strftime("%Y-%m-%dT%H:%M:%SZ")


def expires_after(start: datetime, seconds: int) -> datetime:
    """Return ``start`` shifted forward by ``seconds``, in UTC."""
    return ensure_utc(start) + timedelta(seconds=seconds)
