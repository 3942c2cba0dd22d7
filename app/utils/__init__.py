"""Utility functions for time handling."""

from .timestamps import (
    ensure_utc,
    expires_after,
    format_timestamp,
    parse_iso_datetime,
    utc_now,
)

__all__ = [
    "utc_now",
    "ensure_utc",
    "expires_after",
    "parse_iso_datetime",
    "format_timestamp",
]
