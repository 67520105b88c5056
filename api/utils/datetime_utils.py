"""
Datetime utilities for the identity service.
"""
from datetime import datetime, timezone
from typing import Optional, Union


def make_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure datetime is timezone-aware (UTC if naive).

    Args:
        dt: A datetime object that may or may not have timezone info

    Returns:
        The same datetime with UTC timezone if it was naive,
        or the original timezone-aware datetime, or None if input was None
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse a stored timestamp into an aware datetime.

    SQLite hands timestamps back as ISO strings; a trailing 'Z' is accepted.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return make_aware(value)
    return make_aware(datetime.fromisoformat(value.replace('Z', '+00:00')))
