"""Timestamp helpers shared by models, views and reports."""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC so they compare with aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def get_formatted_time(value: Optional[datetime]) -> str:
    """Converts a datetime to 'YYYY-MM-DD HH:MM:SS' (UTC), '-' when unknown."""
    if value is None:
        return "-"
    return ensure_utc(value).strftime("%Y-%m-%d %H:%M:%S")
