"""Helpers and utilities."""

from datetime import datetime
from typing import Any, Optional
import re

from pytz import UTC
from unidecode import unidecode


def get_tzaware_utc_now() -> datetime:
    """Generate a datetime for the current moment in UTC."""
    return datetime.now(UTC)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return UTC.localize(value)
    return value.astimezone(UTC)


def fold(value: Any) -> str:
    """Normalize text for case- and accent-insensitive comparison."""
    return unidecode(str(value or '')).lower().strip()


HANDLE_CHARS = re.compile(r'[^a-z0-9_-]+')


def make_handle(name: str) -> str:
    """Generate a URL-safe handle from a display name."""
    return HANDLE_CHARS.sub('-', fold(name)).strip('-')[:30]
