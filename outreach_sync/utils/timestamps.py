"""
Timestamp helpers.

All timestamps inside the engine are timezone-aware UTC datetimes. The
store persists them as fixed-width ISO strings so that string comparison
in SQL matches chronological order.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

# Fixed width: always microseconds, always Z
DB_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an upstream timestamp.

    Accepts ISO-8601 strings (with "Z" or an offset), epoch seconds or
    milliseconds, and datetimes. Returns None for empty or unparseable input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 10_000_000_000 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        try:
            return ensure_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def to_db(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime for storage."""
    if value is None:
        return None
    return ensure_utc(value).strftime(DB_TIMESTAMP_FORMAT)


def from_db(value: Optional[str]) -> Optional[datetime]:
    """Deserialize a stored timestamp."""
    if not value:
        return None
    return datetime.strptime(value, DB_TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
