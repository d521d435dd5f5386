"""UTC helpers. Timestamps are written timezone-aware; SQLite hands them back naive."""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat_utc(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 with an explicit UTC offset, or None."""
    if value is None:
        return None
    return as_utc(value).isoformat()
