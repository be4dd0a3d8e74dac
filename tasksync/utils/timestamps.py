"""Timestamp helpers.

Everything in the service works with timezone-aware UTC datetimes. Naive
values coming from clients or the database are taken to be UTC already.
"""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(raw: str) -> datetime:
    """Parse an ISO-8601 timestamp, accepting a trailing ``Z``.

    Raises:
        ValueError: If ``raw`` is empty or not ISO-8601
    """
    if not raw or not raw.strip():
        raise ValueError("timestamp is empty")
    text = raw.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))
