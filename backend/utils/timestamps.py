"""UTC timestamp helpers shared by hashing, tokens and persistence.

Signature timestamps are bound into HMACs as text, so every backend must hand
back exactly the instant that was hashed. MongoDB keeps milliseconds only,
therefore timestamps are truncated to milliseconds when they are created.
"""
from datetime import datetime, timezone
from typing import Optional, Union


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def truncate_to_millis(value: datetime) -> datetime:
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def utc_now() -> datetime:
    """Current UTC time at millisecond precision."""
    return truncate_to_millis(datetime.now(timezone.utc))


def isoformat_ms(value: datetime) -> str:
    """Serialize as YYYY-MM-DDTHH:MM:SS.mmmZ (UTC, millisecond precision)."""
    value = ensure_utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO-8601 string (a trailing Z is accepted) into an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))
