"""UTC timestamp helpers.

Timestamps are stored naive, in UTC, matching ``datetime.utcnow`` defaults
on the models. Aware values coming from clients are converted on the way in.
"""

from datetime import datetime, timezone
from typing import Optional, Union


def utcnow() -> datetime:
    return datetime.utcnow()


def to_naive_utc(value: datetime) -> datetime:
    """Drop tzinfo after converting to UTC; naive values are assumed UTC already."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse an ISO-8601 string (``Z`` suffix accepted) or pass a datetime through.

    Raises:
        ValueError if the string cannot be parsed
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Cannot parse timestamp: {value!r}")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return to_naive_utc(datetime.fromisoformat(text))


def isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None
