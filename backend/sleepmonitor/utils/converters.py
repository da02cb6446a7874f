"""
Date <-> epoch-millis conversion for the sleep_data table.

Dates are always handled as timezone-aware UTC datetimes; the table stores
them as integer milliseconds since the Unix epoch.
"""
from datetime import datetime, timezone
from typing import Optional


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Normalize to aware UTC, treating naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def truncate_to_millis(value: datetime) -> datetime:
    return value.replace(microsecond=value.microsecond - value.microsecond % 1000)


def date_to_timestamp(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    delta = to_utc(value) - EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


def from_timestamp(value: Optional[int]) -> Optional[datetime]:
    """
    Convert stored epoch millis back into an aware UTC datetime.

    Raises:
        TypeError / ValueError / OverflowError: if the stored value is not
        an integer millisecond timestamp in the representable range.
    """
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"expected integer epoch millis, got {type(value).__name__}")
    seconds, millis = divmod(value, 1000)
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(microsecond=millis * 1000)
