"""
Time Utilities

Exchanges report timestamps in different shapes:
- Binance: integer milliseconds (e.g., 1704110400000)
- OKX: milliseconds as a string (e.g., "1704110400000")
- Bybit: milliseconds as a string, "0" or "" when not applicable

The store keeps epoch milliseconds; everything else in the code base works
with timezone-aware UTC datetimes. The helpers below convert between the two.
"""

from datetime import datetime, timezone
from typing import Any, Optional, Union


def to_utc_datetime(timestamp: Union[int, float]) -> datetime:
    """
    Convert a timestamp (seconds or milliseconds) to UTC datetime.

    Detection Logic:
        - If timestamp > 1e12: assumed to be milliseconds
        - Otherwise: assumed to be seconds

    Raises:
        ValueError: If timestamp is negative or invalid

    Examples:
        >>> to_utc_datetime(1704110400000)
        datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)

        >>> to_utc_datetime(1704110400)
        datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)
    """
    if timestamp < 0:
        raise ValueError(f"Timestamp cannot be negative: {timestamp}")

    if timestamp > 1e12:
        timestamp = timestamp / 1000.0

    try:
        return datetime.fromtimestamp(timestamp, tz=timezone.utc)
    except (OSError, OverflowError, ValueError) as e:
        raise ValueError(f"Invalid timestamp: {timestamp}. Error: {e}")


def parse_exchange_timestamp(value: Any) -> Optional[datetime]:
    """
    Convert a raw exchange timestamp field to UTC datetime.

    Accepts ints, floats and numeric strings. Empty, missing and zero values
    mean "not reported" and return None.

    Examples:
        >>> parse_exchange_timestamp("1704110400000")
        datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)
        >>> parse_exchange_timestamp("") is None
        True
    """
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number <= 0:
        return None
    return to_utc_datetime(number)


def datetime_to_timestamp(dt: datetime, milliseconds: bool = False) -> int:
    """
    Convert a datetime object to Unix timestamp.

    Naive datetimes are assumed to be UTC.

    Examples:
        >>> dt = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        >>> datetime_to_timestamp(dt)
        1704110400
        >>> datetime_to_timestamp(dt, milliseconds=True)
        1704110400000
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)

    if milliseconds:
        return int(dt.timestamp() * 1000)
    return int(dt.timestamp())


def current_utc_datetime() -> datetime:
    """Current time as timezone-aware datetime in UTC."""
    return datetime.now(timezone.utc)
