"""
Core Utilities Package

This package contains utility functions and helpers used throughout the application.

Modules:
    - time: Timestamp conversion between exchange formats, epoch milliseconds and UTC datetimes
"""

from core.utils.time import (
    to_utc_datetime,
    parse_exchange_timestamp,
    datetime_to_timestamp,
    current_utc_datetime,
)

__all__ = [
    "to_utc_datetime",
    "parse_exchange_timestamp",
    "datetime_to_timestamp",
    "current_utc_datetime",
]
