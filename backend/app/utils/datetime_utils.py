"""
Date and time utilities for CustodyFolio.

Provides timezone-aware datetime helpers.

SQLite stores DATETIME columns without offset, so values read back from the
database are naive. Every timestamp in the system is UTC: as_utc() restores
the tzinfo before comparing with utcnow().
"""
from datetime import datetime, timezone, date
from typing import Optional


def utcnow() -> datetime:
    """
    Get current UTC datetime with timezone info.

    Returns:
        datetime: Current datetime in UTC with tzinfo set to timezone.utc

    Note:
        Always use this function instead of datetime.now() to ensure
        timezone-aware timestamps across the application.
    """
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Return value as an aware UTC datetime.

    Naive datetimes are assumed to already be in UTC (that is how they were stored).
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_ISO_datetime(v) -> datetime:
    """
    Parse an ISO datetime (or date) into an aware UTC datetime.

    Dates are interpreted as midnight UTC.
    """
    if isinstance(v, datetime):
        return as_utc(v)
    if isinstance(v, date):
        return datetime(v.year, v.month, v.day, tzinfo=timezone.utc)
    if isinstance(v, str):
        try:
            return as_utc(datetime.fromisoformat(v))
        except ValueError as e:
            raise ValueError(f"Input must be an ISO datetime string. Error: {e}")
    raise TypeError(f"Input must be a str, date or datetime, got {type(v)}")
