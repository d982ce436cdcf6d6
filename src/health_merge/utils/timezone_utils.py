"""
Date and timezone utilities.

Turns the date strings found in observation exports into civil dates. The merge
core never shifts dates itself; this is the single place a timezone is applied.
"""

from datetime import date, datetime

import pytz
from dateutil import parser


def to_local_time(dt: datetime, timezone_str: str) -> datetime:
    """
    Convert an aware datetime to the given timezone.

    Args:
        dt: Timezone-aware datetime.
        timezone_str: Timezone string (e.g., "America/Santiago").

    Returns:
        The same instant expressed in timezone_str.
    """
    return dt.astimezone(pytz.timezone(timezone_str))


def parse_civil_date(value: str, timezone_str: str | None = None) -> date:
    """
    Parse a date or timestamp string into a civil date.

    Args:
        value: Date or datetime string (various formats supported).
        timezone_str: If given, timestamps carrying an offset are converted to this
            timezone before the date is taken. Naive values are used as-is.

    Returns:
        Calendar date.
    """
    dt = parser.parse(value)

    if timezone_str and dt.tzinfo is not None:
        dt = to_local_time(dt, timezone_str)

    return dt.date()
