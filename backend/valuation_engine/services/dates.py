# backend/valuation_engine/services/dates.py
"""
Date utility functions for the valuation engine.

Bars and valuation points are keyed by calendar day. Timestamps are not
accepted anywhere a day is expected: a datetime silently truncated to a
date is how off-by-one-day bugs enter a price series.

Usage:
    from valuation_engine.services.dates import parse_date, shift_months

    d = parse_date("2024-03-15")
"""

import calendar
from datetime import date, datetime

from valuation_engine.services.exceptions import MalformedDateError


def parse_date(value: object, field: str = "date") -> date:
    """
    Read a calendar day from a date or an ISO-8601 "YYYY-MM-DD" string.

    Args:
        value: Candidate value
        field: Field name reported on failure

    Returns:
        The calendar day

    Raises:
        MalformedDateError: For datetimes, other types or unparseable strings

    Example:
        >>> parse_date("2024-01-31")
        datetime.date(2024, 1, 31)
    """
    # datetime is a subclass of date, so check it first
    if isinstance(value, datetime):
        raise MalformedDateError(value, field=field)
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            raise MalformedDateError(value, field=field) from None
    raise MalformedDateError(value, field=field)


def shift_months(d: date, months: int) -> date:
    """
    Move a date by whole months, clamping to the end of the target month.

    Example:
        >>> shift_months(date(2024, 3, 31), -1)
        datetime.date(2024, 2, 29)
    """
    month_index = d.year * 12 + (d.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(d.day, last_day))


def validate_range(start_date: date | None, end_date: date | None) -> None:
    """Raise MalformedDateError if the range is reversed."""
    if start_date is not None and end_date is not None and start_date > end_date:
        raise MalformedDateError(f"{start_date}..{end_date}", field="date_range")
