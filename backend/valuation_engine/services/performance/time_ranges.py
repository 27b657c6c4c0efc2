# backend/valuation_engine/services/performance/time_ranges.py
"""
Performance time ranges.

A range only chooses where the performance window starts; it never
changes how returns are computed.
"""

import enum
from datetime import date, timedelta

from valuation_engine.services.exceptions import InvalidTimeRangeError
from valuation_engine.services.dates import shift_months


class TimeRange(str, enum.Enum):
    ONE_WEEK = "1W"
    MONTH_TO_DATE = "MTD"
    ONE_MONTH = "1M"
    THREE_MONTHS = "3M"
    SIX_MONTHS = "6M"
    YEAR_TO_DATE = "YTD"
    ONE_YEAR = "1Y"
    ALL = "ALL"


def parse_time_range(value: str | TimeRange) -> TimeRange:
    """
    Read a time range code (case-insensitive).

    Raises:
        InvalidTimeRangeError: For unknown codes
    """
    if isinstance(value, TimeRange):
        return value
    try:
        return TimeRange(str(value).strip().upper())
    except ValueError:
        raise InvalidTimeRangeError(str(value), [t.value for t in TimeRange]) from None


def window_start(time_range: str | TimeRange, as_of: date) -> date | None:
    """
    First calendar day of the window ending at as_of.

    Month arithmetic clamps to the end of the target month, so 1M back
    from March 31 is February 29 in a leap year.

    Returns:
        Start date, or None for ALL

    Example:
        >>> window_start("YTD", date(2024, 6, 15))
        datetime.date(2024, 1, 1)
    """
    tr = parse_time_range(time_range)
    if tr is TimeRange.ONE_WEEK:
        return as_of - timedelta(days=7)
    if tr is TimeRange.MONTH_TO_DATE:
        return as_of.replace(day=1)
    if tr is TimeRange.ONE_MONTH:
        return shift_months(as_of, -1)
    if tr is TimeRange.THREE_MONTHS:
        return shift_months(as_of, -3)
    if tr is TimeRange.SIX_MONTHS:
        return shift_months(as_of, -6)
    if tr is TimeRange.YEAR_TO_DATE:
        return date(as_of.year, 1, 1)
    if tr is TimeRange.ONE_YEAR:
        return shift_months(as_of, -12)
    return None
