"""
Date-only helpers.

Pay period bands, block dates and row dates are calendar days, not
timestamps. Everything here works on `datetime.date` and never touches
timezones; timestamps (createdAt/updatedAt) are the only aware datetimes
in the system.
"""

import calendar
import re
from datetime import date, datetime, timedelta, timezone
from typing import Union

from dateutil.relativedelta import relativedelta


DATE_ONLY_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

DayOfMonth = Union[int, str]  # 1-31 or "Last"


def utc_now() -> datetime:
    """Current timestamp (UTC, timezone-aware)."""
    return datetime.now(timezone.utc)


def today() -> date:
    return date.today()


def parse_date_input(value: Union[str, date, datetime]) -> date:
    """
    Normalize a date-like input to a calendar date.

    Accepts 'YYYY-MM-DD', a full ISO-8601 datetime string (the calendar
    date it names is kept, no timezone shift), a datetime or a date.

    Raises:
        ValueError: If the value cannot be read as a date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError(f"Not a date: {value!r}")

    text = value.strip()
    if DATE_ONLY_PATTERN.match(text):
        return date.fromisoformat(text)

    # Full timestamps written by older clients, e.g. 2025-01-20T05:00:00.000Z
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text).date()


def parse_timestamp(value: Union[str, datetime, date]) -> datetime:
    """Normalize a timestamp input to an aware datetime (UTC if naive)."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_within_range(value: date, start: date, end: date) -> bool:
    """Check if a date falls within a range (inclusive)."""
    return start <= value <= end


def month_key(value: date) -> str:
    """'YYYY-MM' for the month containing the date."""
    return f"{value.year:04d}-{value.month:02d}"


def start_of_month(value: date) -> date:
    return value.replace(day=1)


def end_of_month(value: date) -> date:
    return value.replace(day=calendar.monthrange(value.year, value.month)[1])


def add_months(value: date, months: int) -> date:
    """Add calendar months, clamping the day to the target month's length."""
    return value + relativedelta(months=months)


def day_of_month(year: int, month: int, day: DayOfMonth) -> date:
    """
    Resolve a day-of-month setting in a given month.

    "Last" resolves to the month's final day. Numeric days past the end of
    a short month roll over into the next month, the way the paydays were
    always computed.
    """
    if day == "Last":
        return date(year, month, calendar.monthrange(year, month)[1])
    return date(year, month, 1) + timedelta(days=int(day) - 1)


def extract_due_day(value: date) -> DayOfMonth:
    """Day of month of a date, or "Last" if it is the final day of its month."""
    if value == end_of_month(value):
        return "Last"
    return value.day


def bill_date_in_band(band_start: date, band_end: date, due_day: DayOfMonth) -> tuple[date, bool]:
    """
    Place a monthly due day in the month a band starts in.

    Returns (candidate_date, falls_inside_band).
    """
    candidate = day_of_month(band_start.year, band_start.month, due_day)
    return candidate, is_within_range(candidate, band_start, band_end)
