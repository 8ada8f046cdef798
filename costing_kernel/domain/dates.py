"""
Business-day date handling.

Order lines are stamped with instants, but operators ask for calendar days
in the shop's timezone ("everything shipped 1-31 January, Bangkok time").
This module turns YYYY-MM-DD input into validated ``date`` objects and a
half-open UTC window ``[start 00:00, end+1 00:00)`` in the business zone.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from costing_kernel.exceptions import InvalidDateFormatError, InvalidDateRangeError


@dataclass(frozen=True, slots=True)
class BusinessDateRange:
    """Inclusive calendar range plus its half-open UTC bounds."""

    start_date: date
    end_date: date
    start_utc: datetime
    end_utc_exclusive: datetime
    timezone_name: str

    @property
    def days(self) -> int:
        return (self.end_date - self.start_date).days + 1


def parse_business_date(value: date | str) -> date:
    """
    Parse a YYYY-MM-DD string (or pass a ``date`` through).

    Raises:
        InvalidDateFormatError: value is not a real calendar date in
            YYYY-MM-DD form.
    """
    if isinstance(value, datetime):
        raise InvalidDateFormatError(value.isoformat())
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise InvalidDateFormatError(repr(value))
    text = value.strip()
    # fromisoformat also accepts YYYYMMDD and week dates; require the dashed form.
    if len(text) != 10 or text[4] != "-" or text[7] != "-":
        raise InvalidDateFormatError(value)
    try:
        return date.fromisoformat(text)
    except ValueError:
        raise InvalidDateFormatError(value) from None


def day_start_utc(day: date, timezone_name: str) -> datetime:
    """Midnight of ``day`` in the business zone, as a UTC instant."""
    local = datetime.combine(day, time.min, tzinfo=ZoneInfo(timezone_name))
    return local.astimezone(timezone.utc)


def business_date_range(
    start: date | str,
    end: date | str,
    timezone_name: str,
) -> BusinessDateRange:
    """
    Validate an inclusive calendar range and compute its UTC window.

    Raises:
        InvalidDateFormatError: either bound is malformed.
        InvalidDateRangeError: start is after end.
    """
    start_date = parse_business_date(start)
    end_date = parse_business_date(end)
    if start_date > end_date:
        raise InvalidDateRangeError(start_date.isoformat(), end_date.isoformat())
    return BusinessDateRange(
        start_date=start_date,
        end_date=end_date,
        start_utc=day_start_utc(start_date, timezone_name),
        end_utc_exclusive=day_start_utc(end_date + timedelta(days=1), timezone_name),
        timezone_name=timezone_name,
    )


def business_day_of(instant: datetime, timezone_name: str) -> date:
    """Calendar day of ``instant`` in the business zone."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(ZoneInfo(timezone_name)).date()


def month_to_date(today: date) -> tuple[date, date]:
    """First of the month through ``today``."""
    return today.replace(day=1), today
