"""
Month Windows and the Reference Clock

Every "today" in the system is read from a fixed UTC offset (UTC+8 by
default), never from the host timezone, so the server, the admin console
and the ingestion endpoint agree on which month it is.

Month indexes are zero-based (0 = January) to match the month selector.
Dates are compared as zero-padded YYYY-MM-DD strings.
"""

import calendar
from datetime import date, datetime, timedelta, timezone
from typing import NamedTuple, Optional

from teambudget.config import get_settings


class MonthWindow(NamedTuple):
    """Inclusive [start, end] calendar range of one month."""
    start: str
    end: str

    def contains(self, day: str) -> bool:
        return self.start <= day <= self.end


def reference_timezone() -> timezone:
    """The fixed-offset timezone used for all current-date derivations."""
    hours = get_settings().app.reference_utc_offset_hours
    return timezone(timedelta(hours=hours))


def reference_now() -> datetime:
    """Current instant in the reference timezone."""
    return datetime.now(reference_timezone())


def reference_today() -> date:
    """Current calendar date in the reference timezone."""
    return reference_now().date()


def format_date(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}-{value.day:02d}"


def current_month(today: Optional[date] = None) -> tuple[int, int]:
    """(year, zero-based month index) of the reference date."""
    today = today or reference_today()
    return today.year, today.month - 1


def resolve_month_window(
    year: Optional[int] = None,
    month_index: Optional[int] = None,
    today: Optional[date] = None,
) -> MonthWindow:
    """
    Resolve the inclusive date range of a month.

    Without a year and month the current reference month is used.
    Out-of-range month indexes roll over into adjacent years
    (12 is January of the following year, -1 is December of the previous).

    Example:
        >>> resolve_month_window(2024, 1)
        MonthWindow(start='2024-02-01', end='2024-02-29')
    """
    if year is None or month_index is None:
        year, month_index = current_month(today)

    year += month_index // 12
    month = month_index % 12 + 1

    last_day = calendar.monthrange(year, month)[1]
    return MonthWindow(
        start=format_date(date(year, month, 1)),
        end=format_date(date(year, month, last_day)),
    )


def shift_month(year: int, month_index: int, delta: int) -> tuple[int, int]:
    """Move a (year, month index) pair by delta months."""
    total = year * 12 + month_index + delta
    return total // 12, total % 12


def is_current_month(year: int, month_index: int, today: Optional[date] = None) -> bool:
    return (year, month_index) == current_month(today)


def is_future_month(year: int, month_index: int, today: Optional[date] = None) -> bool:
    return (year, month_index) > current_month(today)
