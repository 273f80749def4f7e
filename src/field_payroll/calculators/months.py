"""Calendar month helpers for ledger attribution."""

from __future__ import annotations

import calendar
from datetime import date

MONTH_FORMAT = "%Y-%m"


def format_month(day: date) -> str:
    """Month key (``YYYY-MM``) for a date."""
    return day.strftime(MONTH_FORMAT)


def parse_month(month: str) -> date:
    """First day of a ``YYYY-MM`` month key.

    Raises ValueError for malformed keys.
    """
    year_str, sep, month_str = month.partition("-")
    if not sep or len(year_str) != 4 or len(month_str) != 2:
        raise ValueError(f"Invalid month '{month}', expected YYYY-MM")
    return date(int(year_str), int(month_str), 1)


def month_bounds(month: str) -> tuple[date, date]:
    """First and last day of a month key."""
    first = parse_month(month)
    last_day = calendar.monthrange(first.year, first.month)[1]
    return first, first.replace(day=last_day)
