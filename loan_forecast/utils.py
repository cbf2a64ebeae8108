"""Utility functions for the loan repayment forecaster.

This module provides helpers for parsing user input into Python data types and
for handling dates, including adding months and normalizing date strings to
``datetime.date`` instances.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation, getcontext
import calendar

getcontext().prec = 28  # increase decimal precision to avoid rounding errors


def parse_start_date(value: str) -> date:
    """Parse a ``YYYY-MM-DD`` or ``YYYY-MM`` string into a ``date``.

    A missing day component means the first day of the month.

    Raises
    ------
    ValueError
        If the string is not a valid date.
    """
    try:
        parts = value.strip().split("-")
        if len(parts) not in (2, 3):
            raise ValueError
        year = int(parts[0])
        month = int(parts[1])
        day = int(parts[2]) if len(parts) == 3 else 1
        return date(year, month, day)
    except ValueError as exc:
        raise ValueError(f"Invalid date string: {value}") from exc


def add_months(dt: date, months: int) -> date:
    """Return a new date a number of months after ``dt``.

    The day of the month is clamped to the last valid day if needed (e.g.,
    adding one month to Jan 31 yields Feb 28 or 29).
    """
    year = dt.year + (dt.month - 1 + months) // 12
    month = (dt.month - 1 + months) % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def decimal_from_str(value: str) -> Decimal:
    """Convert a numeric string into a finite ``Decimal``.

    The function strips any commas and handles both integer and float-like
    strings. It raises ``ValueError`` if conversion fails or the value is
    NaN or infinite.
    """
    try:
        result = Decimal(str(value).strip().replace(",", ""))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid numeric value: {value}") from exc
    if not result.is_finite():
        raise ValueError(f"Invalid numeric value: {value}")
    return result


def format_percent(value: Decimal) -> str:
    """Render a percentage without trailing zeros (``Decimal("10.0")`` -> ``"10"``)."""
    return format(value.normalize(), "f")
