"""Fiscal calendar arithmetic.

Translates calendar dates into a client's fiscal year / fiscal month numbering
and back. Fiscal years are named by their ending calendar year; fiscal months
are 0-based (0 = the configured start month).

Example (fiscal year starting in July):
- 2025-07-15 -> fiscal year 2026, fiscal month 0
- 2026-01-15 -> fiscal year 2026, fiscal month 6
"""

import calendar
from datetime import date, datetime

from unitledger.errors import InvalidDateError, InvalidMonthError

MONTH_NAMES = [
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
]


def validate_start_month(fy_start_month: int) -> int:
    """Check that a fiscal year start month is a calendar month (1-12).

    Raises:
        InvalidMonthError: If the month is outside 1..12 or not an integer
    """
    if isinstance(fy_start_month, bool) or not isinstance(fy_start_month, int):
        raise InvalidMonthError(f"Fiscal year start month must be an integer, got {fy_start_month!r}")
    if not 1 <= fy_start_month <= 12:
        raise InvalidMonthError(f"Fiscal year start month must be in 1..12, got {fy_start_month}")
    return fy_start_month


def validate_fiscal_month(fiscal_month: int) -> int:
    """Check that a fiscal month index is in 0..11."""
    if isinstance(fiscal_month, bool) or not isinstance(fiscal_month, int):
        raise InvalidMonthError(f"Fiscal month must be an integer, got {fiscal_month!r}")
    if not 0 <= fiscal_month <= 11:
        raise InvalidMonthError(f"Fiscal month must be in 0..11, got {fiscal_month}")
    return fiscal_month


def to_date(value: date | datetime | str | None) -> date:
    """Coerce a date, datetime or ISO date string into a date.

    Raises:
        InvalidDateError: If value is None or cannot be parsed
    """
    if value is None:
        raise InvalidDateError("Date is required")
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text[:10])
        except ValueError as e:
            raise InvalidDateError(f"Unparseable date: {value!r}") from e
    raise InvalidDateError(f"Unsupported date value: {value!r}")


def fiscal_year(value: date | datetime | str, fy_start_month: int) -> int:
    """Get the fiscal year a calendar date falls in.

    Args:
        value: Calendar date
        fy_start_month: First calendar month of the fiscal year (1-12)

    Returns:
        Fiscal year number (named by the calendar year it ends in)
    """
    validate_start_month(fy_start_month)
    d = to_date(value)
    if fy_start_month == 1:
        return d.year
    return d.year + 1 if d.month >= fy_start_month else d.year


def fiscal_month_index(value: date | datetime | str, fy_start_month: int) -> int:
    """Get the 0-based fiscal month of a calendar date."""
    validate_start_month(fy_start_month)
    d = to_date(value)
    return (d.month - fy_start_month + 12) % 12


def current_fiscal_period(value: date | datetime | str, fy_start_month: int) -> tuple[int, int]:
    """Get (fiscal_year, fiscal_month) for a calendar date."""
    return fiscal_year(value, fy_start_month), fiscal_month_index(value, fy_start_month)


def calendar_month_for(fiscal_month: int, fy_start_month: int) -> int:
    """Get the calendar month (1-12) of a fiscal month index."""
    validate_start_month(fy_start_month)
    validate_fiscal_month(fiscal_month)
    return (fy_start_month - 1 + fiscal_month) % 12 + 1


def calendar_year_for(fiscal_year_value: int, fiscal_month: int, fy_start_month: int) -> int:
    """Get the calendar year a fiscal month falls in."""
    month = calendar_month_for(fiscal_month, fy_start_month)
    if fy_start_month == 1:
        return fiscal_year_value
    return fiscal_year_value - 1 if month >= fy_start_month else fiscal_year_value


def period_due_date(fiscal_year_value: int, fiscal_month: int, fy_start_month: int, due_day: int = 1) -> date:
    """Get the due date of a fiscal period.

    Args:
        fiscal_year_value: Fiscal year
        fiscal_month: 0-based fiscal month
        fy_start_month: First calendar month of the fiscal year
        due_day: Day of month the period falls due (clamped to the month length)

    Returns:
        Due date
    """
    month = calendar_month_for(fiscal_month, fy_start_month)
    year = calendar_year_for(fiscal_year_value, fiscal_month, fy_start_month)
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, max(1, min(due_day, last_day)))


def fiscal_month_name(fiscal_month: int, fy_start_month: int) -> str:
    """Get the calendar month name of a fiscal month."""
    return MONTH_NAMES[calendar_month_for(fiscal_month, fy_start_month) - 1]


def days_overdue(as_of: date | datetime | str, due_date: date | datetime | str) -> int:
    """Get signed days elapsed from the due date (negative before it)."""
    return (to_date(as_of) - to_date(due_date)).days


__all__ = [
    "MONTH_NAMES",
    "validate_start_month",
    "validate_fiscal_month",
    "to_date",
    "fiscal_year",
    "fiscal_month_index",
    "current_fiscal_period",
    "calendar_month_for",
    "calendar_year_for",
    "period_due_date",
    "fiscal_month_name",
    "days_overdue",
]
