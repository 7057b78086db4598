"""Calendar helpers shared by the PDC calculator and the tier classifier.

All arithmetic is on whole calendar days (``datetime.date``). String parsing
only happens in ``parse_fill_date``, which the dispense adapter calls; the
calculators never see strings.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any

from ma_calculators.pdc_calculator.constants import Q4_MONTHS


def add_days(start: date, days: int) -> date:
    return start + timedelta(days=days)


def days_between(start: date, end: date) -> int:
    """Signed number of days from ``start`` to ``end``."""
    return (end - start).days


def year_end(year: int) -> date:
    return date(year, 12, 31)


def year_start(year: int) -> date:
    return date(year, 1, 1)


def days_to_year_end(current_date: date, period_end: date) -> int:
    """Days left in the measurement period, counting today.

    Returns 0 once ``current_date`` is past ``period_end``.
    """
    return max(0, days_between(current_date, period_end) + 1)


def is_q4(current_date: date) -> bool:
    """True for October, November and December."""
    return current_date.month in Q4_MONTHS


def parse_fill_date(value: Any) -> date | None:
    """Coerce a dispense hand-over value into a date.

    Accepts ``date``/``datetime`` objects and ISO-8601 strings (date-only or
    full timestamps, with ``Z`` or an offset). Anything unusable is None.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"

    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None
