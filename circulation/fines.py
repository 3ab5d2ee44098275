"""Overdue fine calculation.

Pure functions of (due, as-of, rate); no clock, no storage. Used both when a
loan is returned (the fine is fixed) and for display projections on open
loans.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Union

Moment = Union[datetime, date]
Rate = Union[Decimal, int, float, str]

ONE_DAY = timedelta(days=1)


def _as_decimal(rate: Rate) -> Decimal:
    if isinstance(rate, Decimal):
        return rate
    # str() first so 0.1 stays 0.1 instead of its binary expansion
    return Decimal(str(rate))


def days_overdue(due: Moment, as_of: Moment) -> int:
    """Whole days elapsed past ``due``; partial days do not count, never negative."""
    if as_of <= due:
        return 0
    return (as_of - due) // ONE_DAY


def days_until_due(due: Moment, as_of: Moment) -> int:
    """Whole days left before ``due``; 0 once it has passed."""
    if as_of >= due:
        return 0
    return (due - as_of) // ONE_DAY


def calculate_fine(due: Moment, as_of: Moment, rate_per_day: Rate) -> Decimal:
    """``max(0, whole days late) * rate_per_day``."""
    rate = _as_decimal(rate_per_day)
    if rate < 0:
        raise ValueError("Fine rate cannot be negative.")
    return days_overdue(due, as_of) * rate
