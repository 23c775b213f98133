"""
Calendar helpers for period bucketing and recurring schedules.

All values are plain ``date`` objects: operation dates carry no time zone,
so bucketing compares calendar dates only.
"""

import calendar
from datetime import date, datetime, timedelta
from typing import Optional


def parse_date(value) -> Optional[date]:
    """
    Accept a date, a datetime (date part) or an ISO string; None when invalid.

    Strings may carry a time part after ``T`` or a space, which is dropped.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if len(text) > 10 and text[10] not in ("T", " "):
            return None
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            return None
    return None


def month_bounds(day: date):
    """First and last calendar day of the month containing ``day``."""
    last_day = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=1), day.replace(day=last_day)


def add_months(day: date, months: int) -> date:
    """Shift by whole months, clamping the day to the target month's length."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def next_occurrence(day: date, frequency: str) -> date:
    """Date of the next run after ``day`` for a schedule frequency."""
    if frequency == "daily":
        return day + timedelta(days=1)
    if frequency == "weekly":
        return day + timedelta(weeks=1)
    if frequency == "monthly":
        return add_months(day, 1)
    if frequency == "yearly":
        return add_months(day, 12)
    raise ValueError(f"Unknown frequency: {frequency}")
