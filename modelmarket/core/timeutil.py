"""Naive-UTC clock helpers.

All timestamps are stored as naive UTC (SQLite drops tzinfo on round-trip),
so comparisons in services always use ``utcnow()``.
"""

import calendar
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def start_of_month(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def start_of_next_month(now: datetime) -> datetime:
    first = start_of_month(now)
    if first.month == 12:
        return first.replace(year=first.year + 1, month=1)
    return first.replace(month=first.month + 1)


def iso(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 with an explicit UTC offset, for wire payloads."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def shift_months(value: datetime, months: int) -> datetime:
    """Same wall-clock time *months* away, day clamped to the target month."""
    year, month_index = divmod(value.year * 12 + value.month - 1 + months, 12)
    month = month_index + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)
