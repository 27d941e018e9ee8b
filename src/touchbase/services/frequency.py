"""Cadence date math.

All functions are pure: the current time is always passed in (or defaults to
``utc_now()``) so callers and tests can pin it.
"""
from __future__ import annotations

import calendar
from datetime import datetime, timedelta

from touchbase.models import (
    LAST_CONTACT_OPTIONS,
    REMINDER_FREQUENCIES,
    parse_timestamp,
    utc_now,
)

# Frequencies that never produce a follow-up date.
NON_RECURRING = ("never", "once")

_MONTH_STEPS = {"month": 1, "3months": 3, "6months": 6, "year": 12, "yearly": 12}


def add_months(value: datetime, months: int) -> datetime:
    """Shift by calendar months, clamping the day to the target month's last day."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def next_reminder_date(reference: datetime, frequency: str) -> datetime | None:
    """Next due date after ``reference`` for ``frequency``; None when it never recurs.

    >>> next_reminder_date(datetime(2024, 1, 31), "month")
    datetime.datetime(2024, 2, 29, 0, 0)
    """
    if frequency not in REMINDER_FREQUENCIES:
        raise ValueError(f"Unknown reminder frequency: {frequency!r}")
    if frequency in NON_RECURRING:
        return None
    if frequency == "daily":
        return reference + timedelta(days=1)
    if frequency == "week":
        return reference + timedelta(days=7)
    return add_months(reference, _MONTH_STEPS[frequency])


def elapsed_days(value: datetime | str, now: datetime | None = None) -> int:
    """Whole days between ``value`` and now, ignoring direction."""
    when = parse_timestamp(value)
    now = now or utc_now()
    return abs(now - when).days


def bucket_from_elapsed(value: datetime | str, now: datetime | None = None) -> str:
    """Map a last-contact date back to the coarse option a user would pick."""
    days = elapsed_days(value, now)
    if days == 0:
        return "today"
    if days == 1:
        return "yesterday"
    if days <= 7:
        return "week"
    if days <= 30:
        return "month"
    if days <= 90:
        return "3months"
    if days <= 180:
        return "6months"
    if days <= 365:
        return "year"
    return "custom"


def last_contact_date(option: str, custom: datetime | str | None = None, now: datetime | None = None) -> datetime:
    """Turn a last-contact option into a concrete date (inverse of the bucketing)."""
    if option not in LAST_CONTACT_OPTIONS:
        raise ValueError(f"Unknown last contact option: {option!r}")
    now = now or utc_now()
    if option == "today":
        return now
    if option == "yesterday":
        return now - timedelta(days=1)
    if option == "week":
        return now - timedelta(days=7)
    if option == "month":
        return add_months(now, -1)
    if option == "3months":
        return add_months(now, -3)
    if option == "6months":
        return add_months(now, -6)
    if option == "year":
        return add_months(now, -12)
    return parse_timestamp(custom) if custom else now


def is_overdue(due: datetime, now: datetime | None = None) -> bool:
    return due < (now or utc_now())


def week_bounds(now: datetime) -> tuple[datetime, datetime]:
    """Monday 00:00 through Sunday 23:59:59.999999 of the week containing ``now``."""
    start = (now - timedelta(days=now.weekday())).replace(hour=0, minute=0, second=0, microsecond=0)
    end = start + timedelta(days=7) - timedelta(microseconds=1)
    return start, end


def is_this_week(due: datetime, now: datetime | None = None) -> bool:
    start, end = week_bounds(now or utc_now())
    return start <= due <= end
