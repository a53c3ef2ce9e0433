"""
# Recurrence Rules

Frequency-to-date arithmetic for recurring patterns. Every rule keeps the time of day of
`from_date`; the calendar arithmetic runs on wall-clock time in the given timezone and the
result is returned in UTC.

| Frequency | Rule |
|-----------|------|
| `daily`   | `+ interval_value` days |
| `weekly`  | next listed weekday later this week, else the first listed weekday `interval_value` weeks ahead (weeks start on Sunday); `+ interval_value` weeks when no weekdays are listed |
| `monthly` | `day_of_month` (or the current day) `interval_value` months ahead, clamped to the month's last day |
| `custom`  | `+ interval_value` days |
"""

import calendar
from datetime import datetime, timedelta
from typing import List, Optional

from study_scheduler.models.recurring_models import Frequency, RecurringPattern
from study_scheduler.utils.datetime_utils import localize, to_local, utc


def sunday_weekday(dt: datetime) -> int:
    """Weekday with 0 = Sunday ... 6 = Saturday."""
    return (dt.weekday() + 1) % 7


def add_months(dt: datetime, months: int, day: Optional[int] = None) -> datetime:
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return dt.replace(year=year, month=month, day=min(day or dt.day, last_day))


def next_weekly(dt: datetime, interval: int, days_of_week: Optional[List[int]]) -> datetime:
    if not days_of_week:
        return dt + timedelta(weeks=interval)
    current = sunday_weekday(dt)
    later_this_week = [day for day in sorted(days_of_week) if day > current]
    if later_this_week:
        return dt + timedelta(days=later_this_week[0] - current)
    week_start = dt - timedelta(days=current)
    return week_start + timedelta(weeks=interval, days=min(days_of_week))


def advance_local(local_dt: datetime, pattern: RecurringPattern) -> datetime:
    """Apply the pattern's rule to a naive wall-clock datetime."""
    interval = pattern.interval_value
    frequency = Frequency(pattern.frequency)
    if frequency == Frequency.WEEKLY:
        return next_weekly(local_dt, interval, pattern.days_of_week)
    if frequency == Frequency.MONTHLY:
        return add_months(local_dt, interval, pattern.day_of_month)
    # daily and custom
    return local_dt + timedelta(days=interval)


def next_occurrence(pattern: RecurringPattern, from_date: datetime, tz_name: Optional[str] = "UTC") -> datetime:
    """
    Next generation date after `from_date` for `pattern`.

    Args:
        pattern: The cadence.
        from_date: Reference instant (aware, or naive UTC).
        tz_name: Timezone whose calendar the rule runs on. The store procedure passes the
            pattern timezone; the local fallback uses UTC.

    Returns:
        datetime: Aware UTC datetime.
    """
    local = to_local(from_date, tz_name)
    naive_next = advance_local(local.replace(tzinfo=None), pattern)
    return localize(naive_next, tz_name).astimezone(utc)
