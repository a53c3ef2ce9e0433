"""
Unit tests for recurrence date arithmetic.

2024-03-06 is a Wednesday; weekdays are numbered 0 = Sunday ... 6 = Saturday.
"""

from datetime import datetime, timezone

import pytest

from study_scheduler.models.recurring_models import RecurringPattern
from study_scheduler.utils.recurrence import add_months, next_occurrence, sunday_weekday


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def pattern(**fields):
    fields.setdefault("name", "test")
    return RecurringPattern(**fields)


def test_sunday_first_weekday_numbering():
    assert sunday_weekday(utc(2024, 3, 3)) == 0
    assert sunday_weekday(utc(2024, 3, 6)) == 3
    assert sunday_weekday(utc(2024, 3, 9)) == 6


# ============================================================================
# Daily / custom
# ============================================================================

def test_daily_adds_interval_days_and_keeps_time():
    assert next_occurrence(pattern(frequency="daily"), utc(2024, 3, 6, 9)) == utc(2024, 3, 7, 9)


def test_custom_every_three_days():
    p = pattern(frequency="custom", interval_value=3)
    assert next_occurrence(p, utc(2024, 3, 6, 9)) == utc(2024, 3, 9, 9)


# ============================================================================
# Weekly
# ============================================================================

def test_weekly_picks_next_listed_day_this_week():
    p = pattern(frequency="weekly", days_of_week=[1, 3, 5])
    assert next_occurrence(p, utc(2024, 3, 6, 9)) == utc(2024, 3, 8, 9)


def test_weekly_wraps_to_first_listed_day_next_week():
    p = pattern(frequency="weekly", days_of_week=[5, 1, 3])
    assert next_occurrence(p, utc(2024, 3, 8, 9)) == utc(2024, 3, 11, 9)


def test_biweekly_skips_interval_weeks_from_week_start():
    p = pattern(frequency="weekly", interval_value=2, days_of_week=[0])
    assert next_occurrence(p, utc(2024, 3, 6, 9)) == utc(2024, 3, 17, 9)


def test_weekly_without_days_adds_whole_weeks():
    p = pattern(frequency="weekly")
    assert next_occurrence(p, utc(2024, 3, 6, 9)) == utc(2024, 3, 13, 9)


# ============================================================================
# Monthly
# ============================================================================

@pytest.mark.parametrize(
    "start, expected",
    [
        (utc(2024, 1, 31, 8), utc(2024, 2, 29, 8)),
        (utc(2023, 1, 31, 8), utc(2023, 2, 28, 8)),
        (utc(2024, 3, 31, 8), utc(2024, 4, 30, 8)),
    ],
)
def test_monthly_clamps_to_last_day(start, expected):
    p = pattern(frequency="monthly", day_of_month=31)
    assert next_occurrence(p, start) == expected


def test_monthly_without_day_keeps_current_day():
    assert next_occurrence(pattern(frequency="monthly"), utc(2024, 1, 15, 12)) == utc(2024, 2, 15, 12)


def test_monthly_rolls_over_year():
    p = pattern(frequency="monthly", interval_value=12, day_of_month=1)
    assert next_occurrence(p, utc(2024, 3, 6, 9)) == utc(2025, 3, 1, 9)


def test_add_months_across_december():
    assert add_months(datetime(2024, 11, 30), 3) == datetime(2025, 2, 28)


# ============================================================================
# Timezones
# ============================================================================

def test_daily_keeps_local_wall_clock_across_dst():
    p = pattern(frequency="daily", timezone="America/New_York")
    # 09:00 EST on the day before the spring-forward change
    result = next_occurrence(p, utc(2024, 3, 9, 14), "America/New_York")
    assert result == utc(2024, 3, 10, 13)
    assert result.tzinfo is not None


def test_weekly_weekday_is_evaluated_in_pattern_timezone():
    p = pattern(frequency="weekly", days_of_week=[5], timezone="America/New_York")
    # Friday 03:00 UTC is still Thursday evening in New York
    start = utc(2024, 3, 8, 3)
    assert next_occurrence(p, start, "America/New_York") == utc(2024, 3, 9, 3)
    assert next_occurrence(p, start, "UTC") == utc(2024, 3, 15, 3)


def test_naive_from_date_is_treated_as_utc():
    assert next_occurrence(pattern(frequency="daily"), datetime(2024, 3, 6, 9)) == utc(2024, 3, 7, 9)
