"""
Tests for learning analytics: pure metrics and the store-backed engine.
"""

from datetime import datetime, timedelta, timezone

import pytest

from study_scheduler.models.srs_models import ScheduledReminder
from study_scheduler.models.task_models import StudySession
from study_scheduler.services.srs_analytics_service import (
    analyze_difficulty_patterns,
    calculate_learning_velocity,
    calculate_retention_rate,
    classify_mastery,
    compute_study_streaks,
    compute_weekly_progress,
    find_optimal_study_times,
    generate_recommendations,
)


def at(day, hour=12):
    return datetime(2024, 3, day, hour, tzinfo=timezone.utc)


# ============================================================================
# Pure metrics
# ============================================================================

def test_retention_rate(make_record):
    records = [make_record(q) for q in (5, 4, 2, 1)]
    assert calculate_retention_rate(records) == 50.0
    assert calculate_retention_rate([]) == 0.0


def test_retention_rate_of_seven_successes_in_ten(make_record):
    records = [make_record(q) for q in (5, 4, 3, 3, 4, 5, 3, 2, 1, 0)]
    assert calculate_retention_rate(records) == 70.0


def test_retention_rate_moves_with_each_added_review(make_record):
    records = [make_record(q) for q in (4, 1, 3, 2)]
    for quality in (5, 0, 3, 2, 4, 1):
        before = calculate_retention_rate(records)
        records.append(make_record(quality))
        after = calculate_retention_rate(records)
        if quality >= 3:
            assert after >= before
        else:
            assert after <= before


def test_learning_velocity_is_slope_times_hundred(make_record):
    records = [make_record(q, created_at=at(i + 1)) for i, q in enumerate([1, 2, 3, 4])]
    assert calculate_learning_velocity(records) == pytest.approx(100.0)


def test_learning_velocity_uses_time_order_and_floors_at_zero(make_record):
    improving = [make_record(q, created_at=at(i + 1)) for i, q in enumerate([1, 2, 3, 4])]
    assert calculate_learning_velocity(list(reversed(improving))) == pytest.approx(100.0)

    declining = [make_record(q, created_at=at(i + 1)) for i, q in enumerate([5, 4, 3, 2])]
    assert calculate_learning_velocity(declining) == 0.0
    assert calculate_learning_velocity(declining[:1]) == 0.0


def test_difficulty_pattern_trend_is_chronological(make_record):
    qualities = [1, 1, 1, 4, 4, 4]
    records = [make_record(q, created_at=at(i + 1), topic="Graphs") for i, q in enumerate(qualities)]

    patterns = analyze_difficulty_patterns(list(reversed(records)))

    assert len(patterns) == 1
    assert patterns[0].topic == "Graphs"
    assert patterns[0].trend == qualities
    assert patterns[0].difficulty_score == pytest.approx(2.5)
    assert patterns[0].improvement == "improving"


def test_difficulty_pattern_uses_last_window_and_session_topics(make_record):
    qualities = [5, 5, 5, 5, 2, 2, 2, 1, 1]
    records = [make_record(q, created_at=at(i + 1)) for i, q in enumerate(qualities)]
    records.append(make_record(3, session_id="sess_2", created_at=at(20)))

    patterns = analyze_difficulty_patterns(records, topics={"sess_1": "Calculus", "sess_2": "Physics"})

    # Physics has a single review and is skipped
    assert [p.topic for p in patterns] == ["Calculus"]
    assert patterns[0].trend == [5, 5, 2, 2, 2, 1, 1]
    assert patterns[0].improvement == "declining"


def test_optimal_study_times_ranked_by_quality(make_record):
    records = (
        [make_record(5, created_at=at(d, 8)) for d in (1, 2, 3)]
        + [make_record(2, created_at=at(d, 20)) for d in (1, 2, 3)]
        + [make_record(5, created_at=at(d, 12)) for d in (1, 2)]
    )

    slots = find_optimal_study_times(records)

    assert [(s.hour, s.frequency) for s in slots] == [(8, 3), (20, 3)]
    assert slots[0].performance == 5.0


def test_optimal_study_times_in_user_timezone(make_record):
    records = [make_record(4, created_at=at(d, 13)) for d in (4, 5, 6)]
    slots = find_optimal_study_times(records, tz_name="America/New_York")
    assert slots[0].hour == 8


@pytest.mark.parametrize(
    "quality, ease, level",
    [
        (4.5, 3.1, "advanced"),
        (4.0, 3.0, "advanced"),
        (3.9, 3.0, "intermediate"),
        (4.5, 2.9, "intermediate"),
        (3.0, 2.5, "intermediate"),
        (3.0, 2.4, "beginner"),
        (2.9, 3.2, "beginner"),
    ],
)
def test_classify_mastery(quality, ease, level):
    assert classify_mastery(quality, ease) == level


def test_recommendations_from_computed_metrics(make_record):
    patterns = analyze_difficulty_patterns([make_record(1, topic="Graphs", created_at=at(d)) for d in (1, 2, 3)])
    slots = find_optimal_study_times([make_record(4, created_at=at(d, 8)) for d in (1, 2, 3)])

    recommendations = generate_recommendations(50.0, 0.0, patterns, slots, "beginner")

    assert len(recommendations) == 5
    assert "Focus more on these challenging topics: Graphs" in recommendations
    assert "Your best performance is at 8:00. Schedule more reviews during this time." in recommendations


def test_no_recommendations_for_strong_learner():
    assert generate_recommendations(90.0, 10.0, [], [], "advanced") == []


def test_study_streaks_active_when_last_run_ends_yesterday(make_record):
    days = (1, 2, 3, 5, 6)
    records = [make_record(4, created_at=at(d)) for d in days]

    streaks = compute_study_streaks(records, today=at(7))

    assert [(s.length, s.is_active) for s in streaks] == [(3, False), (2, True)]
    assert streaks[0].end_date == datetime(2024, 3, 3, tzinfo=timezone.utc)
    assert streaks[1].end_date is None


def test_study_streak_broken_after_a_missed_day(make_record):
    records = [make_record(4, created_at=at(d)) for d in (3, 4)]
    streaks = compute_study_streaks(records, today=at(6))
    assert streaks[0].is_active is False


def test_weekly_progress_groups_by_sunday(make_record):
    records = [
        make_record(5, created_at=at(2), response_time_seconds=120),
        make_record(4, created_at=at(3), response_time_seconds=60),
        make_record(2, created_at=at(6), response_time_seconds=60),
    ]

    weeks = compute_weekly_progress(records)

    assert [w.week for w in weeks] == ["2024-02-25", "2024-03-03"]
    assert weeks[0].time_spent == 2
    assert weeks[1].reviews_completed == 2
    assert weeks[1].retention_rate == 50.0


# ============================================================================
# Engine
# ============================================================================

@pytest.mark.asyncio
async def test_aggregate_performance_statuses(store, analytics, make_record):
    summary = await analytics.get_aggregate_performance("user_1")
    assert summary.data_status == "empty"

    store.seed("srs_performance", make_record(2, ease=2.0), make_record(4, ease=3.0))
    summary = await analytics.get_aggregate_performance("user_1")
    assert summary.data_status == "ok"
    assert summary.review_count == 2
    assert summary.mean_quality == 3.0
    assert summary.mean_ease_factor == 2.5

    store.fail("get", "srs_performance")
    summary = await analytics.get_aggregate_performance("user_1")
    assert summary.data_status == "unavailable"
    assert summary.errors


@pytest.mark.asyncio
async def test_load_history_returns_most_recent_oldest_first(store, analytics, make_record):
    store.seed("srs_performance", *[make_record(q, created_at=at(i + 1)) for i, q in enumerate([1, 2, 3, 4, 5])])

    history = await analytics.load_history("user_1", limit=3)

    assert [r.quality_rating for r in history] == [3, 4, 5]


@pytest.mark.asyncio
async def test_learning_insights(store, analytics, make_record):
    store.seed("study_sessions", StudySession(id="sess_1", user_id="user_1", title="Graphs", topic="Graphs"))
    store.seed("srs_performance", *[make_record(q, created_at=at(d, 9)) for d, q in ((1, 3), (2, 4), (3, 5))])

    insights = await analytics.generate_learning_insights("user_1")

    assert insights.data_status == "ok"
    assert insights.retention_rate == 100.0
    assert insights.learning_velocity == pytest.approx(100.0)
    assert insights.difficulty_patterns[0].topic == "Graphs"
    assert insights.optimal_study_times[0].hour == 9
    assert insights.mastery_level == "intermediate"


@pytest.mark.asyncio
async def test_learning_insights_unavailable_without_recommendations(store, analytics):
    store.fail("get", "srs_performance")

    insights = await analytics.generate_learning_insights("user_1")

    assert insights.data_status == "unavailable"
    assert insights.recommendations == []
    assert insights.errors


@pytest.fixture
def dashboard_data(store, now, make_record):
    store.seed(
        "study_sessions",
        StudySession(id="sess_1", user_id="user_1", title="Graphs", topic="Graphs", review_count=3),
    )
    store.seed(
        "srs_performance",
        *[make_record(q, created_at=now - timedelta(days=d)) for d, q in ((3, 1), (2, 1), (1, 2))],
    )

    def reminder(offset, **fields):
        return ScheduledReminder(
            user_id="user_1",
            session_id="sess_1",
            reminder_time=now + offset,
            title="Review",
            body="Review Graphs",
            **fields,
        )

    store.seed(
        "reminders",
        reminder(timedelta(days=1), priority="high"),
        reminder(timedelta(days=2), completed=True),
        reminder(timedelta(days=-1)),
    )


@pytest.mark.asyncio
async def test_performance_dashboard(analytics, dashboard_data):
    dashboard = await analytics.get_performance_dashboard("user_1")

    assert dashboard.data_status == "ok"
    assert dashboard.errors == []

    assert len(dashboard.upcoming_reviews) == 1
    upcoming = dashboard.upcoming_reviews[0]
    assert upcoming.topic == "Graphs"
    assert upcoming.priority == "high"
    assert upcoming.estimated_difficulty == pytest.approx(5 - 4 / 3)

    assert dashboard.study_streaks[0].length == 3
    assert dashboard.study_streaks[0].is_active is True
    assert dashboard.overall_stats.current_streak == 3
    assert dashboard.overall_stats.total_reviews == 3

    assert dashboard.topic_mastery[0].review_count == 3
    assert dashboard.topic_mastery[0].mastery_level == pytest.approx(2.5 / 3.0 * 100)
    assert [w.week for w in dashboard.weekly_progress] == ["2024-03-03"]


@pytest.mark.asyncio
async def test_dashboard_partial_failure_adds_errors(store, analytics, dashboard_data):
    store.fail("get", "reminders")

    dashboard = await analytics.get_performance_dashboard("user_1")

    assert dashboard.data_status == "ok"
    assert dashboard.upcoming_reviews == []
    assert len(dashboard.errors) == 1
    assert dashboard.errors[0].startswith("reminders:")


@pytest.mark.asyncio
async def test_dashboard_unavailable_when_history_fails(store, analytics, dashboard_data):
    store.fail("get", "srs_performance")

    dashboard = await analytics.get_performance_dashboard("user_1")

    assert dashboard.data_status == "unavailable"
    assert dashboard.overall_stats.total_reviews == 0
