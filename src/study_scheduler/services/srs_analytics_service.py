"""
# SRS Analytics Service

This module derives **learning analytics** from a user's review history. The numbers feed
the adaptive scheduler (aggregate performance) and user-facing dashboards.

## Metrics

| Metric | Definition |
|--------|------------|
| Retention rate | % of reviews with quality >= 3 (0 when there is no history) |
| Learning velocity | least-squares slope of quality over review index, x100, floored at 0 |
| Difficulty pattern | per topic with >= 3 reviews: `5 - mean` of the last 7 (chronological); trend by comparing half means (+/-0.5) |
| Optimal study times | hour-of-day buckets with >= 3 reviews ranked by mean quality, top 5 |
| Mastery level | advanced (quality >= 4 and ease >= 3.0), intermediate (>= 3 and >= 2.5), else beginner |

## Result Channel

Reads never raise. Aggregates carry `data_status`:
- `ok` when history was loaded,
- `empty` when there is none,
- `unavailable` (plus `errors`) when it could not be loaded.

## Usage Example

```python
analytics = PerformanceAnalyticsEngine(store)
summary = await analytics.get_aggregate_performance("user_1")
if summary.data_status == "ok" and summary.mean_quality < 3:
    ...
```
"""

import asyncio
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from study_scheduler.config import settings
from study_scheduler.database.store import StudyStore
from study_scheduler.exceptions import PersistenceError
from study_scheduler.managers.logging_manager import get_logger
from study_scheduler.models.analytics_models import (
    DifficultyPattern,
    LearningInsights,
    OverallStats,
    PerformanceDashboard,
    PerformanceSummary,
    StudyStreak,
    StudyTimeSlot,
    TopicMastery,
    UpcomingReview,
    WeeklyProgress,
)
from study_scheduler.models.base import utcnow
from study_scheduler.models.srs_models import SRS_REMINDER_TYPES, PerformanceRecord
from study_scheduler.utils.datetime_utils import ensure_utc, sunday_week_start, to_local

logger = get_logger(prefix="[SRSAnalytics]")

RETENTION_THRESHOLD = 3
DEFAULT_ESTIMATED_DIFFICULTY = 3.0


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _chronological(records: List[PerformanceRecord]) -> List[PerformanceRecord]:
    return sorted(records, key=lambda r: ensure_utc(r.created_at))


# --- Pure metrics ---

def calculate_retention_rate(records: List[PerformanceRecord]) -> float:
    if not records:
        return 0.0
    successful = sum(1 for r in records if r.quality_rating >= RETENTION_THRESHOLD)
    return successful / len(records) * 100


def calculate_learning_velocity(records: List[PerformanceRecord]) -> float:
    """Least-squares slope of quality over chronological index, as a percentage, floored at 0."""
    if len(records) < 2:
        return 0.0
    y = [r.quality_rating for r in _chronological(records)]
    n = len(y)
    x = range(n)
    sum_x = sum(x)
    sum_y = sum(y)
    sum_xy = sum(i * q for i, q in zip(x, y))
    sum_xx = sum(i * i for i in x)
    slope = (n * sum_xy - sum_x * sum_y) / (n * sum_xx - sum_x * sum_x)
    return max(0.0, slope * 100)


def analyze_difficulty_patterns(
    records: List[PerformanceRecord],
    topics: Optional[Dict[str, str]] = None,
    min_reviews: int = settings.ANALYTICS_MIN_TOPIC_REVIEWS,
    window: int = settings.ANALYTICS_TREND_WINDOW,
) -> List[DifficultyPattern]:
    """
    Per-topic difficulty over the most recent `window` reviews.

    A record's topic comes from the record itself or, failing that, from `topics`
    (session id -> topic). Records without a topic are ignored.
    """
    topics = topics or {}
    groups: Dict[str, List[PerformanceRecord]] = defaultdict(list)
    for record in _chronological(records):
        topic = record.topic or topics.get(record.session_id)
        if topic:
            groups[topic].append(record)

    patterns: List[DifficultyPattern] = []
    for topic, reviews in groups.items():
        if len(reviews) < min_reviews:
            continue
        trend = [r.quality_rating for r in reviews[-window:]]
        difficulty = 5 - _mean(trend)

        improvement = "stable"
        half = len(trend) // 2
        first_avg = _mean(trend[:half])
        second_avg = _mean(trend[half:])
        if second_avg > first_avg + 0.5:
            improvement = "improving"
        elif second_avg < first_avg - 0.5:
            improvement = "declining"

        patterns.append(
            DifficultyPattern(topic=topic, difficulty_score=difficulty, improvement=improvement, trend=trend)
        )
    return sorted(patterns, key=lambda p: p.difficulty_score, reverse=True)


def find_optimal_study_times(
    records: List[PerformanceRecord],
    tz_name: Optional[str] = None,
    min_samples: int = settings.ANALYTICS_MIN_HOUR_SAMPLES,
    top: int = settings.ANALYTICS_TOP_STUDY_TIMES,
) -> List[StudyTimeSlot]:
    """Hours of day ranked by mean quality. Hours come from `created_at`, in `tz_name` when given."""
    buckets: Dict[int, List[int]] = defaultdict(list)
    for record in records:
        moment = to_local(record.created_at, tz_name) if tz_name else ensure_utc(record.created_at)
        buckets[moment.hour].append(record.quality_rating)

    slots = [
        StudyTimeSlot(hour=hour, performance=_mean(scores), frequency=len(scores))
        for hour, scores in buckets.items()
        if len(scores) >= min_samples
    ]
    slots.sort(key=lambda s: s.performance, reverse=True)
    return slots[:top]


def classify_mastery(mean_quality: float, mean_ease: float) -> str:
    if mean_quality >= 4 and mean_ease >= 3.0:
        return "advanced"
    if mean_quality >= 3 and mean_ease >= 2.5:
        return "intermediate"
    return "beginner"


def generate_recommendations(
    retention_rate: float,
    learning_velocity: float,
    difficulty_patterns: List[DifficultyPattern],
    optimal_study_times: List[StudyTimeSlot],
    mastery_level: str,
) -> List[str]:
    recommendations: List[str] = []
    if retention_rate < 70:
        recommendations.append(
            "Your retention rate is below 70%. Consider reviewing more frequently or using different study techniques."
        )
    if learning_velocity < 5:
        recommendations.append("Your learning velocity is slow. Try breaking down complex topics into smaller chunks.")
    struggling = [p.topic for p in difficulty_patterns if p.difficulty_score > 3]
    if struggling:
        recommendations.append(f"Focus more on these challenging topics: {', '.join(struggling)}")
    if optimal_study_times:
        best = optimal_study_times[0]
        recommendations.append(
            f"Your best performance is at {best.hour}:00. Schedule more reviews during this time."
        )
    if mastery_level == "beginner":
        recommendations.append(
            "You're still in the beginner phase. Focus on understanding fundamentals before moving to advanced topics."
        )
    return recommendations


# --- Dashboard building blocks ---

def compute_weekly_progress(records: List[PerformanceRecord]) -> List[WeeklyProgress]:
    weeks: Dict[str, List[PerformanceRecord]] = defaultdict(list)
    for record in records:
        week = sunday_week_start(ensure_utc(record.created_at)).date().isoformat()
        weeks[week].append(record)

    progress = []
    for week, reviews in weeks.items():
        seconds = sum(r.response_time_seconds or 0 for r in reviews)
        progress.append(
            WeeklyProgress(
                week=week,
                reviews_completed=len(reviews),
                average_quality=_mean([r.quality_rating for r in reviews]),
                retention_rate=calculate_retention_rate(reviews),
                time_spent=round(seconds / 60),
            )
        )
    return sorted(progress, key=lambda w: w.week)


def compute_study_streaks(records: List[PerformanceRecord], today: Optional[datetime] = None) -> List[StudyStreak]:
    """
    Runs of consecutive review days (UTC), longest first.

    The most recent run is active when it ends today or yesterday.
    """
    days = sorted({ensure_utc(r.created_at).date() for r in records})
    if not days:
        return []
    today_date = ensure_utc(today or utcnow()).date()

    runs = [[days[0]]]
    for day in days[1:]:
        if day - runs[-1][-1] == timedelta(days=1):
            runs[-1].append(day)
        else:
            runs.append([day])

    streaks = []
    for index, run in enumerate(runs):
        is_last = index == len(runs) - 1
        active = is_last and (today_date - run[-1]) <= timedelta(days=1)
        start = datetime(run[0].year, run[0].month, run[0].day, tzinfo=timezone.utc)
        end = datetime(run[-1].year, run[-1].month, run[-1].day, tzinfo=start.tzinfo)
        streaks.append(StudyStreak(start_date=start, end_date=None if active else end, length=len(run), is_active=active))
    return sorted(streaks, key=lambda s: s.length, reverse=True)


def compute_topic_mastery(sessions: List[dict], records: List[PerformanceRecord]) -> List[TopicMastery]:
    latest: Dict[str, PerformanceRecord] = {}
    for record in _chronological(records):
        latest[record.session_id] = record

    mastery = []
    for session in sessions:
        record = latest.get(session["id"])
        if record is None:
            continue
        last_review = ensure_utc(record.created_at)
        mastery.append(
            TopicMastery(
                session_id=session["id"],
                topic=session.get("topic") or record.topic or "",
                mastery_level=min(100.0, record.ease_factor / 3.0 * 100),
                last_reviewed=session.get("last_reviewed_at") or last_review,
                next_review=last_review + timedelta(days=7),
                ease_factor=record.ease_factor,
                review_count=session.get("review_count") or 0,
            )
        )
    return sorted(mastery, key=lambda m: m.mastery_level, reverse=True)


def compute_overall_stats(records: List[PerformanceRecord], streaks: List[StudyStreak]) -> OverallStats:
    if not records:
        return OverallStats()
    return OverallStats(
        total_reviews=len(records),
        average_quality=_mean([r.quality_rating for r in records]),
        retention_rate=calculate_retention_rate(records),
        topics_reviewed=len({r.session_id for r in records}),
        average_ease_factor=_mean([r.ease_factor for r in records]),
        study_time_total=sum(r.response_time_seconds or 0 for r in records) / 60,
        longest_streak=max((s.length for s in streaks), default=0),
        current_streak=next((s.length for s in streaks if s.is_active), 0),
    )


class PerformanceAnalyticsEngine:
    """
    Loads review history through the store and computes analytics over it.

    All public coroutines degrade to neutral values with `data_status="unavailable"`
    when the store fails; none of them raise.
    """

    def __init__(self, store: StudyStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock
        self.performance_collection = "srs_performance"
        self.sessions_collection = "study_sessions"
        self.reminders_collection = "reminders"

    async def load_history(self, user_id: str, limit: Optional[int] = None) -> List[PerformanceRecord]:
        """Most recent `limit` records (all when `None`), returned oldest first."""
        documents = await self.store.get(
            self.performance_collection, {"user_id": user_id}, sort=[("created_at", -1)], limit=limit
        )
        return list(reversed([PerformanceRecord(**doc) for doc in documents]))

    async def get_aggregate_performance(
        self, user_id: str, limit: int = settings.SRS_HISTORY_WINDOW
    ) -> PerformanceSummary:
        try:
            records = await self.load_history(user_id, limit)
        except PersistenceError as e:
            logger.warning(f"Performance history unavailable for user {user_id}: {e}")
            return PerformanceSummary(data_status="unavailable", errors=[str(e)])

        if not records:
            return PerformanceSummary(data_status="empty")
        return PerformanceSummary(
            review_count=len(records),
            mean_quality=_mean([r.quality_rating for r in records]),
            mean_ease_factor=_mean([r.ease_factor for r in records]),
            data_status="ok",
        )

    async def _session_topics(self, user_id: str) -> List[dict]:
        return await self.store.get(self.sessions_collection, {"user_id": user_id})

    async def generate_learning_insights(self, user_id: str, tz_name: Optional[str] = None) -> LearningInsights:
        """Retention, velocity, difficulty patterns, best hours, mastery and recommendations."""
        try:
            records, sessions = await asyncio.gather(
                self.load_history(user_id), self._session_topics(user_id)
            )
        except PersistenceError as e:
            logger.error(f"Failed to load history for insights of user {user_id}: {e}", exc_info=True)
            return LearningInsights(errors=[str(e)], data_status="unavailable")

        topics = {s["id"]: s.get("topic") for s in sessions if s.get("topic")}
        retention = calculate_retention_rate(records)
        velocity = calculate_learning_velocity(records)
        patterns = analyze_difficulty_patterns(records, topics)
        study_times = find_optimal_study_times(records, tz_name)
        mastery = classify_mastery(
            _mean([r.quality_rating for r in records]), _mean([r.ease_factor for r in records])
        )

        return LearningInsights(
            retention_rate=retention,
            learning_velocity=velocity,
            difficulty_patterns=patterns,
            optimal_study_times=study_times,
            recommendations=generate_recommendations(retention, velocity, patterns, study_times, mastery),
            mastery_level=mastery,
            data_status="ok" if records else "empty",
        )

    async def get_performance_dashboard(self, user_id: str) -> PerformanceDashboard:
        """
        Weekly progress, topic mastery, streaks, upcoming reviews and overall statistics.

        History, sessions and upcoming reminders are read concurrently. A failed history read
        marks the dashboard `unavailable`; failed session or reminder reads only add `errors`.
        """
        now = self.clock()
        history, sessions, reminders = await asyncio.gather(
            self.load_history(user_id),
            self._session_topics(user_id),
            self.store.get(
                self.reminders_collection,
                {
                    "user_id": user_id,
                    "reminder_type": {"$in": list(SRS_REMINDER_TYPES)},
                    "completed": False,
                    "reminder_time": {"$gte": now},
                },
                sort=[("reminder_time", 1)],
                limit=settings.ANALYTICS_UPCOMING_REVIEWS_LIMIT,
            ),
            return_exceptions=True,
        )

        errors: List[str] = []
        for name, result in (("history", history), ("sessions", sessions), ("reminders", reminders)):
            if isinstance(result, BaseException):
                if not isinstance(result, PersistenceError):
                    raise result
                logger.warning(f"Dashboard {name} read failed for user {user_id}: {result}")
                errors.append(f"{name}: {result}")

        if isinstance(history, BaseException):
            return PerformanceDashboard(data_status="unavailable", errors=errors)
        sessions = [] if isinstance(sessions, BaseException) else sessions
        reminders = [] if isinstance(reminders, BaseException) else reminders

        topics = {s["id"]: s.get("topic") for s in sessions if s.get("topic")}
        difficulty_by_topic = {
            p.topic: p.difficulty_score for p in analyze_difficulty_patterns(history, topics)
        }
        streaks = compute_study_streaks(history, today=now)

        upcoming = []
        for reminder in reminders:
            topic = topics.get(reminder["session_id"], "")
            upcoming.append(
                UpcomingReview(
                    session_id=reminder["session_id"],
                    topic=topic,
                    due_date=reminder["reminder_time"],
                    priority=reminder.get("priority", "medium"),
                    estimated_difficulty=difficulty_by_topic.get(topic, DEFAULT_ESTIMATED_DIFFICULTY),
                )
            )

        return PerformanceDashboard(
            weekly_progress=compute_weekly_progress(history[-settings.ANALYTICS_WEEKLY_HISTORY_LIMIT:]),
            topic_mastery=compute_topic_mastery(sessions, history),
            study_streaks=streaks,
            upcoming_reviews=upcoming,
            overall_stats=compute_overall_stats(history, streaks),
            data_status="ok" if history else "empty",
            errors=errors,
        )
