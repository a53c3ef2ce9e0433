"""
# Adaptive SRS Scheduling Service

This module turns a study session into a series of **spaced-repetition reminders** whose
intervals adapt to the user's subscription tier, preferences and review performance.

## Scheduling Pipeline

1. **Configuration**: tier from the user document, base intervals from `srs_schedules`
   (or the tier table in settings), custom intervals, jitter window, preferred hour and
   the monthly reminder cap.
2. **Performance adjustment**: mean quality of the last reviews below 3 shrinks intervals
   (x0.8); mean quality above 4 with mean ease above 2.8 grows them (x1.2).
3. **Difficulty preference**: conservative x0.8, moderate x1.0, aggressive x1.3.
   All scaling floors to whole days with a minimum of 1.
4. **Absolute time**: the store's `schedule_in_user_timezone` procedure in the resolved
   timezone (preferences, then the user record, then the default), or a UTC date
   shift at the preferred hour when the procedure is unavailable.
5. **Jitter**: deterministic offset from the session id and interval.
6. **Filtering**: reminders already in the past are dropped; reminders pushed into the past
   only by jitter are clamped to a short lead time; the list is cut to the remaining
   monthly quota.
7. **Persistence**: pending future reminders of the session are superseded
   (`action_taken="rescheduled"`), then the new ones are inserted. Both steps run under a
   per-session lock.

## Reviews

`record_review` applies SM-2 to the last review of the session, appends a
`PerformanceRecord`, completes the answered reminder and schedules the follow-up.

## Usage Example

```python
scheduler = AdaptiveIntervalScheduler(store, analytics)
reminders = await scheduler.schedule_reminders(
    session_id="task_abc", user_id="user_1", session_date=now, topic="Graph theory"
)
```
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple, Union

from study_scheduler.config import settings
from study_scheduler.database.store import StudyStore
from study_scheduler.exceptions import NotFoundError, PersistenceError, ValidationError
from study_scheduler.managers.logging_manager import get_logger
from study_scheduler.models.base import utcnow
from study_scheduler.models.srs_models import (
    SRS_REMINDER_TYPES,
    PerformanceRecord,
    ReminderAction,
    ReviewOutcome,
    ScheduledReminder,
    SRSConfiguration,
    SRSUserPreferences,
)
from study_scheduler.services.repetition import add_deterministic_jitter, calculate_next_review, scale_intervals
from study_scheduler.services.srs_analytics_service import PerformanceAnalyticsEngine
from study_scheduler.utils.datetime_utils import ensure_utc, shift_days_at_hour, start_of_month

logger = get_logger(prefix="[SRSScheduling]")

PreferencesInput = Union[SRSUserPreferences, Dict[str, Any], None]


class AdaptiveIntervalScheduler:
    """
    Service for computing and persisting adaptive spaced-repetition reminders.

    **Features:**
    - Tier-bounded interval sequences with per-user overrides
    - Performance- and preference-driven interval scaling
    - Timezone-aware reminder times with deterministic jitter
    - Monthly reminder caps per subscription tier
    - SM-2 review recording
    """

    def __init__(
        self,
        store: StudyStore,
        analytics: PerformanceAnalyticsEngine,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.analytics = analytics
        self.clock = clock
        self.users_collection = "users"
        self.schedules_collection = "srs_schedules"
        self.reminders_collection = "reminders"
        self.performance_collection = "srs_performance"
        self.sessions_collection = "study_sessions"
        # session id -> [lock, holders and waiters]
        self._session_locks: Dict[str, List[Any]] = {}

    @asynccontextmanager
    async def _session_lock(self, session_id: str) -> AsyncIterator[None]:
        # in-process only; cross-process ordering is left to the store
        entry = self._session_locks.get(session_id)
        if entry is None:
            entry = self._session_locks[session_id] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._session_locks[session_id]

    # --- Configuration ---

    async def get_user_preferences(self, user_id: str) -> Optional[SRSUserPreferences]:
        user = await self.store.get_one(self.users_collection, {"id": user_id})
        if not user or not user.get("srs_preferences"):
            return None
        return SRSUserPreferences(**user["srs_preferences"])

    async def update_user_preferences(self, user_id: str, preferences: PreferencesInput) -> SRSUserPreferences:
        """
        Replace the stored preferences of a user.

        Raises:
            NotFoundError: If the user does not exist.
        """
        prefs = self._coerce_preferences(preferences) or SRSUserPreferences()
        updated = await self.store.update(
            self.users_collection, {"id": user_id}, {"srs_preferences": prefs.model_dump()}
        )
        if not updated:
            raise NotFoundError("User", user_id)
        logger.info(f"Updated SRS preferences for user {user_id}")
        return prefs

    @staticmethod
    def _coerce_preferences(preferences: PreferencesInput) -> Optional[SRSUserPreferences]:
        if preferences is None or isinstance(preferences, SRSUserPreferences):
            return preferences
        return SRSUserPreferences(**preferences)

    async def _tier_intervals(self, tier: str) -> List[int]:
        try:
            schedule = await self.store.get_one(self.schedules_collection, {"tier_restriction": tier})
        except PersistenceError as e:
            logger.warning(f"Could not read interval schedule for tier {tier}, using defaults: {e}")
            schedule = None
        if schedule and schedule.get("intervals"):
            return list(schedule["intervals"])
        return settings.intervals_for_tier(tier)

    async def _resolve(
        self, user_id: str, preferences: PreferencesInput = None
    ) -> Tuple[SRSConfiguration, SRSUserPreferences]:
        user = await self.store.get_one(self.users_collection, {"id": user_id})
        if user is None:
            logger.warning(f"User {user_id} not found, scheduling with the {settings.SRS_DEFAULT_TIER} tier")
            user = {}

        tier = user.get("subscription_tier") or settings.SRS_DEFAULT_TIER
        merged: Dict[str, Any] = dict(user.get("srs_preferences") or {})
        explicit = self._coerce_preferences(preferences)
        if explicit is not None:
            merged.update(explicit.model_dump(exclude_unset=True))
        prefs = SRSUserPreferences(**merged)

        intervals = list(prefs.custom_intervals) or await self._tier_intervals(tier)
        if prefs.preferred_study_times:
            preferred_hour = prefs.preferred_study_times[0].start_hour
        else:
            preferred_hour = settings.SRS_DEFAULT_PREFERRED_HOUR
        jitter = (
            settings.SRS_MINIMAL_JITTER_MINUTES
            if prefs.reminder_frequency == "minimal"
            else settings.SRS_JITTER_MINUTES
        )

        config = SRSConfiguration(
            tier=tier,
            intervals=intervals,
            jitter_minutes=jitter,
            preferred_hour=preferred_hour,
            timezone=prefs.timezone or user.get("timezone") or settings.DEFAULT_TIMEZONE,
            max_reminders_per_month=settings.monthly_reminder_limit(tier),
            difficulty_adjustment=prefs.difficulty_adjustment,
        )
        return config, prefs

    async def get_srs_configuration(self, user_id: str, preferences: PreferencesInput = None) -> SRSConfiguration:
        config, _ = await self._resolve(user_id, preferences)
        return config

    # --- Interval math ---

    async def calculate_optimal_intervals(self, user_id: str, intervals: List[int]) -> List[int]:
        """Scale base intervals by the user's recent performance. Unchanged without history."""
        summary = await self.analytics.get_aggregate_performance(user_id, settings.SRS_HISTORY_WINDOW)
        if summary.data_status != "ok":
            return list(intervals)
        if summary.mean_quality < settings.SRS_STRUGGLING_QUALITY:
            logger.debug(f"User {user_id} struggling (mean quality {summary.mean_quality:.2f}), shortening")
            return scale_intervals(intervals, settings.SRS_SHRINK_FACTOR)
        if (
            summary.mean_quality > settings.SRS_EXCELLING_QUALITY
            and summary.mean_ease_factor > settings.SRS_EXCELLING_EASE
        ):
            logger.debug(f"User {user_id} excelling (mean quality {summary.mean_quality:.2f}), lengthening")
            return scale_intervals(intervals, settings.SRS_GROW_FACTOR)
        return list(intervals)

    @staticmethod
    def adjust_for_difficulty(intervals: List[int], difficulty: Optional[str]) -> List[int]:
        factor = settings.SRS_DIFFICULTY_MULTIPLIERS.get(difficulty or "moderate", 1.0)
        return scale_intervals(intervals, factor)

    async def _reminder_time(
        self, user_id: str, base_time: datetime, days: int, hour: int, tz_name: Optional[str] = None
    ) -> datetime:
        try:
            return ensure_utc(await self.store.schedule_in_user_timezone(user_id, base_time, days, hour, tz_name))
        except PersistenceError as e:
            logger.debug(f"Timezone procedure unavailable ({e}), falling back to UTC")
            return shift_days_at_hour(base_time, days, hour)

    def _build_reminder(
        self,
        user_id: str,
        session_id: str,
        topic: str,
        base_time: datetime,
        days: int,
        config: SRSConfiguration,
        now: datetime,
        reminder_type: str = "spaced_repetition",
        priority: str = "medium",
    ) -> ScheduledReminder:
        at = add_deterministic_jitter(base_time, session_id, days, config.jitter_minutes)
        if at < now:
            at = now + timedelta(minutes=settings.SRS_MIN_LEAD_MINUTES)
        return ScheduledReminder(
            user_id=user_id,
            session_id=session_id,
            reminder_time=at,
            reminder_type=reminder_type,
            title=f'Spaced Repetition: Review "{topic}"',
            body=f'It\'s time to review your study session on "{topic}" to strengthen your memory.',
            priority=priority,
            interval_days=days,
            created_at=now,
        )

    # --- Persistence ---

    async def _remaining_quota(self, user_id: str, session_id: str, config: SRSConfiguration, now: datetime) -> int:
        month_start = start_of_month(now)
        used, pending = await asyncio.gather(
            self.store.get(
                self.reminders_collection,
                {
                    "user_id": user_id,
                    "reminder_type": {"$in": list(SRS_REMINDER_TYPES)},
                    "created_at": {"$gte": month_start},
                    "action_taken": {"$ne": ReminderAction.RESCHEDULED.value},
                },
            ),
            self.store.get(self.reminders_collection, self._pending_filter(user_id, session_id, now)),
        )
        # pending reminders of this session are about to be superseded
        pending_this_month = [r for r in pending if ensure_utc(r["created_at"]) >= month_start]
        return max(0, config.max_reminders_per_month - (len(used) - len(pending_this_month)))

    def _pending_filter(self, user_id: str, session_id: str, now: datetime) -> Dict[str, Any]:
        return {
            "user_id": user_id,
            "session_id": session_id,
            "reminder_type": {"$in": list(SRS_REMINDER_TYPES)},
            "completed": False,
            "reminder_time": {"$gt": now},
        }

    async def _replace_reminders(
        self,
        user_id: str,
        session_id: str,
        reminders: List[ScheduledReminder],
        config: SRSConfiguration,
        now: datetime,
    ) -> List[ScheduledReminder]:
        async with self._session_lock(session_id):
            remaining = await self._remaining_quota(user_id, session_id, config, now)
            if len(reminders) > remaining:
                logger.warning(
                    f"Monthly reminder cap for user {user_id} ({config.tier}) leaves {remaining} of "
                    f"{len(reminders)} reminders"
                )
                reminders = reminders[:remaining]

            superseded = await self.store.update(
                self.reminders_collection,
                self._pending_filter(user_id, session_id, now),
                {"completed": True, "processed_at": now, "action_taken": ReminderAction.RESCHEDULED.value},
            )
            if superseded:
                logger.info(f"Superseded {len(superseded)} reminders for session {session_id}")
            if reminders:
                await self.store.insert(self.reminders_collection, [r.to_document() for r in reminders])
        return reminders

    # --- Public operations ---

    async def schedule_reminders(
        self,
        session_id: str,
        user_id: str,
        session_date: datetime,
        topic: str,
        preferences: PreferencesInput = None,
    ) -> List[ScheduledReminder]:
        """
        Compute and persist the reminder series for a study session.

        Returns:
            The reminders that were stored, ordered by interval.

        Raises:
            PersistenceError: If superseding or inserting reminders failed.
        """
        now = self.clock()
        session_date = ensure_utc(session_date)
        config, prefs = await self._resolve(user_id, preferences)

        intervals = await self.calculate_optimal_intervals(user_id, config.intervals)
        intervals = self.adjust_for_difficulty(intervals, prefs.difficulty_adjustment)

        base_times = await asyncio.gather(
            *(
                self._reminder_time(user_id, session_date, days, config.preferred_hour, config.timezone)
                for days in intervals
            )
        )

        reminders: List[ScheduledReminder] = []
        for days, base_time in zip(intervals, base_times):
            if base_time < now:
                logger.debug(f"Skipping {days}-day reminder for session {session_id}: already past")
                continue
            reminders.append(self._build_reminder(user_id, session_id, topic, base_time, days, config, now))

        stored = await self._replace_reminders(user_id, session_id, reminders, config, now)
        logger.info(f"Scheduled {len(stored)} reminders for session {session_id} (intervals {intervals})")
        return stored

    async def cancel_reminders_for_session(self, session_id: str, user_id: Optional[str] = None) -> int:
        filters: Dict[str, Any] = {
            "session_id": session_id,
            "reminder_type": {"$in": list(SRS_REMINDER_TYPES)},
            "completed": False,
        }
        if user_id:
            filters["user_id"] = user_id
        async with self._session_lock(session_id):
            cancelled = await self.store.update(
                self.reminders_collection,
                filters,
                {"completed": True, "processed_at": self.clock(), "action_taken": ReminderAction.CANCELLED.value},
            )
        logger.info(f"Cancelled {len(cancelled)} reminders for session {session_id}")
        return len(cancelled)

    async def record_review(
        self,
        user_id: str,
        session_id: str,
        quality_rating: int,
        response_time_seconds: Optional[int] = None,
        reminder_id: Optional[str] = None,
        schedule_next: bool = True,
    ) -> ReviewOutcome:
        """
        Record one review of a study session and schedule the follow-up.

        Raises:
            ValidationError: If the rating is outside 0-5.
            NotFoundError: If the session does not exist for the user.
        """
        if not 0 <= quality_rating <= 5:
            raise ValidationError([f"Quality rating must be between 0 and 5, got {quality_rating}"])

        session, history = await asyncio.gather(
            self.store.get_one(self.sessions_collection, {"id": session_id, "user_id": user_id}),
            self.store.get(
                self.performance_collection,
                {"user_id": user_id, "session_id": session_id},
                sort=[("created_at", -1)],
                limit=1,
            ),
        )
        if not session:
            raise NotFoundError("StudySession", session_id)

        last = history[0] if history else {}
        current_interval = last.get("next_interval_days") or 1
        current_ease = last.get("ease_factor") or settings.SRS_DEFAULT_EASE_FACTOR
        repetition = (last.get("repetition_number") or 0) + 1

        next_interval, new_ease = calculate_next_review(
            quality_rating, current_interval, current_ease, repetition, settings.SRS_MIN_EASE_FACTOR
        )

        now = self.clock()
        record = PerformanceRecord(
            user_id=user_id,
            session_id=session_id,
            topic=session.get("topic"),
            reminder_id=reminder_id,
            quality_rating=quality_rating,
            ease_factor=new_ease,
            interval_days=current_interval,
            next_interval_days=next_interval,
            repetition_number=repetition,
            response_time_seconds=response_time_seconds,
            created_at=now,
        )
        await self.store.insert(self.performance_collection, [record.to_document()])
        await self.store.update(
            self.sessions_collection,
            {"id": session_id},
            {"last_reviewed_at": now, "review_count": (session.get("review_count") or 0) + 1},
        )

        if reminder_id:
            try:
                await self.store.update(
                    self.reminders_collection,
                    {"id": reminder_id, "user_id": user_id},
                    {"completed": True, "processed_at": now, "action_taken": ReminderAction.COMPLETED.value},
                )
            except PersistenceError as e:
                logger.warning(f"Review {record.id} stored but reminder {reminder_id} was not completed: {e}")

        next_reminder = None
        if schedule_next:
            config, _ = await self._resolve(user_id)
            base_time = await self._reminder_time(
                user_id, now, next_interval, config.preferred_hour, config.timezone
            )
            reminder = self._build_reminder(
                user_id,
                session_id,
                session.get("topic") or session.get("title", ""),
                base_time,
                next_interval,
                config,
                now,
                reminder_type="srs_review",
                priority="high" if quality_rating <= 2 else "medium",
            )
            stored = await self._replace_reminders(user_id, session_id, [reminder], config, now)
            next_reminder = stored[0] if stored else None

        if quality_rating >= 3:
            message = f"Great job! Next review in {next_interval} day{'s' if next_interval != 1 else ''}."
        else:
            message = "Keep practicing! This session will come back tomorrow."
        logger.info(
            f"Recorded review of session {session_id}: quality {quality_rating}, "
            f"ease {new_ease}, next interval {next_interval}d"
        )
        return ReviewOutcome(
            performance=record,
            next_interval_days=next_interval,
            ease_factor=new_ease,
            next_reminder=next_reminder,
            message=message,
        )
