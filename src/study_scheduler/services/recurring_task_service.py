"""
# Recurring Task Service

This module materializes **recurring obligations** (weekly problem sets, lectures, daily
study blocks) into concrete tasks on a cadence.

## Domain Overview

- **Pattern**: the cadence (daily, weekly on given weekdays, monthly on a given day,
  custom every N days) with optional end date and occurrence cap.
- **Binding**: a user's template attached to a pattern, with a generation cursor.
- **Generation**: every instance whose date has come is created as a regular task and
  tracked in `generated_tasks`; the cursor then advances by the pattern's rule.

## Key Features

### 1. Catch-up Generation
- A binding that fell behind produces every missed instance in order, bounded by
  `RECURRING_MAX_CATCHUP` per call.
- Bindings past their end date or occurrence cap are deactivated.

### 2. Background Sweep
- Built on APScheduler: `start()` registers an interval job running
  `process_due_recurring_tasks` every `RECURRING_SWEEP_INTERVAL_MINUTES`.
- Per-binding failures are logged and counted; the sweep continues.

### 3. Timezone-aware Dates
- Next dates come from the store's `compute_next_generation_date` procedure (pattern
  timezone). Without it the same rule is applied locally in UTC.

## Usage Example

```python
engine = RecurringPatternEngine(store)
binding = await engine.create_recurring_task(
    "user_1",
    CreateRecurringTaskRequest(
        pattern=CreatePatternRequest(name="Problem sets", frequency="weekly", days_of_week=[1]),
        task_type="assignment",
        template_data={"title": "Problem set", "course_id": "cs101"},
    ),
)
engine.start()
```
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import pydantic
import pytz
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from study_scheduler.config import settings
from study_scheduler.database.store import StudyStore
from study_scheduler.exceptions import NotFoundError, PartialWriteError, PersistenceError, ValidationError
from study_scheduler.managers.logging_manager import get_logger
from study_scheduler.models.base import utcnow
from study_scheduler.models.recurring_models import (
    CreatePatternRequest,
    CreateRecurringTaskRequest,
    GeneratedTask,
    RecurringPattern,
    RecurringTaskBinding,
    RecurringTaskStats,
    UpdateRecurringTaskRequest,
)
from study_scheduler.models.task_models import (
    TASK_COLLECTIONS,
    Assignment,
    Lecture,
    StudySession,
    TaskStatus,
    TaskType,
)
from study_scheduler.utils.datetime_utils import ensure_utc
from study_scheduler.utils.recurrence import next_occurrence

logger = get_logger(prefix="[RecurringTasks]")

COMMON_PATTERNS = [
    CreatePatternRequest(name="Daily Study Session", frequency="daily", interval_value=1),
    CreatePatternRequest(name="Weekly Assignment Review", frequency="weekly", interval_value=1, days_of_week=[1, 3, 5]),
    CreatePatternRequest(name="Monthly Project Check-in", frequency="monthly", interval_value=1, day_of_month=1),
    CreatePatternRequest(name="Bi-weekly Lecture Prep", frequency="weekly", interval_value=2, days_of_week=[0]),
]

LECTURE_DURATION = timedelta(hours=1)
DEFAULT_SESSION_MINUTES = 60


class RecurringPatternEngine:
    """
    Service for recurring task patterns, bindings and generation.

    **Invariants:**
    - `total_generated` never exceeds the pattern's `max_occurrences`.
    - No instance is generated for a date after the pattern's `end_date`.
    - `next_generation_date` only moves forward.
    """

    def __init__(self, store: StudyStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock
        self.scheduler = AsyncIOScheduler(timezone=pytz.utc)
        self.sweep_job_id = "recurring_task_sweep"
        self.patterns_collection = "recurring_patterns"
        self.bindings_collection = "recurring_tasks"
        self.generated_collection = "generated_tasks"

    # --- Background sweep ---

    def start(self):
        """Register the sweep job and start the APScheduler instance."""
        if not self.scheduler.running:
            self.scheduler.add_job(
                self.process_due_recurring_tasks,
                trigger=IntervalTrigger(minutes=settings.RECURRING_SWEEP_INTERVAL_MINUTES),
                id=self.sweep_job_id,
                name="Recurring task generation",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            self.scheduler.start()
            logger.info(
                f"Recurring task sweep started (every {settings.RECURRING_SWEEP_INTERVAL_MINUTES} minutes)"
            )

    def stop(self):
        """Stop the APScheduler and cancel the pending sweep."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Recurring task sweep stopped")

    # --- Patterns ---

    async def create_pattern(self, request: CreatePatternRequest) -> RecurringPattern:
        pattern = RecurringPattern(**request.model_dump())
        await self.store.insert(self.patterns_collection, [pattern.to_document()])
        logger.info(f"Created recurring pattern {pattern.id} ({pattern.name}, {pattern.frequency})")
        return pattern

    async def get_pattern(self, pattern_id: str) -> RecurringPattern:
        document = await self.store.get_one(self.patterns_collection, {"id": pattern_id})
        if not document:
            raise NotFoundError("RecurringPattern", pattern_id)
        return RecurringPattern(**document)

    async def get_available_patterns(self) -> List[RecurringPattern]:
        documents = await self.store.get(self.patterns_collection, {}, sort=[("name", 1)])
        return [RecurringPattern(**doc) for doc in documents]

    async def create_common_patterns(self) -> List[RecurringPattern]:
        """Seed the shared starter patterns. Patterns whose name already exists are skipped."""
        existing = {p.name for p in await self.get_available_patterns()}
        created = []
        for request in COMMON_PATTERNS:
            if request.name in existing:
                continue
            created.append(await self.create_pattern(request))
        logger.info(f"Seeded {len(created)} common recurring patterns")
        return created

    async def _next_generation_date(self, pattern: RecurringPattern, from_date: datetime) -> datetime:
        try:
            return ensure_utc(await self.store.compute_next_generation_date(pattern.id, from_date))
        except PersistenceError as e:
            logger.debug(f"Next-date procedure unavailable for pattern {pattern.id} ({e}), using UTC rule")
            return next_occurrence(pattern, from_date, "UTC")

    # --- Bindings ---

    def _materialize(self, binding: RecurringTaskBinding, scheduled_date: datetime):
        """Build the task instance for one occurrence of `binding` from its template."""
        template: Dict[str, Any] = binding.template_data
        title = template.get("title") or template.get("topic") or "Recurring task"
        common = {
            "user_id": binding.user_id,
            "title": title,
            "description": template.get("description"),
            "due_date": scheduled_date,
            "status": TaskStatus.AVAILABLE.value,
        }
        task_type = TaskType(binding.task_type)
        if task_type == TaskType.ASSIGNMENT:
            return Assignment(
                **common,
                course_id=template.get("course_id"),
                priority=template.get("priority") or "medium",
            )
        if task_type == TaskType.LECTURE:
            return Lecture(
                **common,
                course_id=template.get("course_id"),
                location=template.get("location"),
                end_time=scheduled_date + LECTURE_DURATION,
            )
        return StudySession(
            **common,
            topic=template.get("topic") or title,
            duration_minutes=template.get("duration_minutes") or DEFAULT_SESSION_MINUTES,
        )

    async def create_recurring_task(self, user_id: str, request: CreateRecurringTaskRequest) -> RecurringTaskBinding:
        """
        Bind a task template to a pattern.

        The first instance is due at the pattern's rule applied to `start_date` (default now).

        Raises:
            NotFoundError: `pattern_id` does not exist.
            ValidationError: The template cannot produce a valid task.
        """
        start_date = ensure_utc(request.start_date) if request.start_date else self.clock()
        binding = RecurringTaskBinding(
            user_id=user_id,
            pattern_id=request.pattern_id or "",
            task_type=request.task_type,
            template_data=request.template_data,
            next_generation_date=start_date,
        )
        try:
            self._materialize(binding, start_date)
        except pydantic.ValidationError as e:
            raise ValidationError([f"Invalid {binding.task_type} template: {e}"]) from e

        if request.pattern is not None:
            pattern = await self.create_pattern(request.pattern)
        else:
            pattern = await self.get_pattern(request.pattern_id)

        next_date = await self._next_generation_date(pattern, start_date)
        binding = binding.model_copy(update={"pattern_id": pattern.id, "next_generation_date": next_date})
        await self.store.insert(self.bindings_collection, [binding.to_document()])
        logger.info(f"Created recurring task {binding.id} for user {user_id}, first due {next_date.isoformat()}")
        return binding

    async def get_recurring_task(self, binding_id: str) -> RecurringTaskBinding:
        document = await self.store.get_one(self.bindings_collection, {"id": binding_id})
        if not document:
            raise NotFoundError("RecurringTask", binding_id)
        return RecurringTaskBinding(**document)

    async def get_user_recurring_tasks(self, user_id: str, active_only: bool = False) -> List[RecurringTaskBinding]:
        filters: Dict[str, Any] = {"user_id": user_id}
        if active_only:
            filters["is_active"] = True
        documents = await self.store.get(self.bindings_collection, filters, sort=[("created_at", -1)])
        return [RecurringTaskBinding(**doc) for doc in documents]

    async def update_recurring_task(
        self, binding_id: str, user_id: str, request: UpdateRecurringTaskRequest
    ) -> RecurringTaskBinding:
        patch = request.model_dump(exclude_none=True)
        patch["updated_at"] = self.clock()
        updated = await self.store.update(self.bindings_collection, {"id": binding_id, "user_id": user_id}, patch)
        if not updated:
            raise NotFoundError("RecurringTask", binding_id)
        return RecurringTaskBinding(**updated[0])

    async def delete_recurring_task(self, binding_id: str, user_id: str) -> bool:
        """Delete a binding and its tracking rows. Generated tasks themselves are kept."""
        deleted = await self.store.delete(self.bindings_collection, {"id": binding_id, "user_id": user_id})
        if deleted:
            await self.store.delete(self.generated_collection, {"recurring_task_id": binding_id})
            logger.info(f"Deleted recurring task {binding_id}")
        return deleted > 0

    async def get_generated_tasks(self, binding_id: str) -> List[GeneratedTask]:
        documents = await self.store.get(
            self.generated_collection, {"recurring_task_id": binding_id}, sort=[("scheduled_date", 1)]
        )
        return [GeneratedTask(**doc) for doc in documents]

    # --- Generation ---

    @staticmethod
    def _exhausted(pattern: RecurringPattern, binding: RecurringTaskBinding) -> Optional[str]:
        if pattern.max_occurrences is not None and binding.total_generated >= pattern.max_occurrences:
            return f"reached {pattern.max_occurrences} occurrences"
        if pattern.end_date is not None and ensure_utc(binding.next_generation_date) > ensure_utc(pattern.end_date):
            return f"passed end date {ensure_utc(pattern.end_date).isoformat()}"
        return None

    async def _deactivate(self, binding: RecurringTaskBinding, reason: str) -> RecurringTaskBinding:
        await self.store.update(
            self.bindings_collection, {"id": binding.id}, {"is_active": False, "updated_at": self.clock()}
        )
        logger.info(f"Deactivated recurring task {binding.id}: {reason}")
        return binding.model_copy(update={"is_active": False})

    async def generate_next_tasks(self, binding_id: str, now: Optional[datetime] = None) -> List[Any]:
        """
        Materialize every instance of a binding due at or before `now`.

        Returns:
            The created tasks in schedule order; empty for inactive or not-yet-due bindings.

        Raises:
            NotFoundError: The binding or its pattern does not exist.
            PartialWriteError: A task was stored but its tracking row or the cursor update failed.
        """
        now = ensure_utc(now) if now else self.clock()
        binding = await self.get_recurring_task(binding_id)
        if not binding.is_active or ensure_utc(binding.next_generation_date) > now:
            return []
        pattern = await self.get_pattern(binding.pattern_id)

        generated = []
        while binding.is_active and ensure_utc(binding.next_generation_date) <= now:
            if len(generated) >= settings.RECURRING_MAX_CATCHUP:
                logger.warning(f"Recurring task {binding.id} hit the catch-up limit; the rest waits for the next sweep")
                break
            reason = self._exhausted(pattern, binding)
            if reason:
                binding = await self._deactivate(binding, reason)
                break

            scheduled = ensure_utc(binding.next_generation_date)
            task = self._materialize(binding, scheduled)
            await self.store.insert(task.collection, [task.to_document()])

            generated_at = self.clock()
            next_date = await self._next_generation_date(pattern, scheduled)
            tracking = GeneratedTask(
                recurring_task_id=binding.id,
                task_id=task.id,
                task_type=binding.task_type,
                generation_date=generated_at,
                scheduled_date=scheduled,
            )
            cursor = {
                "next_generation_date": next_date,
                "last_generated_at": generated_at,
                "total_generated": binding.total_generated + 1,
                "updated_at": generated_at,
            }
            try:
                await self.store.insert(self.generated_collection, [tracking.to_document()])
                await self.store.update(self.bindings_collection, {"id": binding.id}, cursor)
            except PersistenceError as e:
                logger.error(f"Task {task.id} generated but recurring task {binding.id} not advanced: {e}", exc_info=True)
                raise PartialWriteError(
                    f"Task {task.id} was created but recurring task {binding.id} was not advanced: {e}",
                    persisted_id=task.id,
                    collection=self.bindings_collection,
                ) from e

            binding = binding.model_copy(update=cursor)
            generated.append(task)

        if binding.is_active:
            reason = self._exhausted(pattern, binding)
            if reason:
                await self._deactivate(binding, reason)

        if generated:
            logger.info(f"Generated {len(generated)} tasks from recurring task {binding.id}")
        return generated

    async def process_due_recurring_tasks(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Generate tasks for every active binding that is due.
        This is the job run by the background sweep.
        """
        now = ensure_utc(now) if now else self.clock()
        due = await self.store.get(
            self.bindings_collection,
            {"is_active": True, "next_generation_date": {"$lte": now}},
            sort=[("next_generation_date", 1)],
        )

        processed = 0
        generated = 0
        failed = 0
        for document in due:
            try:
                tasks = await self.generate_next_tasks(document["id"], now)
                processed += 1
                generated += len(tasks)
            except Exception as e:
                logger.error(f"Failed to process recurring task {document.get('id')}: {e}", exc_info=True)
                failed += 1

        logger.info(f"Processed {processed} recurring tasks ({generated} generated), {failed} failed")
        return {"processed": processed, "generated": generated, "failed": failed}

    # --- Statistics ---

    async def get_recurring_task_stats(self, user_id: str) -> RecurringTaskStats:
        """
        Activity summary for a user's recurring tasks.

        Completion is read from the generated tasks themselves, so a task completed through
        the dependency graph counts without any extra bookkeeping.
        """
        bindings = await self.get_user_recurring_tasks(user_id)
        if not bindings:
            return RecurringTaskStats()

        horizon = self.clock() + timedelta(days=settings.RECURRING_UPCOMING_WINDOW_DAYS)
        total_generated = sum(b.total_generated for b in bindings)
        upcoming = sum(1 for b in bindings if b.is_active and ensure_utc(b.next_generation_date) <= horizon)

        rows = await self.store.get(
            self.generated_collection, {"recurring_task_id": {"$in": [b.id for b in bindings]}}
        )
        ids_by_type: Dict[TaskType, List[str]] = {}
        for row in rows:
            ids_by_type.setdefault(TaskType(row["task_type"]), []).append(row["task_id"])
        task_types = list(ids_by_type)
        results = await asyncio.gather(
            *(
                self.store.get(
                    TASK_COLLECTIONS[t],
                    {"id": {"$in": ids_by_type[t]}, "status": TaskStatus.COMPLETED.value},
                )
                for t in task_types
            )
        )
        completed_ids = {doc["id"] for docs in results for doc in docs}
        completed = sum(1 for row in rows if row.get("is_completed") or row["task_id"] in completed_ids)

        return RecurringTaskStats(
            total_active=sum(1 for b in bindings if b.is_active),
            total_generated=total_generated,
            upcoming_generations=upcoming,
            completion_rate=completed / total_generated * 100 if total_generated else 0.0,
        )
