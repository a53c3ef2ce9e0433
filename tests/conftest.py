import copy
from collections import defaultdict
from datetime import datetime, timezone

import pytest

from study_scheduler.config import settings
from study_scheduler.database.store import StudyStore
from study_scheduler.exceptions import NotFoundError, PersistenceError
from study_scheduler.models.recurring_models import RecurringPattern
from study_scheduler.models.srs_models import PerformanceRecord
from study_scheduler.services.dependency_graph_service import DependencyGraphManager
from study_scheduler.services.recurring_task_service import RecurringPatternEngine
from study_scheduler.services.srs_analytics_service import PerformanceAnalyticsEngine
from study_scheduler.services.srs_scheduling_service import AdaptiveIntervalScheduler
from study_scheduler.utils.datetime_utils import schedule_at_local_hour
from study_scheduler.utils.recurrence import next_occurrence

# Wednesday
NOW = datetime(2024, 3, 6, 9, 0, tzinfo=timezone.utc)

_MISSING = object()


def _present(value):
    return value is not _MISSING and value is not None


OPERATORS = {
    "$in": lambda value, operand: value is not _MISSING and value in operand,
    "$ne": lambda value, operand: value is _MISSING or value != operand,
    "$lt": lambda value, operand: _present(value) and value < operand,
    "$lte": lambda value, operand: _present(value) and value <= operand,
    "$gt": lambda value, operand: _present(value) and value > operand,
    "$gte": lambda value, operand: _present(value) and value >= operand,
}


def _matches(row, filters):
    for field, condition in filters.items():
        value = row.get(field, _MISSING)
        if isinstance(condition, dict) and condition and all(key.startswith("$") for key in condition):
            if not all(OPERATORS[op](value, operand) for op, operand in condition.items()):
                return False
        elif value is _MISSING or value != condition:
            return False
    return True


class InMemoryStudyStore(StudyStore):
    """
    Dict-backed store honouring the filter subset of `MongoStudyStore`.

    `fail(operation, collection)` makes the next calls of that operation raise
    `PersistenceError`; `collection="*"` fails it everywhere.
    """

    def __init__(self, procedures: bool = False):
        self.collections = defaultdict(list)
        self.failures = set()
        self.procedures = procedures
        self.calls = []

    def fail(self, operation, collection="*"):
        self.failures.add((operation, collection))

    def _check(self, operation, collection):
        self.calls.append((operation, collection))
        if (operation, collection) in self.failures or (operation, "*") in self.failures:
            raise PersistenceError(f"simulated {operation} failure on {collection}", collection=collection)

    def seed(self, collection, *rows):
        for row in rows:
            document = row.to_document() if hasattr(row, "to_document") else row
            self.collections[collection].append(copy.deepcopy(document))

    def rows(self, collection):
        return copy.deepcopy(self.collections[collection])

    async def get(self, collection, filters, sort=None, limit=None):
        self._check("get", collection)
        rows = [row for row in self.collections[collection] if _matches(row, filters)]
        for field, direction in reversed(list(sort or [])):
            rows.sort(key=lambda r: (r.get(field) is None, r.get(field)), reverse=direction < 0)
        if limit:
            rows = rows[:limit]
        return copy.deepcopy(rows)

    async def insert(self, collection, rows):
        self._check("insert", collection)
        self.collections[collection].extend(copy.deepcopy(rows))
        return rows

    async def update(self, collection, filters, patch):
        self._check("update", collection)
        updated = []
        for row in self.collections[collection]:
            if _matches(row, filters):
                row.update(copy.deepcopy(patch))
                updated.append(copy.deepcopy(row))
        return updated

    async def delete(self, collection, filters):
        self._check("delete", collection)
        kept = [row for row in self.collections[collection] if not _matches(row, filters)]
        deleted = len(self.collections[collection]) - len(kept)
        self.collections[collection] = kept
        return deleted

    async def compute_next_generation_date(self, pattern_id, from_date):
        if not self.procedures:
            return await super().compute_next_generation_date(pattern_id, from_date)
        self._check("compute_next_generation_date", "recurring_patterns")
        document = await self.get_one("recurring_patterns", {"id": pattern_id})
        if not document:
            raise NotFoundError("RecurringPattern", pattern_id)
        pattern = RecurringPattern(**document)
        return next_occurrence(pattern, from_date, pattern.timezone)

    async def schedule_in_user_timezone(self, user_id, base_time, days_offset, hour, tz_name=None):
        if not self.procedures:
            return await super().schedule_in_user_timezone(user_id, base_time, days_offset, hour, tz_name)
        self._check("schedule_in_user_timezone", "users")
        if not tz_name:
            user = await self.get_one("users", {"id": user_id})
            tz_name = (user or {}).get("timezone") or settings.DEFAULT_TIMEZONE
        return schedule_at_local_hour(base_time, days_offset, hour, tz_name)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def store():
    return InMemoryStudyStore()


@pytest.fixture
def procedure_store():
    return InMemoryStudyStore(procedures=True)


@pytest.fixture
def graph(store):
    return DependencyGraphManager(store)


@pytest.fixture
def analytics(store, clock):
    return PerformanceAnalyticsEngine(store, clock=clock)


@pytest.fixture
def scheduler(store, analytics, clock):
    return AdaptiveIntervalScheduler(store, analytics, clock=clock)


@pytest.fixture
def recurring(store, clock):
    return RecurringPatternEngine(store, clock=clock)


@pytest.fixture
def make_record():
    """Factory for performance records; `created_at` defaults to the fixed clock."""

    def _make(quality, session_id="sess_1", created_at=NOW, ease=2.5, topic=None, **extra):
        return PerformanceRecord(
            user_id=extra.pop("user_id", "user_1"),
            session_id=session_id,
            topic=topic,
            quality_rating=quality,
            ease_factor=ease,
            created_at=created_at,
            **extra,
        )

    return _make
