"""
# Study Store

The persistence contract every service depends on, plus its MongoDB implementation.

## Contract

All operations are coroutines over plain documents (dicts) identified by a string `id`:

- `get(collection, filters, sort=None, limit=None) -> List[dict]`
- `insert(collection, rows) -> List[dict]`
- `update(collection, filters, patch) -> List[dict]` (returns the updated rows)
- `delete(collection, filters) -> int`

Filters use a MongoDB subset: equality, `$in`, `$ne`, `$lt`, `$lte`, `$gt`, `$gte`.
`sort` is a list of `(field, direction)` tuples with `1` ascending and `-1` descending.

## Procedures

Two store-side procedures may be offered. The base class raises
`ProcedureUnavailableError` for both, and callers fall back to local arithmetic:

- `compute_next_generation_date(pattern_id, from_date)`
- `schedule_in_user_timezone(user_id, base_time, days_offset, hour, tz_name=None)`: an explicit
  `tz_name` wins over the timezone stored on the user

## Error Handling

`MongoStudyStore` translates `pymongo.errors.PyMongoError` into `PersistenceError`
naming the collection; services never see driver exceptions.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pymongo.errors import PyMongoError

from study_scheduler.config import settings
from study_scheduler.exceptions import NotFoundError, PersistenceError, ProcedureUnavailableError
from study_scheduler.managers.logging_manager import get_logger
from study_scheduler.models.recurring_models import RecurringPattern
from study_scheduler.utils.datetime_utils import schedule_at_local_hour
from study_scheduler.utils.recurrence import next_occurrence

logger = get_logger(prefix="[STORE]")

Filters = Dict[str, Any]
Sort = Optional[Sequence[Tuple[str, int]]]


class StudyStore:
    """Abstract document store used by the engine services."""

    async def get(
        self, collection: str, filters: Filters, sort: Sort = None, limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def insert(self, collection: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def update(self, collection: str, filters: Filters, patch: Dict[str, Any]) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def delete(self, collection: str, filters: Filters) -> int:
        raise NotImplementedError

    async def get_one(self, collection: str, filters: Filters) -> Optional[Dict[str, Any]]:
        rows = await self.get(collection, filters, limit=1)
        return rows[0] if rows else None

    async def compute_next_generation_date(self, pattern_id: str, from_date: datetime) -> datetime:
        raise ProcedureUnavailableError("compute_next_generation_date")

    async def schedule_in_user_timezone(
        self, user_id: str, base_time: datetime, days_offset: int, hour: int, tz_name: Optional[str] = None
    ) -> datetime:
        raise ProcedureUnavailableError("schedule_in_user_timezone")


class MongoStudyStore(StudyStore):
    """
    `StudyStore` over Motor collections obtained from a `DatabaseManager`.

    Documents keep their own string `id`; the Mongo `_id` is never returned.
    Both procedures are implemented here against the `users` and `recurring_patterns`
    collections, using pytz for the calendar arithmetic.
    """

    def __init__(self, db_manager):
        self.db_manager = db_manager
        self.users_collection = "users"
        self.patterns_collection = "recurring_patterns"

    def _collection(self, name: str):
        return self.db_manager.get_collection(name)

    async def get(
        self, collection: str, filters: Filters, sort: Sort = None, limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        try:
            cursor = self._collection(collection).find(filters, {"_id": 0})
            if sort:
                cursor = cursor.sort(list(sort))
            if limit:
                cursor = cursor.limit(limit)
            return await cursor.to_list(length=limit)
        except PyMongoError as e:
            logger.error("Read from %s failed: %s", collection, e, exc_info=True)
            raise PersistenceError(f"Failed to read {collection}: {e}", collection=collection) from e

    async def insert(self, collection: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not rows:
            return []
        try:
            # insert_many mutates its input with _id; hand it copies
            await self._collection(collection).insert_many([dict(row) for row in rows])
            logger.debug("Inserted %d rows into %s", len(rows), collection)
            return rows
        except PyMongoError as e:
            logger.error("Insert into %s failed: %s", collection, e, exc_info=True)
            raise PersistenceError(f"Failed to insert into {collection}: {e}", collection=collection) from e

    async def update(self, collection: str, filters: Filters, patch: Dict[str, Any]) -> List[Dict[str, Any]]:
        try:
            coll = self._collection(collection)
            matched = await coll.find(filters, {"_id": 1}).to_list(length=None)
            if not matched:
                return []
            object_ids = [doc["_id"] for doc in matched]
            await coll.update_many({"_id": {"$in": object_ids}}, {"$set": patch})
            return await coll.find({"_id": {"$in": object_ids}}, {"_id": 0}).to_list(length=None)
        except PyMongoError as e:
            logger.error("Update of %s failed: %s", collection, e, exc_info=True)
            raise PersistenceError(f"Failed to update {collection}: {e}", collection=collection) from e

    async def delete(self, collection: str, filters: Filters) -> int:
        try:
            result = await self._collection(collection).delete_many(filters)
            return result.deleted_count
        except PyMongoError as e:
            logger.error("Delete from %s failed: %s", collection, e, exc_info=True)
            raise PersistenceError(f"Failed to delete from {collection}: {e}", collection=collection) from e

    async def compute_next_generation_date(self, pattern_id: str, from_date: datetime) -> datetime:
        document = await self.get_one(self.patterns_collection, {"id": pattern_id})
        if not document:
            raise NotFoundError("RecurringPattern", pattern_id)
        pattern = RecurringPattern(**document)
        return next_occurrence(pattern, from_date, pattern.timezone)

    async def schedule_in_user_timezone(
        self, user_id: str, base_time: datetime, days_offset: int, hour: int, tz_name: Optional[str] = None
    ) -> datetime:
        if not tz_name:
            user = await self.get_one(self.users_collection, {"id": user_id})
            tz_name = (user or {}).get("timezone") or settings.DEFAULT_TIMEZONE
        return schedule_at_local_hour(base_time, days_offset, hour, tz_name)
