"""
Tests for the MongoDB-backed store, using mocked Motor collections.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo.errors import PyMongoError

from study_scheduler.database.store import MongoStudyStore, StudyStore
from study_scheduler.exceptions import NotFoundError, PersistenceError, ProcedureUnavailableError


@pytest.fixture
def collection():
    collection = MagicMock()
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=[])
    collection.find.return_value = cursor
    collection.insert_many = AsyncMock()
    collection.update_many = AsyncMock()
    collection.delete_many = AsyncMock(return_value=MagicMock(deleted_count=0))
    return collection


@pytest.fixture
def mock_db_manager(collection):
    manager = MagicMock()
    manager.get_collection.return_value = collection
    return manager


@pytest.fixture
def mongo_store(mock_db_manager):
    return MongoStudyStore(mock_db_manager)


@pytest.mark.asyncio
async def test_get_applies_projection_sort_and_limit(mongo_store, mock_db_manager, collection):
    cursor = collection.find.return_value
    cursor.to_list.return_value = [{"id": "task_1"}]

    rows = await mongo_store.get("assignments", {"user_id": "u1"}, sort=[("created_at", -1)], limit=5)

    assert rows == [{"id": "task_1"}]
    mock_db_manager.get_collection.assert_called_with("assignments")
    collection.find.assert_called_once_with({"user_id": "u1"}, {"_id": 0})
    cursor.sort.assert_called_once_with([("created_at", -1)])
    cursor.limit.assert_called_once_with(5)
    cursor.to_list.assert_awaited_once_with(length=5)


@pytest.mark.asyncio
async def test_get_one_limits_to_single_row(mongo_store, collection):
    cursor = collection.find.return_value
    cursor.to_list.return_value = [{"id": "u1"}]

    assert await mongo_store.get_one("users", {"id": "u1"}) == {"id": "u1"}
    cursor.limit.assert_called_once_with(1)


@pytest.mark.asyncio
async def test_driver_errors_become_persistence_errors(mongo_store, collection):
    collection.find.side_effect = PyMongoError("connection reset")

    with pytest.raises(PersistenceError) as exc_info:
        await mongo_store.get("reminders", {})

    assert exc_info.value.collection == "reminders"


@pytest.mark.asyncio
async def test_insert_does_not_leak_object_ids(mongo_store, collection):
    rows = [{"id": "a"}, {"id": "b"}]

    result = await mongo_store.insert("lectures", rows)

    assert result == rows
    inserted = collection.insert_many.await_args.args[0]
    assert inserted == rows
    assert inserted[0] is not rows[0]


@pytest.mark.asyncio
async def test_insert_nothing_skips_driver(mongo_store, collection):
    assert await mongo_store.insert("lectures", []) == []
    collection.insert_many.assert_not_awaited()


@pytest.mark.asyncio
async def test_update_returns_updated_rows(mongo_store, collection):
    cursor = collection.find.return_value
    cursor.to_list = AsyncMock(side_effect=[[{"_id": 1}, {"_id": 2}], [{"id": "a"}, {"id": "b"}]])

    rows = await mongo_store.update("reminders", {"session_id": "s1"}, {"completed": True})

    assert rows == [{"id": "a"}, {"id": "b"}]
    collection.update_many.assert_awaited_once_with({"_id": {"$in": [1, 2]}}, {"$set": {"completed": True}})


@pytest.mark.asyncio
async def test_update_without_match(mongo_store, collection):
    assert await mongo_store.update("reminders", {"session_id": "none"}, {"completed": True}) == []
    collection.update_many.assert_not_awaited()


@pytest.mark.asyncio
async def test_delete_returns_count(mongo_store, collection):
    collection.delete_many.return_value = MagicMock(deleted_count=2)
    assert await mongo_store.delete("task_dependencies", {"task_id": "t1"}) == 2


@pytest.mark.asyncio
async def test_compute_next_generation_date_in_pattern_timezone(mongo_store, collection):
    collection.find.return_value.to_list.return_value = [
        {"id": "pat_1", "name": "Daily", "frequency": "daily", "timezone": "America/New_York"}
    ]

    result = await mongo_store.compute_next_generation_date(
        "pat_1", datetime(2024, 3, 9, 14, tzinfo=timezone.utc)
    )

    assert result == datetime(2024, 3, 10, 13, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_compute_next_generation_date_unknown_pattern(mongo_store):
    with pytest.raises(NotFoundError):
        await mongo_store.compute_next_generation_date("pat_missing", datetime(2024, 3, 9, tzinfo=timezone.utc))


@pytest.mark.asyncio
async def test_schedule_in_user_timezone(mongo_store, collection):
    collection.find.return_value.to_list.return_value = [{"id": "u1", "timezone": "Asia/Kolkata"}]

    result = await mongo_store.schedule_in_user_timezone(
        "u1", datetime(2024, 3, 6, 20, tzinfo=timezone.utc), 1, 10
    )

    # 20:00 UTC is already March 7 in Kolkata; 10:00 IST on March 8 is 04:30 UTC
    assert result == datetime(2024, 3, 8, 4, 30, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_schedule_in_user_timezone_explicit_zone_skips_user_lookup(mongo_store, collection):
    result = await mongo_store.schedule_in_user_timezone(
        "u1", datetime(2024, 3, 6, 9, tzinfo=timezone.utc), 1, 10, "Asia/Tokyo"
    )

    assert result == datetime(2024, 3, 7, 1, tzinfo=timezone.utc)
    collection.find.assert_not_called()


@pytest.mark.asyncio
async def test_base_store_procedures_are_unavailable():
    store = StudyStore()
    with pytest.raises(ProcedureUnavailableError):
        await store.compute_next_generation_date("pat_1", datetime(2024, 3, 6, tzinfo=timezone.utc))
    with pytest.raises(ProcedureUnavailableError):
        await store.schedule_in_user_timezone("u1", datetime(2024, 3, 6, tzinfo=timezone.utc), 1, 10)
