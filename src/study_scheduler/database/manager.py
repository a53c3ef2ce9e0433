"""
# Database Manager

Connection lifecycle for the MongoDB deployment backing `MongoStudyStore`.

## Lifecycle

1.  **Instantiation**: `DatabaseManager()` performs no I/O.
2.  **Connection**: `connect()` creates the Motor client (tz-aware, pooled) and pings the
    server, retrying with exponential backoff.
3.  **Operations**: `get_collection()` hands out Motor collections.
4.  **Disconnection**: `disconnect()` closes the pool.

## Indexes

`create_indexes()` creates the lookup indexes the services rely on: ids, per-user
listings, dependency edges in both directions, reminder sweeps and the recurring
generation cursor.

## Usage

```python
manager = DatabaseManager()
await manager.connect()
await manager.create_indexes()
store = MongoStudyStore(manager)
...
await manager.disconnect()
```
"""

import asyncio
import time
from typing import Any, Dict, List, Optional, Tuple, Union

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo.errors import ConnectionFailure, PyMongoError, ServerSelectionTimeoutError

from study_scheduler.config import settings
from study_scheduler.managers.logging_manager import get_logger

db_logger = get_logger(prefix="[DATABASE]")
perf_logger = get_logger(prefix="[DB_PERFORMANCE]")
health_logger = get_logger(prefix="[DB_HEALTH]")

IndexSpec = Union[str, List[Tuple[str, int]]]

# collection -> [(field spec, options)]
INDEXES: Dict[str, List[Tuple[IndexSpec, Dict[str, Any]]]] = {
    "assignments": [("id", {"unique": True}), ([("user_id", 1), ("status", 1)], {})],
    "lectures": [("id", {"unique": True}), ([("user_id", 1), ("status", 1)], {})],
    "study_sessions": [("id", {"unique": True}), ([("user_id", 1), ("status", 1)], {})],
    "task_dependencies": [
        ("id", {"unique": True}),
        ([("user_id", 1), ("task_id", 1)], {}),
        ("depends_on_id", {}),
    ],
    "srs_performance": [
        ("id", {"unique": True}),
        ([("user_id", 1), ("created_at", -1)], {}),
        ([("user_id", 1), ("session_id", 1), ("created_at", -1)], {}),
    ],
    "reminders": [
        ("id", {"unique": True}),
        ([("session_id", 1), ("completed", 1), ("reminder_time", 1)], {}),
        ([("user_id", 1), ("reminder_type", 1), ("created_at", 1)], {}),
    ],
    "recurring_patterns": [("id", {"unique": True})],
    "recurring_tasks": [
        ("id", {"unique": True}),
        ("user_id", {}),
        ([("is_active", 1), ("next_generation_date", 1)], {}),
    ],
    "generated_tasks": [("id", {"unique": True}), ("recurring_task_id", {}), ("scheduled_date", {})],
    "users": [("id", {"unique": True})],
}


class DatabaseManager:
    """
    Manages the MongoDB client, database handle and indexes.

    Attributes:
        client (`Optional[AsyncIOMotorClient]`): Motor client, `None` until `connect()`.
        database (`Optional[AsyncIOMotorDatabase]`): Selected database, `None` until `connect()`.
    """

    def __init__(self):
        self.client: Optional[AsyncIOMotorClient] = None
        self.database: Optional[AsyncIOMotorDatabase] = None
        self._connection_retries = 3

    async def connect(self):
        """
        Establish the MongoDB connection with exponential backoff (1s, 2s, ...).

        Raises:
            `ServerSelectionTimeoutError` / `ConnectionFailure`: When every attempt failed.
        """
        start_time = time.time()
        db_logger.info("Starting MongoDB connection process")

        for attempt in range(self._connection_retries):
            attempt_start = time.time()
            try:
                db_logger.info("Connection attempt %d/%d to MongoDB", attempt + 1, self._connection_retries)
                self.client = AsyncIOMotorClient(
                    settings.MONGODB_URL,
                    serverSelectionTimeoutMS=settings.MONGODB_SERVER_SELECTION_TIMEOUT,
                    connectTimeoutMS=settings.MONGODB_CONNECTION_TIMEOUT,
                    maxPoolSize=settings.MONGODB_MAX_POOL_SIZE,
                    minPoolSize=settings.MONGODB_MIN_POOL_SIZE,
                    tz_aware=True,
                )
                self.database = self.client[settings.MONGODB_DATABASE]

                ping_start = time.time()
                await self.client.admin.command("ping")
                ping_duration = time.time() - ping_start

                total_duration = time.time() - start_time
                perf_logger.info(
                    "MongoDB connection established successfully in %.3fs (ping: %.3fs)", total_duration, ping_duration
                )
                db_logger.info("Successfully connected to MongoDB database: %s", settings.MONGODB_DATABASE)
                return
            except (ServerSelectionTimeoutError, ConnectionFailure) as e:
                attempt_duration = time.time() - attempt_start
                perf_logger.warning("Connection attempt %d failed after %.3fs", attempt + 1, attempt_duration)
                db_logger.warning(
                    "Failed to connect to MongoDB (attempt %d/%d): %s", attempt + 1, self._connection_retries, e
                )
                if attempt == self._connection_retries - 1:
                    db_logger.error("All connection attempts failed after %.3fs", time.time() - start_time)
                    raise
                backoff_time = 2**attempt
                db_logger.info("Waiting %.1fs before retry (exponential backoff)", backoff_time)
                await asyncio.sleep(backoff_time)

    async def disconnect(self):
        if self.client:
            self.client.close()
            self.client = None
            self.database = None
            db_logger.info("Successfully disconnected from MongoDB")
        else:
            db_logger.warning("Disconnect called but no active MongoDB connection found")

    async def health_check(self) -> bool:
        """Ping the server. Returns `False` instead of raising."""
        start_time = time.time()
        if self.client is None:
            health_logger.warning("Health check failed: No database client available")
            return False
        try:
            await self.client.admin.command("ping")
            perf_logger.debug("Database health check completed in %.3fs", time.time() - start_time)
            return True
        except PyMongoError as e:
            health_logger.error("Database health check failed: %s", e)
            return False

    def get_collection(self, collection_name: str) -> AsyncIOMotorCollection:
        if self.database is None:
            db_logger.error("Attempted to get collection '%s' without database connection", collection_name)
            raise ConnectionError("Database not connected. Call connect() first.")
        return self.database[collection_name]

    async def create_indexes(self):
        """Create the service lookup indexes. Individual index failures are logged and skipped."""
        start_time = time.time()
        db_logger.info("Starting database index creation process")
        for collection_name, specs in INDEXES.items():
            collection = self.get_collection(collection_name)
            for field_spec, options in specs:
                await self._create_index_if_not_exists(collection, field_spec, options)
        perf_logger.info("Database index creation completed in %.3fs", time.time() - start_time)

    async def _create_index_if_not_exists(
        self, collection: AsyncIOMotorCollection, field_spec: IndexSpec, options: Dict[str, Any]
    ):
        try:
            await collection.create_index(field_spec, **options)
            db_logger.debug("Ensured index %s on %s", field_spec, collection.name)
        except PyMongoError as e:
            db_logger.warning("Could not create index %s on %s: %s", field_spec, collection.name, e)
