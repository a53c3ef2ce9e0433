"""
# Service Container

Wires the four engine components to one store.

```
DatabaseManager ──▶ MongoStudyStore ──┬──▶ DependencyGraphManager
                                      ├──▶ PerformanceAnalyticsEngine ──▶ AdaptiveIntervalScheduler
                                      └──▶ RecurringPatternEngine (APScheduler sweep)
```

Services receive their store (and the scheduler its analytics engine) through the
constructor, so tests pass an in-memory store and a fixed clock instead.

## Lifecycle

`engine_lifespan()` mirrors an application lifespan:

1. **Database**: connect and create indexes.
2. **Seeding**: create the common recurring patterns if missing.
3. **Background**: start the recurring task sweep.

On exit the sweep is stopped and the database disconnected, even if the body raised.

```python
async with engine_lifespan() as services:
    await services.dependency_graph.create_with_dependencies(task, edges, "user_1")
```
"""

import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Callable, Optional

from study_scheduler.config import settings
from study_scheduler.database.manager import DatabaseManager
from study_scheduler.database.store import MongoStudyStore, StudyStore
from study_scheduler.managers.logging_manager import configure_logging, get_logger
from study_scheduler.models.base import utcnow
from study_scheduler.services.dependency_graph_service import DependencyGraphManager
from study_scheduler.services.recurring_task_service import RecurringPatternEngine
from study_scheduler.services.srs_analytics_service import PerformanceAnalyticsEngine
from study_scheduler.services.srs_scheduling_service import AdaptiveIntervalScheduler

logger = get_logger(prefix="[LIFECYCLE]")


@dataclass
class StudyServices:
    store: StudyStore
    dependency_graph: DependencyGraphManager
    analytics: PerformanceAnalyticsEngine
    scheduler: AdaptiveIntervalScheduler
    recurring: RecurringPatternEngine


def create_services(store: StudyStore, clock: Callable[[], datetime] = utcnow) -> StudyServices:
    """Build every component over `store`, sharing one analytics engine."""
    analytics = PerformanceAnalyticsEngine(store, clock=clock)
    return StudyServices(
        store=store,
        dependency_graph=DependencyGraphManager(store),
        analytics=analytics,
        scheduler=AdaptiveIntervalScheduler(store, analytics, clock=clock),
        recurring=RecurringPatternEngine(store, clock=clock),
    )


@asynccontextmanager
async def engine_lifespan(
    db_manager: Optional[DatabaseManager] = None, start_sweep: bool = True, setup_logging: bool = True
) -> AsyncIterator[StudyServices]:
    """
    Connect to MongoDB, build the services and run the recurring sweep for the
    duration of the context.

    Args:
        db_manager: Manager to use; a new one is created from `settings` when omitted.
        start_sweep: Whether to start the APScheduler recurring task sweep.
        setup_logging: Attach the package log handler; pass `False` when the host
            application configures logging itself.

    Yields:
        StudyServices: The wired components.
    """
    if setup_logging:
        configure_logging()
    startup_start = time.time()
    db_manager = db_manager or DatabaseManager()

    logger.info(f"Connecting to database {settings.MONGODB_DATABASE}...")
    await db_manager.connect()
    try:
        await db_manager.create_indexes()

        services = create_services(MongoStudyStore(db_manager))
        await services.recurring.create_common_patterns()
        if start_sweep:
            services.recurring.start()
        logger.info(f"Study scheduler engine ready in {time.time() - startup_start:.3f}s")

        try:
            yield services
        finally:
            services.recurring.stop()
    finally:
        await db_manager.disconnect()
        logger.info("Study scheduler engine shut down")
