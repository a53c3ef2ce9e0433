"""
# Database Package

Persistence layer for the engine:

- **`manager`**: `DatabaseManager`, the Motor connection lifecycle and index creation.
- **`store`**: `StudyStore`, the document contract the services depend on, and
  `MongoStudyStore`, its MongoDB implementation.

There is no module-level manager instance; `container.create_services()` wires one
manager, one store and the services together at startup.
"""

from study_scheduler.database.manager import DatabaseManager
from study_scheduler.database.store import MongoStudyStore, StudyStore

__all__ = ["DatabaseManager", "MongoStudyStore", "StudyStore"]
