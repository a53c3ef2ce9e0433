"""
Exception hierarchy for the study scheduler engine.

- `ValidationError`: self-dependency, missing or foreign-owned prerequisite, cycle,
  or an illegal status transition. `DependencyGraphManager.validate` never raises it;
  it reports the same information as a structured result.
- `NotFoundError`: a referenced task, pattern, binding or session does not exist.
- `PersistenceError`: a store operation failed.
- `PartialWriteError`: a multi-step write failed after an earlier step was persisted.
- `ProcedureUnavailableError`: a store-side procedure is not supported or failed;
  callers fall back to local arithmetic.
"""

from typing import Any, List, Optional


class StudySchedulerError(Exception):
    """Base class for all engine errors."""


class ValidationError(StudySchedulerError):
    def __init__(self, errors: List[str], result: Optional[Any] = None):
        self.errors = list(errors)
        self.result = result
        super().__init__(f"Invalid dependencies: {', '.join(self.errors)}")


class NotFoundError(StudySchedulerError):
    def __init__(self, entity: str, identifier: str):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} not found: {identifier}")


class PersistenceError(StudySchedulerError):
    def __init__(self, message: str, collection: Optional[str] = None):
        self.collection = collection
        super().__init__(message)


class PartialWriteError(PersistenceError):
    """Raised when the first part of a multi-step write was persisted and a later part failed."""

    def __init__(self, message: str, persisted_id: str, collection: Optional[str] = None):
        self.persisted_id = persisted_id
        super().__init__(message, collection=collection)


class ProcedureUnavailableError(PersistenceError):
    def __init__(self, procedure: str, reason: str = "not supported by this store"):
        self.procedure = procedure
        super().__init__(f"Procedure {procedure} unavailable: {reason}")
