"""Shared helpers for persisted models: identifiers, timestamps and document conversion."""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    """Prefixed short identifier, e.g. `task_1a2b3c4d5e6f`."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class DocumentModel(BaseModel):
    """Base for models stored in the document store. Enums are kept as their plain values."""

    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump()
