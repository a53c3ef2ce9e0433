"""
# Recurring Task Models

Data structures for materializing tasks from a cadence.

## Domain Model Overview

- **RecurringPattern**: the cadence (`daily`, `weekly`, `monthly`, `custom`) with its
  interval, weekday set, day of month and stop conditions. Patterns are shareable.
- **RecurringTaskBinding**: links a user to a pattern with a task template and tracks the
  generation cursor (`next_generation_date`, `total_generated`).
- **GeneratedTask**: tracking row for each task produced from a binding.

Weekdays follow the Sunday-first convention: `0 = Sunday ... 6 = Saturday`.

## Usage Example

```python
request = CreateRecurringTaskRequest(
    pattern=CreatePatternRequest(name="MWF", frequency="weekly", days_of_week=[1, 3, 5]),
    task_type="study_session",
    template_data={"title": "Review flashcards", "topic": "Biology"},
)
binding = await engine.create_recurring_task("user_1", request)
```
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from study_scheduler.models.base import DocumentModel, new_id, utcnow
from study_scheduler.models.task_models import TaskType


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"


def _check_days_of_week(v: Optional[List[int]]) -> Optional[List[int]]:
    if v is None:
        return v
    if any(day < 0 or day > 6 for day in v):
        raise ValueError("days_of_week entries must be between 0 (Sunday) and 6 (Saturday)")
    return sorted(set(v))


class CreatePatternRequest(BaseModel):
    """Request model for defining a new cadence."""

    name: str = Field(..., min_length=1, max_length=200)
    frequency: Frequency
    interval_value: int = Field(1, ge=1, description="Every N days / weeks / months")
    days_of_week: Optional[List[int]] = Field(None, description="Weekly only, 0=Sunday")
    day_of_month: Optional[int] = Field(None, ge=1, le=31, description="Monthly only")
    end_date: Optional[datetime] = None
    max_occurrences: Optional[int] = Field(None, ge=1)
    timezone: str = "UTC"

    @field_validator("days_of_week")
    @classmethod
    def valid_days(cls, v: Optional[List[int]]) -> Optional[List[int]]:
        return _check_days_of_week(v)


class RecurringPattern(DocumentModel):
    id: str = Field(default_factory=lambda: new_id("pat"))
    name: str
    frequency: Frequency
    interval_value: int = Field(1, ge=1)
    days_of_week: Optional[List[int]] = None
    day_of_month: Optional[int] = Field(None, ge=1, le=31)
    end_date: Optional[datetime] = None
    max_occurrences: Optional[int] = Field(None, ge=1)
    timezone: str = "UTC"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("days_of_week")
    @classmethod
    def valid_days(cls, v: Optional[List[int]]) -> Optional[List[int]]:
        return _check_days_of_week(v)


class CreateRecurringTaskRequest(BaseModel):
    """Binds a task template to an existing pattern (`pattern_id`) or an inline `pattern`."""

    pattern_id: Optional[str] = None
    pattern: Optional[CreatePatternRequest] = None
    task_type: TaskType
    template_data: Dict[str, Any] = Field(default_factory=dict)
    start_date: Optional[datetime] = None

    @model_validator(mode="after")
    def pattern_source(self) -> "CreateRecurringTaskRequest":
        if bool(self.pattern_id) == bool(self.pattern):
            raise ValueError("Exactly one of pattern_id or pattern must be provided")
        return self


class RecurringTaskBinding(DocumentModel):
    """
    A user's recurring task.

    Attributes:
        pattern_id (str): Cadence driving generation.
        task_type (TaskType): Variant of the generated tasks.
        template_data (Dict[str, Any]): Fields copied onto every generated task.
        next_generation_date (datetime): Scheduled date of the next instance.
        total_generated (int): Instances produced so far; bounded by `max_occurrences`.
    """

    id: str = Field(default_factory=lambda: new_id("rt"))
    user_id: str
    pattern_id: str
    task_type: TaskType
    template_data: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True
    next_generation_date: datetime
    last_generated_at: Optional[datetime] = None
    total_generated: int = Field(0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class UpdateRecurringTaskRequest(BaseModel):
    is_active: Optional[bool] = None
    template_data: Optional[Dict[str, Any]] = None


class GeneratedTask(DocumentModel):
    id: str = Field(default_factory=lambda: new_id("gen"))
    recurring_task_id: str
    task_id: str
    task_type: TaskType
    generation_date: datetime
    scheduled_date: datetime
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


class RecurringTaskStats(BaseModel):
    total_active: int = 0
    total_generated: int = 0
    upcoming_generations: int = Field(0, description="Active bindings due within the upcoming window")
    completion_rate: float = Field(0.0, description="Percent of generated tasks completed")
