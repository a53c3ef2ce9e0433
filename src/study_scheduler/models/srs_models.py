"""
# Spaced Repetition Models

Models for review history, reminder records and scheduling preferences.

## Key Concepts

- **Quality rating**: 0-5 self-reported recall score for one review.
- **Ease factor**: multiplier describing how fast intervals grow (SM-2 starts at 2.5,
  never below 1.3).
- **PerformanceRecord**: one append-only row per completed review.
- **ScheduledReminder**: a future review prompt. Rescheduling supersedes old reminders
  (`completed=True`, `action_taken="rescheduled"`) instead of deleting them.

## Usage Example

```python
prefs = SRSUserPreferences(
    difficulty_adjustment="conservative",
    preferred_study_times=[TimeSlot(start="08:30", end="10:00", days=[1, 3, 5])],
)
```
"""

from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from study_scheduler.models.base import DocumentModel, new_id, utcnow

SRS_REMINDER_TYPES = ("spaced_repetition", "srs_review")


class ReminderAction(str, Enum):
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class PerformanceRecord(DocumentModel):
    """One completed review.

    Attributes:
        session_id (str): Study session reviewed.
        topic (Optional[str]): Topic of the session, denormalized when known.
        quality_rating (int): Recall score 0-5.
        ease_factor (float): Ease factor after this review.
        interval_days (int): Interval that led to this review.
        next_interval_days (Optional[int]): Interval chosen for the following review.
        repetition_number (int): Consecutive review count for the session.
        response_time_seconds (Optional[int]): Time to answer, if measured.
    """

    id: str = Field(default_factory=lambda: new_id("perf"))
    user_id: str
    session_id: str
    topic: Optional[str] = None
    reminder_id: Optional[str] = None
    quality_rating: int = Field(..., ge=0, le=5)
    ease_factor: float = Field(2.5, gt=0)
    interval_days: int = Field(1, ge=0)
    next_interval_days: Optional[int] = None
    repetition_number: int = Field(1, ge=1)
    response_time_seconds: Optional[int] = Field(None, ge=0)
    created_at: datetime = Field(default_factory=utcnow)


class ScheduledReminder(DocumentModel):
    """A reminder record handed to the notification dispatch service."""

    id: str = Field(default_factory=lambda: new_id("rem"))
    user_id: str
    session_id: str
    reminder_time: datetime
    reminder_type: Literal["spaced_repetition", "srs_review"] = "spaced_repetition"
    title: str
    body: str
    priority: Literal["low", "medium", "high"] = "medium"
    interval_days: Optional[int] = Field(None, description="Interval that produced this reminder")
    completed: bool = False
    processed_at: Optional[datetime] = None
    action_taken: Optional[ReminderAction] = None
    created_at: datetime = Field(default_factory=utcnow)


class TimeSlot(BaseModel):
    """Preferred study window in local time.

    Attributes:
        start (str): `HH:MM`.
        end (str): `HH:MM`.
        days (List[int]): 0-6, Sunday first.
    """

    start: str = Field(..., pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    end: str = Field(..., pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    days: List[int] = Field(default_factory=list)

    @field_validator("days")
    @classmethod
    def valid_days(cls, v: List[int]) -> List[int]:
        if any(day < 0 or day > 6 for day in v):
            raise ValueError("days must be between 0 (Sunday) and 6 (Saturday)")
        return v

    @property
    def start_hour(self) -> int:
        return int(self.start.split(":")[0])


class SRSUserPreferences(BaseModel):
    """User-tunable scheduling preferences. Every field is optional."""

    preferred_study_times: List[TimeSlot] = Field(default_factory=list)
    difficulty_adjustment: Optional[Literal["conservative", "moderate", "aggressive"]] = None
    reminder_frequency: Optional[Literal["minimal", "standard", "frequent"]] = None
    learning_style: Optional[Literal["visual", "auditory", "kinesthetic", "mixed"]] = None
    custom_intervals: List[int] = Field(default_factory=list)
    timezone: Optional[str] = None

    @field_validator("custom_intervals")
    @classmethod
    def positive_intervals(cls, v: List[int]) -> List[int]:
        if any(day < 1 for day in v):
            raise ValueError("custom intervals must be >= 1 day")
        return v


class SRSConfiguration(BaseModel):
    """Resolved scheduling configuration for one user."""

    tier: str
    intervals: List[int]
    jitter_minutes: int
    preferred_hour: int = Field(..., ge=0, le=23)
    timezone: str = "UTC"
    max_reminders_per_month: int
    difficulty_adjustment: Optional[str] = None


class ReviewOutcome(BaseModel):
    """Result of recording a review."""

    performance: PerformanceRecord
    next_interval_days: int
    ease_factor: float
    next_reminder: Optional[ScheduledReminder] = None
    message: str
