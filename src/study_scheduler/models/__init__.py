"""Pydantic models for tasks, dependencies, spaced repetition, analytics and recurrence."""

from study_scheduler.models.analytics_models import (
    DifficultyPattern,
    LearningInsights,
    OverallStats,
    PerformanceDashboard,
    PerformanceSummary,
    StudyStreak,
    StudyTimeSlot,
    TopicMastery,
    UpcomingReview,
    WeeklyProgress,
)
from study_scheduler.models.recurring_models import (
    CreatePatternRequest,
    CreateRecurringTaskRequest,
    Frequency,
    GeneratedTask,
    RecurringPattern,
    RecurringTaskBinding,
    RecurringTaskStats,
    UpdateRecurringTaskRequest,
)
from study_scheduler.models.srs_models import (
    PerformanceRecord,
    ReviewOutcome,
    ScheduledReminder,
    SRSConfiguration,
    SRSUserPreferences,
    TimeSlot,
)
from study_scheduler.models.task_models import (
    Assignment,
    DependencyEdge,
    DependencyType,
    DependencyValidationResult,
    Lecture,
    StudySession,
    Task,
    TaskStatus,
    TaskType,
    task_from_document,
)

__all__ = [
    "Assignment",
    "CreatePatternRequest",
    "CreateRecurringTaskRequest",
    "DependencyEdge",
    "DependencyType",
    "DependencyValidationResult",
    "DifficultyPattern",
    "Frequency",
    "GeneratedTask",
    "LearningInsights",
    "Lecture",
    "OverallStats",
    "PerformanceDashboard",
    "PerformanceRecord",
    "PerformanceSummary",
    "RecurringPattern",
    "RecurringTaskBinding",
    "RecurringTaskStats",
    "ReviewOutcome",
    "ScheduledReminder",
    "SRSConfiguration",
    "SRSUserPreferences",
    "StudySession",
    "StudyStreak",
    "StudyTimeSlot",
    "Task",
    "TaskStatus",
    "TaskType",
    "TimeSlot",
    "TopicMastery",
    "UpcomingReview",
    "UpdateRecurringTaskRequest",
    "WeeklyProgress",
    "task_from_document",
]
