"""
# Learning Analytics Models

Read-only aggregates derived from a user's review history. Every top-level aggregate
carries a `data_status`:

- `ok`: history was loaded and contained records.
- `empty`: history was loaded and contained no records (neutral values).
- `unavailable`: history could not be loaded; neutral values plus `errors`.

This lets callers tell "no data" from "fetch failed" while the values themselves stay
safe to render.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

DataStatus = Literal["ok", "empty", "unavailable"]
MasteryLevel = Literal["beginner", "intermediate", "advanced"]


class PerformanceSummary(BaseModel):
    """Aggregate quality / ease statistics over a window of recent reviews."""

    review_count: int = 0
    mean_quality: float = 0.0
    mean_ease_factor: float = 0.0
    data_status: DataStatus = "empty"
    errors: List[str] = Field(default_factory=list)


class DifficultyPattern(BaseModel):
    topic: str
    difficulty_score: float
    improvement: Literal["improving", "stable", "declining"]
    trend: List[int] = Field(default_factory=list, description="Quality ratings, oldest first")


class StudyTimeSlot(BaseModel):
    hour: int = Field(..., ge=0, le=23)
    performance: float
    frequency: int


class LearningInsights(BaseModel):
    retention_rate: float = 0.0
    learning_velocity: float = 0.0
    difficulty_patterns: List[DifficultyPattern] = Field(default_factory=list)
    optimal_study_times: List[StudyTimeSlot] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    mastery_level: MasteryLevel = "beginner"
    data_status: DataStatus = "empty"
    errors: List[str] = Field(default_factory=list)


class WeeklyProgress(BaseModel):
    week: str = Field(..., description="ISO date of the Sunday starting the week")
    reviews_completed: int
    average_quality: float
    retention_rate: float
    time_spent: int = Field(..., description="Minutes")


class TopicMastery(BaseModel):
    session_id: str
    topic: str
    mastery_level: float = Field(..., ge=0, le=100)
    last_reviewed: datetime
    next_review: datetime
    ease_factor: float
    review_count: int


class StudyStreak(BaseModel):
    start_date: datetime
    end_date: Optional[datetime] = None
    length: int
    is_active: bool


class UpcomingReview(BaseModel):
    session_id: str
    topic: str
    due_date: datetime
    priority: Literal["low", "medium", "high"]
    estimated_difficulty: float


class OverallStats(BaseModel):
    total_reviews: int = 0
    average_quality: float = 0.0
    retention_rate: float = 0.0
    topics_reviewed: int = 0
    average_ease_factor: float = 0.0
    study_time_total: float = Field(0.0, description="Minutes")
    longest_streak: int = 0
    current_streak: int = 0


class PerformanceDashboard(BaseModel):
    weekly_progress: List[WeeklyProgress] = Field(default_factory=list)
    topic_mastery: List[TopicMastery] = Field(default_factory=list)
    study_streaks: List[StudyStreak] = Field(default_factory=list)
    upcoming_reviews: List[UpcomingReview] = Field(default_factory=list)
    overall_stats: OverallStats = Field(default_factory=OverallStats)
    data_status: DataStatus = "empty"
    errors: List[str] = Field(default_factory=list)
