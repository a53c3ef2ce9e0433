"""
# Task & Dependency Models

Data structures for the **prerequisite graph** between academic tasks.

## Domain Model Overview

- **Task**: an `Assignment`, `Lecture` or `StudySession`. Each variant lives in its own
  collection and is discriminated by `task_type`.
- **DependencyEdge**: directed edge `task_id -> depends_on_id`. Only `blocking` edges gate
  availability; `suggested` and `parallel` edges are informational.
- **DependencyValidationResult**: structured outcome of validating a proposed edge set.

## Status Lifecycle

```
blocked ──(all blocking prerequisites completed)──▶ available ──▶ in_progress ──▶ completed
```

`completed` is terminal. A task starts `blocked` when any blocking prerequisite is
incomplete at creation time.

## Usage Example

```python
task = StudySession(id=new_id("task"), user_id="user_1", title="Read ch. 3", topic="Graphs")
edge = DependencyEdge(task_id=task.id, depends_on_id="task_abc", dependency_type="blocking")
```
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from study_scheduler.models.base import DocumentModel, new_id, utcnow


class TaskType(str, Enum):
    """Task variants; values double as discriminator tags."""
    ASSIGNMENT = "assignment"
    LECTURE = "lecture"
    STUDY_SESSION = "study_session"


class TaskStatus(str, Enum):
    BLOCKED = "blocked"
    AVAILABLE = "available"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class DependencyType(str, Enum):
    """Edge kinds. Only BLOCKING gates the blocked -> available transition."""
    BLOCKING = "blocking"
    SUGGESTED = "suggested"
    PARALLEL = "parallel"


TASK_COLLECTIONS: Dict[TaskType, str] = {
    TaskType.ASSIGNMENT: "assignments",
    TaskType.LECTURE: "lectures",
    TaskType.STUDY_SESSION: "study_sessions",
}


# --- Task variants ---

class TaskBase(DocumentModel):
    """Fields shared by every task variant.

    Attributes:
        id (str): Unique task identifier.
        user_id (str): Owner, as supplied by the identity provider.
        title (str): Display title.
        due_date (Optional[datetime]): Due or scheduled date.
        status (TaskStatus): Mutated only by the dependency graph manager.
        completed_at (Optional[datetime]): Set when the task reaches `completed`.
    """

    id: str = Field(default_factory=lambda: new_id("task"), description="Unique task identifier")
    user_id: str = Field("", description="Owner of the task")
    title: str = Field(..., min_length=1, max_length=500, description="Task title")
    description: Optional[str] = Field(None, description="Free-form description")
    due_date: Optional[datetime] = Field(None, description="Due or scheduled date")
    status: TaskStatus = Field(TaskStatus.AVAILABLE, description="Current lifecycle status")
    completed_at: Optional[datetime] = Field(None, description="Completion timestamp")
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def collection(self) -> str:
        return TASK_COLLECTIONS[TaskType(self.task_type)]


class Assignment(TaskBase):
    task_type: Literal["assignment"] = "assignment"
    course_id: Optional[str] = None
    priority: Literal["low", "medium", "high"] = "medium"


class Lecture(TaskBase):
    task_type: Literal["lecture"] = "lecture"
    course_id: Optional[str] = None
    location: Optional[str] = None
    end_time: Optional[datetime] = None


class StudySession(TaskBase):
    task_type: Literal["study_session"] = "study_session"
    topic: str = Field("", description="Topic studied; used to group performance history")
    duration_minutes: int = Field(60, gt=0)
    last_reviewed_at: Optional[datetime] = None
    review_count: int = 0


Task = Annotated[Union[Assignment, Lecture, StudySession], Field(discriminator="task_type")]

_task_adapter: TypeAdapter = TypeAdapter(Task)


def task_from_document(document: Dict[str, Any]) -> Union[Assignment, Lecture, StudySession]:
    """Build the right task variant from a stored document."""
    return _task_adapter.validate_python(document)


# --- Dependencies ---

class DependencyEdge(DocumentModel):
    """Directed prerequisite edge `task_id -> depends_on_id`.

    Attributes:
        task_id (str): The dependent task.
        task_type (Optional[TaskType]): Variant of the dependent task.
        depends_on_id (str): The prerequisite task.
        depends_on_type (Optional[TaskType]): Variant of the prerequisite, resolved on validation.
        dependency_type (DependencyType): Blocking, suggested or parallel.
        auto_complete (bool): Completing `task_id` also completes `depends_on_id`.
    """

    id: str = Field(default_factory=lambda: new_id("dep"))
    user_id: Optional[str] = Field(None, description="Owner of both endpoints")
    task_id: str = Field(..., description="Dependent task")
    task_type: Optional[TaskType] = None
    depends_on_id: str = Field(..., description="Prerequisite task")
    depends_on_type: Optional[TaskType] = None
    dependency_type: DependencyType = DependencyType.BLOCKING
    auto_complete: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class DependencyValidationResult(BaseModel):
    """Outcome of `DependencyGraphManager.validate`.

    `cycles` lists every detected cycle as an ordered node sequence, e.g. `["A", "B", "C"]`
    for A -> B -> C -> A.
    """

    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    cycles: List[List[str]] = Field(default_factory=list)
