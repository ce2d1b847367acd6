"""Task, habit and calendar Pydantic schemas consumed by the scheduler."""

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

TaskStatus = Literal["pending", "in_progress", "completed", "blocked"]
TaskPriority = Literal["low", "medium", "high", "urgent"]
HabitFrequency = Literal["daily", "weekly", "custom"]
BlockSource = Literal["task", "habit", "calendar", "lunch"]

# Lower rank sorts first.
PRIORITY_RANK: dict[str, int] = {"urgent": 0, "high": 1, "medium": 2, "low": 3}


class TaskSnapshot(BaseModel):
    """Read-only view of a task at the moment a scheduling run starts."""

    id: str
    title: str = Field(..., max_length=300)
    status: TaskStatus = "pending"
    priority: TaskPriority = "medium"
    estimated_minutes: int = Field(default=30, description="Planned effort; non-positive values are never placed")
    actual_minutes: int | None = None
    due_date: date | None = None
    scheduled_start: datetime | None = None
    scheduled_end: datetime | None = None
    project_id: str | None = None
    milestone_id: str | None = None
    blocked_by: list[str] = Field(default_factory=list, description="Informational only; not resolved into an ordering")
    completed_at: datetime | None = None

    model_config = {"from_attributes": True}

    @field_validator("due_date", mode="before")
    @classmethod
    def _coerce_due_datetime(cls, value: object) -> object:
        if isinstance(value, datetime):
            return value.date()
        return value

    @property
    def is_placed(self) -> bool:
        return self.scheduled_start is not None

    @property
    def is_unscheduled(self) -> bool:
        return self.scheduled_start is None and self.status != "completed"

    @property
    def priority_rank(self) -> int:
        return PRIORITY_RANK.get(self.priority, PRIORITY_RANK["medium"])


class TaskPatch(BaseModel):
    """Partial task update. Only explicitly set fields are written."""

    title: str | None = None
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    estimated_minutes: int | None = Field(default=None, ge=1)
    due_date: date | None = None
    scheduled_start: datetime | None = None
    scheduled_end: datetime | None = None
    completed_at: datetime | None = None

    def to_update(self) -> dict[str, object]:
        """Return only the fields the caller set, including explicit ``None``."""
        return self.model_dump(exclude_unset=True)


class TaskFilter(BaseModel):
    """Filter accepted by ``TaskStore.list_tasks``."""

    statuses: list[TaskStatus] | None = None
    project_id: str | None = None
    task_ids: list[str] | None = None
    placed: bool | None = Field(default=None, description="True: only placed tasks; False: only unplaced")

    def matches(self, task: TaskSnapshot) -> bool:
        if self.statuses is not None and task.status not in self.statuses:
            return False
        if self.project_id is not None and task.project_id != self.project_id:
            return False
        if self.task_ids is not None and task.id not in self.task_ids:
            return False
        if self.placed is not None and task.is_placed != self.placed:
            return False
        return True


class HabitSnapshot(BaseModel):
    """A habit; when it has a scheduled time it blocks that slot on its days."""

    id: str
    title: str
    frequency: HabitFrequency = "daily"
    days_of_week: list[int] = Field(default_factory=list, description="0 = Monday ... 6 = Sunday")
    scheduled_time: str | None = Field(default=None, pattern=r"^\d{2}:\d{2}$")
    estimated_minutes: int = 30
    is_archived: bool = False

    model_config = {"from_attributes": True}

    def applies_on(self, day: date) -> bool:
        if self.is_archived or not self.scheduled_time:
            return False
        if self.frequency == "daily":
            return True
        return day.weekday() in self.days_of_week


class MilestoneSnapshot(BaseModel):
    """Project milestone. Its order groups tasks for display only."""

    id: str
    project_id: str | None = None
    title: str
    order: int = 0


class ProjectSnapshot(BaseModel):
    """Project summary used by batch scheduling and analysis messages."""

    id: str
    title: str
    status: str = "active"


class BlockedInterval(BaseModel):
    """A committed time range the scheduler must not overlap."""

    start: datetime
    end: datetime
    source: BlockSource = "calendar"
    title: str | None = None

    @property
    def minutes(self) -> int:
        return max(0, int((self.end - self.start).total_seconds() // 60))
