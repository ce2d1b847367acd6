"""Schedule Pydantic schemas: working hours, scheduler config, previews, analysis."""

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field

from taskpilot.schemas.task import TaskSnapshot

IntensityMode = Literal["relaxed", "balanced", "intense", "deadline-driven"]

_HHMM = r"^\d{2}:\d{2}$"


class TimeWindow(BaseModel):
    """A daily time-of-day window such as a lunch break."""

    start: str = Field(..., pattern=_HHMM)
    end: str = Field(..., pattern=_HHMM)

    model_config = {"frozen": True}


class WorkingSchedule(BaseModel):
    """The user's working-hours profile. Immutable input to every calculation."""

    start: str = Field(default="09:00", pattern=_HHMM)
    end: str = Field(default="17:00", pattern=_HHMM)
    working_days: list[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4], description="0 = Monday ... 6 = Sunday")
    lunch_break: TimeWindow | None = None
    holidays: list[date] = Field(default_factory=list)

    model_config = {"frozen": True}


class SchedulingPreferences(BaseModel):
    """Scheduler knobs with explicit defaults, independent of the date range."""

    intensity_mode: IntensityMode = "balanced"
    strict_deadlines: bool = False
    deadline_buffer_days: int = Field(default=2, ge=0)
    allow_overtime: bool = False
    max_overtime_hours: float = Field(default=2, ge=0)
    breaks_between_tasks: int = Field(default=0, ge=0, description="Minutes inserted after each placed task")
    lunch_break: TimeWindow | None = Field(default=None, description="Overrides the working schedule's lunch break")
    focus_projects: list[str] = Field(default_factory=list)
    focus_project_ratio: float = Field(default=0.7, ge=0.0, le=1.0)
    max_hours_per_day: float | None = Field(default=None, gt=0)

    model_config = {"frozen": True}


class SchedulerConfig(SchedulingPreferences):
    """Configuration for one scheduling invocation over an inclusive date range."""

    start_date: date
    end_date: date

    @classmethod
    def for_range(
        cls,
        start_date: date,
        end_date: date,
        preferences: SchedulingPreferences | None = None,
        **overrides: object,
    ) -> "SchedulerConfig":
        """Combine stored preferences with a date range and per-call overrides."""
        base = preferences.model_dump() if preferences is not None else {}
        base.update(overrides)
        return cls(start_date=start_date, end_date=end_date, **base)


class ScheduleSlot(BaseModel):
    """A concrete (task, start, end) assignment within a day."""

    task: TaskSnapshot
    start_time: datetime
    end_time: datetime
    reasoning: str = ""


class SchedulePreview(BaseModel):
    """Unconfirmed placements for a single day."""

    day: date
    slots: list[ScheduleSlot] = Field(default_factory=list)
    summary: str = ""
    warnings: list[str] = Field(default_factory=list)


class SmartScheduleResult(BaseModel):
    """Output of a scheduling run: sparse per-day previews plus run-level warnings."""

    previews: list[SchedulePreview] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    unplaced_task_ids: list[str] = Field(default_factory=list)
    scheduled_count: int = 0

    @property
    def slots(self) -> list[ScheduleSlot]:
        return [slot for preview in self.previews for slot in preview.slots]


class DeadlineTaskInfo(BaseModel):
    """Feasibility annotation for a task with a due date inside the range."""

    task: TaskSnapshot
    days_until_due: int
    can_schedule: bool
    slack_minutes: int = 0


class ScheduleAnalysis(BaseModel):
    """Read-only feasibility diagnostics for a date range."""

    total_tasks: int = 0
    schedulable_tasks: int = 0
    total_minutes_needed: int = 0
    total_minutes_available: int = 0
    utilization_percent: int = 0
    deadline_tasks: list[DeadlineTaskInfo] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)

    @property
    def at_risk_tasks(self) -> list[DeadlineTaskInfo]:
        return [info for info in self.deadline_tasks if not info.can_schedule]
