"""Scheduling command, result, session and context Pydantic schemas."""

from datetime import date
from typing import Literal

from pydantic import BaseModel, Field

from taskpilot.schemas.schedule import SchedulePreview, SchedulingPreferences, WorkingSchedule
from taskpilot.schemas.task import (
    BlockedInterval,
    HabitSnapshot,
    MilestoneSnapshot,
    ProjectSnapshot,
    TaskSnapshot,
)

SchedulingCommandType = Literal[
    "schedule_unscheduled",
    "reschedule_period",
    "optimize_schedule",
    "emergency_insert",
    "find_time",
    "clear_schedule",
    "analyze_schedule",
    "move_task",
    "batch_schedule",
    "rebalance",
]
CommandScope = Literal["day", "week", "month", "quarter", "year", "all"]
SessionStatus = Literal["idle", "pending", "applied", "cancelled"]


class CommandConstraints(BaseModel):
    """Optional placement constraints attached to a command."""

    preferred_time: Literal["morning", "afternoon", "evening"] | None = None
    must_complete_before: date | None = None
    max_hours_per_day: float | None = Field(default=None, gt=0)


class CommandOptions(BaseModel):
    show_preview: bool = True
    auto_apply: bool = False
    preserve_fixed: bool = True


class SchedulingCommand(BaseModel):
    """A semantic scheduling intent, built from a UI quick-action or a parsed chat message."""

    type: SchedulingCommandType
    scope: CommandScope = "week"
    target_date: date | None = None
    target_task_ids: list[str] = Field(default_factory=list)
    target_project_id: str | None = None
    urgency: Literal["normal", "urgent", "emergency"] = "normal"
    constraints: CommandConstraints = Field(default_factory=CommandConstraints)
    options: CommandOptions = Field(default_factory=CommandOptions)


class CommandChanges(BaseModel):
    scheduled: int = 0
    rescheduled: int = 0
    unscheduled: int = 0
    conflicts: int = 0


class SchedulingCommandResult(BaseModel):
    """Outcome of executing, confirming or cancelling a command."""

    success: bool
    message: str
    preview: list[SchedulePreview] | None = None
    changes: CommandChanges | None = None
    requires_confirmation: bool = False
    confirmation_message: str | None = None
    warnings: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)


class SchedulingSession(BaseModel):
    """Caller-owned state of one preview/confirm cycle.

    Valid transitions: idle -> pending -> applied | cancelled.
    """

    status: SessionStatus = "idle"
    command: SchedulingCommand | None = None
    preview: list[SchedulePreview] = Field(default_factory=list)
    clear_range: tuple[date, date] | None = None


class SchedulingContext(BaseModel):
    """Snapshot of everything a command needs, supplied by the caller."""

    user_id: str
    tasks: list[TaskSnapshot] = Field(default_factory=list)
    projects: list[ProjectSnapshot] = Field(default_factory=list)
    milestones: list[MilestoneSnapshot] = Field(default_factory=list)
    habits: list[HabitSnapshot] = Field(default_factory=list)
    calendar_blocks: list[BlockedInterval] = Field(default_factory=list)
    working_schedule: WorkingSchedule = Field(default_factory=WorkingSchedule)
    preferences: SchedulingPreferences = Field(default_factory=SchedulingPreferences)
    today: date


class CommandRequest(BaseModel):
    """Body of POST /schedule/commands. Omitted settings fall back to server defaults."""

    command: SchedulingCommand
    session: SchedulingSession = Field(default_factory=SchedulingSession)
    working_schedule: WorkingSchedule | None = None
    preferences: SchedulingPreferences | None = None
    projects: list[ProjectSnapshot] = Field(default_factory=list)
    milestones: list[MilestoneSnapshot] = Field(default_factory=list)
    today: date | None = None


class ConfirmRequest(BaseModel):
    session: SchedulingSession
    today: date | None = None


class CancelRequest(BaseModel):
    session: SchedulingSession


class SessionResponse(BaseModel):
    """A command result together with the updated session the caller keeps."""

    result: SchedulingCommandResult
    session: SchedulingSession


class AnalyzeRequest(BaseModel):
    start_date: date
    end_date: date
    working_schedule: WorkingSchedule | None = None
    preferences: SchedulingPreferences | None = None
    today: date | None = None
