"""Pydantic v2 schemas for the scheduler's data model."""

from taskpilot.schemas.capacity import (
    BufferRecommendation,
    CapacityRange,
    DayCapacity,
    DeadlineValidation,
    HeatmapDay,
    ScheduleGap,
    WeekCapacityResponse,
    WeeklyCapacitySummary,
)
from taskpilot.schemas.command import (
    AnalyzeRequest,
    CancelRequest,
    CommandChanges,
    CommandConstraints,
    CommandOptions,
    CommandRequest,
    ConfirmRequest,
    SchedulingCommand,
    SchedulingCommandResult,
    SchedulingContext,
    SchedulingSession,
    SessionResponse,
)
from taskpilot.schemas.schedule import (
    DeadlineTaskInfo,
    ScheduleAnalysis,
    SchedulePreview,
    SchedulerConfig,
    ScheduleSlot,
    SchedulingPreferences,
    SmartScheduleResult,
    TimeWindow,
    WorkingSchedule,
)
from taskpilot.schemas.task import (
    BlockedInterval,
    HabitSnapshot,
    MilestoneSnapshot,
    ProjectSnapshot,
    TaskFilter,
    TaskPatch,
    TaskSnapshot,
)

__all__ = [
    "AnalyzeRequest",
    "BlockedInterval",
    "BufferRecommendation",
    "CancelRequest",
    "CapacityRange",
    "CommandChanges",
    "CommandConstraints",
    "CommandOptions",
    "CommandRequest",
    "ConfirmRequest",
    "DayCapacity",
    "DeadlineTaskInfo",
    "DeadlineValidation",
    "HabitSnapshot",
    "HeatmapDay",
    "MilestoneSnapshot",
    "ProjectSnapshot",
    "ScheduleAnalysis",
    "ScheduleGap",
    "SchedulePreview",
    "SchedulerConfig",
    "ScheduleSlot",
    "SchedulingCommand",
    "SchedulingCommandResult",
    "SchedulingContext",
    "SchedulingPreferences",
    "SchedulingSession",
    "SessionResponse",
    "SmartScheduleResult",
    "TaskFilter",
    "TaskPatch",
    "TaskSnapshot",
    "TimeWindow",
    "WeekCapacityResponse",
    "WeeklyCapacitySummary",
]
