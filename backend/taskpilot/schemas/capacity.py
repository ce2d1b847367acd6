"""Capacity Pydantic schemas for day, week and range utilization."""

import math
from dataclasses import dataclass
from datetime import date
from typing import Literal

from pydantic import BaseModel, Field, field_serializer

CapacityStatus = Literal["available", "comfortable", "busy", "full", "overbooked"]


class DayCapacity(BaseModel):
    """Capacity of one day. Recomputed on every query, never mutated."""

    day: date
    date_string: str
    available_minutes: int = 0
    total_minutes_scheduled: int = 0
    utilization_percentage: float = Field(default=0.0, description="Unbounded above; inf when booked on a zero-capacity day")
    status: CapacityStatus = "available"
    is_weekend: bool = False
    is_holiday: bool = False
    task_ids: list[str] = Field(default_factory=list)

    @property
    def free_minutes(self) -> int:
        return max(0, self.available_minutes - self.total_minutes_scheduled)

    @field_serializer("utilization_percentage", when_used="json")
    def _serialize_utilization(self, value: float) -> float | None:
        # JSON has no infinity
        return value if math.isfinite(value) else None


class CapacityRange(BaseModel):
    """Aggregated capacity over an inclusive date range."""

    start_date: date
    end_date: date
    days: list[DayCapacity] = Field(default_factory=list)
    total_hours_scheduled: float = 0.0
    total_hours_available: float = 0.0
    average_utilization: int = 0
    overbooked_days: int = 0


class HeatmapDay(BaseModel):
    """Display-ready heatmap cell."""

    date: str
    value: float = Field(description="Utilization as a fraction, capped for display")
    color: str
    label: str
    hours: float


class WeeklyCapacitySummary(BaseModel):
    """Seven-day rollup starting at ``week_start``."""

    week_label: str
    week_start: date
    week_end: date
    hours_scheduled: float
    hours_available: float
    utilization: int
    status: CapacityStatus
    color: str
    days_overbooked: int


class BufferRecommendation(BaseModel):
    """Suggested estimate padding derived from past estimate accuracy."""

    buffer_percent: int
    reasoning: str
    sample_size: int = 0
    average_overrun_percent: float | None = None


class DeadlineValidation(BaseModel):
    """Whether a deadline leaves room for new work at a sustainable weekly load."""

    is_realistic: bool
    required_minutes_per_week: int | None = Field(default=None, description="None when no time is left before the deadline")
    current_weekly_minutes: int = 0
    weekly_capacity_minutes: int = 0
    utilization_percent: int | None = None
    suggested_deadline: date | None = None
    suggestions: list[str] = Field(default_factory=list)


@dataclass(frozen=True)
class ScheduleGap:
    """A day with free time left in it."""

    day: date
    available_minutes: int

    def can_fit_task(self, minutes: int) -> bool:
        return self.available_minutes >= minutes


class WeekCapacityResponse(BaseModel):
    """Body of GET /capacity/week."""

    days: list[DayCapacity]
    summary: WeeklyCapacitySummary
    heatmap: list[HeatmapDay]
