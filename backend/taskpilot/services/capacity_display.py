"""Capacity presentation helpers for timeline and calendar views.

Color, label and icon lookups share the thresholds of the capacity
calculator's status bands.
"""

import math
from collections.abc import Iterable, Sequence
from datetime import date, timedelta

from taskpilot.schemas.capacity import (
    BufferRecommendation,
    DayCapacity,
    DeadlineValidation,
    HeatmapDay,
    ScheduleGap,
    WeeklyCapacitySummary,
)
from taskpilot.schemas.schedule import WorkingSchedule
from taskpilot.schemas.task import BlockedInterval, TaskSnapshot
from taskpilot.services.capacity import (
    band_lookup,
    calculate_day_capacity,
    calculate_week_capacity,
    capacity_status,
)
from taskpilot.services.scheduling_helpers import (
    available_minutes,
    busy_intervals_for_day,
    is_working_day,
    lunch_window,
    overlap_minutes,
    working_span_minutes,
    working_window,
)

# Utilization shown on heatmaps is capped here; infinite values display as "200%+"
DISPLAY_UTILIZATION_CAP = 200.0
MIN_GAP_MINUTES = 30
MIN_BUFFER_SAMPLES = 5
DEFAULT_BUFFER_PERCENT = 25
# Share of weekly capacity a deadline may claim, and the pace a suggested deadline aims for
REALISTIC_LOAD_RATIO = 0.85
SUGGESTED_LOAD_RATIO = 0.65

COLOR_BANDS: tuple[tuple[float, str], ...] = (
    (0.0, "#10b981"),
    (70.0, "#3b82f6"),
    (90.0, "#f59e0b"),
    (100.0, "#ef4444"),
)
OVERBOOKED_COLOR = "#dc2626"

LABEL_BANDS: tuple[tuple[float, str], ...] = (
    (0.0, "Available"),
    (70.0, "Light"),
    (90.0, "Busy"),
    (100.0, "Full"),
)

ICON_BANDS: tuple[tuple[float, str], ...] = (
    (0.0, "✅"),
    (70.0, "🟢"),
    (90.0, "🟡"),
    (100.0, "🟠"),
)

# (mean overrun upper bound exclusive, buffer percent, reasoning)
BUFFER_BANDS: tuple[tuple[float, int, str], ...] = (
    (0.0, 10, "You tend to finish early. A small 10% buffer is enough."),
    (10.0, 15, "Estimates are generally accurate. Add a 15% buffer for safety."),
    (25.0, 25, "Tasks often take longer than planned. A 25% buffer is recommended."),
)
LARGE_OVERRUN_BUFFER = (
    35,
    "Estimates overrun significantly. Use a 35% buffer or break tasks into smaller pieces.",
)


def get_capacity_color(utilization: float) -> str:
    return band_lookup(utilization, COLOR_BANDS, OVERBOOKED_COLOR)


def get_capacity_label(utilization: float) -> str:
    return band_lookup(utilization, LABEL_BANDS, "Overbooked")


def get_capacity_icon(utilization: float) -> str:
    return band_lookup(utilization, ICON_BANDS, "🔴")


def _display_percent(utilization: float) -> str:
    if utilization > DISPLAY_UTILIZATION_CAP:
        return f"{round(DISPLAY_UTILIZATION_CAP)}%+"
    return f"{round(utilization)}%"


def generate_capacity_heatmap(days: Iterable[DayCapacity]) -> list[HeatmapDay]:
    """One heatmap cell per day, with utilization as a capped fraction."""
    return [
        HeatmapDay(
            date=day.date_string,
            value=min(day.utilization_percentage, DISPLAY_UTILIZATION_CAP) / 100,
            color=get_capacity_color(day.utilization_percentage),
            label=f"{get_capacity_label(day.utilization_percentage)} ({_display_percent(day.utilization_percentage)})",
            hours=round(day.total_minutes_scheduled / 60, 1),
        )
        for day in days
    ]


def get_weekly_capacity_summary(
    week_start: date,
    tasks: Sequence[TaskSnapshot],
    working_schedule: WorkingSchedule,
    holidays: Iterable[date] | None = None,
    blocked: Iterable[BlockedInterval] | None = None,
) -> WeeklyCapacitySummary:
    """Seven-day rollup labelled like "Oct 19"."""
    week_days = calculate_week_capacity(week_start, tasks, working_schedule, holidays, blocked)
    hours_scheduled = sum(d.total_minutes_scheduled for d in week_days) / 60
    hours_available = sum(d.available_minutes for d in week_days) / 60
    if hours_available > 0:
        utilization = hours_scheduled / hours_available * 100
    else:
        utilization = math.inf if hours_scheduled > 0 else 0.0

    return WeeklyCapacitySummary(
        week_label=f"{week_start:%b} {week_start.day}",
        week_start=week_start,
        week_end=week_start + timedelta(days=6),
        hours_scheduled=round(hours_scheduled, 1),
        hours_available=round(hours_available, 1),
        utilization=round(min(utilization, DISPLAY_UTILIZATION_CAP)),
        status=capacity_status(utilization),
        color=get_capacity_color(utilization),
        days_overbooked=sum(1 for d in week_days if d.status == "overbooked"),
    )


def find_schedule_gaps(
    tasks: Sequence[TaskSnapshot],
    working_schedule: WorkingSchedule,
    *,
    today: date,
    days_to_search: int = 14,
    holidays: Iterable[date] | None = None,
    blocked: Iterable[BlockedInterval] | None = None,
) -> list[ScheduleGap]:
    """Working days from ``today`` onward with at least 30 free minutes.

    Only committed time inside working hours, outside lunch, reduces a gap.
    """
    holidays = list(holidays or ())
    blocked = list(blocked or ())
    work_start, work_end = working_window(working_schedule)
    lunch = lunch_window(working_schedule)

    gaps: list[ScheduleGap] = []
    for offset in range(days_to_search):
        day = today + timedelta(days=offset)
        if not is_working_day(day, working_schedule, holidays):
            continue
        busy = busy_intervals_for_day(day, tasks, calendar_blocks=blocked)
        committed = overlap_minutes(busy, work_start, work_end)
        if lunch is not None:
            committed -= overlap_minutes(busy, lunch[0], lunch[1])
        free = available_minutes(day, working_schedule, holidays) - committed
        if free >= MIN_GAP_MINUTES:
            gaps.append(ScheduleGap(day=day, available_minutes=free))
    return gaps


def would_cause_overbooking(
    day: date,
    task_minutes: int,
    tasks: Sequence[TaskSnapshot],
    working_schedule: WorkingSchedule,
    holidays: Iterable[date] | None = None,
) -> bool:
    capacity = calculate_day_capacity(day, tasks, working_schedule, holidays)
    return capacity.total_minutes_scheduled + task_minutes > capacity.available_minutes


def weekly_workload_minutes(tasks: Iterable[TaskSnapshot], week_start: date) -> int:
    """Estimated minutes of tasks placed in, or (when unplaced) due in, the week from ``week_start``."""
    week_end = week_start + timedelta(days=6)
    total = 0
    for task in tasks:
        anchor = task.scheduled_start.date() if task.scheduled_start is not None else task.due_date
        if anchor is not None and week_start <= anchor <= week_end:
            total += max(0, task.estimated_minutes)
    return total


def validate_deadline(
    deadline: date,
    required_minutes: int,
    tasks: Sequence[TaskSnapshot],
    working_schedule: WorkingSchedule,
    *,
    today: date,
    weekly_capacity_minutes: int | None = None,
) -> DeadlineValidation:
    """Judge whether ``required_minutes`` of new work can be done by ``deadline``.

    The work is spread evenly over the weeks left. The deadline is realistic
    while this week's load plus that share stays within 85% of weekly
    capacity; otherwise a later deadline is suggested that needs only 65%.
    Weekly capacity defaults to the working span times the working days.
    """
    if weekly_capacity_minutes is None:
        weekly_capacity_minutes = working_span_minutes(working_schedule) * len(set(working_schedule.working_days))
    current = weekly_workload_minutes(tasks, today - timedelta(days=today.weekday()))
    days_left = (deadline - today).days

    per_week = required_minutes / (days_left / 7) if days_left > 0 else math.inf
    total = current + per_week
    realistic = weekly_capacity_minutes > 0 and total <= weekly_capacity_minutes * REALISTIC_LOAD_RATIO
    utilization = (
        round(total / weekly_capacity_minutes * 100)
        if weekly_capacity_minutes > 0 and math.isfinite(total)
        else None
    )
    validation = DeadlineValidation(
        is_realistic=realistic,
        required_minutes_per_week=round(per_week) if math.isfinite(per_week) else None,
        current_weekly_minutes=current,
        weekly_capacity_minutes=weekly_capacity_minutes,
        utilization_percent=utilization,
    )
    if realistic:
        validation.suggestions = [f"Deadline is realistic at {utilization}% of weekly capacity."]
        return validation

    if math.isfinite(per_week):
        validation.suggestions.append(
            f"Deadline may be too aggressive: {per_week / 60:.0f}h/week required "
            f"(current load {current / 60:.0f}h/week)."
        )
    else:
        validation.suggestions.append("Deadline is today or already past.")

    if weekly_capacity_minutes > 0:
        weeks_needed = max(1, math.ceil(required_minutes / (weekly_capacity_minutes * SUGGESTED_LOAD_RATIO)))
        validation.suggested_deadline = today + timedelta(weeks=weeks_needed)
        validation.suggestions.extend([
            f"Suggested deadline: {validation.suggested_deadline.isoformat()} ({weeks_needed} week(s)).",
            f"That pace needs {required_minutes / weeks_needed / 60:.0f}h/week, "
            "within 65% of weekly capacity.",
        ])
    return validation


def get_suggested_alternatives(
    preferred_day: date,
    task_minutes: int,
    tasks: Sequence[TaskSnapshot],
    working_schedule: WorkingSchedule,
    *,
    max_suggestions: int = 3,
    search_days: int = 30,
    holidays: Iterable[date] | None = None,
) -> list[date]:
    """Later working days where the task fits without overbooking."""
    holidays = list(holidays or ())
    alternatives: list[date] = []
    for offset in range(1, search_days + 1):
        if len(alternatives) >= max_suggestions:
            break
        day = preferred_day + timedelta(days=offset)
        capacity = calculate_day_capacity(day, tasks, working_schedule, holidays)
        if capacity.is_weekend or capacity.is_holiday:
            continue
        if capacity.total_minutes_scheduled + task_minutes <= capacity.available_minutes:
            alternatives.append(day)
    return alternatives


def calculate_buffer_recommendation(tasks: Iterable[TaskSnapshot]) -> BufferRecommendation:
    """Recommend estimate padding from the mean overrun of completed tasks."""
    samples = [
        t for t in tasks
        if t.status == "completed" and t.actual_minutes and t.estimated_minutes > 0
    ]
    if len(samples) < MIN_BUFFER_SAMPLES:
        return BufferRecommendation(
            buffer_percent=DEFAULT_BUFFER_PERCENT,
            reasoning=f"Not enough history yet. Using the standard {DEFAULT_BUFFER_PERCENT}% buffer.",
            sample_size=len(samples),
        )

    overruns = [(t.actual_minutes - t.estimated_minutes) / t.estimated_minutes * 100 for t in samples]
    mean_overrun = sum(overruns) / len(overruns)

    buffer_percent, reasoning = LARGE_OVERRUN_BUFFER
    for upper, percent, text in BUFFER_BANDS:
        if mean_overrun < upper:
            buffer_percent, reasoning = percent, text
            break

    return BufferRecommendation(
        buffer_percent=buffer_percent,
        reasoning=reasoning,
        sample_size=len(samples),
        average_overrun_percent=round(mean_overrun, 1),
    )
