"""Schedule analyzer: read-only feasibility diagnostics for a date range.

Feeds the UI and the command interpreter's capacity pre-check. Never
mutates task state.
"""

import logging
from collections.abc import Iterable, Sequence
from datetime import date, timedelta

from taskpilot.schemas.schedule import (
    DeadlineTaskInfo,
    ScheduleAnalysis,
    SchedulerConfig,
    WorkingSchedule,
)
from taskpilot.schemas.task import BlockedInterval, HabitSnapshot, TaskSnapshot
from taskpilot.services.scheduling_helpers import (
    HIGHER_INTENSITY,
    LOWER_INTENSITY,
    busy_intervals_for_day,
    day_budget,
    iter_days,
    lunch_window,
    overlap_minutes,
    overtime_built_in,
    overtime_minutes,
    working_window,
)

logger = logging.getLogger(__name__)

LOW_UTILIZATION_PERCENT = 50
TIGHT_UTILIZATION_PERCENT = 90


def analyze_schedule(
    tasks: Sequence[TaskSnapshot],
    config: SchedulerConfig,
    working_schedule: WorkingSchedule,
    *,
    habits: Iterable[HabitSnapshot] = (),
    calendar_blocks: Iterable[BlockedInterval] = (),
    today: date | None = None,
) -> ScheduleAnalysis:
    """Analyze whether the tasks fit the range described by ``config``.

    ``today`` anchors overdue checks and the feasibility window; it
    defaults to the range start so results never depend on the wall clock.
    """
    today = today or config.start_date
    habits = list(habits)
    calendar_blocks = list(calendar_blocks)

    schedulable = [t for t in tasks if t.status != "completed"]
    needed = sum(
        max(0, t.estimated_minutes) for t in schedulable if not _placed_within(t, config.start_date, config.end_date)
    )

    budgets = _day_budgets(config, working_schedule)
    available = sum(budgets.values())
    utilization = round(needed / available * 100) if available > 0 else 0

    free = _free_minutes(budgets, tasks, habits, calendar_blocks, config, working_schedule)
    deadline_tasks = _deadline_tasks(schedulable, free, config, today)

    analysis = ScheduleAnalysis(
        total_tasks=len(tasks),
        schedulable_tasks=len(schedulable),
        total_minutes_needed=needed,
        total_minutes_available=available,
        utilization_percent=utilization,
        deadline_tasks=deadline_tasks,
    )
    analysis.warnings = _warnings(analysis, schedulable, config, today)
    analysis.recommendations = _recommendations(analysis, schedulable, config)

    logger.debug(
        "Analyzed %d task(s) for %s..%s: %d%% utilization, %d at risk",
        len(tasks),
        config.start_date,
        config.end_date,
        utilization,
        len(analysis.at_risk_tasks),
    )
    return analysis


# ---------------------------------------------------------------
# Capacity
# ---------------------------------------------------------------


def _placed_within(task: TaskSnapshot, start: date, end: date) -> bool:
    return task.scheduled_start is not None and start <= task.scheduled_start.date() <= end


def _day_budgets(config: SchedulerConfig, working_schedule: WorkingSchedule) -> dict[date, int]:
    """Intensity-scaled budget of every working day in the range."""
    extra = overtime_minutes(config) if overtime_built_in(config) else 0
    budgets: dict[date, int] = {}
    for day in iter_days(config.start_date, config.end_date):
        budget = day_budget(day, working_schedule, config)
        if budget > 0:
            budgets[day] = budget + extra
    return budgets


def _free_minutes(
    budgets: dict[date, int],
    tasks: Sequence[TaskSnapshot],
    habits: list[HabitSnapshot],
    calendar_blocks: list[BlockedInterval],
    config: SchedulerConfig,
    working_schedule: WorkingSchedule,
) -> dict[date, int]:
    """Budget left on each day once committed time inside working hours is removed."""
    work_start, work_end = working_window(working_schedule)
    if overtime_built_in(config):
        work_end += overtime_minutes(config)
    lunch = lunch_window(working_schedule, config.lunch_break)

    free: dict[date, int] = {}
    for day, budget in budgets.items():
        busy = busy_intervals_for_day(day, tasks, habits, calendar_blocks)
        committed = overlap_minutes(busy, work_start, work_end)
        if lunch is not None:
            committed -= overlap_minutes(busy, lunch[0], lunch[1])
        free[day] = max(0, budget - committed)
    return free


# ---------------------------------------------------------------
# Deadlines
# ---------------------------------------------------------------


def _deadline_tasks(
    schedulable: list[TaskSnapshot],
    free: dict[date, int],
    config: SchedulerConfig,
    today: date,
) -> list[DeadlineTaskInfo]:
    """Greedy feasibility check in ascending due-date order.

    Each feasible unplaced task consumes free minutes from the earliest
    candidate days, so later deadlines see what is left.
    """
    due_in_range = [
        t for t in schedulable
        if t.due_date is not None and config.start_date <= t.due_date <= config.end_date
    ]
    due_in_range.sort(key=lambda t: t.due_date)

    remaining = dict(free)
    window_start = max(today, config.start_date)
    infos: list[DeadlineTaskInfo] = []

    for task in due_in_range:
        last_day = task.due_date - timedelta(days=config.deadline_buffer_days)
        window = [d for d in sorted(remaining) if window_start <= d <= last_day]
        window_free = sum(remaining[d] for d in window)

        if task.is_placed:
            can_schedule = task.scheduled_start.date() <= task.due_date
            slack = window_free
        else:
            minutes = max(0, task.estimated_minutes)
            can_schedule = window_free >= minutes
            slack = window_free - minutes
            if can_schedule:
                _consume(remaining, window, minutes)

        infos.append(
            DeadlineTaskInfo(
                task=task,
                days_until_due=(task.due_date - today).days,
                can_schedule=can_schedule,
                slack_minutes=slack,
            )
        )
    return infos


def _consume(remaining: dict[date, int], window: list[date], minutes: int) -> None:
    for day in window:
        if minutes <= 0:
            return
        taken = min(remaining[day], minutes)
        remaining[day] -= taken
        minutes -= taken


# ---------------------------------------------------------------
# Messages
# ---------------------------------------------------------------


def _warnings(
    analysis: ScheduleAnalysis,
    schedulable: list[TaskSnapshot],
    config: SchedulerConfig,
    today: date,
) -> list[str]:
    warnings: list[str] = []
    utilization = analysis.utilization_percent

    if utilization > 100:
        warnings.append(
            f"Scheduled load exceeds available capacity by {utilization - 100}%."
        )
    elif utilization > TIGHT_UTILIZATION_PERCENT:
        warnings.append(f"Schedule is tight: {utilization}% of available capacity is needed.")

    overdue = [t for t in schedulable if t.due_date is not None and t.due_date < today]
    if overdue:
        warnings.append(f"{len(overdue)} task(s) are already overdue.")

    for info in analysis.at_risk_tasks:
        warnings.append(
            f'"{info.task.title}" cannot be completed before its deadline '
            f"({info.task.due_date.isoformat()}) with the remaining capacity."
        )

    if config.strict_deadlines:
        for info in analysis.deadline_tasks:
            if info.can_schedule and not info.task.is_placed and info.slack_minutes == 0:
                warnings.append(f'"{info.task.title}" has no slack left before its deadline.')
    return warnings


def _recommendations(
    analysis: ScheduleAnalysis,
    schedulable: list[TaskSnapshot],
    config: SchedulerConfig,
) -> list[str]:
    recommendations: list[str] = []
    utilization = analysis.utilization_percent
    mode = config.intensity_mode

    if analysis.total_minutes_needed == 0:
        recommendations.append("Nothing left to schedule in this range.")
    elif utilization < LOW_UTILIZATION_PERCENT and mode in LOWER_INTENSITY:
        recommendations.append(
            f"Only {utilization}% of capacity is needed; the '{LOWER_INTENSITY[mode]}' "
            f"intensity mode would leave more breathing room."
        )

    if analysis.at_risk_tasks and not config.allow_overtime:
        recommendations.append(
            "Enable overtime or extend the date range to meet the at-risk deadlines."
        )

    if utilization > 100 and mode in HIGHER_INTENSITY:
        recommendations.append(
            f"Switch to the '{HIGHER_INTENSITY[mode]}' intensity mode or extend the date range."
        )

    if config.focus_projects:
        focus = [t for t in schedulable if t.project_id in config.focus_projects]
        recommendations.append(f"{len(focus)} task(s) belong to focus projects and get priority within each day.")
    return recommendations
