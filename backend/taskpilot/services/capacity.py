"""Capacity calculator: per-day available vs. scheduled minutes.

Pure functions of their inputs. Every call recomputes from the supplied
task and block snapshots; nothing is cached.
"""

import math
from collections.abc import Iterable, Sequence
from datetime import date, timedelta
from typing import TypeVar

from taskpilot.schemas.capacity import CapacityRange, CapacityStatus, DayCapacity
from taskpilot.schemas.schedule import WorkingSchedule
from taskpilot.schemas.task import BlockedInterval, TaskSnapshot
from taskpilot.services.scheduling_helpers import (
    available_minutes,
    holiday_set,
    iter_days,
    scheduled_minutes,
)

T = TypeVar("T")

# (upper bound inclusive, value), evaluated in order; anything above is overbooked
STATUS_BANDS: tuple[tuple[float, CapacityStatus], ...] = (
    (0.0, "available"),
    (70.0, "comfortable"),
    (90.0, "busy"),
    (100.0, "full"),
)


def band_lookup(utilization: float, bands: Sequence[tuple[float, T]], overflow: T) -> T:
    """Return the value of the first band whose upper bound covers ``utilization``."""
    for upper, value in bands:
        if utilization <= upper:
            return value
    return overflow


def capacity_status(utilization: float) -> CapacityStatus:
    return band_lookup(utilization, STATUS_BANDS, "overbooked")


def utilization_percentage(scheduled: int, available: int) -> float:
    """Unrounded scheduled/available percentage.

    0 when nothing is scheduled; infinite when minutes are booked on a day
    with no availability.
    """
    if scheduled <= 0:
        return 0.0
    if available <= 0:
        return math.inf
    return scheduled / available * 100


def calculate_day_capacity(
    day: date,
    tasks: Iterable[TaskSnapshot],
    working_schedule: WorkingSchedule,
    holidays: Iterable[date] | None = None,
    blocked: Iterable[BlockedInterval] | None = None,
) -> DayCapacity:
    """Capacity of a single day.

    Args:
        day: The calendar day to evaluate.
        tasks: Task snapshots; only those whose scheduled start falls on ``day`` count.
        working_schedule: Working hours, working days, lunch and holidays.
        holidays: Extra holidays on top of the schedule's own.
        blocked: Habit or calendar blocks; those starting on ``day`` add to the load.

    Returns:
        A freshly built DayCapacity.
    """
    is_weekend = day.weekday() not in working_schedule.working_days
    is_holiday = day in holiday_set(working_schedule, holidays)
    available = available_minutes(day, working_schedule, holidays)

    task_ids: list[str] = []
    scheduled = 0
    for task in tasks:
        if task.scheduled_start is None or task.scheduled_start.date() != day:
            continue
        task_ids.append(task.id)
        scheduled += scheduled_minutes(task)

    for block in blocked or ():
        if block.start.date() == day:
            scheduled += block.minutes

    utilization = utilization_percentage(scheduled, available)
    return DayCapacity(
        day=day,
        date_string=day.isoformat(),
        available_minutes=available,
        total_minutes_scheduled=scheduled,
        utilization_percentage=utilization,
        status=capacity_status(utilization),
        is_weekend=is_weekend,
        is_holiday=is_holiday,
        task_ids=task_ids,
    )


def calculate_week_capacity(
    week_start: date,
    tasks: Iterable[TaskSnapshot],
    working_schedule: WorkingSchedule,
    holidays: Iterable[date] | None = None,
    blocked: Iterable[BlockedInterval] | None = None,
) -> list[DayCapacity]:
    """Seven consecutive DayCapacity values starting at ``week_start``."""
    tasks = list(tasks)
    blocked = list(blocked or ())
    return [
        calculate_day_capacity(week_start + timedelta(days=offset), tasks, working_schedule, holidays, blocked)
        for offset in range(7)
    ]


def calculate_range_capacity(
    start_date: date,
    end_date: date,
    tasks: Iterable[TaskSnapshot],
    working_schedule: WorkingSchedule,
    holidays: Iterable[date] | None = None,
    blocked: Iterable[BlockedInterval] | None = None,
) -> CapacityRange:
    """Aggregate capacity over an inclusive range; an inverted range is empty."""
    tasks = list(tasks)
    blocked = list(blocked or ())
    days = [
        calculate_day_capacity(day, tasks, working_schedule, holidays, blocked)
        for day in iter_days(start_date, end_date)
    ]

    hours_scheduled = sum(d.total_minutes_scheduled for d in days) / 60
    hours_available = sum(d.available_minutes for d in days) / 60
    average = hours_scheduled / hours_available * 100 if hours_available > 0 else 0.0

    return CapacityRange(
        start_date=start_date,
        end_date=end_date,
        days=days,
        total_hours_scheduled=round(hours_scheduled, 1),
        total_hours_available=round(hours_available, 1),
        average_utilization=round(average),
        overbooked_days=sum(1 for d in days if d.status == "overbooked"),
    )
