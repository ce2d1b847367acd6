"""Capacity API endpoints backing the timeline and calendar views."""

from datetime import date, timedelta

from fastapi import APIRouter, Depends, Query

from taskpilot.api.v1.deps import get_task_store
from taskpilot.core.config import settings
from taskpilot.schemas.capacity import (
    BufferRecommendation,
    DayCapacity,
    DeadlineValidation,
    ScheduleGap,
    WeekCapacityResponse,
)
from taskpilot.schemas.task import BlockedInterval, TaskFilter
from taskpilot.services.capacity import calculate_day_capacity, calculate_week_capacity
from taskpilot.services.capacity_display import (
    calculate_buffer_recommendation,
    find_schedule_gaps,
    generate_capacity_heatmap,
    get_weekly_capacity_summary,
    validate_deadline,
)
from taskpilot.services.scheduling_helpers import default_working_schedule, habit_blocks
from taskpilot.services.task_store import TaskStore

router = APIRouter(prefix="/capacity", tags=["capacity"])


async def _blocked_between(store: TaskStore, start: date, end: date) -> list[BlockedInterval]:
    blocked = await store.list_calendar_blocks(start, end)
    blocked.extend(habit_blocks(await store.list_habits(), start, end))
    return blocked


@router.get("/day", response_model=DayCapacity)
async def get_day_capacity(
    day: date = Query(...),
    store: TaskStore = Depends(get_task_store),
) -> DayCapacity:
    """Capacity of one day, counting placed tasks, habits and calendar events."""
    tasks = await store.list_tasks(TaskFilter(placed=True))
    blocked = await store.list_blocked_intervals(day)
    return calculate_day_capacity(day, tasks, default_working_schedule(), blocked=blocked)


@router.get("/week", response_model=WeekCapacityResponse)
async def get_week_capacity(
    week_start: date = Query(...),
    store: TaskStore = Depends(get_task_store),
) -> WeekCapacityResponse:
    """Seven days of capacity starting at ``week_start``, with heatmap cells and a rollup."""
    working_schedule = default_working_schedule()
    tasks = await store.list_tasks(TaskFilter(placed=True))
    blocked = await _blocked_between(store, week_start, week_start + timedelta(days=6))

    days = calculate_week_capacity(week_start, tasks, working_schedule, blocked=blocked)
    return WeekCapacityResponse(
        days=days,
        summary=get_weekly_capacity_summary(week_start, tasks, working_schedule, blocked=blocked),
        heatmap=generate_capacity_heatmap(days),
    )


@router.get("/gaps", response_model=list[ScheduleGap])
async def get_schedule_gaps(
    start: date | None = Query(None, description="First day to search; defaults to today"),
    days: int = Query(settings.GAP_SEARCH_DAYS, ge=1, le=90),
    minutes: int | None = Query(None, ge=1, description="Only return gaps that fit a task this long"),
    store: TaskStore = Depends(get_task_store),
) -> list[ScheduleGap]:
    """Upcoming working days with at least 30 free minutes."""
    start = start or date.today()
    tasks = await store.list_tasks(TaskFilter(placed=True))
    blocked = await _blocked_between(store, start, start + timedelta(days=days - 1))

    gaps = find_schedule_gaps(
        tasks,
        default_working_schedule(),
        today=start,
        days_to_search=days,
        blocked=blocked,
    )
    if minutes is not None:
        gaps = [gap for gap in gaps if gap.can_fit_task(minutes)]
    return gaps


@router.get("/buffer", response_model=BufferRecommendation)
async def get_buffer_recommendation(
    store: TaskStore = Depends(get_task_store),
) -> BufferRecommendation:
    """Estimate padding suggested by the accuracy of completed tasks."""
    completed = await store.list_tasks(TaskFilter(statuses=["completed"]))
    return calculate_buffer_recommendation(completed)


@router.get("/deadline", response_model=DeadlineValidation)
async def check_deadline(
    deadline: date = Query(...),
    minutes: int = Query(..., ge=0, description="Estimated minutes of the new work"),
    today: date | None = Query(None, description="Defaults to today"),
    store: TaskStore = Depends(get_task_store),
) -> DeadlineValidation:
    """Whether ``deadline`` leaves room for ``minutes`` of new work next to this week's load."""
    tasks = await store.list_tasks(TaskFilter(statuses=["pending", "in_progress", "blocked"]))
    return validate_deadline(deadline, minutes, tasks, default_working_schedule(), today=today or date.today())
