"""Schedule API endpoints: command sessions and feasibility analysis.

Sessions are owned by the client. Each request carries the session it
got back from the previous call; the server keeps no session state.
"""

import logging
from datetime import date, timedelta

from fastapi import APIRouter, Depends, HTTPException

from taskpilot.api.v1.deps import get_task_store, get_user_id
from taskpilot.schemas.command import (
    AnalyzeRequest,
    CancelRequest,
    CommandRequest,
    ConfirmRequest,
    SchedulingContext,
    SessionResponse,
)
from taskpilot.schemas.schedule import (
    ScheduleAnalysis,
    SchedulerConfig,
    SchedulingPreferences,
    WorkingSchedule,
)
from taskpilot.schemas.task import MilestoneSnapshot, ProjectSnapshot
from taskpilot.services.analyzer import analyze_schedule
from taskpilot.services.commands import (
    SchedulingCommandService,
    SchedulingError,
    check_range,
    check_working_schedule,
)
from taskpilot.services.scheduling_helpers import default_preferences, default_working_schedule
from taskpilot.services.task_store import TaskStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/schedule", tags=["schedule"])

# Calendar events are loaded this far around "today" when building a context
CONTEXT_DAYS_BEHIND = 7
CONTEXT_DAYS_AHEAD = 366


async def build_context(
    store: TaskStore,
    user_id: str,
    *,
    today: date | None = None,
    working_schedule: WorkingSchedule | None = None,
    preferences: SchedulingPreferences | None = None,
    projects: list[ProjectSnapshot] | None = None,
    milestones: list[MilestoneSnapshot] | None = None,
) -> SchedulingContext:
    """Load a fresh snapshot of the user's tasks, habits and calendar."""
    today = today or date.today()
    working_schedule = working_schedule or default_working_schedule()
    check_working_schedule(working_schedule)

    start = today - timedelta(days=CONTEXT_DAYS_BEHIND)
    end = today + timedelta(days=CONTEXT_DAYS_AHEAD)
    context = SchedulingContext(
        user_id=user_id,
        tasks=await store.list_tasks(),
        projects=projects or [],
        milestones=milestones or [],
        habits=await store.list_habits(),
        calendar_blocks=await store.list_calendar_blocks(start, end),
        working_schedule=working_schedule,
        preferences=preferences or default_preferences(),
        today=today,
    )
    logger.debug(
        "Context for user %s: %d task(s), %d habit(s), %d calendar block(s)",
        user_id,
        len(context.tasks),
        len(context.habits),
        len(context.calendar_blocks),
    )
    return context


@router.post("/commands", response_model=SessionResponse)
async def execute_command(
    payload: CommandRequest,
    user_id: str = Depends(get_user_id),
    store: TaskStore = Depends(get_task_store),
) -> SessionResponse:
    """Run a scheduling command.

    Commands that change several placements come back with a preview and
    a pending session; send that session to /confirm to write it.
    """
    try:
        context = await build_context(
            store,
            user_id,
            today=payload.today,
            working_schedule=payload.working_schedule,
            preferences=payload.preferences,
            projects=payload.projects,
            milestones=payload.milestones,
        )
    except SchedulingError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    session = payload.session.model_copy(deep=True)
    result = await SchedulingCommandService(store).execute_scheduling_command(payload.command, context, session)
    return SessionResponse(result=result, session=session)


@router.post("/confirm", response_model=SessionResponse)
async def confirm_session(
    payload: ConfirmRequest,
    user_id: str = Depends(get_user_id),
    store: TaskStore = Depends(get_task_store),
) -> SessionResponse:
    """Apply the pending preview of a session."""
    context = await build_context(store, user_id, today=payload.today)
    session = payload.session.model_copy(deep=True)
    result = await SchedulingCommandService(store).confirm_schedule(session, context)
    return SessionResponse(result=result, session=session)


@router.post("/cancel", response_model=SessionResponse)
async def cancel_session(
    payload: CancelRequest,
    store: TaskStore = Depends(get_task_store),
) -> SessionResponse:
    """Discard the pending preview of a session. Nothing is written."""
    session = payload.session.model_copy(deep=True)
    result = SchedulingCommandService(store).cancel_pending(session)
    return SessionResponse(result=result, session=session)


@router.post("/analyze", response_model=ScheduleAnalysis)
async def analyze_range(
    payload: AnalyzeRequest,
    store: TaskStore = Depends(get_task_store),
) -> ScheduleAnalysis:
    """Feasibility diagnostics for a date range. Read-only."""
    working_schedule = payload.working_schedule or default_working_schedule()
    try:
        check_range(payload.start_date, payload.end_date)
        check_working_schedule(working_schedule)
    except SchedulingError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    config = SchedulerConfig.for_range(
        payload.start_date,
        payload.end_date,
        payload.preferences or default_preferences(),
    )
    return analyze_schedule(
        await store.list_tasks(),
        config,
        working_schedule,
        habits=await store.list_habits(),
        calendar_blocks=await store.list_calendar_blocks(payload.start_date, payload.end_date),
        today=payload.today or date.today(),
    )
