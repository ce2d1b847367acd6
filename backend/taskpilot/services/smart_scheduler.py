"""Smart scheduler: greedy, date-ordered, priority-ordered task placement.

Phase 1: Blocked-time map (placed tasks, habit blocks, calendar events)
Phase 2: Candidate pool selection and composite sort
Phase 3: First-fit placement, then deadline fallbacks (overtime, non-working days)

Producing a schedule performs no writes. The async helpers at the bottom
of the module commit or clear placements through a TaskStore.
"""

import logging
from collections.abc import Iterable, Sequence
from datetime import date, datetime, timedelta

from taskpilot.schemas.schedule import (
    SchedulePreview,
    SchedulerConfig,
    ScheduleSlot,
    SmartScheduleResult,
    TimeWindow,
    WorkingSchedule,
)
from taskpilot.schemas.task import (
    BlockedInterval,
    HabitSnapshot,
    MilestoneSnapshot,
    TaskPatch,
    TaskSnapshot,
)
from taskpilot.services.scheduling_helpers import (
    MINUTES_PER_DAY,
    PREFERRED_TIME_WINDOWS,
    Interval,
    at_minutes,
    busy_intervals_for_day,
    day_budget,
    first_fit,
    format_hhmm,
    is_working_day,
    iter_days,
    lunch_window,
    overlap_minutes,
    overtime_built_in,
    overtime_minutes,
    parse_hhmm,
    working_span_minutes,
    working_window,
)
from taskpilot.services.task_store import TaskStore

logger = logging.getLogger(__name__)


class _DayState:
    """Tracks the state of one calendar day during a scheduling run."""

    __slots__ = (
        "day",
        "is_working",
        "window_start",
        "window_end",
        "budget",
        "rescue_budget",
        "focus_cap",
        "used",
        "focus_used",
        "busy",
        "cursor",
        "slots",
        "warnings",
    )

    def __init__(
        self,
        day: date,
        is_working: bool,
        window: Interval,
        budget: int,
        rescue_budget: int,
        focus_cap: int,
        busy: list[Interval],
    ) -> None:
        self.day = day
        self.is_working = is_working
        self.window_start, self.window_end = window
        self.budget = budget
        self.rescue_budget = rescue_budget
        self.focus_cap = focus_cap
        self.used = 0
        self.focus_used = 0
        self.busy = busy
        self.cursor = self.window_start
        self.slots: list[ScheduleSlot] = []
        self.warnings: list[str] = []


class SmartScheduler:
    """Places tasks into concrete time slots for an inclusive date range."""

    def __init__(
        self,
        config: SchedulerConfig,
        working_schedule: WorkingSchedule,
        milestones: Iterable[MilestoneSnapshot] = (),
        habits: Iterable[HabitSnapshot] = (),
        calendar_blocks: Iterable[BlockedInterval] = (),
        today: date | None = None,
    ) -> None:
        self.config = config
        self.working_schedule = working_schedule
        self.milestones = {m.id: m for m in milestones}
        self.habits = list(habits)
        self.calendar_blocks = list(calendar_blocks)
        self.today = today or config.start_date
        self.focus_projects = set(config.focus_projects)

    def generate(
        self,
        all_tasks: Sequence[TaskSnapshot],
        reschedule_ids: Iterable[str] = (),
    ) -> SmartScheduleResult:
        """Build a placement preview for every schedulable task in ``all_tasks``.

        Tasks listed in ``reschedule_ids`` are taken out of the blocked map
        and re-enter the candidate pool even if already placed.
        """
        warnings: list[str] = []

        # Phase 2 runs first so the blocked map knows which tasks are movable
        pool = self._select_pool(all_tasks, set(reschedule_ids))
        pool_ids = {t.id for t in pool}

        # Phase 1: Blocked-time map
        days = self._build_day_states(all_tasks, pool_ids)
        if pool and not days:
            warnings.append(
                f"No days available between {self.config.start_date.isoformat()} "
                f"and {self.config.end_date.isoformat()}."
            )

        # Phase 3: Placement
        unplaced: list[str] = []
        scheduled_count = 0
        held_back: list[TaskSnapshot] = []
        for task in self._sort_pool(pool):
            if task.estimated_minutes <= 0:
                unplaced.append(task.id)
                warnings.append(f'"{task.title}" has no positive time estimate and was not scheduled.')
                continue

            state = self._place(task, days)
            if state is None and self._is_focus(task):
                held_back.append(task)
                continue
            if self._record(task, state, days, unplaced, warnings):
                scheduled_count += 1

        # Focus tasks the cap held back take whatever the rest of the pool left
        for task in held_back:
            state = self._place(task, days, enforce_focus=False)
            if self._record(task, state, days, unplaced, warnings):
                scheduled_count += 1

        previews = self._build_previews(days)
        logger.info(
            "Placed %d of %d task(s) across %d day(s) for %s..%s",
            scheduled_count,
            len(pool),
            len(previews),
            self.config.start_date,
            self.config.end_date,
        )
        return SmartScheduleResult(
            previews=previews,
            warnings=warnings,
            unplaced_task_ids=unplaced,
            scheduled_count=scheduled_count,
        )

    # ---------------------------------------------------------------
    # Phase 1: Blocked-time Map
    # ---------------------------------------------------------------

    def _build_day_states(self, all_tasks: Sequence[TaskSnapshot], pool_ids: set[str]) -> list[_DayState]:
        """One state per day from max(start, today) through the range end."""
        config = self.config
        extra = overtime_minutes(config) if overtime_built_in(config) else 0
        work_start, work_end = working_window(self.working_schedule)
        work_end = min(work_end + extra, MINUTES_PER_DAY)
        lunch = lunch_window(self.working_schedule, config.lunch_break)
        span = working_span_minutes(self.working_schedule, config.lunch_break)

        states: list[_DayState] = []
        for day in iter_days(max(config.start_date, self.today), config.end_date):
            busy = busy_intervals_for_day(day, all_tasks, self.habits, self.calendar_blocks, exclude_ids=pool_ids)
            committed = overlap_minutes(busy, work_start, work_end)
            if lunch is not None:
                committed -= overlap_minutes(busy, lunch[0], lunch[1])
                busy.append(lunch)

            is_working = is_working_day(day, self.working_schedule)
            if is_working:
                budget = max(0, day_budget(day, self.working_schedule, config) + extra - committed)
                rescue_budget = 0
            else:
                budget = 0
                rescue_budget = max(0, span - committed)

            states.append(
                _DayState(
                    day=day,
                    is_working=is_working,
                    window=(work_start, work_end),
                    budget=budget,
                    rescue_budget=rescue_budget,
                    focus_cap=int(config.focus_project_ratio * budget),
                    busy=busy,
                )
            )
        return states

    # ---------------------------------------------------------------
    # Phase 2: Pool and Sort
    # ---------------------------------------------------------------

    @staticmethod
    def _select_pool(all_tasks: Sequence[TaskSnapshot], reschedule_ids: set[str]) -> list[TaskSnapshot]:
        """Unplaced non-completed tasks, plus placed ones explicitly being rescheduled."""
        return [
            t for t in all_tasks
            if t.status != "completed" and (not t.is_placed or t.id in reschedule_ids)
        ]

    def _sort_pool(self, pool: list[TaskSnapshot]) -> list[TaskSnapshot]:
        """Due date first (earliest first), then priority, then focus membership, then input order."""

        def sort_key(item: tuple[int, TaskSnapshot]) -> tuple:
            index, task = item
            focus_rank = 0 if not self.focus_projects or self._is_focus(task) else 1
            return (
                task.due_date is None,
                task.due_date or date.max,
                task.priority_rank,
                focus_rank,
                index,
            )

        return [task for _, task in sorted(enumerate(pool), key=sort_key)]

    def _is_focus(self, task: TaskSnapshot) -> bool:
        return task.project_id is not None and task.project_id in self.focus_projects

    # ---------------------------------------------------------------
    # Phase 3: Placement
    # ---------------------------------------------------------------

    def _record(
        self,
        task: TaskSnapshot,
        state: _DayState | None,
        days: list[_DayState],
        unplaced: list[str],
        warnings: list[str],
    ) -> bool:
        if state is None:
            unplaced.append(task.id)
            warnings.append(self._unplaced_message(task, days))
            return False

        if task.due_date is not None and state.day > task.due_date:
            message = (
                f'"{task.title}" is scheduled on {state.day.isoformat()}, '
                f"after its due date ({task.due_date.isoformat()})."
            )
            state.warnings.append(message)
            warnings.append(message)
        return True

    def _last_on_time_day(self, task: TaskSnapshot) -> date | None:
        if task.due_date is None:
            return None
        if self.config.strict_deadlines:
            return task.due_date - timedelta(days=self.config.deadline_buffer_days)
        return task.due_date

    def _place(self, task: TaskSnapshot, days: list[_DayState], enforce_focus: bool = True) -> _DayState | None:
        """First-fit search; returns the day the task landed on, or None.

        Order of attempts: working days up to the deadline; the same days
        with overtime and without the focus cap; non-working days (strict
        deadlines with overtime allowed only); for non-strict tasks, the
        working days after the deadline.
        """
        config = self.config
        deadline = self._last_on_time_day(task)
        on_time = [s for s in days if deadline is None or s.day <= deadline]

        for state in on_time:
            if state.is_working and self._try_place(state, task, enforce_focus=enforce_focus):
                return state

        if deadline is None:
            return None

        extra = 0 if overtime_built_in(config) else overtime_minutes(config)
        for state in on_time:
            if state.is_working and self._try_place(state, task, extra=extra, enforce_focus=False):
                return state

        if config.strict_deadlines:
            if config.allow_overtime:
                for state in on_time:
                    if not state.is_working and self._try_place(state, task, rescue=True):
                        return state
            return None

        for state in days:
            if state.day > deadline and state.is_working and self._try_place(state, task, enforce_focus=enforce_focus):
                return state
        return None

    def _try_place(
        self,
        state: _DayState,
        task: TaskSnapshot,
        *,
        extra: int = 0,
        enforce_focus: bool = True,
        rescue: bool = False,
    ) -> bool:
        minutes = task.estimated_minutes
        budget = state.rescue_budget if rescue else state.budget + extra
        if state.used + minutes > budget:
            return False

        is_focus = self._is_focus(task)
        if enforce_focus and is_focus and state.focus_used + minutes > state.focus_cap:
            return False

        limit = min(state.window_end + extra, MINUTES_PER_DAY)
        start = first_fit(state.busy, state.cursor, limit, minutes)
        if start is None:
            return False
        end = start + minutes

        overtime = end > state.window_end
        state.slots.append(
            ScheduleSlot(
                task=task,
                start_time=at_minutes(state.day, start),
                end_time=at_minutes(state.day, end),
                reasoning=self._reasoning(task, is_focus, overtime, rescue),
            )
        )
        state.used += minutes
        if is_focus:
            state.focus_used += minutes
        state.busy.append((start, end))
        state.cursor = end + self.config.breaks_between_tasks

        if overtime:
            state.warnings.append(f'"{task.title}" runs into overtime until {format_hhmm(end)}.')
        if rescue:
            state.warnings.append(f'"{task.title}" is placed on a non-working day to meet its deadline.')
        return True

    def _reasoning(self, task: TaskSnapshot, is_focus: bool, overtime: bool, rescue: bool) -> str:
        parts = [f"{task.priority} priority"]
        if task.due_date is not None:
            parts.append(f"due {task.due_date.isoformat()}")
        if is_focus:
            parts.append("focus project")
        milestone = self.milestones.get(task.milestone_id or "")
        if milestone is not None:
            parts.append(f"milestone {milestone.title}")
        if overtime:
            parts.append("uses overtime")
        if rescue:
            parts.append("non-working day")
        return ", ".join(parts)

    def _unplaced_message(self, task: TaskSnapshot, days: list[_DayState]) -> str:
        deadline = self._last_on_time_day(task)
        if self.config.strict_deadlines and deadline is not None:
            return (
                f'"{task.title}" ({task.estimated_minutes} min) cannot meet its deadline: '
                f"not enough capacity on or before {deadline.isoformat()}."
            )

        largest = max((s.budget for s in days if s.is_working), default=0)
        if largest == 0:
            cause = "no working time is available"
        elif task.estimated_minutes > largest:
            cause = f"no single day has more than {largest} min available"
        else:
            cause = "every day with enough capacity is already full"
        return (
            f'"{task.title}" ({task.estimated_minutes} min) does not fit between '
            f"{self.config.start_date.isoformat()} and {self.config.end_date.isoformat()}: {cause}."
        )

    @staticmethod
    def _build_previews(days: list[_DayState]) -> list[SchedulePreview]:
        previews: list[SchedulePreview] = []
        for state in days:
            if not state.slots:
                continue
            slots = sorted(state.slots, key=lambda s: s.start_time)
            previews.append(
                SchedulePreview(
                    day=state.day,
                    slots=slots,
                    summary=f"{len(slots)} task(s) scheduled, {state.used} min",
                    warnings=list(state.warnings),
                )
            )
        return previews


def generate_smart_schedule(
    all_tasks: Sequence[TaskSnapshot],
    config: SchedulerConfig,
    working_schedule: WorkingSchedule,
    milestones: Iterable[MilestoneSnapshot] = (),
    habits: Iterable[HabitSnapshot] = (),
    *,
    calendar_blocks: Iterable[BlockedInterval] = (),
    reschedule_ids: Iterable[str] = (),
    today: date | None = None,
) -> SmartScheduleResult:
    """Generate a conflict-free, deadline-aware placement preview.

    Deterministic: identical inputs, including task order, give identical
    output. ``today`` defaults to ``config.start_date``.
    """
    scheduler = SmartScheduler(
        config,
        working_schedule,
        milestones=milestones,
        habits=habits,
        calendar_blocks=calendar_blocks,
        today=today,
    )
    return scheduler.generate(all_tasks, reschedule_ids=reschedule_ids)


def find_free_slot(
    day: date,
    minutes: int,
    working_schedule: WorkingSchedule,
    *,
    busy: Iterable[Interval] = (),
    lunch_break: TimeWindow | None = None,
    preferred_time: str | None = None,
    overtime: int = 0,
) -> tuple[datetime, datetime] | None:
    """First free interval of ``minutes`` on a working day.

    ``busy`` holds committed minute intervals of the day; the lunch break is
    added here. ``preferred_time`` narrows the search to morning, afternoon
    or evening; ``overtime`` extends the end of the working window.
    """
    if minutes <= 0 or not is_working_day(day, working_schedule):
        return None

    lo, hi = working_window(working_schedule)
    hi = min(hi + overtime, MINUTES_PER_DAY)
    if preferred_time is not None:
        window_start, window_end = PREFERRED_TIME_WINDOWS[preferred_time]
        lo = max(lo, parse_hhmm(window_start))
        hi = min(hi, parse_hhmm(window_end))

    blocked = list(busy)
    lunch = lunch_window(working_schedule, lunch_break)
    if lunch is not None:
        blocked.append(lunch)

    start = first_fit(blocked, lo, hi, minutes)
    if start is None:
        return None
    return at_minutes(day, start), at_minutes(day, start + minutes)


# ---------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------


async def unschedule_all_tasks(
    store: TaskStore,
    tasks: Iterable[TaskSnapshot],
    start_date: date,
    end_date: date,
) -> int:
    """Clear the placement of every open task whose scheduled start falls in [start_date, end_date].

    Returns the number of tasks cleared.
    """
    targets = [
        t for t in tasks
        if t.status != "completed"
        and t.scheduled_start is not None
        and start_date <= t.scheduled_start.date() <= end_date
    ]
    for task in targets:
        await store.update_task(task.id, TaskPatch(scheduled_start=None, scheduled_end=None))

    logger.info("Unscheduled %d task(s) between %s and %s", len(targets), start_date, end_date)
    return len(targets)


async def apply_schedule_preview(store: TaskStore, preview: SchedulePreview) -> int:
    """Write each slot's start and end onto its task. Re-applying is a no-op."""
    for slot in preview.slots:
        await store.update_task(
            slot.task.id,
            TaskPatch(scheduled_start=slot.start_time, scheduled_end=slot.end_time),
        )
    return len(preview.slots)


async def apply_schedule_previews(store: TaskStore, previews: Iterable[SchedulePreview]) -> int:
    applied = 0
    for preview in previews:
        applied += await apply_schedule_preview(store, preview)
    logger.info("Applied %d placement(s)", applied)
    return applied
