"""Scheduling command interpreter.

Maps a SchedulingCommand onto the analyzer, the smart scheduler or a
single-task relocation, and drives the caller-owned SchedulingSession
through idle -> pending -> applied | cancelled.

Commands that would change more than one placement return a preview and
leave the session pending; nothing is written until confirm_schedule.
"""

import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import date, datetime, timedelta

from taskpilot.schemas.command import (
    CommandChanges,
    CommandScope,
    SchedulingCommand,
    SchedulingCommandResult,
    SchedulingContext,
    SchedulingSession,
)
from taskpilot.schemas.schedule import SchedulePreview, SchedulerConfig, ScheduleSlot, WorkingSchedule
from taskpilot.schemas.task import TaskFilter, TaskPatch, TaskSnapshot
from taskpilot.services.analyzer import analyze_schedule
from taskpilot.services.capacity import calculate_range_capacity
from taskpilot.services.capacity_display import get_suggested_alternatives
from taskpilot.services.scheduling_helpers import (
    add_months,
    busy_intervals_for_day,
    habit_blocks,
    intervals_overlap,
    iter_days,
    overtime_minutes,
    parse_hhmm,
    task_interval,
)
from taskpilot.services.smart_scheduler import (
    apply_schedule_previews,
    find_free_slot,
    generate_smart_schedule,
    unschedule_all_tasks,
)
from taskpilot.services.task_store import TaskNotFoundError, TaskStore

logger = logging.getLogger(__name__)

SINGLE_TASK_COMMANDS = frozenset({"move_task", "emergency_insert", "find_time"})
PREVIEW_COMMANDS = frozenset({
    "schedule_unscheduled",
    "batch_schedule",
    "reschedule_period",
    "optimize_schedule",
    "rebalance",
    "find_time",
})
SCOPE_MONTHS: dict[str, int] = {"month": 1, "quarter": 3, "year": 12, "all": 12}
EMERGENCY_SEARCH_DAYS = 14
MAX_ALTERNATIVE_SLOTS = 2


class SchedulingError(Exception):
    """Raised when a scheduling request cannot be interpreted at all."""


def check_range(start: date, end: date) -> None:
    """Reject an inverted date range at the request boundary."""
    if end < start:
        raise SchedulingError(f"End date {end.isoformat()} is before start date {start.isoformat()}.")


def check_working_schedule(working_schedule: WorkingSchedule) -> None:
    """Reject working hours that end before they start or name no working days."""
    start, end = working_schedule.start, working_schedule.end
    if parse_hhmm(end) <= parse_hhmm(start):
        raise SchedulingError(f"Working hours end ({end}) before they start ({start}).")
    if any(d < 0 or d > 6 for d in working_schedule.working_days):
        raise SchedulingError("Working days must be numbers from 0 (Monday) to 6 (Sunday).")


Handler = Callable[
    [SchedulingCommand, SchedulingContext, SchedulingSession],
    Awaitable[SchedulingCommandResult],
]


def scope_range(scope: CommandScope, anchor: date, *, for_clearing: bool = False) -> tuple[date, date]:
    """Inclusive date range a scope covers, starting at ``anchor``.

    "all" means one year when placing tasks and every date when clearing.
    """
    if scope == "day":
        return anchor, anchor
    if scope == "week":
        return anchor, anchor + timedelta(days=6)
    if scope == "all" and for_clearing:
        return date.min, date.max
    return anchor, add_months(anchor, SCOPE_MONTHS[scope]) - timedelta(days=1)


def _error(message: str, **extra) -> SchedulingCommandResult:
    return SchedulingCommandResult(success=False, message=message, **extra)


def _slot_label(start: datetime, end: datetime) -> str:
    return f"{start:%a %Y-%m-%d %H:%M}-{end:%H:%M}"


def _range_label(start: date, end: date) -> str:
    if start == date.min and end == date.max:
        return "across all dates"
    if start == end:
        return f"on {start.isoformat()}"
    return f"between {start.isoformat()} and {end.isoformat()}"


class SchedulingCommandService:
    """Executes scheduling commands against a TaskStore."""

    def __init__(self, store: TaskStore) -> None:
        self.store = store
        self._handlers: dict[str, Handler] = {
            "schedule_unscheduled": self._schedule_unscheduled,
            "batch_schedule": self._batch_schedule,
            "reschedule_period": self._reschedule_period,
            "optimize_schedule": self._optimize,
            "rebalance": self._optimize,
            "analyze_schedule": self._analyze,
            "clear_schedule": self._clear,
            "move_task": self._move_task,
            "emergency_insert": self._emergency_insert,
            "find_time": self._find_time,
        }

    async def execute_scheduling_command(
        self,
        command: SchedulingCommand,
        context: SchedulingContext,
        session: SchedulingSession | None = None,
    ) -> SchedulingCommandResult:
        """Run ``command``; updates ``session`` in place when a preview is left pending."""
        session = session if session is not None else SchedulingSession()
        logger.info(
            "Executing %s (scope=%s) for user %s, session %s",
            command.type,
            command.scope,
            context.user_id,
            session.status,
        )

        if self._needs_confirmation(command) and session.status != "idle":
            return _error(
                f"This scheduling session is already {session.status}. "
                "Start a new session to run another command."
            )

        problem = self._validate(command, context)
        if problem is not None:
            logger.info("Rejected %s: %s", command.type, problem)
            return _error(problem)

        return await self._handlers[command.type](command, context, session)

    async def confirm_schedule(
        self, session: SchedulingSession, context: SchedulingContext
    ) -> SchedulingCommandResult:
        """Write the pending preview (or pending clear) and mark the session applied."""
        if session.status != "pending":
            return _error(f"Nothing to confirm: the session is {session.status}.")

        # Nothing is written unless every task the session touches still exists
        if session.clear_range is not None:
            candidates = self._clearable_tasks(session.command, context.tasks)
            existing = await self._existing_ids([t.id for t in candidates])
            candidates = [t for t in candidates if t.id in existing]
        else:
            preview_ids = [slot.task.id for preview in session.preview for slot in preview.slots]
            existing = await self._existing_ids(preview_ids)
            missing = [task_id for task_id in preview_ids if task_id not in existing]
            if missing:
                session.status = "cancelled"
                logger.warning("Confirm aborted for user %s: task(s) %s are gone", context.user_id, missing)
                return _error(
                    f"Task(s) {', '.join(missing)} no longer exist. Nothing was applied; run the command again.",
                    changes=CommandChanges(scheduled=0),
                )

        try:
            if session.clear_range is not None:
                start, end = session.clear_range
                count = await unschedule_all_tasks(self.store, candidates, start, end)
                changes = CommandChanges(unscheduled=count)
                message = f"Cleared {count} scheduled task(s) {_range_label(start, end)}."
            else:
                count = await apply_schedule_previews(self.store, session.preview)
                changes = CommandChanges(scheduled=count)
                message = f"Applied {count} placement(s)."
        except TaskNotFoundError as exc:
            logger.warning("Confirm failed for user %s: task %s is gone", context.user_id, exc)
            return _error(f"Task {exc} no longer exists. Refresh and try again.")

        session.status = "applied"
        logger.info("Session applied for user %s: %s", context.user_id, message)
        return SchedulingCommandResult(success=True, message=message, changes=changes)

    def cancel_pending(self, session: SchedulingSession) -> SchedulingCommandResult:
        """Discard the pending preview. Nothing is written."""
        if session.status != "pending":
            return _error(f"Nothing to cancel: the session is {session.status}.")
        session.status = "cancelled"
        session.preview = []
        session.clear_range = None
        return SchedulingCommandResult(success=True, message="Pending schedule discarded.")

    # ---------------------------------------------------------------
    # Validation
    # ---------------------------------------------------------------

    @staticmethod
    def _needs_confirmation(command: SchedulingCommand) -> bool:
        if command.type == "clear_schedule":
            return not command.options.auto_apply
        return command.type in PREVIEW_COMMANDS

    @staticmethod
    def _validate(command: SchedulingCommand, context: SchedulingContext) -> str | None:
        anchor = command.target_date or context.today
        deadline = command.constraints.must_complete_before
        if deadline is not None and deadline < anchor:
            return (
                f"The completion deadline {deadline.isoformat()} is before "
                f"the start of the range ({anchor.isoformat()})."
            )

        if command.type == "batch_schedule" and not (command.target_task_ids or command.target_project_id):
            return "Batch scheduling needs a project or a list of tasks."

        if command.type in SINGLE_TASK_COMMANDS:
            if not command.target_task_ids:
                return "Select a task first."
            task_id = command.target_task_ids[0]
            task = next((t for t in context.tasks if t.id == task_id), None)
            if task is None:
                return f"Task {task_id} was not found."
            if task.estimated_minutes <= 0:
                return f'"{task.title}" needs a positive time estimate.'
            if command.type == "move_task" and command.target_date is None:
                return "Moving a task needs a target date."
        return None

    # ---------------------------------------------------------------
    # Multi-task Commands
    # ---------------------------------------------------------------

    def _placement_range(self, command: SchedulingCommand, context: SchedulingContext) -> tuple[date, date]:
        start, end = scope_range(command.scope, command.target_date or context.today)
        deadline = command.constraints.must_complete_before
        if deadline is not None:
            end = min(end, deadline)
        return start, end

    def _config(
        self, command: SchedulingCommand, context: SchedulingContext, **overrides: object
    ) -> SchedulerConfig:
        start, end = self._placement_range(command, context)
        if command.constraints.max_hours_per_day is not None:
            overrides["max_hours_per_day"] = command.constraints.max_hours_per_day
        return SchedulerConfig.for_range(start, end, context.preferences, **overrides)

    @staticmethod
    def _movable_ids(command: SchedulingCommand, context: SchedulingContext, start: date, end: date) -> set[str]:
        """Placed, unfinished tasks in the range; in-progress ones stay put with preserve_fixed."""
        return {
            t.id
            for t in context.tasks
            if t.scheduled_start is not None
            and start <= t.scheduled_start.date() <= end
            and t.status != "completed"
            and not (command.options.preserve_fixed and t.status == "in_progress")
        }

    async def _schedule_unscheduled(
        self, command: SchedulingCommand, context: SchedulingContext, session: SchedulingSession
    ) -> SchedulingCommandResult:
        return self._run_scheduler(command, context, session, context.tasks)

    async def _batch_schedule(
        self, command: SchedulingCommand, context: SchedulingContext, session: SchedulingSession
    ) -> SchedulingCommandResult:
        targets = set(command.target_task_ids)

        def in_batch(task: TaskSnapshot) -> bool:
            if task.id in targets:
                return True
            return command.target_project_id is not None and task.project_id == command.target_project_id

        tasks = [t for t in context.tasks if t.is_placed or in_batch(t)]
        return self._run_scheduler(command, context, session, tasks)

    async def _reschedule_period(
        self, command: SchedulingCommand, context: SchedulingContext, session: SchedulingSession
    ) -> SchedulingCommandResult:
        start, end = self._placement_range(command, context)
        movable = self._movable_ids(command, context, start, end)
        return self._run_scheduler(command, context, session, context.tasks, reschedule_ids=movable, verb="Rescheduled")

    async def _optimize(
        self, command: SchedulingCommand, context: SchedulingContext, session: SchedulingSession
    ) -> SchedulingCommandResult:
        """Re-spread placed work at relaxed intensity, unless the range is already healthy."""
        start, end = self._placement_range(command, context)
        blocked = habit_blocks(context.habits, start, end) + list(context.calendar_blocks)
        capacity = calculate_range_capacity(start, end, context.tasks, context.working_schedule, blocked=blocked)
        analysis = analyze_schedule(
            context.tasks,
            self._config(command, context),
            context.working_schedule,
            habits=context.habits,
            calendar_blocks=context.calendar_blocks,
            today=context.today,
        )

        if capacity.overbooked_days == 0 and not analysis.at_risk_tasks:
            return SchedulingCommandResult(
                success=True,
                message=f"Schedule is healthy {_range_label(start, end)}: no overbooked days and no deadlines at risk.",
                suggestions=analysis.recommendations,
            )

        movable = self._movable_ids(command, context, start, end)
        verb = "Rebalanced" if command.type == "rebalance" else "Optimized"
        return self._run_scheduler(
            command,
            context,
            session,
            context.tasks,
            reschedule_ids=movable,
            intensity_mode="relaxed",
            verb=verb,
        )

    def _run_scheduler(
        self,
        command: SchedulingCommand,
        context: SchedulingContext,
        session: SchedulingSession,
        tasks: Sequence[TaskSnapshot],
        *,
        reschedule_ids: set[str] | None = None,
        intensity_mode: str | None = None,
        verb: str = "Scheduled",
    ) -> SchedulingCommandResult:
        reschedule_ids = reschedule_ids or set()
        overrides: dict[str, object] = {}
        if intensity_mode is not None:
            overrides["intensity_mode"] = intensity_mode
        config = self._config(command, context, **overrides)

        result = generate_smart_schedule(
            tasks,
            config,
            context.working_schedule,
            context.milestones,
            context.habits,
            calendar_blocks=context.calendar_blocks,
            reschedule_ids=reschedule_ids,
            today=context.today,
        )

        pool_size = result.scheduled_count + len(result.unplaced_task_ids)
        if pool_size == 0:
            return SchedulingCommandResult(success=True, message="There are no unscheduled tasks to place.")

        refusal = self._capacity_refusal(tasks, config, context, result.unplaced_task_ids)
        if refusal is not None:
            return refusal

        if result.scheduled_count == 0:
            return _error(
                f"None of the {pool_size} task(s) fit {_range_label(config.start_date, config.end_date)}.",
                warnings=result.warnings,
                suggestions=["Extend the date range, raise the intensity mode or allow overtime."],
            )

        rescheduled = sum(1 for slot in result.slots if slot.task.id in reschedule_ids)
        session.status = "pending"
        session.command = command
        session.preview = result.previews
        session.clear_range = None

        logger.info(
            "%s preview for user %s: %d placed, %d unplaced",
            command.type,
            context.user_id,
            result.scheduled_count,
            len(result.unplaced_task_ids),
        )
        return SchedulingCommandResult(
            success=True,
            message=f"{verb} {result.scheduled_count} task(s) across {len(result.previews)} day(s).",
            preview=result.previews,
            changes=CommandChanges(
                scheduled=result.scheduled_count - rescheduled,
                rescheduled=rescheduled,
                conflicts=len(result.unplaced_task_ids),
            ),
            requires_confirmation=True,
            confirmation_message=(
                f"Apply {result.scheduled_count} placement(s) "
                f"{_range_label(config.start_date, config.end_date)}?"
            ),
            warnings=result.warnings,
        )

    def _capacity_refusal(
        self,
        tasks: Sequence[TaskSnapshot],
        config: SchedulerConfig,
        context: SchedulingContext,
        unplaced_ids: list[str],
    ) -> SchedulingCommandResult | None:
        """Refuse when strict deadlines without overtime cannot all be met in an over-full range."""
        if not config.strict_deadlines or config.allow_overtime:
            return None

        analysis = analyze_schedule(
            tasks,
            config,
            context.working_schedule,
            habits=context.habits,
            calendar_blocks=context.calendar_blocks,
            today=context.today,
        )
        if analysis.utilization_percent <= 100:
            return None

        unplaced = set(unplaced_ids)
        missed = [t for t in tasks if t.id in unplaced and t.due_date is not None]
        if not missed:
            return None

        logger.info(
            "Refused %d%% load for user %s: %d strict deadline(s) missed",
            analysis.utilization_percent,
            context.user_id,
            len(missed),
        )
        return _error(
            f"Not enough capacity: {analysis.utilization_percent}% of available time is needed "
            f"and {len(missed)} task(s) would miss their deadlines.",
            warnings=analysis.warnings,
            suggestions=analysis.recommendations,
        )

    async def _analyze(
        self, command: SchedulingCommand, context: SchedulingContext, session: SchedulingSession
    ) -> SchedulingCommandResult:
        config = self._config(command, context)
        analysis = analyze_schedule(
            context.tasks,
            config,
            context.working_schedule,
            habits=context.habits,
            calendar_blocks=context.calendar_blocks,
            today=context.today,
        )
        message = (
            f"{analysis.schedulable_tasks} open task(s) {_range_label(config.start_date, config.end_date)}: "
            f"{analysis.total_minutes_needed / 60:.1f}h to place in "
            f"{analysis.total_minutes_available / 60:.1f}h available "
            f"({analysis.utilization_percent}% utilization)"
        )
        if analysis.at_risk_tasks:
            message += f", {len(analysis.at_risk_tasks)} deadline(s) at risk"
        return SchedulingCommandResult(
            success=True,
            message=message + ".",
            warnings=analysis.warnings,
            suggestions=analysis.recommendations,
        )

    @staticmethod
    def _clearable_tasks(command: SchedulingCommand | None, tasks: Sequence[TaskSnapshot]) -> list[TaskSnapshot]:
        """Placed history of completed tasks is never cleared."""
        tasks = [t for t in tasks if t.status != "completed"]
        if command is not None and command.options.preserve_fixed:
            return [t for t in tasks if t.status != "in_progress"]
        return tasks

    async def _existing_ids(self, task_ids: list[str]) -> set[str]:
        if not task_ids:
            return set()
        return {t.id for t in await self.store.list_tasks(TaskFilter(task_ids=task_ids))}

    async def _clear(
        self, command: SchedulingCommand, context: SchedulingContext, session: SchedulingSession
    ) -> SchedulingCommandResult:
        start, end = scope_range(command.scope, command.target_date or context.today, for_clearing=True)
        candidates = self._clearable_tasks(command, context.tasks)
        count = sum(
            1 for t in candidates
            if t.scheduled_start is not None and start <= t.scheduled_start.date() <= end
        )
        if count == 0:
            return SchedulingCommandResult(success=True, message=f"No scheduled tasks {_range_label(start, end)}.")

        if command.options.auto_apply:
            cleared = await unschedule_all_tasks(self.store, candidates, start, end)
            return SchedulingCommandResult(
                success=True,
                message=f"Cleared {cleared} scheduled task(s) {_range_label(start, end)}.",
                changes=CommandChanges(unscheduled=cleared),
            )

        session.status = "pending"
        session.command = command
        session.preview = []
        session.clear_range = (start, end)
        return SchedulingCommandResult(
            success=True,
            message=f"{count} scheduled task(s) {_range_label(start, end)} will be cleared.",
            changes=CommandChanges(unscheduled=count),
            requires_confirmation=True,
            confirmation_message=f"Clear {count} scheduled task(s) {_range_label(start, end)}?",
        )

    # ---------------------------------------------------------------
    # Single-task Commands
    # ---------------------------------------------------------------

    @staticmethod
    def _target_task(command: SchedulingCommand, context: SchedulingContext) -> TaskSnapshot:
        task_id = command.target_task_ids[0]
        return next(t for t in context.tasks if t.id == task_id)

    def _free_slot_on(
        self,
        day: date,
        task: TaskSnapshot,
        command: SchedulingCommand,
        context: SchedulingContext,
        overtime: int = 0,
    ) -> tuple[datetime, datetime] | None:
        busy = busy_intervals_for_day(
            day, context.tasks, context.habits, context.calendar_blocks, exclude_ids={task.id}
        )
        return find_free_slot(
            day,
            task.estimated_minutes,
            context.working_schedule,
            busy=busy,
            lunch_break=context.preferences.lunch_break,
            preferred_time=command.constraints.preferred_time,
            overtime=overtime,
        )

    async def _move_task(
        self, command: SchedulingCommand, context: SchedulingContext, session: SchedulingSession
    ) -> SchedulingCommandResult:
        task = self._target_task(command, context)
        day = command.target_date
        slot = self._free_slot_on(day, task, command, context)
        if slot is None:
            alternatives = get_suggested_alternatives(
                day, task.estimated_minutes, context.tasks, context.working_schedule
            )
            return _error(
                f'No free {task.estimated_minutes}-minute slot for "{task.title}" on {day.isoformat()}.',
                suggestions=[f"Try {d:%A} {d.isoformat()}." for d in alternatives],
            )
        return await self._commit_single(task, slot[0], slot[1], verb="Moved")

    async def _emergency_insert(
        self, command: SchedulingCommand, context: SchedulingContext, session: SchedulingSession
    ) -> SchedulingCommandResult:
        """Earliest free slot from the target day on, ignoring intensity budgets."""
        task = self._target_task(command, context)
        first_day = command.target_date or context.today
        last_day = first_day + timedelta(days=EMERGENCY_SEARCH_DAYS - 1)
        if command.constraints.must_complete_before is not None:
            last_day = min(last_day, command.constraints.must_complete_before)

        overtime = overtime_minutes(context.preferences)
        for day in iter_days(first_day, last_day):
            slot = self._free_slot_on(day, task, command, context, overtime=overtime)
            if slot is not None:
                return await self._commit_single(task, slot[0], slot[1], verb="Inserted")

        return _error(
            f'No free {task.estimated_minutes}-minute slot for "{task.title}" '
            f"{_range_label(first_day, last_day)}.",
            suggestions=["Clear or move a lower-priority task, or allow overtime."],
        )

    async def _find_time(
        self, command: SchedulingCommand, context: SchedulingContext, session: SchedulingSession
    ) -> SchedulingCommandResult:
        """Best slot plus up to two alternatives on later days; the best one is left pending."""
        task = self._target_task(command, context)
        start, end = self._placement_range(command, context)

        found: list[tuple[datetime, datetime]] = []
        for day in iter_days(max(start, context.today), end):
            slot = self._free_slot_on(day, task, command, context)
            if slot is not None:
                found.append(slot)
                if len(found) > MAX_ALTERNATIVE_SLOTS:
                    break

        if not found:
            return _error(
                f'No free {task.estimated_minutes}-minute slot for "{task.title}" {_range_label(start, end)}.',
                suggestions=["Try a longer scope or a different time of day."],
            )

        best_start, best_end = found[0]
        preview = [
            SchedulePreview(
                day=best_start.date(),
                slots=[ScheduleSlot(task=task, start_time=best_start, end_time=best_end, reasoning="earliest free slot")],
                summary=f"1 task(s) scheduled, {task.estimated_minutes} min",
            )
        ]
        session.status = "pending"
        session.command = command
        session.preview = preview
        session.clear_range = None

        return SchedulingCommandResult(
            success=True,
            message=f'Best slot for "{task.title}": {_slot_label(best_start, best_end)}.',
            preview=preview,
            changes=CommandChanges(rescheduled=1) if task.is_placed else CommandChanges(scheduled=1),
            requires_confirmation=True,
            confirmation_message=f"Book {_slot_label(best_start, best_end)}?",
            suggestions=[f"Alternative: {_slot_label(s, e)}" for s, e in found[1:]],
        )

    async def _commit_single(
        self, task: TaskSnapshot, start: datetime, end: datetime, *, verb: str
    ) -> SchedulingCommandResult:
        """Re-check the slot against the store's current state, then write it."""
        if await self._collides(task, start, end):
            logger.info("Stale slot %s for task %s", _slot_label(start, end), task.id)
            return _error(
                f"The slot {_slot_label(start, end)} is no longer free. Refresh and try again.",
                changes=CommandChanges(conflicts=1),
            )

        try:
            await self.store.update_task(task.id, TaskPatch(scheduled_start=start, scheduled_end=end))
        except TaskNotFoundError:
            return _error(f'"{task.title}" no longer exists.')

        changes = CommandChanges(rescheduled=1) if task.is_placed else CommandChanges(scheduled=1)
        return SchedulingCommandResult(
            success=True,
            message=f'{verb} "{task.title}" at {_slot_label(start, end)}.',
            changes=changes,
        )

    async def _collides(self, task: TaskSnapshot, start: datetime, end: datetime) -> bool:
        for other in await self.store.list_tasks():
            if other.id == task.id:
                continue
            interval = task_interval(other)
            if interval is not None and intervals_overlap(start, end, interval[0], interval[1]):
                return True
        for block in await self.store.list_blocked_intervals(start.date()):
            if intervals_overlap(start, end, block.start, block.end):
                return True
        return False
