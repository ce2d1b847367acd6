"""Task store: the persistence boundary the scheduler reads from and writes to.

The scheduler core works on snapshots; only the write helpers and the
command interpreter talk to a TaskStore.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Literal, Protocol

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from taskpilot.models.calendar_event import CalendarEvent
from taskpilot.models.habit import Habit
from taskpilot.models.task import Task
from taskpilot.schemas.task import (
    BlockedInterval,
    HabitSnapshot,
    TaskFilter,
    TaskPatch,
    TaskSnapshot,
)
from taskpilot.services.scheduling_helpers import habit_block

logger = logging.getLogger(__name__)


class TaskNotFoundError(Exception):
    """Raised when a task id does not exist in the store."""


@dataclass(frozen=True)
class TaskChange:
    """Notification sent to subscribers after a write."""

    task_id: str
    action: Literal["updated", "deleted"]


ChangeListener = Callable[[TaskChange], None]


class TaskStore(Protocol):
    """Async task persistence interface."""

    async def list_tasks(self, task_filter: TaskFilter | None = None) -> list[TaskSnapshot]: ...

    async def update_task(self, task_id: str, patch: TaskPatch) -> None: ...

    async def delete_task(self, task_id: str) -> None: ...

    async def list_blocked_intervals(self, day: date) -> list[BlockedInterval]: ...

    async def list_habits(self) -> list[HabitSnapshot]: ...

    async def list_calendar_blocks(self, start: date, end: date) -> list[BlockedInterval]: ...

    def subscribe(self, on_change: ChangeListener) -> Callable[[], None]: ...


class _Listeners:
    """Subscriber registry shared by the store implementations."""

    def __init__(self) -> None:
        self._listeners: list[ChangeListener] = []

    def subscribe(self, on_change: ChangeListener) -> Callable[[], None]:
        self._listeners.append(on_change)

        def unsubscribe() -> None:
            if on_change in self._listeners:
                self._listeners.remove(on_change)

        return unsubscribe

    def notify(self, change: TaskChange) -> None:
        for listener in list(self._listeners):
            listener(change)


class InMemoryTaskStore(_Listeners):
    """Dict-backed TaskStore for embedding and tests."""

    def __init__(
        self,
        tasks: list[TaskSnapshot] | None = None,
        *,
        habits: list[HabitSnapshot] | None = None,
        calendar_blocks: list[BlockedInterval] | None = None,
    ) -> None:
        super().__init__()
        self._tasks: dict[str, TaskSnapshot] = {t.id: t for t in tasks or []}
        self.habits = list(habits or [])
        self.calendar_blocks = list(calendar_blocks or [])

    async def list_tasks(self, task_filter: TaskFilter | None = None) -> list[TaskSnapshot]:
        tasks = list(self._tasks.values())
        if task_filter is not None:
            tasks = [t for t in tasks if task_filter.matches(t)]
        return tasks

    async def update_task(self, task_id: str, patch: TaskPatch) -> None:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        self._tasks[task_id] = task.model_copy(update=patch.to_update())
        self.notify(TaskChange(task_id=task_id, action="updated"))

    async def delete_task(self, task_id: str) -> None:
        if self._tasks.pop(task_id, None) is None:
            raise TaskNotFoundError(task_id)
        self.notify(TaskChange(task_id=task_id, action="deleted"))

    async def list_blocked_intervals(self, day: date) -> list[BlockedInterval]:
        blocked = [b for b in self.calendar_blocks if _overlaps_day(b.start, b.end, day)]
        for habit in self.habits:
            block = habit_block(habit, day)
            if block is not None:
                blocked.append(block)
        return sorted(blocked, key=lambda b: b.start)

    async def list_habits(self) -> list[HabitSnapshot]:
        return [h for h in self.habits if not h.is_archived]

    async def list_calendar_blocks(self, start: date, end: date) -> list[BlockedInterval]:
        return [b for b in self.calendar_blocks if b.start.date() <= end and b.end.date() >= start]


class SqlAlchemyTaskStore(_Listeners):
    """TaskStore over the async SQLAlchemy session, scoped to one user."""

    def __init__(self, db: AsyncSession, user_id: str) -> None:
        super().__init__()
        self.db = db
        self.user_id = user_id

    async def list_tasks(self, task_filter: TaskFilter | None = None) -> list[TaskSnapshot]:
        stmt = select(Task).where(Task.user_id == self.user_id)
        if task_filter is not None:
            if task_filter.statuses is not None:
                stmt = stmt.where(Task.status.in_(task_filter.statuses))
            if task_filter.project_id is not None:
                stmt = stmt.where(Task.project_id == task_filter.project_id)
            if task_filter.task_ids is not None:
                stmt = stmt.where(Task.id.in_(task_filter.task_ids))
            if task_filter.placed is True:
                stmt = stmt.where(Task.scheduled_start.is_not(None))
            elif task_filter.placed is False:
                stmt = stmt.where(Task.scheduled_start.is_(None))
        stmt = stmt.order_by(Task.created_at, Task.id)

        result = await self.db.execute(stmt)
        return [TaskSnapshot.model_validate(row) for row in result.scalars().all()]

    async def update_task(self, task_id: str, patch: TaskPatch) -> None:
        values = patch.to_update()
        if not values:
            return
        result = await self.db.execute(
            update(Task)
            .where(Task.id == task_id, Task.user_id == self.user_id)
            .values(**values)
            .returning(Task.id)
        )
        if result.scalar_one_or_none() is None:
            raise TaskNotFoundError(task_id)
        await self.db.flush()
        self.notify(TaskChange(task_id=task_id, action="updated"))

    async def delete_task(self, task_id: str) -> None:
        result = await self.db.execute(
            delete(Task)
            .where(Task.id == task_id, Task.user_id == self.user_id)
            .returning(Task.id)
        )
        if result.scalar_one_or_none() is None:
            raise TaskNotFoundError(task_id)
        await self.db.flush()
        logger.info("Deleted task %s", task_id)
        self.notify(TaskChange(task_id=task_id, action="deleted"))

    async def list_blocked_intervals(self, day: date) -> list[BlockedInterval]:
        """Calendar events overlapping ``day`` merged with the habit blocks for it."""
        day_start = datetime.combine(day, time.min)
        day_end = day_start + timedelta(days=1)

        blocked = await self._calendar_blocks_between(day_start, day_end)
        for habit in await self.list_habits():
            block = habit_block(habit, day)
            if block is not None:
                blocked.append(block)
        return sorted(blocked, key=lambda b: b.start)

    async def list_habits(self) -> list[HabitSnapshot]:
        result = await self.db.execute(
            select(Habit).where(Habit.user_id == self.user_id, Habit.is_archived.is_(False))
        )
        return [HabitSnapshot.model_validate(row) for row in result.scalars().all()]

    async def list_calendar_blocks(self, start: date, end: date) -> list[BlockedInterval]:
        range_start = datetime.combine(start, time.min)
        range_end = datetime.combine(end, time.min) + timedelta(days=1)
        return await self._calendar_blocks_between(range_start, range_end)

    async def _calendar_blocks_between(self, start: datetime, end: datetime) -> list[BlockedInterval]:
        result = await self.db.execute(
            select(CalendarEvent)
            .where(
                CalendarEvent.user_id == self.user_id,
                CalendarEvent.start < end,
                CalendarEvent.end > start,
            )
            .order_by(CalendarEvent.start)
        )
        return [
            BlockedInterval(start=e.start, end=e.end, source="calendar", title=e.title)
            for e in result.scalars().all()
        ]


def _overlaps_day(start: datetime, end: datetime, day: date) -> bool:
    day_start = datetime.combine(day, time.min)
    return start < day_start + timedelta(days=1) and end > day_start
