"""Pytest configuration with fixtures for async testing."""

from datetime import date, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from taskpilot.schemas.command import SchedulingContext
from taskpilot.schemas.schedule import SchedulingPreferences, WorkingSchedule
from taskpilot.schemas.task import BlockedInterval, HabitSnapshot, TaskSnapshot
from taskpilot.services.task_store import InMemoryTaskStore

# A Monday
MONDAY = date(2026, 10, 19)


def at(day: date, hhmm: str) -> datetime:
    """Naive datetime on ``day`` at "HH:MM"."""
    hours, minutes = hhmm.split(":")
    return datetime(day.year, day.month, day.day, int(hours), int(minutes))


# ---------------------------------------------------------------------------
# Test Data Factories
# ---------------------------------------------------------------------------


def _make_mock(defaults: dict[str, Any], overrides: dict[str, Any]) -> MagicMock:
    """Create a MagicMock with given attributes."""
    merged = {**defaults, **overrides}
    mock = MagicMock()
    for k, v in merged.items():
        setattr(mock, k, v)
    return mock


class TaskFactory:
    """Factory for TaskSnapshot values fed to the scheduler."""

    _counter = 0

    @classmethod
    def create(cls, **overrides: Any) -> TaskSnapshot:
        cls._counter += 1
        defaults = {
            "id": f"task-{cls._counter}",
            "title": f"Task {cls._counter}",
            "status": "pending",
            "priority": "medium",
            "estimated_minutes": 60,
        }
        return TaskSnapshot(**{**defaults, **overrides})

    @classmethod
    def placed(cls, day: date, start: str, minutes: int = 60, **overrides: Any) -> TaskSnapshot:
        """A task already scheduled on ``day`` starting at ``start``."""
        begin = at(day, start)
        return cls.create(
            estimated_minutes=minutes,
            scheduled_start=begin,
            scheduled_end=begin + timedelta(minutes=minutes),
            **overrides,
        )


class TaskRowFactory:
    """Factory for Task ORM rows as returned by a mocked session."""

    _counter = 0

    @classmethod
    def create(cls, **overrides: Any) -> MagicMock:
        cls._counter += 1
        now = datetime(2026, 10, 1, 9, 0)
        defaults = {
            "id": f"row-{cls._counter}",
            "user_id": "user-1",
            "project_id": None,
            "milestone_id": None,
            "title": f"Row Task {cls._counter}",
            "description": None,
            "status": "pending",
            "priority": "medium",
            "estimated_minutes": 30,
            "actual_minutes": None,
            "due_date": None,
            "scheduled_start": None,
            "scheduled_end": None,
            "completed_at": None,
            "blocked_by": [],
            "created_at": now,
            "updated_at": now,
        }
        return _make_mock(defaults, overrides)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def task_factory():
    """Provide TaskFactory for tests."""
    TaskFactory._counter = 0
    return TaskFactory


@pytest.fixture
def task_row_factory():
    """Provide TaskRowFactory for tests."""
    TaskRowFactory._counter = 0
    return TaskRowFactory


@pytest.fixture
def working_schedule():
    """Mon-Fri 09:00-17:00, no lunch break."""
    return WorkingSchedule()


@pytest.fixture
def preferences():
    return SchedulingPreferences()


@pytest.fixture
def habit():
    """Daily 30-minute habit at 09:00."""
    return HabitSnapshot(id="habit-1", title="Standup", scheduled_time="09:00", estimated_minutes=30)


@pytest.fixture
def calendar_block():
    """Monday 14:00-15:00 meeting."""
    return BlockedInterval(start=at(MONDAY, "14:00"), end=at(MONDAY, "15:00"), source="calendar", title="Review")


@pytest.fixture
def make_context(working_schedule, preferences):
    """Build a SchedulingContext for the command interpreter."""

    def _make(tasks: list[TaskSnapshot], **overrides: Any) -> SchedulingContext:
        defaults = {
            "user_id": "user-1",
            "tasks": tasks,
            "working_schedule": working_schedule,
            "preferences": preferences,
            "today": MONDAY,
        }
        return SchedulingContext(**{**defaults, **overrides})

    return _make


@pytest.fixture
def make_store():
    """Build an InMemoryTaskStore seeded with tasks."""

    def _make(tasks: list[TaskSnapshot], **kwargs: Any) -> InMemoryTaskStore:
        return InMemoryTaskStore(tasks, **kwargs)

    return _make


@pytest.fixture
def mock_db():
    """Provide a mock AsyncSession for unit tests."""
    session = AsyncMock(spec=AsyncSession)
    session.add = MagicMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.refresh = AsyncMock()
    session.delete = AsyncMock()
    return session
