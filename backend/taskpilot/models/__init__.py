"""SQLAlchemy ORM models."""

from taskpilot.models.calendar_event import CalendarEvent
from taskpilot.models.habit import Habit
from taskpilot.models.task import Task

__all__ = [
    "CalendarEvent",
    "Habit",
    "Task",
]
