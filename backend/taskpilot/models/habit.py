"""Habit SQLAlchemy model."""

import uuid

from sqlalchemy import JSON, Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from taskpilot.core.database import Base


class Habit(Base):
    """A recurring habit; habits with a scheduled time block the calendar."""

    __tablename__ = "habits"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    frequency: Mapped[str] = mapped_column(
        String(10), nullable=False, server_default="daily"
    )
    days_of_week: Mapped[list[int]] = mapped_column(JSON, nullable=False, default=list)
    scheduled_time: Mapped[str | None] = mapped_column(
        String(5), nullable=True, comment="HH:MM"
    )
    estimated_minutes: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default="30"
    )
    is_archived: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default="false"
    )
