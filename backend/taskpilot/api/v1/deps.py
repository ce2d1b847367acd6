"""Shared request dependencies for the v1 routers."""

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from taskpilot.core.database import get_db
from taskpilot.services.task_store import SqlAlchemyTaskStore, TaskStore


async def get_user_id(user_id: str = Header(..., alias="X-User-Id", min_length=1)) -> str:
    """Identity of the caller. Authentication happens upstream of this service."""
    return user_id


async def get_task_store(
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
) -> TaskStore:
    return SqlAlchemyTaskStore(db, user_id)
