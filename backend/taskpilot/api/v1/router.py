"""API v1 router aggregating all sub-routers."""

from fastapi import APIRouter

from taskpilot.api.v1.capacity import router as capacity_router
from taskpilot.api.v1.schedule import router as schedule_router

api_v1_router = APIRouter()


@api_v1_router.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint returning 200 OK."""
    return {"status": "ok"}


# Callers are identified by the X-User-Id header set by the gateway in front of this service
api_v1_router.include_router(schedule_router)
api_v1_router.include_router(capacity_router)
