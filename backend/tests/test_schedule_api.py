"""Tests for the schedule and capacity API endpoints."""

from datetime import timedelta

import pytest
from fastapi import HTTPException

from conftest import MONDAY, at
from taskpilot.api.v1.capacity import (
    check_deadline,
    get_buffer_recommendation,
    get_day_capacity,
    get_schedule_gaps,
    get_week_capacity,
)
from taskpilot.api.v1.deps import get_task_store
from taskpilot.api.v1.router import health_check
from taskpilot.api.v1.schedule import analyze_range, cancel_session, confirm_session, execute_command
from taskpilot.schemas.command import (
    AnalyzeRequest,
    CancelRequest,
    CommandRequest,
    ConfirmRequest,
    SchedulingCommand,
)
from taskpilot.schemas.schedule import WorkingSchedule
from taskpilot.services.task_store import SqlAlchemyTaskStore


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self):
        assert await health_check() == {"status": "ok"}


class TestDependencies:
    @pytest.mark.asyncio
    async def test_store_is_scoped_to_user(self, mock_db):
        store = await get_task_store(user_id="user-9", db=mock_db)
        assert isinstance(store, SqlAlchemyTaskStore)
        assert store.user_id == "user-9"


class TestCommandEndpoints:
    @pytest.mark.asyncio
    async def test_command_confirm_round_trip(self, task_factory, make_store, working_schedule):
        store = make_store([task_factory.create(estimated_minutes=120) for _ in range(2)])
        payload = CommandRequest(
            command=SchedulingCommand(type="schedule_unscheduled", scope="day"),
            working_schedule=working_schedule,
            today=MONDAY,
        )

        response = await execute_command(payload=payload, user_id="user-1", store=store)

        assert response.result.requires_confirmation
        assert response.session.status == "pending"
        # The request's own session object is not mutated
        assert payload.session.status == "idle"

        confirmed = await confirm_session(
            payload=ConfirmRequest(session=response.session, today=MONDAY), user_id="user-1", store=store
        )
        assert confirmed.result.success
        assert confirmed.session.status == "applied"
        starts = sorted(t.scheduled_start for t in await store.list_tasks())
        assert starts == [at(MONDAY, "09:00"), at(MONDAY, "11:00")]

    @pytest.mark.asyncio
    async def test_cancel(self, task_factory, make_store, working_schedule):
        store = make_store([task_factory.create()])
        response = await execute_command(
            payload=CommandRequest(
                command=SchedulingCommand(type="schedule_unscheduled"),
                working_schedule=working_schedule,
                today=MONDAY,
            ),
            user_id="user-1",
            store=store,
        )

        cancelled = await cancel_session(payload=CancelRequest(session=response.session), store=store)

        assert cancelled.session.status == "cancelled"
        assert not any(t.is_placed for t in await store.list_tasks())

    @pytest.mark.asyncio
    async def test_inverted_working_hours_are_rejected(self, make_store):
        payload = CommandRequest(
            command=SchedulingCommand(type="analyze_schedule"),
            working_schedule=WorkingSchedule(start="18:00", end="08:00"),
            today=MONDAY,
        )
        with pytest.raises(HTTPException) as exc_info:
            await execute_command(payload=payload, user_id="user-1", store=make_store([]))
        assert exc_info.value.status_code == 422


class TestAnalyzeEndpoint:
    @pytest.mark.asyncio
    async def test_analyze(self, task_factory, make_store, working_schedule):
        store = make_store([task_factory.create(estimated_minutes=180)])
        analysis = await analyze_range(
            payload=AnalyzeRequest(
                start_date=MONDAY,
                end_date=MONDAY + timedelta(days=4),
                working_schedule=working_schedule,
                today=MONDAY,
            ),
            store=store,
        )
        assert analysis.total_minutes_needed == 180
        assert analysis.total_minutes_available == 1800
        assert analysis.utilization_percent == 10

    @pytest.mark.asyncio
    async def test_inverted_range(self, make_store):
        with pytest.raises(HTTPException) as exc_info:
            await analyze_range(
                payload=AnalyzeRequest(start_date=MONDAY, end_date=MONDAY - timedelta(days=1)),
                store=make_store([]),
            )
        assert exc_info.value.status_code == 422
        assert "before start date" in exc_info.value.detail


class TestCapacityEndpoints:
    @pytest.mark.asyncio
    async def test_day(self, task_factory, make_store, calendar_block):
        store = make_store([task_factory.placed(MONDAY, "09:00", minutes=120)], calendar_blocks=[calendar_block])
        capacity = await get_day_capacity(day=MONDAY, store=store)
        assert capacity.total_minutes_scheduled == 180
        assert capacity.task_ids == ["task-1"]

    @pytest.mark.asyncio
    async def test_week(self, task_factory, make_store):
        store = make_store([task_factory.placed(MONDAY, "09:00", minutes=240)])
        week = await get_week_capacity(week_start=MONDAY, store=store)
        assert len(week.days) == 7
        assert len(week.heatmap) == 7
        assert week.summary.hours_scheduled == 4.0
        assert week.heatmap[0].label == "Light (50%)"

    @pytest.mark.asyncio
    async def test_gaps_filter_by_minutes(self, task_factory, make_store):
        store = make_store([task_factory.placed(MONDAY, "09:00", minutes=420)])
        gaps = await get_schedule_gaps(start=MONDAY, days=5, minutes=120, store=store)
        assert [g.day for g in gaps] == [MONDAY + timedelta(days=i) for i in range(1, 5)]

    @pytest.mark.asyncio
    async def test_buffer(self, task_factory, make_store):
        tasks = [
            task_factory.create(status="completed", estimated_minutes=60, actual_minutes=90) for _ in range(5)
        ]
        recommendation = await get_buffer_recommendation(store=make_store(tasks))
        assert recommendation.buffer_percent == 35
        assert recommendation.average_overrun_percent == 50.0

    @pytest.mark.asyncio
    async def test_deadline_check_ignores_completed_work(self, task_factory, make_store):
        tasks = [
            task_factory.placed(MONDAY, "09:00", minutes=1800, status="completed"),
            task_factory.placed(MONDAY + timedelta(days=1), "09:00", minutes=600),
        ]
        validation = await check_deadline(
            deadline=MONDAY + timedelta(days=14), minutes=1200, today=MONDAY, store=make_store(tasks)
        )
        assert validation.current_weekly_minutes == 600
        assert validation.required_minutes_per_week == 600
        assert validation.is_realistic
