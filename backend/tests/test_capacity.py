"""Tests for the capacity calculator."""

import json
import math
from datetime import timedelta

import pytest

from conftest import MONDAY, at
from taskpilot.schemas.schedule import WorkingSchedule
from taskpilot.schemas.task import BlockedInterval
from taskpilot.services.capacity import (
    calculate_day_capacity,
    calculate_range_capacity,
    calculate_week_capacity,
    capacity_status,
    utilization_percentage,
)


class TestCapacityStatus:
    @pytest.mark.parametrize(
        "utilization, expected",
        [
            (0, "available"),
            (0.1, "comfortable"),
            (70, "comfortable"),
            (75, "busy"),
            (90, "busy"),
            (95, "full"),
            (100, "full"),
            (100.5, "overbooked"),
            (math.inf, "overbooked"),
        ],
    )
    def test_bands(self, utilization, expected):
        assert capacity_status(utilization) == expected

    def test_utilization_edge_cases(self):
        assert utilization_percentage(0, 0) == 0.0
        assert utilization_percentage(60, 0) == math.inf
        assert utilization_percentage(240, 480) == 50.0


class TestDayCapacity:
    def test_empty_working_day(self, working_schedule):
        cap = calculate_day_capacity(MONDAY, [], working_schedule)
        assert cap.available_minutes == 480
        assert cap.total_minutes_scheduled == 0
        assert cap.status == "available"
        assert cap.date_string == "2026-10-19"
        assert not cap.is_weekend

    def test_counts_tasks_starting_that_day(self, task_factory, working_schedule):
        tasks = [
            task_factory.placed(MONDAY, "09:00", minutes=120),
            task_factory.placed(MONDAY, "11:00", minutes=120),
            task_factory.placed(MONDAY, "13:00", minutes=120),
            task_factory.placed(MONDAY + timedelta(days=1), "09:00", minutes=120),
            task_factory.create(),
        ]
        cap = calculate_day_capacity(MONDAY, tasks, working_schedule)
        assert cap.total_minutes_scheduled == 360
        assert cap.utilization_percentage == 75.0
        assert cap.status == "busy"
        assert cap.task_ids == ["task-1", "task-2", "task-3"]
        assert cap.free_minutes == 120

    def test_weekend_booking_is_overbooked(self, task_factory, working_schedule):
        saturday = MONDAY + timedelta(days=5)
        cap = calculate_day_capacity(saturday, [task_factory.placed(saturday, "10:00")], working_schedule)
        assert cap.is_weekend
        assert cap.available_minutes == 0
        assert cap.utilization_percentage == math.inf
        assert cap.status == "overbooked"

    def test_infinite_utilization_serializes_as_null(self, task_factory, working_schedule):
        saturday = MONDAY + timedelta(days=5)
        cap = calculate_day_capacity(saturday, [task_factory.placed(saturday, "10:00")], working_schedule)
        assert json.loads(cap.model_dump_json())["utilization_percentage"] is None

    def test_holiday_flag(self, working_schedule):
        cap = calculate_day_capacity(MONDAY, [], working_schedule, holidays=[MONDAY])
        assert cap.is_holiday
        assert cap.available_minutes == 0

    def test_blocked_intervals_add_load(self, working_schedule):
        meeting = BlockedInterval(start=at(MONDAY, "14:00"), end=at(MONDAY, "16:00"))
        cap = calculate_day_capacity(MONDAY, [], working_schedule, blocked=[meeting])
        assert cap.total_minutes_scheduled == 120

    def test_adding_a_task_never_lowers_utilization(self, task_factory, working_schedule):
        tasks = [task_factory.placed(MONDAY, "09:00")]
        before = calculate_day_capacity(MONDAY, tasks, working_schedule).utilization_percentage
        tasks.append(task_factory.placed(MONDAY, "10:00", minutes=30))
        after = calculate_day_capacity(MONDAY, tasks, working_schedule).utilization_percentage
        assert after >= before


class TestWeekAndRange:
    def test_week_has_seven_days(self, working_schedule):
        week = calculate_week_capacity(MONDAY, [], working_schedule)
        assert [d.day for d in week] == [MONDAY + timedelta(days=i) for i in range(7)]
        assert sum(d.is_weekend for d in week) == 2

    def test_range_aggregates(self, task_factory, working_schedule):
        tasks = [
            task_factory.placed(MONDAY, "09:00", minutes=480),
            task_factory.placed(MONDAY + timedelta(days=1), "09:00", minutes=540),
        ]
        summary = calculate_range_capacity(MONDAY, MONDAY + timedelta(days=4), tasks, working_schedule)
        assert len(summary.days) == 5
        assert summary.total_hours_available == 40.0
        assert summary.total_hours_scheduled == 17.0
        assert summary.overbooked_days == 1

    def test_inverted_range_is_empty(self, working_schedule):
        summary = calculate_range_capacity(MONDAY, MONDAY - timedelta(days=1), [], working_schedule)
        assert summary.days == []
        assert summary.total_hours_available == 0

    def test_custom_working_days(self, task_factory):
        schedule = WorkingSchedule(working_days=[5, 6])
        week = calculate_week_capacity(MONDAY, [], schedule)
        assert [d.available_minutes for d in week] == [0, 0, 0, 0, 0, 480, 480]
