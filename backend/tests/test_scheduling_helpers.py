"""Tests for shared scheduling helpers."""

from datetime import date, timedelta

import pytest

from conftest import MONDAY, at
from taskpilot.schemas.schedule import SchedulingPreferences, TimeWindow, WorkingSchedule
from taskpilot.schemas.task import HabitSnapshot
from taskpilot.services.scheduling_helpers import (
    add_months,
    available_minutes,
    busy_intervals_for_day,
    capacity_fraction,
    day_budget,
    first_fit,
    format_hhmm,
    habit_block,
    is_working_day,
    iter_days,
    lunch_window,
    merge_intervals,
    overlap_minutes,
    overtime_built_in,
    overtime_minutes,
    parse_hhmm,
    scheduled_minutes,
)


class TestTimeOfDay:
    def test_parse_and_format(self):
        assert parse_hhmm("09:30") == 570
        assert format_hhmm(570) == "09:30"
        assert format_hhmm(0) == "00:00"

    def test_iter_days_inclusive(self):
        days = list(iter_days(MONDAY, MONDAY + timedelta(days=2)))
        assert days == [MONDAY, MONDAY + timedelta(days=1), MONDAY + timedelta(days=2)]

    def test_iter_days_inverted_is_empty(self):
        assert list(iter_days(MONDAY, MONDAY - timedelta(days=1))) == []

    def test_add_months_clamps_day(self):
        assert add_months(date(2026, 1, 31), 1) == date(2026, 2, 28)
        assert add_months(date(2026, 11, 15), 3) == date(2027, 2, 15)


class TestWorkingDays:
    def test_weekend_is_not_working(self, working_schedule):
        assert is_working_day(MONDAY, working_schedule)
        assert not is_working_day(MONDAY + timedelta(days=5), working_schedule)

    def test_holiday_is_not_working(self):
        schedule = WorkingSchedule(holidays=[MONDAY])
        assert not is_working_day(MONDAY, schedule)
        assert available_minutes(MONDAY, schedule) == 0

    def test_extra_holidays_argument(self, working_schedule):
        assert available_minutes(MONDAY, working_schedule, holidays=[MONDAY]) == 0

    def test_available_minutes_subtracts_lunch(self):
        schedule = WorkingSchedule(lunch_break=TimeWindow(start="12:00", end="13:00"))
        assert available_minutes(MONDAY, schedule) == 420

    def test_lunch_outside_hours_is_ignored(self):
        schedule = WorkingSchedule(lunch_break=TimeWindow(start="18:00", end="19:00"))
        assert lunch_window(schedule) is None
        assert available_minutes(MONDAY, schedule) == 480

    def test_inverted_hours_give_zero(self):
        schedule = WorkingSchedule(start="17:00", end="09:00")
        assert available_minutes(MONDAY, schedule) == 0


class TestBudgets:
    @pytest.mark.parametrize(
        "mode, expected",
        [("relaxed", 288), ("balanced", 360), ("intense", 432), ("deadline-driven", 480)],
    )
    def test_intensity_fraction(self, working_schedule, mode, expected):
        prefs = SchedulingPreferences(intensity_mode=mode)
        assert day_budget(MONDAY, working_schedule, prefs) == expected

    def test_unknown_mode_falls_back_to_balanced(self):
        assert capacity_fraction("unknown") == 0.75

    def test_max_hours_per_day_caps_budget(self, working_schedule):
        prefs = SchedulingPreferences(intensity_mode="deadline-driven", max_hours_per_day=4)
        assert day_budget(MONDAY, working_schedule, prefs) == 240

    def test_overtime_requires_permission(self):
        assert overtime_minutes(SchedulingPreferences(max_overtime_hours=3)) == 0
        assert overtime_minutes(SchedulingPreferences(allow_overtime=True, max_overtime_hours=1.5)) == 90

    def test_overtime_built_in_only_when_deadline_driven(self):
        assert not overtime_built_in(SchedulingPreferences(allow_overtime=True))
        assert overtime_built_in(SchedulingPreferences(allow_overtime=True, intensity_mode="deadline-driven"))


class TestIntervals:
    def test_merge_coalesces_touching(self):
        assert merge_intervals([(60, 120), (0, 60), (200, 180), (150, 170)]) == [(0, 120), (150, 170)]

    def test_overlap_minutes_clips_to_window(self):
        assert overlap_minutes([(480, 600), (550, 700)], 540, 1020) == 160

    def test_first_fit_skips_busy(self):
        assert first_fit([(540, 600)], 540, 1020, 60) == 600

    def test_first_fit_uses_gap_between_blocks(self):
        assert first_fit([(540, 600), (660, 720)], 540, 1020, 60) == 600

    def test_first_fit_none_when_full(self):
        assert first_fit([(540, 1000)], 540, 1020, 30) is None

    def test_first_fit_rejects_non_positive_length(self):
        assert first_fit([], 540, 1020, 0) is None


class TestTaskAndHabitBlocks:
    def test_scheduled_minutes_defaults_to_estimate(self, task_factory):
        task = task_factory.create(estimated_minutes=45, scheduled_start=at(MONDAY, "10:00"))
        assert scheduled_minutes(task) == 45

    def test_scheduled_minutes_uses_interval(self, task_factory):
        task = task_factory.placed(MONDAY, "10:00", minutes=90)
        assert scheduled_minutes(task) == 90

    def test_weekly_habit_applies_on_listed_days(self):
        habit = HabitSnapshot(
            id="h", title="Gym", frequency="weekly", days_of_week=[2], scheduled_time="07:00", estimated_minutes=60
        )
        assert habit_block(habit, MONDAY) is None
        block = habit_block(habit, MONDAY + timedelta(days=2))
        assert block is not None
        assert block.minutes == 60

    def test_habit_without_time_blocks_nothing(self):
        habit = HabitSnapshot(id="h", title="Read")
        assert habit_block(habit, MONDAY) is None

    def test_busy_intervals_exclude_moving_tasks(self, task_factory, habit, calendar_block):
        keep = task_factory.placed(MONDAY, "10:00")
        moving = task_factory.placed(MONDAY, "11:00")
        busy = busy_intervals_for_day(MONDAY, [keep, moving], [habit], [calendar_block], exclude_ids={moving.id})
        assert sorted(busy) == [(540, 570), (600, 660), (840, 900)]
