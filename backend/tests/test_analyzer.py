"""Tests for the schedule analyzer."""

from datetime import timedelta

from conftest import MONDAY
from taskpilot.schemas.schedule import SchedulerConfig
from taskpilot.services.analyzer import analyze_schedule

FRIDAY = MONDAY + timedelta(days=4)
WEDNESDAY = MONDAY + timedelta(days=2)


def _config(**overrides):
    return SchedulerConfig.for_range(MONDAY, FRIDAY, **overrides)


class TestCapacityTotals:
    def test_empty_range(self, working_schedule):
        analysis = analyze_schedule([], _config(), working_schedule)
        assert analysis.total_minutes_available == 1800
        assert analysis.total_minutes_needed == 0
        assert analysis.utilization_percent == 0
        assert analysis.recommendations == ["Nothing left to schedule in this range."]

    def test_only_unplaced_open_tasks_are_needed(self, task_factory, working_schedule):
        tasks = [
            task_factory.create(estimated_minutes=90),
            task_factory.create(estimated_minutes=60, status="completed"),
            task_factory.placed(MONDAY, "09:00", minutes=120),
        ]
        analysis = analyze_schedule(tasks, _config(), working_schedule)
        assert analysis.total_tasks == 3
        assert analysis.schedulable_tasks == 2
        assert analysis.total_minutes_needed == 90

    def test_task_placed_outside_the_range_is_still_needed(self, task_factory, working_schedule):
        stale = task_factory.placed(MONDAY - timedelta(days=7), "09:00", minutes=120)
        analysis = analyze_schedule([stale], _config(), working_schedule)
        assert analysis.total_minutes_needed == 120
        assert analysis.utilization_percent == 7

    def test_overload_warning_and_recommendation(self, task_factory, working_schedule):
        tasks = [task_factory.create(estimated_minutes=1000), task_factory.create(estimated_minutes=1000)]
        analysis = analyze_schedule(tasks, _config(), working_schedule)
        assert analysis.utilization_percent == 111
        assert "Scheduled load exceeds available capacity by 11%." in analysis.warnings
        assert any("'intense'" in r for r in analysis.recommendations)

    def test_tight_warning(self, task_factory, working_schedule):
        analysis = analyze_schedule([task_factory.create(estimated_minutes=1700)], _config(), working_schedule)
        assert analysis.utilization_percent == 94
        assert analysis.warnings == ["Schedule is tight: 94% of available capacity is needed."]

    def test_low_utilization_suggests_lighter_mode(self, task_factory, working_schedule):
        analysis = analyze_schedule([task_factory.create(estimated_minutes=60)], _config(), working_schedule)
        assert analysis.utilization_percent == 3
        assert any("'relaxed'" in r for r in analysis.recommendations)

    def test_relaxed_mode_has_no_lighter_suggestion(self, task_factory, working_schedule):
        analysis = analyze_schedule(
            [task_factory.create(estimated_minutes=60)], _config(intensity_mode="relaxed"), working_schedule
        )
        assert analysis.recommendations == []

    def test_inverted_range_has_no_capacity(self, task_factory, working_schedule):
        config = SchedulerConfig.for_range(FRIDAY, MONDAY)
        analysis = analyze_schedule([task_factory.create()], config, working_schedule)
        assert analysis.total_minutes_available == 0
        assert analysis.utilization_percent == 0


class TestDeadlines:
    def test_feasible_task_has_slack(self, task_factory, working_schedule):
        task = task_factory.create(estimated_minutes=300, due_date=WEDNESDAY)
        analysis = analyze_schedule([task], _config(), working_schedule)
        [info] = analysis.deadline_tasks
        # Two buffer days leave only Monday's 360 minutes
        assert info.can_schedule
        assert info.slack_minutes == 60
        assert info.days_until_due == 2

    def test_greedy_consumption_puts_later_task_at_risk(self, task_factory, working_schedule):
        first = task_factory.create(title="Report", estimated_minutes=300, due_date=WEDNESDAY)
        second = task_factory.create(title="Slides", estimated_minutes=120, due_date=WEDNESDAY)
        analysis = analyze_schedule([first, second], _config(), working_schedule)

        assert [i.can_schedule for i in analysis.deadline_tasks] == [True, False]
        assert analysis.deadline_tasks[1].slack_minutes == -60
        assert [i.task.id for i in analysis.at_risk_tasks] == [second.id]
        assert (
            f'"Slides" cannot be completed before its deadline ({WEDNESDAY.isoformat()}) '
            "with the remaining capacity." in analysis.warnings
        )
        assert "Enable overtime or extend the date range to meet the at-risk deadlines." in analysis.recommendations

    def test_placed_work_reduces_free_minutes(self, task_factory, working_schedule):
        placed = task_factory.placed(MONDAY, "09:00", minutes=240)
        task = task_factory.create(estimated_minutes=180, due_date=WEDNESDAY)
        analysis = analyze_schedule([placed, task], _config(), working_schedule)
        [info] = analysis.deadline_tasks
        assert not info.can_schedule

    def test_habits_reduce_free_minutes(self, task_factory, working_schedule, habit):
        task = task_factory.create(estimated_minutes=360, due_date=WEDNESDAY)
        assert analyze_schedule([task], _config(), working_schedule).deadline_tasks[0].can_schedule
        analysis = analyze_schedule([task], _config(), working_schedule, habits=[habit])
        assert not analysis.deadline_tasks[0].can_schedule

    def test_placed_task_feasible_when_before_due(self, task_factory, working_schedule):
        task = task_factory.placed(MONDAY + timedelta(days=1), "09:00", due_date=WEDNESDAY)
        [info] = analyze_schedule([task], _config(), working_schedule).deadline_tasks
        assert info.can_schedule

    def test_zero_slack_warning_under_strict_deadlines(self, task_factory, working_schedule):
        task = task_factory.create(title="Audit", estimated_minutes=360, due_date=WEDNESDAY)
        analysis = analyze_schedule([task], _config(strict_deadlines=True), working_schedule)
        assert '"Audit" has no slack left before its deadline.' in analysis.warnings

    def test_overdue_tasks_are_counted(self, task_factory, working_schedule):
        task = task_factory.create(due_date=MONDAY - timedelta(days=3))
        analysis = analyze_schedule([task], _config(), working_schedule)
        assert "1 task(s) are already overdue." in analysis.warnings
        assert analysis.deadline_tasks == []

    def test_today_moves_the_window(self, task_factory, working_schedule):
        task = task_factory.create(estimated_minutes=300, due_date=FRIDAY)
        analysis = analyze_schedule([task], _config(), working_schedule, today=WEDNESDAY)
        [info] = analysis.deadline_tasks
        # Window is Wednesday only: due Friday minus two buffer days
        assert info.slack_minutes == 60
        assert info.days_until_due == 2


class TestFocusProjects:
    def test_focus_recommendation(self, task_factory, working_schedule):
        tasks = [
            task_factory.create(project_id="p1"),
            task_factory.create(project_id="p1"),
            task_factory.create(project_id="p2"),
        ]
        analysis = analyze_schedule(tasks, _config(focus_projects=["p1"]), working_schedule)
        assert "2 task(s) belong to focus projects and get priority within each day." in analysis.recommendations
