"""Tests for the greedy scheduler, the working calendar and schedule validation."""

from datetime import date, datetime, timedelta

import pytest

from masterplan.data_loader import SAMPLE_ROWS
from masterplan.errors import MissingDependencyError
from masterplan.process_graph import build_production_plan
from masterplan.scheduler import (
    WorkingCalendar,
    schedule_plan,
    schedule_tasks,
    summarize_schedule,
)
from masterplan.validator import validate_schedule


@pytest.fixture
def calendar():
    return WorkingCalendar()


class TestWorkingCalendar:
    """Snapping to working instants."""

    def test_inside_hours_unchanged(self, calendar):
        moment = datetime(2025, 1, 6, 10, 30)
        assert calendar.snap(moment) == moment

    def test_before_opening(self, calendar):
        assert calendar.snap(datetime(2025, 1, 6, 6, 15)) == datetime(2025, 1, 6, 8, 0)

    def test_at_closing_moves_to_next_day(self, calendar):
        assert calendar.snap(datetime(2025, 1, 6, 18, 0)) == datetime(2025, 1, 7, 8, 0)

    def test_end_of_day_moves_to_next_day(self, calendar):
        assert calendar.snap(datetime(2025, 1, 6, 23, 59, 59)) == datetime(2025, 1, 7, 8, 0)

    def test_friday_evening_moves_to_monday(self, calendar):
        assert calendar.snap(datetime(2025, 1, 10, 19, 0)) == datetime(2025, 1, 13, 8, 0)

    def test_saturday_moves_to_monday(self, calendar):
        assert calendar.snap(datetime(2025, 1, 11, 10, 0)) == datetime(2025, 1, 13, 10, 0)

    def test_sunday_moves_to_monday(self, calendar):
        assert calendar.snap(datetime(2025, 1, 12, 7, 0)) == datetime(2025, 1, 13, 8, 0)

    def test_holiday_is_skipped(self):
        calendar = WorkingCalendar(holidays=frozenset({date(2025, 1, 13)}))
        assert calendar.snap(datetime(2025, 1, 11, 9, 0)) == datetime(2025, 1, 14, 9, 0)

    def test_from_constants(self, constants):
        calendar = WorkingCalendar.from_constants(constants)
        assert calendar.start_hour == 8
        assert calendar.end_hour == 18

    def test_end_of_day(self, calendar):
        assert calendar.end_of_day(datetime(2025, 1, 6, 8, 0)) == datetime(2025, 1, 6, 23, 59, 59)


class TestScheduleTasks:
    """Ordering, dependencies and resource availability."""

    def test_chain_runs_on_consecutive_days(self, explicit_row, constants, today, epoch, calendar):
        plan = build_production_plan([explicit_row], constants, today=today)
        result = schedule_tasks(plan.tasks, epoch, calendar)

        print_task, die_cut, assembly = plan.graphs[0].tasks
        assert print_task.start == epoch
        assert print_task.end == datetime(2025, 1, 6, 23, 59, 59)
        assert die_cut.start == datetime(2025, 1, 7, 8, 0)
        assert assembly.start == datetime(2025, 1, 8, 8, 0)
        assert result.warnings == []
        assert result.timelines.available_at("assembly", "MOEX") == datetime(2025, 1, 8, 23, 59, 59)

    def test_high_priority_first(self, constants, today, epoch, calendar):
        rows = [
            {"PO": "LATE", "F PRD": (today + timedelta(days=30)).isoformat()},
            {"PO": "SOON", "F PRD": (today + timedelta(days=1)).isoformat()},
        ]
        plan = build_production_plan(rows, constants, today=today)
        result = schedule_tasks(plan.tasks, epoch, calendar)
        assert result.tasks[0].item.order_id == "SOON"
        # Both items start with print on IMPRESION_01: the urgent one gets the first slot
        soon_print = plan.graphs[1].tasks[0]
        late_print = plan.graphs[0].tasks[0]
        assert soon_print.start == epoch
        assert late_print.start == datetime(2025, 1, 7, 8, 0)

    def test_due_date_breaks_ties(self, constants, today, epoch, calendar):
        rows = [
            {"PO": "B", "F PRD": (today + timedelta(days=20)).isoformat()},
            {"PO": "A", "F PRD": (today + timedelta(days=10)).isoformat()},
            {"PO": "C"},
        ]
        plan = build_production_plan(rows, constants, today=today)
        result = schedule_tasks(plan.tasks, epoch, calendar)
        order = []
        for task in result.tasks:
            if task.item.order_id not in order:
                order.append(task.item.order_id)
        # C has no due date: medium priority, ahead of the two low-priority items
        assert order == ["C", "A", "B"]

    def test_epoch_on_weekend(self, explicit_row, constants, today, calendar):
        plan = build_production_plan([explicit_row], constants, today=today)
        schedule_tasks(plan.tasks, datetime(2025, 1, 11, 12, 0), calendar)
        assert plan.graphs[0].tasks[0].start == datetime(2025, 1, 13, 12, 0)

    def test_missing_dependency_tolerated(self, explicit_row, constants, today, epoch, calendar):
        plan = build_production_plan([explicit_row], constants, today=today)
        orphan = plan.graphs[0].tasks[1:]
        result = schedule_tasks(orphan, epoch, calendar)
        assert len(result.tasks) == 2
        # die_cut and assembly both reference the absent print task
        assert [w.task_id for w in result.warnings] == [t.task_id for t in orphan]
        assert orphan[0].start == epoch
        assert orphan[1].start == datetime(2025, 1, 7, 8, 0)

    def test_missing_dependency_strict(self, explicit_row, constants, today, epoch, calendar):
        plan = build_production_plan([explicit_row], constants, today=today)
        with pytest.raises(MissingDependencyError) as excinfo:
            schedule_tasks(plan.graphs[0].tasks[1:], epoch, calendar, strict=True)
        assert excinfo.value.missing == [plan.graphs[0].tasks[0].task_id]

    def test_default_epoch_is_now(self, explicit_row, constants, today):
        plan = build_production_plan([explicit_row], constants, today=today)
        before = datetime.now()
        result = schedule_tasks(plan.tasks)
        assert result.epoch >= before
        assert all(t.start >= before for t in result.tasks)


class TestScheduleProperties:
    """Whole-plan properties checked through validate_schedule."""

    def test_sample_plan_is_valid(self, constants, epoch):
        plan = build_production_plan(SAMPLE_ROWS, constants, today=date(2025, 1, 6))
        result = schedule_plan(plan, epoch=epoch, constants=constants)
        assert validate_schedule(result.tasks, WorkingCalendar.from_constants(constants)) == []

    def test_many_items_are_valid(self, constants, today, epoch):
        rows = [
            {
                "PO": str(1000 + n),
                "POS": "10",
                "MATERIAL": ["PP", "COUCHE", "CMPC", "KRAFT"][n % 4],
                "F PRD": (today + timedelta(days=n % 10)).isoformat(),
                "CTD PEDIDO": str(1000 * (n + 1)),
            }
            for n in range(25)
        ]
        plan = build_production_plan(rows, constants, today=today)
        result = schedule_plan(plan, epoch=epoch, constants=constants)
        assert validate_schedule(result.tasks) == []
        for task in result.tasks:
            assert task.start.weekday() < 5
            assert 8 <= task.start.hour < 18

    def test_validator_reports_violations(self, explicit_row, constants, today, epoch):
        plan = build_production_plan([explicit_row], constants, today=today)
        schedule_plan(plan, epoch=epoch, constants=constants)
        print_task, die_cut, assembly = plan.graphs[0].tasks
        die_cut.start = datetime(2025, 1, 6, 20, 0)
        violations = validate_schedule(plan.tasks)
        assert any("outside working hours" in v for v in violations)
        assert any("before dependency" in v for v in violations)

    def test_validator_reports_unscheduled(self, explicit_row, constants, today):
        plan = build_production_plan([explicit_row], constants, today=today)
        violations = validate_schedule(plan.tasks)
        assert len([v for v in violations if "not scheduled" in v]) == 3


class TestSummary:
    """Schedule summary."""

    def test_summary(self, constants, epoch):
        plan = build_production_plan(SAMPLE_ROWS, constants, today=date(2025, 1, 6))
        result = schedule_plan(plan, epoch=epoch, constants=constants)
        summary = summarize_schedule(result)
        assert summary["total_tasks"] == len(plan.tasks)
        assert summary["tasks_by_plant"]["assembly"] == 3
        assert summary["first_start"] == epoch.isoformat()
        assert summary["horizon_end"] == result.horizon_end.isoformat()
        assert summary["warnings"] == 0
