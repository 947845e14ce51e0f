"""Tests for the calculation pipeline."""

from datetime import date, datetime, timezone

import pytest

from cpmsched.config import CalendarConfig, SchedulingConfig
from cpmsched.exceptions import CircularDependencyError, InvalidConstraintError
from cpmsched.scheduler import calculate, run
from tests.conftest import PROJECT_START, abc_chain, edge, task


class TestCalculate:
    """Test the calculate() contract."""

    def test_chain_schedule(self) -> None:
        tasks, deps = abc_chain()
        schedule = calculate(tasks, deps, project_start=PROJECT_START, project_id="p1")

        assert schedule.project_id == "p1"
        assert schedule.algorithm == "cpm"
        assert schedule.project_finish_units == 11
        assert schedule.project_finish_date == date(2025, 1, 20)
        assert schedule.critical_path == ["A", "B", "C"]
        assert [r.task_id for r in schedule.results] == ["A", "B", "C"]
        assert schedule.conflicts == []
        assert not schedule.applied
        assert not schedule.has_errors

    def test_results_in_topological_order(self) -> None:
        tasks = [task("C", 1), task("B", 1), task("A", 1)]
        schedule = calculate(
            tasks, [edge("A", "B"), edge("B", "C")], project_start=PROJECT_START
        )

        assert [r.task_id for r in schedule.results] == ["A", "B", "C"]

    def test_same_input_same_id(self) -> None:
        """Test that recalculating an unchanged snapshot is idempotent."""
        tasks, deps = abc_chain()
        first = calculate(tasks, deps, project_start=PROJECT_START)
        second = calculate(tasks, deps, project_start=PROJECT_START)

        assert first.id == second.id
        assert [r.to_dict() for r in first.results] == [r.to_dict() for r in second.results]

    def test_changed_input_changes_id(self) -> None:
        tasks, deps = abc_chain()
        first = calculate(tasks, deps, project_start=PROJECT_START)
        tasks[1].duration = 6
        second = calculate(tasks, deps, project_start=PROJECT_START)

        assert first.id != second.id
        assert second.project_finish_units == 12

    def test_deadline_date(self) -> None:
        """Test that a Friday deadline two weeks out leaves 4 days of float."""
        tasks, deps = abc_chain()
        schedule = calculate(tasks, deps, deadline=date(2025, 1, 24), project_start=PROJECT_START)

        assert schedule.deadline == date(2025, 1, 24)
        assert all(r.total_float == 4 for r in schedule.results)
        assert schedule.critical_path == []

    def test_missed_deadline_is_reported_not_raised(self) -> None:
        tasks, deps = abc_chain()
        schedule = calculate(tasks, deps, deadline=date(2025, 1, 16), project_start=PROJECT_START)

        assert schedule.has_errors
        assert {c.entity_id for c in schedule.conflicts} == {"A", "B", "C"}

    def test_holidays_shift_dates(self) -> None:
        tasks, deps = abc_chain()
        calendar = CalendarConfig(holidays=[date(2025, 1, 13)])
        schedule = calculate(tasks, deps, calendar, project_start=PROJECT_START)

        assert schedule.project_finish_units == 11
        assert schedule.project_finish_date == date(2025, 1, 21)

    def test_calculated_at_is_utc(self) -> None:
        tasks, deps = abc_chain()
        stamp = datetime(2025, 1, 1, 12, tzinfo=timezone.utc)
        calculation = run(tasks, deps, project_start=PROJECT_START, calculated_at=stamp)

        assert calculation.schedule.calculated_at == stamp
        assert calculation.backward.critical_path == ["A", "B", "C"]

    def test_algorithm_tag_from_config(self) -> None:
        tasks, deps = abc_chain()
        schedule = calculate(
            tasks,
            deps,
            project_start=PROJECT_START,
            config=SchedulingConfig(algorithm="cpm-leveled"),
        )

        assert schedule.algorithm == "cpm-leveled"


class TestCalculateErrors:
    """Test structural problems that are raised."""

    def test_cycle_raises(self) -> None:
        with pytest.raises(CircularDependencyError):
            calculate(
                [task("A"), task("B")],
                [edge("A", "B"), edge("B", "A")],
                project_start=PROJECT_START,
            )

    def test_bad_constraints_rejected_before_passes(self) -> None:
        """Test that a bad capacity is reported even when the graph is also broken."""
        with pytest.raises(InvalidConstraintError):
            calculate(
                [task("A"), task("B")],
                [edge("A", "B"), edge("B", "A")],
                project_start=PROJECT_START,
                capacities={"alice": 200},
            )
