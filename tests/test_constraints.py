"""Tests for the constraint solver and resource timelines."""

from collections.abc import Iterable
from datetime import date
from typing import Any

import pytest

from cpmsched.calendar import CalendarMapper
from cpmsched.config import SchedulingConfig
from cpmsched.exceptions import InvalidConstraintError
from cpmsched.models import ConflictPattern, DependencyEdge, Severity, TaskNode
from cpmsched.scheduler import (
    Assignment,
    BackwardPassEngine,
    BackwardPassResult,
    ConstraintSolver,
    ForwardPassEngine,
    LevelingAdjustment,
    ResourceTimeline,
    SolverResult,
    ViolationType,
    build_timelines,
)
from tests.conftest import PROJECT_START, abc_chain, task


def backward_for(
    tasks: list[TaskNode],
    deps: Iterable[DependencyEdge] = (),
    deadline: float | None = None,
) -> BackwardPassResult:
    mapper = CalendarMapper(PROJECT_START)
    return BackwardPassEngine().process(ForwardPassEngine(mapper).run(tasks, deps), deadline)


def solve(
    tasks: list[TaskNode],
    deps: Iterable[DependencyEdge] = (),
    deadline: float | None = None,
    **solver_kwargs: Any,
) -> SolverResult:
    solver = ConstraintSolver(CalendarMapper(PROJECT_START), **solver_kwargs)
    return solver.solve(backward_for(tasks, deps, deadline))


def leveling_tasks() -> list[TaskNode]:
    """A(5d, alice) -> D(5d, bob) on the critical path; B(2d, alice) floats."""
    return [
        task("A", 5, assignee_id="alice"),
        task("D", 5, "A", assignee_id="bob"),
        task("B", 2, assignee_id="alice"),
    ]


class TestResourceLeveling:
    """Test delaying non-critical tasks out of critical windows."""

    def test_non_critical_task_delayed_past_critical_window(self) -> None:
        """Test that B is delayed exactly 5 days, within its 8 days of float."""
        result = solve(leveling_tasks())

        assert result.adjustments == [LevelingAdjustment("B", 5, ["A"])]
        b = result.results["B"]
        assert b.earliest_start == 5
        assert b.earliest_finish == 7
        assert b.total_float == 3
        assert b.start_date == date(2025, 1, 13)
        assert b.end_date == date(2025, 1, 14)
        assert not [v for v in result.violations if v.type == ViolationType.RESOURCE]
        assert result.conflicts == []

    def test_critical_tasks_are_never_moved(self) -> None:
        result = solve(leveling_tasks())

        assert result.results["A"].earliest_start == 0
        assert result.results["D"].earliest_start == 5

    def test_delay_beyond_float_is_reported_instead(self) -> None:
        """Test that a task needing more delay than its float keeps its overlap."""
        tasks = [
            task("A", 5, assignee_id="alice"),
            task("B", 2, assignee_id="alice"),
            task("C", 1, "A", "B"),
        ]
        result = solve(tasks)

        assert result.adjustments == []
        assert result.results["B"].earliest_start == 0
        resource = [v for v in result.violations if v.type == ViolationType.RESOURCE]
        assert len(resource) == 1
        assert resource[0].severity == Severity.ERROR
        assert sorted(resource[0].task_ids) == ["A", "B"]
        assert len(result.conflicts) == 1
        conflict = result.conflicts[0]
        assert conflict.pattern == ConflictPattern.RESOURCE_CONFLICT
        assert conflict.severity == Severity.WARNING
        assert conflict.entity_id == "B"

    def test_conflicts_carry_live_and_computed_dates(self) -> None:
        tasks = [
            task("A", 5, assignee_id="alice"),
            task("B", 2, assignee_id="alice", start_date=date(2025, 1, 13), version=4),
            task("C", 1, "A", "B"),
        ]
        conflict = solve(tasks).conflicts[0]

        assert conflict.current_data == {"start_date": date(2025, 1, 13), "due_date": None}
        assert conflict.attempted_data == {
            "start_date": date(2025, 1, 6),
            "due_date": date(2025, 1, 7),
        }
        assert conflict.conflicting_fields == ["start_date", "due_date"]
        assert (conflict.current_version, conflict.attempted_version) == (4, 4)

    def test_leveling_can_be_disabled(self) -> None:
        result = solve(leveling_tasks(), config=SchedulingConfig(level_resources=False))

        assert result.adjustments == []
        assert result.results["B"].earliest_start == 0
        assert any(v.type == ViolationType.RESOURCE for v in result.violations)

    def test_delay_pushes_successors(self) -> None:
        tasks = [
            task("A", 5, assignee_id="alice"),
            task("D", 10, "A"),
            task("B", 2, assignee_id="alice"),
            task("E", 1, "B"),
        ]
        result = solve(tasks)

        assert result.results["B"].earliest_start == 5
        assert result.results["E"].earliest_start == 7

    def test_input_results_not_modified(self) -> None:
        backward = backward_for(leveling_tasks())
        ConstraintSolver(CalendarMapper(PROJECT_START)).solve(backward)

        assert backward.results["B"].earliest_start == 0


class TestConstraintChecks:
    """Test date, capacity and dependency checks."""

    def test_dates_assigned_from_working_days(self) -> None:
        tasks, deps = abc_chain()
        result = solve(tasks, deps)

        assert (result.results["A"].start_date, result.results["A"].end_date) == (
            date(2025, 1, 6),
            date(2025, 1, 7),
        )
        assert (result.results["B"].start_date, result.results["B"].end_date) == (
            date(2025, 1, 8),
            date(2025, 1, 14),
        )
        assert (result.results["C"].start_date, result.results["C"].end_date) == (
            date(2025, 1, 16),
            date(2025, 1, 20),
        )

    def test_mandatory_date_missed(self) -> None:
        tasks, deps = abc_chain()
        result = solve(tasks, deps, mandatory_dates={"C": date(2025, 1, 17)})

        errors = [v for v in result.violations if v.severity == Severity.ERROR]
        assert len(errors) == 1
        assert errors[0].type == ViolationType.DATE
        assert errors[0].task_ids == ["C"]
        assert errors[0].suggested_fix == "Reduce task duration or adjust dependencies"

    def test_mandatory_date_met(self) -> None:
        tasks, deps = abc_chain()
        result = solve(tasks, deps, mandatory_dates={"C": date(2025, 1, 20)})

        assert result.violations == []

    def test_mandatory_date_for_unknown_task(self) -> None:
        tasks, deps = abc_chain()

        with pytest.raises(InvalidConstraintError):
            solve(tasks, deps, mandatory_dates={"Z": date(2025, 1, 20)})

    def test_capacity_out_of_range(self) -> None:
        with pytest.raises(InvalidConstraintError):
            ConstraintSolver(CalendarMapper(PROJECT_START), capacities={"alice": 150})

    def test_partial_capacity_overload(self) -> None:
        result = solve([task("A", 2, assignee_id="alice")], capacities={"alice": 50})

        assert [v.type for v in result.violations] == [ViolationType.RESOURCE]

    def test_partial_allocations_fit(self) -> None:
        tasks = [
            task("A", 2, assignee_id="alice", allocation=50),
            task("B", 2, assignee_id="alice", allocation=50),
        ]
        result = solve(tasks)

        assert result.violations == []

    def test_completed_tasks_do_not_use_capacity(self) -> None:
        tasks = [
            task("A", 2, assignee_id="alice", is_completed=True),
            task("B", 2, assignee_id="alice"),
        ]
        result = solve(tasks)

        assert not any(v.type == ViolationType.RESOURCE for v in result.violations)

    def test_fractional_start_drift_warning(self) -> None:
        result = solve([task("A", 1.5), task("B", 1, "A")])

        drift = [v for v in result.violations if v.type == ViolationType.DATE]
        assert len(drift) == 1
        assert drift[0].severity == Severity.WARNING
        assert drift[0].task_ids == ["B"]

    def test_start_before_predecessor_is_reported(self) -> None:
        tasks, deps = abc_chain()
        backward = backward_for(tasks, deps)
        backward.results["B"].earliest_start = 1.0
        backward.results["B"].earliest_finish = 6.0

        result = ConstraintSolver(CalendarMapper(PROJECT_START)).solve(backward)

        dependency = [v for v in result.violations if v.type == ViolationType.DEPENDENCY]
        assert len(dependency) == 1
        assert dependency[0].task_ids == ["A", "B"]
        assert [c.pattern for c in result.conflicts] == [ConflictPattern.DEPENDENCY_CONFLICT]

    def test_infeasible_deadline_conflicts(self) -> None:
        tasks, deps = abc_chain()
        result = solve(tasks, deps, deadline=9, project_id="p1")

        schedule_conflicts = [
            c for c in result.conflicts if c.pattern == ConflictPattern.SCHEDULE_CONFLICT
        ]
        assert [c.entity_id for c in schedule_conflicts] == ["A", "B", "C"]
        assert all(c.is_error and c.project_id == "p1" for c in schedule_conflicts)


class TestSuggestions:
    """Test optimization suggestions."""

    def test_underutilized_and_critical_ratio(self) -> None:
        result = solve(leveling_tasks())

        assert result.suggestions == [
            "Consider redistributing work from 1 underutilized resources (bob)",
            "High critical path ratio - consider parallel execution or resource addition",
        ]

    def test_high_float_tasks(self) -> None:
        result = solve([task("A", 10), task("B", 1)])

        assert "1 tasks have significant float - opportunity for resource reallocation" in (
            result.suggestions
        )


class TestResourceTimeline:
    """Test per-assignee allocation tracking."""

    def make_timeline(self) -> ResourceTimeline:
        timeline = ResourceTimeline("alice")
        timeline.add(Assignment("B", 3, 8))
        timeline.add(Assignment("A", 0, 5))
        timeline.add(Assignment("C", 6, 7, 50))
        return timeline

    def test_assignments_sorted_by_start(self) -> None:
        timeline = self.make_timeline()

        assert [a.task_id for a in timeline.assignments] == ["A", "B", "C"]

    def test_overloads(self) -> None:
        overloads = self.make_timeline().overloads()

        assert [(o.start, o.end, o.total_allocation, o.task_ids) for o in overloads] == [
            (3, 5, 200, ["A", "B"]),
            (6, 7, 150, ["B", "C"]),
        ]
        assert overloads[0].description == "200% allocated over units 3-5 (A, B)"

    def test_overlapping(self) -> None:
        timeline = self.make_timeline()

        assert [a.task_id for a in timeline.overlapping(4, 7, exclude="A")] == ["B", "C"]
        assert timeline.overlapping(8, 10) == []

    def test_remove(self) -> None:
        timeline = self.make_timeline()

        removed = timeline.remove("B")

        assert removed == Assignment("B", 3, 8)
        assert timeline.overloads() == []
        assert timeline.remove("missing") is None

    def test_utilization(self) -> None:
        timeline = self.make_timeline()
        timeline.remove("B")

        assert timeline.allocated_days() == 5.5
        assert timeline.utilization(10) == 0.55

    def test_build_timelines(self) -> None:
        timelines = build_timelines(
            {
                "A": ("alice", 0, 2, 100.0),
                "B": ("bob", 0, 3, 50.0),
                "M": ("alice", 4, 4, 100.0),  # Milestone occupies nothing
            },
            {"bob": 50},
        )

        assert [a.task_id for a in timelines["alice"].assignments] == ["A"]
        assert timelines["bob"].capacity == 50
        assert timelines["bob"].overloads() == []
