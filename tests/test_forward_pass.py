"""Tests for the forward pass and the task graph."""

from datetime import date

import pytest

from cpmsched.calendar import CalendarMapper
from cpmsched.exceptions import (
    CircularDependencyError,
    InvalidConstraintError,
    MissingReferenceError,
)
from cpmsched.models import DependencyType
from cpmsched.scheduler import ForwardPassEngine, TaskGraph, find_cycle, find_path, required_start
from tests.conftest import PROJECT_START, abc_chain, edge, task


class TestDependencyFormulas:
    """Test the per-type earliest-start formulas."""

    @pytest.mark.parametrize(
        ("dep_type", "expected"),
        [
            (DependencyType.FS, 7.0),  # finish 6 + lag 1
            (DependencyType.SS, 3.0),  # start 2 + lag 1
            (DependencyType.FF, 4.0),  # finish 6 - span 3 + lag 1
            (DependencyType.SF, 0.0),  # start 2 - span 3 + lag 1
        ],
    )
    def test_required_start(self, dep_type: DependencyType, expected: float) -> None:
        assert required_start(dep_type, 1.0, 2.0, 6.0, 3.0) == expected


class TestForwardPass:
    """Test earliest start and finish computation."""

    def test_chain_with_lag(self) -> None:
        """Test A(2d) -> B(5d) -> C(3d, lag 1) finishes at unit 11."""
        tasks, deps = abc_chain()
        result = ForwardPassEngine().run(tasks, deps)

        assert result.times["A"].earliest_start == 0
        assert result.times["A"].earliest_finish == 2
        assert result.times["B"].earliest_start == 2
        assert result.times["B"].earliest_finish == 7
        assert result.times["C"].earliest_start == 8
        assert result.times["C"].earliest_finish == 11
        assert result.project_earliest_finish == 11
        assert result.critical_path_candidates == ["C"]

    def test_start_to_start(self) -> None:
        result = ForwardPassEngine().run(
            [task("A", 4), task("B", 2)], [edge("A", "B", DependencyType.SS, 1)]
        )

        assert result.times["B"].earliest_start == 1
        assert result.times["B"].earliest_finish == 3

    def test_finish_to_finish(self) -> None:
        result = ForwardPassEngine().run(
            [task("A", 4), task("B", 2)], [edge("A", "B", DependencyType.FF)]
        )

        assert result.times["B"].earliest_start == 2
        assert result.times["B"].earliest_finish == 4

    def test_start_to_finish(self) -> None:
        result = ForwardPassEngine().run(
            [task("A", 4), task("B", 2)], [edge("A", "B", DependencyType.SF, 5)]
        )

        assert result.times["B"].earliest_start == 3
        assert result.times["B"].earliest_finish == 5

    def test_earliest_start_never_before_origin(self) -> None:
        """Test that a bound below zero is clamped to the project start."""
        result = ForwardPassEngine().run(
            [task("A", 4), task("B", 2)], [edge("A", "B", DependencyType.SF)]
        )

        assert result.times["B"].earliest_start == 0

    def test_negative_lag_overlaps(self) -> None:
        result = ForwardPassEngine().run([task("A", 3), task("B", 2)], [edge("A", "B", lag=-1)])

        assert result.times["B"].earliest_start == 2

    def test_latest_predecessor_wins(self) -> None:
        result = ForwardPassEngine().run(
            [task("A", 2), task("B", 6), task("C", 1, "A", "B")],
        )

        assert result.times["C"].earliest_start == 6

    def test_in_progress_task_uses_remaining_duration(self) -> None:
        result = ForwardPassEngine().run([task("A", 4, progress=50), task("B", 1, "A")])

        assert result.times["A"].earliest_finish == 2
        assert result.times["B"].earliest_start == 2

    def test_completed_task_uses_actual_end_date(self) -> None:
        """Test that a completed task finishes at its recorded end date."""
        mapper = CalendarMapper(PROJECT_START)
        done = task("A", 1, is_completed=True, end_date=date(2025, 1, 8))
        result = ForwardPassEngine(mapper).run([done, task("B", 2, "A")])

        assert result.times["A"].earliest_finish == 3
        assert result.times["B"].earliest_start == 3

    def test_completed_task_without_calendar_keeps_duration(self) -> None:
        done = task("A", 2, is_completed=True, end_date=date(2025, 1, 8))
        result = ForwardPassEngine().run([done])

        assert result.times["A"].earliest_finish == 2

    def test_parallel_sinks_are_all_candidates(self) -> None:
        result = ForwardPassEngine().run([task("A", 3), task("B", 3), task("C", 1)])

        assert result.critical_path_candidates == ["A", "B"]

    def test_empty_project(self) -> None:
        result = ForwardPassEngine().run([])

        assert result.project_earliest_finish == 0
        assert result.order == []

    def test_input_tasks_not_mutated(self) -> None:
        tasks, deps = abc_chain()
        ForwardPassEngine().run(tasks, deps)

        assert all(not t.predecessors and not t.successors for t in tasks)


class TestTaskGraph:
    """Test graph construction and ordering."""

    def test_topological_order_respects_edges(self) -> None:
        graph = TaskGraph.build(
            [task("C", 1), task("B", 1), task("A", 1)], [edge("A", "B"), edge("B", "C")]
        )

        assert graph.topological_order() == ["A", "B", "C"]

    def test_links_from_tasks_and_edges_are_merged(self) -> None:
        graph = TaskGraph.build([task("A"), task("B"), task("C", 1, "A")], [edge("B", "C")])

        assert [link.task_id for link in graph.tasks["C"].predecessors] == ["A", "B"]
        assert graph.successor_map() == {"A": ["C"], "B": ["C"], "C": []}
        assert graph.sources() == ["A", "B"]
        assert graph.sinks() == ["C"]

    def test_duplicate_edge_is_ignored(self) -> None:
        graph = TaskGraph.build([task("A"), task("B", 1, "A")], [edge("A", "B")])

        assert len(graph.edges()) == 1

    def test_cycle_is_rejected_with_path(self) -> None:
        with pytest.raises(CircularDependencyError) as exc_info:
            ForwardPassEngine().run([task("A"), task("B")], [edge("A", "B"), edge("B", "A")])

        assert exc_info.value.cycle == ["A", "B", "A"]

    def test_unknown_predecessor_rejected(self) -> None:
        with pytest.raises(MissingReferenceError):
            ForwardPassEngine().run([task("B")], [edge("A", "B")])

    def test_unknown_successor_rejected(self) -> None:
        with pytest.raises(MissingReferenceError):
            ForwardPassEngine().run([task("A")], [edge("A", "B")])

    def test_duplicate_task_rejected(self) -> None:
        with pytest.raises(InvalidConstraintError):
            ForwardPassEngine().run([task("A"), task("A")])


class TestGraphSearch:
    """Test cycle and path search helpers."""

    def test_find_cycle(self) -> None:
        assert find_cycle({"A": ["B"], "B": ["C"], "C": ["B"]}) == ["B", "C", "B"]
        assert find_cycle({"A": ["B"], "B": []}) is None

    def test_find_cycle_deep_chain(self) -> None:
        """Test that long chains do not exhaust the call stack."""
        adjacency = {str(i): [str(i + 1)] for i in range(5000)}
        adjacency["5000"] = ["0"]

        cycle = find_cycle(adjacency)

        assert cycle is not None
        assert cycle[0] == cycle[-1]
        assert len(cycle) == 5002

    def test_find_path(self) -> None:
        adjacency = {"A": ["B", "C"], "B": ["D"], "C": ["D"], "D": []}

        assert find_path(adjacency, "A", "D") == ["A", "B", "D"]
        assert find_path(adjacency, "D", "A") is None
