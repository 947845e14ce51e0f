"""Forward pass: earliest start and finish per task."""

from __future__ import annotations

from collections.abc import Iterable

from ..calendar import EPSILON, CalendarMapper
from ..logger import get_logger
from ..models import DependencyEdge, TaskNode
from .core import ForwardPassResult, TaskTimes, required_start
from .graph import TaskGraph

logger = get_logger()


class ForwardPassEngine:
    """Computes earliest times in topological order.

    Times are working units from the project origin (see ``CalendarMapper``).
    Tasks without predecessors start at 0. A successor starts at the latest
    bound imposed by any of its predecessors, and never before the origin.
    """

    def __init__(self, calendar: CalendarMapper | None = None):
        """Initialize the engine.

        Args:
            calendar: Needed to turn actual end dates of completed tasks into
                working units; without it completed tasks keep their duration
        """
        self.calendar = calendar

    def run(
        self,
        tasks: Iterable[TaskNode],
        dependencies: Iterable[DependencyEdge] = (),
    ) -> ForwardPassResult:
        """Run the forward pass over a snapshot.

        Raises:
            CircularDependencyError: If the graph cannot be ordered
            MissingReferenceError: If an edge references an unknown task
        """
        graph = TaskGraph.build(tasks, dependencies)
        return self.process(graph)

    def process(self, graph: TaskGraph) -> ForwardPassResult:
        """Run the forward pass over an already built graph."""
        order = graph.topological_order()
        times: dict[str, TaskTimes] = {}

        for task_id in order:
            task = graph.tasks[task_id]
            span = self._planned_span(task)

            earliest_start = 0.0
            for link in task.predecessors:
                pred = times[link.task_id]
                bound = required_start(
                    link.type, link.lag, pred.earliest_start, pred.earliest_finish, span
                )
                earliest_start = max(earliest_start, bound)

            earliest_finish = self._earliest_finish(task, earliest_start, span)
            times[task_id] = TaskTimes(task_id, earliest_start, earliest_finish)
            logger.debug(f"  Forward {task_id}: ES={earliest_start:g} EF={earliest_finish:g}")

        project_earliest_finish = max((t.earliest_finish for t in times.values()), default=0.0)
        candidates = [
            task_id
            for task_id in order
            if abs(times[task_id].earliest_finish - project_earliest_finish) <= EPSILON
        ]
        logger.checks(
            f"Forward pass: {len(order)} tasks, earliest finish {project_earliest_finish:g}"
        )

        return ForwardPassResult(
            tasks=graph.tasks,
            times=times,
            order=order,
            project_earliest_finish=project_earliest_finish,
            critical_path_candidates=candidates,
        )

    def _planned_span(self, task: TaskNode) -> float:
        """Units of work left to schedule for a task."""
        if task.is_completed:
            return task.duration
        return task.remaining_duration

    def _earliest_finish(self, task: TaskNode, earliest_start: float, span: float) -> float:
        """Earliest finish, using the actual end date of completed tasks."""
        if task.is_completed and task.end_date is not None and self.calendar is not None:
            return max(earliest_start, float(self.calendar.elapsed_units(task.end_date)))
        return earliest_start + span
