"""Backward pass: latest times, float and the critical path."""

from __future__ import annotations

from ..calendar import EPSILON
from ..logger import get_logger
from .core import (
    BackwardPassResult,
    CriticalPathStats,
    FloatOpportunity,
    ForwardPassResult,
    ScheduleResult,
    predecessor_finish_bound,
)

logger = get_logger()

FLOAT_TOLERANCE = 0.1  # Days
OPPORTUNITY_MIN_FLOAT = 1.0  # Days


class BackwardPassEngine:
    """Computes latest times, total and free float, and criticality.

    This engine:
    1. Walks tasks in reverse topological order, bounding each latest finish by
       its successors and by the project finish (deadline or earliest finish)
    2. Derives total float (LS - ES) and free float (slack before any successor moves)
    3. Traces the critical path greedily through critical tasks
    """

    def __init__(self, float_tolerance: float = FLOAT_TOLERANCE):
        self.float_tolerance = float_tolerance

    def process(
        self,
        forward: ForwardPassResult,
        deadline_units: float | None = None,
    ) -> BackwardPassResult:
        """Run the backward pass.

        Args:
            forward: Result of the forward pass
            deadline_units: Hard project deadline in working units from the origin

        Returns:
            BackwardPassResult with per-task results and the critical path
        """
        project_finish = (
            deadline_units if deadline_units is not None else forward.project_earliest_finish
        )
        tasks = forward.tasks
        times = forward.times
        latest_start: dict[str, float] = {}
        latest_finish: dict[str, float] = {}
        results: dict[str, ScheduleResult] = {}

        for task_id in reversed(forward.order):
            task = tasks[task_id]
            own = times[task_id]
            span = own.span

            lf = project_finish
            for link in task.successors:
                bound = predecessor_finish_bound(
                    link.type,
                    link.lag,
                    latest_start[link.task_id],
                    latest_finish[link.task_id],
                    span,
                )
                lf = min(lf, bound)
            latest_finish[task_id] = lf
            latest_start[task_id] = lf - span

            total_float = latest_start[task_id] - own.earliest_start
            free_float = total_float
            if task.successors:
                slack = min(
                    predecessor_finish_bound(
                        link.type,
                        link.lag,
                        times[link.task_id].earliest_start,
                        times[link.task_id].earliest_finish,
                        span,
                    )
                    for link in task.successors
                )
                free_float = min(max(0.0, slack - own.earliest_finish), total_float)

            results[task_id] = ScheduleResult(
                task_id=task_id,
                earliest_start=own.earliest_start,
                earliest_finish=own.earliest_finish,
                latest_start=latest_start[task_id],
                latest_finish=lf,
                total_float=total_float,
                free_float=free_float,
                is_critical=abs(total_float) <= self.float_tolerance + EPSILON,
            )
            logger.debug(
                f"  Backward {task_id}: LS={latest_start[task_id]:g} LF={lf:g} "
                f"TF={total_float:g} FF={free_float:g}"
            )

        # Keep results in topological order for stable output
        ordered = {task_id: results[task_id] for task_id in forward.order}
        critical_path = self._trace_critical_path(forward, ordered)
        logger.checks(f"Backward pass: critical path {' -> '.join(critical_path) or '(none)'}")

        return BackwardPassResult(
            forward=forward,
            results=ordered,
            critical_path=critical_path,
            project_finish=project_finish,
        )

    def _trace_critical_path(
        self,
        forward: ForwardPassResult,
        results: dict[str, ScheduleResult],
    ) -> list[str]:
        """Greedy trace from each critical task that has no critical predecessor.

        From a start task, repeatedly follow the earliest-starting unvisited
        critical successor. Chains are concatenated in topological order.
        """
        tasks = forward.tasks
        visited: set[str] = set()
        path: list[str] = []

        starts = [
            task_id
            for task_id, result in results.items()
            if result.is_critical
            and not any(results[link.task_id].is_critical for link in tasks[task_id].predecessors)
        ]

        for start in starts:
            if start in visited:
                continue
            current: str | None = start
            while current is not None:
                visited.add(current)
                path.append(current)
                candidates = [
                    link.task_id
                    for link in tasks[current].successors
                    if results[link.task_id].is_critical and link.task_id not in visited
                ]
                current = min(
                    candidates,
                    key=lambda task_id: results[task_id].earliest_start,
                    default=None,
                )

        return path


def critical_path_stats(result: BackwardPassResult) -> CriticalPathStats:
    """Length of the critical path relative to the whole project."""
    total_tasks = len(result.results)
    path_length = len(result.critical_path)
    average_float = (
        sum(r.total_float for r in result.results.values()) / total_tasks if total_tasks else 0.0
    )
    return CriticalPathStats(
        critical_path_length=path_length,
        total_tasks=total_tasks,
        critical_ratio=path_length / total_tasks if total_tasks else 0.0,
        average_float=average_float,
    )


def optimization_opportunities(
    result: BackwardPassResult,
    min_float: float = OPPORTUNITY_MIN_FLOAT,
) -> list[FloatOpportunity]:
    """Non-critical tasks with more than ``min_float`` days of total float."""
    opportunities: list[FloatOpportunity] = []
    for task_id, schedule in result.results.items():
        if schedule.is_critical or schedule.total_float <= min_float:
            continue
        if schedule.free_float > 0:
            recommendation = (
                f"Can be delayed by {schedule.free_float:.1f} days without affecting other tasks"
            )
        else:
            recommendation = (
                f"Can be delayed by {schedule.total_float:.1f} days "
                "without affecting project completion"
            )
        opportunities.append(
            FloatOpportunity(
                task_id=task_id,
                title=result.forward.tasks[task_id].title,
                total_float=schedule.total_float,
                free_float=schedule.free_float,
                recommendation=recommendation,
            )
        )
    return opportunities
