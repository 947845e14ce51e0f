"""Constraint solver: calendar, mandatory dates, resources and leveling."""

from __future__ import annotations

import math
from dataclasses import replace
from datetime import date

from ..calendar import EPSILON, CalendarMapper
from ..config import SchedulingConfig, validate_capacities
from ..exceptions import InvalidConstraintError
from ..logger import get_logger
from ..models import Conflict, ConflictPattern, Severity, TaskNode
from .core import (
    BackwardPassResult,
    ConstraintViolation,
    LevelingAdjustment,
    ScheduleResult,
    SolverResult,
    ViolationType,
    predecessor_finish_bound,
    required_start,
)
from .resources import ResourceTimeline, build_timelines

logger = get_logger()

Window = tuple[int, int]  # Half-open [start, end) in working units


class ConstraintSolver:
    """Applies calendar and resource constraints on top of a backward pass.

    The solver:
    1. Snaps every task window to working-day boundaries (warning on drift)
    2. Checks mandatory finish dates (error)
    3. Builds per-assignee allocation timelines and reports overloads
    4. Reports tasks starting before a predecessor allows
    5. Levels resources by delaying non-critical tasks within their float,
       then re-runs checks 1-4 on the leveled schedule
    6. Emits optimization suggestions

    Findings are returned as data; only malformed input raises.
    """

    def __init__(  # noqa: PLR0913 - each constraint source is optional
        self,
        calendar: CalendarMapper,
        config: SchedulingConfig | None = None,
        capacities: dict[str, float] | None = None,
        mandatory_dates: dict[str, date] | None = None,
        project_id: str | None = None,
    ):
        """Initialize the solver.

        Args:
            calendar: Calendar used to map units to dates
            config: Tolerances, thresholds and the leveling switch
            capacities: Assignee -> concurrent capacity percent (0-100, default 100)
            mandatory_dates: Task id -> latest acceptable finish date (inclusive)
            project_id: Stamped on emitted conflicts

        Raises:
            InvalidConstraintError: If a capacity is outside 0-100
        """
        self.calendar = calendar
        self.config = config or SchedulingConfig()
        self.capacities = validate_capacities(capacities)
        self.mandatory_dates = dict(mandatory_dates or {})
        self.project_id = project_id

    def solve(self, backward: BackwardPassResult) -> SolverResult:
        """Run all solver steps over a backward-pass result.

        The input is not modified; leveled times are returned in new results.

        Raises:
            InvalidConstraintError: If a mandatory date names an unknown task
        """
        tasks = backward.forward.tasks
        for task_id in self.mandatory_dates:
            if task_id not in tasks:
                raise InvalidConstraintError(f"Mandatory date given for unknown task '{task_id}'")

        results = {task_id: replace(r) for task_id, r in backward.results.items()}
        order = backward.forward.order

        violations, conflicts = self._check(tasks, results)
        logger.checks(
            f"Constraint check: {len(violations)} violations, {len(conflicts)} conflicts"
        )

        adjustments: list[LevelingAdjustment] = []
        if self.config.level_resources:
            adjustments = self._level_resources(tasks, order, results)
            if adjustments:
                violations, conflicts = self._check(tasks, results)
                logger.checks(
                    f"After leveling: {len(violations)} violations, {len(conflicts)} conflicts"
                )

        conflicts.extend(self._infeasible_deadline_conflicts(results))

        for task_id, result in results.items():
            start_unit, end_unit = self._window(result)
            result.start_date = self.calendar.to_date(start_unit)
            result.end_date = (
                self.calendar.to_date(end_unit - 1) if end_unit > start_unit else result.start_date
            )

        for conflict in conflicts:
            self._attach_dates(conflict, tasks, results)

        suggestions = self._suggestions(tasks, results, backward.project_finish)

        return SolverResult(
            results=results,
            violations=violations,
            conflicts=conflicts,
            suggestions=suggestions,
            adjustments=adjustments,
        )

    # Steps 1-4

    def _window(self, result: ScheduleResult) -> Window:
        """Working-day window of a task, snapped to the nearest unit boundary."""
        start = math.floor(result.earliest_start + 0.5)
        span = result.earliest_finish - result.earliest_start
        return start, start + max(0, math.ceil(span - EPSILON))

    def _check(
        self,
        tasks: dict[str, TaskNode],
        results: dict[str, ScheduleResult],
    ) -> tuple[list[ConstraintViolation], list[Conflict]]:
        violations: list[ConstraintViolation] = []
        conflicts: list[Conflict] = []

        windows = {task_id: self._window(r) for task_id, r in results.items()}

        # Step 1: working-day snapping
        for task_id, result in results.items():
            drift = abs(windows[task_id][0] - result.earliest_start)
            if drift > self.config.drift_tolerance:
                violations.append(
                    ConstraintViolation(
                        type=ViolationType.DATE,
                        severity=Severity.WARNING,
                        task_ids=[task_id],
                        description=(
                            f"Task '{task_id}' start moved {drift:.2f} days to a working-day boundary"
                        ),
                        suggested_fix="Adjust durations or lags to whole working days",
                    )
                )

        # Step 2: mandatory finish dates
        for task_id, mandatory in self.mandatory_dates.items():
            start_unit, end_unit = windows[task_id]
            mapped_end = self.calendar.to_date(max(start_unit, end_unit - 1))
            logger.checks(f"  Mandatory date {task_id}: finishes {mapped_end}, due {mandatory}")
            if mapped_end > mandatory:
                violations.append(
                    ConstraintViolation(
                        type=ViolationType.DATE,
                        severity=Severity.ERROR,
                        task_ids=[task_id],
                        description=(
                            f"Task '{task_id}' finishes {mapped_end}, "
                            f"after its mandatory date {mandatory}"
                        ),
                        suggested_fix="Reduce task duration or adjust dependencies",
                    )
                )

        # Step 3: resource allocation
        for timeline in self._timelines(tasks, windows).values():
            for overload in timeline.overloads():
                violations.append(
                    ConstraintViolation(
                        type=ViolationType.RESOURCE,
                        severity=Severity.ERROR,
                        task_ids=overload.task_ids,
                        description=(
                            f"Resource {overload.resource_id} overallocated: {overload.description}"
                        ),
                        suggested_fix="Reschedule conflicting tasks or add resources",
                    )
                )
                movable = [t for t in overload.task_ids if not results[t].is_critical]
                entity_id = movable[0] if movable else overload.task_ids[-1]
                conflicts.append(
                    Conflict.create(
                        ConflictPattern.RESOURCE_CONFLICT,
                        Severity.WARNING,
                        entity_id,
                        f"Resource {overload.resource_id} is overallocated: {overload.description}",
                        project_id=self.project_id,
                        suggested_resolutions=[
                            "Delay a non-critical task",
                            "Reassign one of the tasks",
                            "Reduce allocation",
                        ],
                        task_ids=overload.task_ids,
                    )
                )

        # Step 4: dependency dates
        for task_id, result in results.items():
            task = tasks[task_id]
            span = result.earliest_finish - result.earliest_start
            for link in task.predecessors:
                pred = results[link.task_id]
                required = required_start(
                    link.type, link.lag, pred.earliest_start, pred.earliest_finish, span
                )
                if result.earliest_start < required - EPSILON:
                    description = (
                        f"Task '{task_id}' starts at {result.earliest_start:g} before "
                        f"predecessor '{link.task_id}' allows ({link.type.value}, {required:g})"
                    )
                    violations.append(
                        ConstraintViolation(
                            type=ViolationType.DEPENDENCY,
                            severity=Severity.ERROR,
                            task_ids=[link.task_id, task_id],
                            description=description,
                            suggested_fix="Move the task after its predecessor",
                        )
                    )
                    conflicts.append(
                        Conflict.create(
                            ConflictPattern.DEPENDENCY_CONFLICT,
                            Severity.ERROR,
                            task_id,
                            description,
                            project_id=self.project_id,
                            suggested_resolutions=["Recalculate the schedule"],
                            task_ids=[link.task_id, task_id],
                        )
                    )

        return violations, conflicts

    def _timelines(
        self,
        tasks: dict[str, TaskNode],
        windows: dict[str, Window],
    ) -> dict[str, ResourceTimeline]:
        assigned = {
            task_id: (task.assignee_id, *windows[task_id], task.allocation)
            for task_id, task in tasks.items()
            if task.assignee_id and not task.is_completed
        }
        return build_timelines(assigned, self.capacities)

    # Step 5

    def _level_resources(
        self,
        tasks: dict[str, TaskNode],
        order: list[str],
        results: dict[str, ScheduleResult],
    ) -> list[LevelingAdjustment]:
        """Delay non-critical tasks out of critical windows on the same resource.

        Tasks are visited by descending total float. A task is moved only when
        the whole delay fits inside its float; otherwise its overlap is left
        for the re-check to report.
        """
        position = {task_id: idx for idx, task_id in enumerate(order)}
        candidates = sorted(
            (
                task_id
                for task_id, result in results.items()
                if not result.is_critical
                and result.total_float > EPSILON
                and tasks[task_id].assignee_id
                and not tasks[task_id].is_completed
            ),
            key=lambda task_id: (-results[task_id].total_float, position[task_id]),
        )

        adjustments: list[LevelingAdjustment] = []
        for task_id in candidates:
            result = results[task_id]
            if result.is_critical:
                continue  # Became critical after an earlier delay
            windows = {tid: self._window(r) for tid, r in results.items()}
            timeline = self._timelines(tasks, windows)[tasks[task_id].assignee_id or ""]
            critical = [
                a
                for a in timeline.assignments
                if a.task_id != task_id and results[a.task_id].is_critical
            ]

            start, end = windows[task_id]
            delay = 0
            blocking: list[str] = []
            while True:
                hits = [a for a in critical if a.overlaps(start + delay, end + delay)]
                if not hits:
                    break
                blocking.extend(a.task_id for a in hits if a.task_id not in blocking)
                delay = max(a.end for a in hits) - start

            if delay == 0:
                continue
            if delay > result.total_float + EPSILON:
                logger.checks(
                    f"  Cannot level {task_id}: needs {delay} days, "
                    f"has {result.total_float:g} days of float"
                )
                continue

            logger.changes(
                f"Leveling: delayed {task_id} by {delay} days to clear {', '.join(blocking)}"
            )
            self._delay(tasks, order, results, task_id, delay)
            adjustments.append(LevelingAdjustment(task_id, delay, blocking))

        return adjustments

    def _delay(
        self,
        tasks: dict[str, TaskNode],
        order: list[str],
        results: dict[str, ScheduleResult],
        task_id: str,
        delay: float,
    ) -> None:
        """Shift a task and push its successors forward as dependencies require."""
        moved = results[task_id]
        moved.earliest_start += delay
        moved.earliest_finish += delay

        for succ_id in order[order.index(task_id) + 1 :]:
            succ = results[succ_id]
            span = succ.earliest_finish - succ.earliest_start
            bound = succ.earliest_start
            for link in tasks[succ_id].predecessors:
                pred = results[link.task_id]
                bound = max(
                    bound,
                    required_start(
                        link.type, link.lag, pred.earliest_start, pred.earliest_finish, span
                    ),
                )
            if bound > succ.earliest_start + EPSILON:
                succ.earliest_finish += bound - succ.earliest_start
                succ.earliest_start = bound

        tolerance = self.config.float_tolerance + EPSILON
        for tid, result in results.items():
            result.total_float = result.latest_start - result.earliest_start
            result.is_critical = abs(result.total_float) <= tolerance
            result.free_float = self._free_float(tasks[tid], result, results)

    @staticmethod
    def _free_float(
        task: TaskNode,
        result: ScheduleResult,
        results: dict[str, ScheduleResult],
    ) -> float:
        if not task.successors:
            return result.total_float
        span = result.earliest_finish - result.earliest_start
        slack = min(
            predecessor_finish_bound(
                link.type,
                link.lag,
                results[link.task_id].earliest_start,
                results[link.task_id].earliest_finish,
                span,
            )
            for link in task.successors
        )
        return min(max(0.0, slack - result.earliest_finish), result.total_float)

    @staticmethod
    def _attach_dates(
        conflict: Conflict,
        tasks: dict[str, TaskNode],
        results: dict[str, ScheduleResult],
    ) -> None:
        """Record live and computed dates so the conflict can be resolved by strategy."""
        task = tasks.get(conflict.entity_id)
        result = results.get(conflict.entity_id)
        if task is None or result is None:
            return
        current = {"start_date": task.start_date, "due_date": task.end_date}
        attempted = {"start_date": result.start_date, "due_date": result.end_date}
        conflict.current_version = task.version
        conflict.attempted_version = task.version
        conflict.current_data = current
        conflict.attempted_data = attempted
        conflict.conflicting_fields = [key for key in attempted if attempted[key] != current[key]]

    def _infeasible_deadline_conflicts(self, results: dict[str, ScheduleResult]) -> list[Conflict]:
        conflicts: list[Conflict] = []
        for task_id, result in results.items():
            if result.total_float < -EPSILON:
                conflicts.append(
                    Conflict.create(
                        ConflictPattern.SCHEDULE_CONFLICT,
                        Severity.ERROR,
                        task_id,
                        f"Task '{task_id}' has negative total float "
                        f"({result.total_float:g} days); the deadline is infeasible",
                        project_id=self.project_id,
                        suggested_resolutions=[
                            "Move the deadline",
                            "Shorten critical tasks",
                            "Relax dependencies",
                        ],
                    )
                )
        return conflicts

    # Step 6

    def _suggestions(
        self,
        tasks: dict[str, TaskNode],
        results: dict[str, ScheduleResult],
        horizon: float,
    ) -> list[str]:
        suggestions: list[str] = []
        if not results:
            return suggestions

        windows = {task_id: self._window(r) for task_id, r in results.items()}
        timelines = self._timelines(tasks, windows)
        underutilized = [
            t.resource_id
            for t in timelines.values()
            if t.utilization(max(horizon, 1.0)) < self.config.underutilization_threshold
        ]
        if underutilized:
            suggestions.append(
                f"Consider redistributing work from {len(underutilized)} underutilized "
                f"resources ({', '.join(underutilized)})"
            )

        critical_count = sum(1 for r in results.values() if r.is_critical)
        if critical_count > len(results) * self.config.critical_ratio_threshold:
            suggestions.append(
                "High critical path ratio - consider parallel execution or resource addition"
            )

        high_float = [
            task_id
            for task_id, r in results.items()
            if r.total_float > self.config.high_float_threshold
        ]
        if high_float:
            suggestions.append(
                f"{len(high_float)} tasks have significant float - "
                "opportunity for resource reallocation"
            )

        return suggestions
