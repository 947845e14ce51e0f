"""The pure calculation pipeline: forward pass, backward pass, constraint solver."""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timezone

import yaml

from ..calendar import CalendarMapper
from ..config import CalendarConfig, SchedulingConfig
from ..logger import get_logger
from ..models import DependencyEdge, TaskNode
from .backward_pass import BackwardPassEngine
from .constraints import ConstraintSolver
from .core import BackwardPassResult, ComputedSchedule, SolverResult
from .forward_pass import ForwardPassEngine

logger = get_logger()

# Namespace for content-derived schedule ids
_SCHEDULE_NAMESPACE = uuid.UUID("0b7d4f5e-2c61-4a8e-9d3b-71e0c5a2f846")


@dataclass
class Calculation:
    """Everything produced by one run of the pipeline."""

    calendar: CalendarMapper
    backward: BackwardPassResult
    solved: SolverResult
    schedule: ComputedSchedule


def run(  # noqa: PLR0913 - mirrors the calculate() contract plus optional constraints
    tasks: Iterable[TaskNode],
    dependencies: Iterable[DependencyEdge] = (),
    calendar: CalendarConfig | None = None,
    deadline: date | None = None,
    *,
    project_start: date,
    project_id: str = "default",
    config: SchedulingConfig | None = None,
    capacities: dict[str, float] | None = None,
    mandatory_dates: dict[str, date] | None = None,
    calculated_at: datetime | None = None,
) -> Calculation:
    """Run the full pipeline over a snapshot.

    Args:
        tasks: Task snapshots; never mutated
        dependencies: Edges between the tasks
        calendar: Working-day mask, holidays and hours/day
        deadline: Hard project deadline (inclusive last working day)
        project_start: Calendar date of working unit 0 (or the next working day)
        project_id: Project the schedule belongs to
        config: Solver tuning
        capacities: Assignee -> concurrent capacity percent
        mandatory_dates: Task id -> latest acceptable finish date
        calculated_at: Timestamp for the record (defaults to now, UTC)

    Raises:
        InvalidConstraintError: For malformed calendar, capacity or task data
        CircularDependencyError: If the tasks cannot be ordered
        MissingReferenceError: If an edge references an unknown task
    """
    config = config or SchedulingConfig()
    mapper = CalendarMapper(project_start, calendar)
    # Constructed before any pass so that bad constraints are rejected up front
    solver = ConstraintSolver(
        mapper,
        config=config,
        capacities=capacities,
        mandatory_dates=mandatory_dates,
        project_id=project_id,
    )

    forward = ForwardPassEngine(mapper).run(tasks, dependencies)
    deadline_units = float(mapper.elapsed_units(deadline)) if deadline is not None else None
    backward = BackwardPassEngine(config.float_tolerance).process(forward, deadline_units)
    solved = solver.solve(backward)

    finish_units = max(
        (r.earliest_finish for r in solved.results.values()),
        default=backward.forward.project_earliest_finish,
    )
    finish_date = None
    if solved.results:
        finish_date = max(r.end_date for r in solved.results.values() if r.end_date is not None)

    results = [solved.results[task_id] for task_id in forward.order]
    schedule = ComputedSchedule(
        id="",
        project_id=project_id,
        calculated_at=calculated_at or datetime.now(timezone.utc),
        algorithm=config.algorithm,
        project_start=project_start,
        project_finish_units=finish_units,
        project_finish_date=finish_date,
        results=results,
        critical_path=list(backward.critical_path),
        conflicts=solved.conflicts,
        violations=solved.violations,
        suggestions=solved.suggestions,
        deadline=deadline,
    )
    schedule.id = schedule_id(schedule)

    logger.changes(
        f"Calculated schedule {schedule.id} for {project_id}: {len(results)} tasks, "
        f"finish {finish_date}, {len(schedule.conflicts)} conflicts"
    )
    return Calculation(calendar=mapper, backward=backward, solved=solved, schedule=schedule)


def calculate(  # noqa: PLR0913
    tasks: Iterable[TaskNode],
    dependencies: Iterable[DependencyEdge] = (),
    calendar: CalendarConfig | None = None,
    deadline: date | None = None,
    *,
    project_start: date,
    project_id: str = "default",
    config: SchedulingConfig | None = None,
    capacities: dict[str, float] | None = None,
    mandatory_dates: dict[str, date] | None = None,
) -> ComputedSchedule:
    """Compute a schedule; see ``run`` for the arguments."""
    return run(
        tasks,
        dependencies,
        calendar,
        deadline,
        project_start=project_start,
        project_id=project_id,
        config=config,
        capacities=capacities,
        mandatory_dates=mandatory_dates,
    ).schedule


def schedule_id(schedule: ComputedSchedule) -> str:
    """Content-derived id: identical input yields an identical id."""
    content = schedule.to_dict()
    for volatile in ("id", "calculated_at", "applied", "applied_at", "rollback_token", "pre_image"):
        content.pop(volatile, None)
    canonical = yaml.safe_dump(content, sort_keys=True)
    return str(uuid.uuid5(_SCHEDULE_NAMESPACE, canonical))
