"""Core dataclasses and dependency formulas for the scheduling passes."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

from ..models import Conflict, DependencyType, Severity, TaskNode


def _default_dict() -> dict[str, Any]:
    return {}


def required_start(
    dep_type: DependencyType,
    lag: float,
    predecessor_start: float,
    predecessor_finish: float,
    successor_span: float,
) -> float:
    """Earliest start a successor may take given one predecessor.

    Args:
        dep_type: Dependency type of the edge
        lag: Lag in working days (negative for a lead)
        predecessor_start: Predecessor (earliest) start
        predecessor_finish: Predecessor (earliest) finish
        successor_span: Scheduled span of the successor (finish - start)

    Returns:
        Lower bound for the successor's start
    """
    if dep_type == DependencyType.FS:
        return predecessor_finish + lag
    if dep_type == DependencyType.SS:
        return predecessor_start + lag
    if dep_type == DependencyType.FF:
        return predecessor_finish - successor_span + lag
    if dep_type == DependencyType.SF:
        return predecessor_start - successor_span + lag
    raise ValueError(f"Unknown dependency type: {dep_type}")


def predecessor_finish_bound(
    dep_type: DependencyType,
    lag: float,
    successor_start: float,
    successor_finish: float,
    predecessor_span: float,
) -> float:
    """Latest finish a predecessor may take without pushing one successor.

    The inverse of ``required_start``. Fed with latest successor times it
    yields the backward-pass latest finish; fed with earliest successor times
    it yields the free-float bound.
    """
    if dep_type == DependencyType.FS:
        return successor_start - lag
    if dep_type == DependencyType.SS:
        return successor_start - lag + predecessor_span
    if dep_type == DependencyType.FF:
        return successor_finish - lag
    if dep_type == DependencyType.SF:
        return successor_finish - lag + predecessor_span
    raise ValueError(f"Unknown dependency type: {dep_type}")


@dataclass
class TaskTimes:
    """Earliest times for one task from the forward pass."""

    task_id: str
    earliest_start: float
    earliest_finish: float

    @property
    def span(self) -> float:
        """Scheduled span; equals duration for tasks that have not started."""
        return self.earliest_finish - self.earliest_start


@dataclass
class ForwardPassResult:
    """Result of the forward pass."""

    tasks: dict[str, TaskNode]  # Request-scoped copies with links populated
    times: dict[str, TaskTimes]
    order: list[str]  # Topological order
    project_earliest_finish: float
    critical_path_candidates: list[str]


@dataclass
class ScheduleResult:
    """Per-task CPM output."""

    task_id: str
    earliest_start: float
    earliest_finish: float
    latest_start: float
    latest_finish: float
    total_float: float
    free_float: float
    is_critical: bool
    start_date: date | None = None
    end_date: date | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "earliest_start": self.earliest_start,
            "earliest_finish": self.earliest_finish,
            "latest_start": self.latest_start,
            "latest_finish": self.latest_finish,
            "total_float": self.total_float,
            "free_float": self.free_float,
            "is_critical": self.is_critical,
            "start_date": self.start_date,
            "end_date": self.end_date,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ScheduleResult:
        return cls(
            task_id=str(data["task_id"]),
            earliest_start=float(data["earliest_start"]),
            earliest_finish=float(data["earliest_finish"]),
            latest_start=float(data["latest_start"]),
            latest_finish=float(data["latest_finish"]),
            total_float=float(data["total_float"]),
            free_float=float(data["free_float"]),
            is_critical=bool(data["is_critical"]),
            start_date=data.get("start_date"),
            end_date=data.get("end_date"),
        )


@dataclass
class BackwardPassResult:
    """Result of the backward pass."""

    forward: ForwardPassResult
    results: dict[str, ScheduleResult]
    critical_path: list[str]
    project_finish: float  # Deadline in working units, or the earliest finish

    @property
    def total_float(self) -> dict[str, float]:
        return {task_id: r.total_float for task_id, r in self.results.items()}

    @property
    def free_float(self) -> dict[str, float]:
        return {task_id: r.free_float for task_id, r in self.results.items()}


@dataclass
class CriticalPathStats:
    """Summary statistics of a backward pass."""

    critical_path_length: int
    total_tasks: int
    critical_ratio: float
    average_float: float


@dataclass
class FloatOpportunity:
    """A non-critical task that can be delayed."""

    task_id: str
    title: str
    total_float: float
    free_float: float
    recommendation: str


class ViolationType(str, Enum):
    """Category of a constraint violation."""

    DATE = "date"
    RESOURCE = "resource"
    DEPENDENCY = "dependency"


@dataclass
class ConstraintViolation:
    """A finding of the constraint solver."""

    type: ViolationType
    severity: Severity
    task_ids: list[str]
    description: str
    suggested_fix: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "task_ids": list(self.task_ids),
            "description": self.description,
            "suggested_fix": self.suggested_fix,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ConstraintViolation:
        return cls(
            type=ViolationType(data["type"]),
            severity=Severity(data["severity"]),
            task_ids=list(data.get("task_ids", [])),
            description=str(data.get("description", "")),
            suggested_fix=data.get("suggested_fix"),
        )


@dataclass
class LevelingAdjustment:
    """A delay applied to a task by resource leveling."""

    task_id: str
    delay: int  # Working days
    blocking_task_ids: list[str] = field(default_factory=list[str])


@dataclass
class SolverResult:
    """Result of the constraint solver."""

    results: dict[str, ScheduleResult]
    violations: list[ConstraintViolation]
    conflicts: list[Conflict]
    suggestions: list[str]
    adjustments: list[LevelingAdjustment] = field(default_factory=list[LevelingAdjustment])


@dataclass
class TaskDateChange:
    """Difference between live task dates and a computed schedule."""

    task_id: str
    previous_start: date | None
    previous_end: date | None
    new_start: date | None
    new_end: date | None


@dataclass
class ComputedSchedule:
    """A calculation run, as persisted by the store."""

    id: str
    project_id: str
    calculated_at: datetime
    algorithm: str
    project_start: date
    project_finish_units: float
    project_finish_date: date | None
    results: list[ScheduleResult]
    critical_path: list[str]
    conflicts: list[Conflict]
    violations: list[ConstraintViolation] = field(default_factory=list[ConstraintViolation])
    suggestions: list[str] = field(default_factory=list[str])
    deadline: date | None = None
    applied: bool = False
    applied_at: datetime | None = None
    rollback_token: str | None = None
    pre_image: dict[str, dict[str, Any]] = field(default_factory=_default_dict)

    def result_for(self, task_id: str) -> ScheduleResult | None:
        for result in self.results:
            if result.task_id == task_id:
                return result
        return None

    @property
    def has_errors(self) -> bool:
        return any(c.is_error for c in self.conflicts) or any(
            v.severity == Severity.ERROR for v in self.violations
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to plain data (dates stay ``date`` objects for YAML)."""
        return {
            "id": self.id,
            "project_id": self.project_id,
            "calculated_at": self.calculated_at,
            "algorithm": self.algorithm,
            "project_start": self.project_start,
            "project_finish_units": self.project_finish_units,
            "project_finish_date": self.project_finish_date,
            "deadline": self.deadline,
            "results": [r.to_dict() for r in self.results],
            "critical_path": list(self.critical_path),
            "conflicts": [c.to_dict() for c in self.conflicts],
            "violations": [v.to_dict() for v in self.violations],
            "suggestions": list(self.suggestions),
            "applied": self.applied,
            "applied_at": self.applied_at,
            "rollback_token": self.rollback_token,
            "pre_image": {k: dict(v) for k, v in self.pre_image.items()},
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ComputedSchedule:
        return cls(
            id=str(data["id"]),
            project_id=str(data["project_id"]),
            calculated_at=data["calculated_at"],
            algorithm=str(data.get("algorithm", "cpm")),
            project_start=data["project_start"],
            project_finish_units=float(data["project_finish_units"]),
            project_finish_date=data.get("project_finish_date"),
            deadline=data.get("deadline"),
            results=[ScheduleResult.from_dict(r) for r in data.get("results", [])],
            critical_path=list(data.get("critical_path", [])),
            conflicts=[Conflict.from_dict(c) for c in data.get("conflicts", [])],
            violations=[ConstraintViolation.from_dict(v) for v in data.get("violations", [])],
            suggestions=list(data.get("suggestions", [])),
            applied=bool(data.get("applied", False)),
            applied_at=data.get("applied_at"),
            rollback_token=data.get("rollback_token"),
            pre_image={k: dict(v) for k, v in (data.get("pre_image") or {}).items()},
        )
