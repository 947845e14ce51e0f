"""Data models for cpmsched.

Tasks and dependencies are kept in an id-indexed form: a ``TaskNode`` only
refers to its neighbours through ``Link`` records carrying the neighbour id,
the dependency type and the lag, never through object references.
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any

from .exceptions import InvalidConstraintError

DEFAULT_DAYS_PER_WEEK = 5
DEFAULT_HOURS_PER_DAY = 8.0

_DEPENDENCY_RE = re.compile(
    r"^(?P<id>\S+)"
    r"(?:\s+(?P<type>FS|SS|FF|SF))?"
    r"(?:\s+(?P<sign>[+-])\s*(?P<num>\d+(?:\.\d+)?)(?P<unit>[dhw]))?$",
    re.IGNORECASE,
)

# Namespace for deterministic conflict ids
_CONFLICT_NAMESPACE = uuid.UUID("6f1c2b1e-9a57-4d1c-8f0e-3c2d7b5a9e10")


class DependencyType(str, Enum):
    """How a predecessor constrains its successor."""

    FS = "FS"  # Finish-to-Start
    SS = "SS"  # Start-to-Start
    FF = "FF"  # Finish-to-Finish
    SF = "SF"  # Start-to-Finish


class Severity(str, Enum):
    """Severity of a conflict or constraint violation."""

    WARNING = "warning"
    ERROR = "error"


class ConflictPattern(str, Enum):
    """Kinds of conflicts surfaced by detection and the constraint solver."""

    UPDATE_CONFLICT = "UPDATE_CONFLICT"  # Version mismatch during update
    DELETE_CONFLICT = "DELETE_CONFLICT"  # Entity deleted underneath the caller
    SCHEDULE_CONFLICT = "SCHEDULE_CONFLICT"  # Dates, locks, deadlines
    DEPENDENCY_CONFLICT = "DEPENDENCY_CONFLICT"  # Ordering, cycles, orphans
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"  # Over-allocation


class EntityType(str, Enum):
    """Entity kinds held by the persistence collaborator."""

    TASK = "task"
    DEPENDENCY = "dependency"
    PROJECT = "project"


@dataclass(frozen=True)
class Link:
    """One side of a dependency as seen from a task: neighbour id, type and lag."""

    task_id: str
    type: DependencyType = DependencyType.FS
    lag: float = 0.0


@dataclass(frozen=True)
class DependencyEdge:
    """A typed, lagged dependency between two tasks.

    Lag is expressed in working days; a negative lag is a lead (overlap).
    """

    predecessor_id: str
    successor_id: str
    type: DependencyType = DependencyType.FS
    lag: float = 0.0
    id: str | None = None

    @classmethod
    def parse(
        cls,
        dep_str: str,
        successor_id: str,
        *,
        days_per_week: int = DEFAULT_DAYS_PER_WEEK,
        hours_per_day: float = DEFAULT_HOURS_PER_DAY,
    ) -> DependencyEdge:
        """Parse a dependency shorthand into an edge ending at ``successor_id``.

        Supported formats:
        - "A" - Finish-to-Start, no lag
        - "A + 1d" - Finish-to-Start with one working day of lag
        - "A SS - 4h" - Start-to-Start with a half-day lead (8h days)
        - "A FF + 1w" - Finish-to-Finish with one working week of lag

        Raises:
            InvalidConstraintError: If the string does not match any format
        """
        match = _DEPENDENCY_RE.match(dep_str.strip())
        if not match:
            raise InvalidConstraintError(f"Invalid dependency specification: '{dep_str}'")

        dep_type = DependencyType((match.group("type") or "FS").upper())
        lag = 0.0
        if match.group("num") is not None:
            num = float(match.group("num"))
            unit = match.group("unit").lower()
            if unit == "h":
                lag = num / hours_per_day
            elif unit == "w":
                lag = num * days_per_week
            else:
                lag = num
            if match.group("sign") == "-":
                lag = -lag

        return cls(
            predecessor_id=match.group("id"),
            successor_id=successor_id,
            type=dep_type,
            lag=lag,
        )

    def __str__(self) -> str:
        """Return the shorthand form understood by ``parse``."""
        parts = [self.predecessor_id]
        if self.type != DependencyType.FS:
            parts.append(self.type.value)
        if self.lag:
            sign = "+" if self.lag > 0 else "-"
            magnitude = abs(self.lag)
            amount = int(magnitude) if magnitude == int(magnitude) else magnitude
            parts.append(f"{sign} {amount}d")
        return " ".join(parts)


@dataclass
class TaskNode:
    """A task snapshot as consumed by the scheduling passes."""

    id: str
    title: str = ""
    duration: float = 0.0  # Working days
    start_date: date | None = None
    end_date: date | None = None  # Inclusive last working day
    assignee_id: str | None = None
    is_completed: bool = False
    progress: float = 0.0  # 0-100
    predecessors: list[Link] = field(default_factory=list[Link])
    successors: list[Link] = field(default_factory=list[Link])
    allocation: float = 100.0  # Percent of the assignee this task occupies
    status: str | None = None
    version: int = 0
    schedule_locked: bool = False

    def __post_init__(self) -> None:
        if self.duration < 0:
            raise InvalidConstraintError(
                f"Task '{self.id}' has negative duration {self.duration}"
            )
        if not 0 <= self.progress <= 100:  # noqa: PLR2004
            raise InvalidConstraintError(
                f"Task '{self.id}' has progress {self.progress} outside 0-100"
            )
        if not 0 < self.allocation <= 100:  # noqa: PLR2004
            raise InvalidConstraintError(
                f"Task '{self.id}' has allocation {self.allocation} outside (0, 100]"
            )

    @property
    def remaining_duration(self) -> float:
        """Duration still to be worked, given progress."""
        return self.duration * (1 - self.progress / 100)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> TaskNode:
        """Build a snapshot from a store record (see ``store.TASK_FIELDS``)."""
        status = record.get("status")
        return cls(
            id=str(record["id"]),
            title=str(record.get("title") or ""),
            duration=float(record.get("duration") or 0.0),
            start_date=record.get("start_date"),
            end_date=record.get("due_date"),
            assignee_id=record.get("assignee_id"),
            is_completed=bool(record.get("is_completed")) or status == "done",
            progress=float(record.get("progress") or 0.0),
            allocation=float(record.get("allocation") or 100.0),
            status=status,
            version=int(record.get("version") or 0),
            schedule_locked=bool(record.get("schedule_locked")),
        )

    def to_record(self) -> dict[str, Any]:
        """Flatten into the store record shape (edges are stored separately)."""
        return {
            "id": self.id,
            "title": self.title,
            "duration": self.duration,
            "start_date": self.start_date,
            "due_date": self.end_date,
            "assignee_id": self.assignee_id,
            "is_completed": self.is_completed,
            "progress": self.progress,
            "allocation": self.allocation,
            "status": self.status,
            "version": self.version,
            "schedule_locked": self.schedule_locked,
        }


def conflict_id(pattern: ConflictPattern, entity_id: str, description: str) -> str:
    """Deterministic id so that recomputing identical findings yields identical ids."""
    digest = uuid.uuid5(_CONFLICT_NAMESPACE, f"{pattern.value}|{entity_id}|{description}")
    return f"{pattern.value}_{entity_id}_{digest.hex[:8]}"


@dataclass
class Conflict:
    """A detected conflict or finding, returned as data rather than raised."""

    id: str
    pattern: ConflictPattern
    severity: Severity
    entity_id: str
    entity_type: EntityType = EntityType.TASK
    project_id: str | None = None
    description: str = ""
    current_version: int = 0
    attempted_version: int = 0
    conflicting_fields: list[str] = field(default_factory=list[str])
    suggested_resolutions: list[str] = field(default_factory=list[str])
    current_data: dict[str, Any] | None = None
    attempted_data: dict[str, Any] | None = None
    task_ids: list[str] = field(default_factory=list[str])

    @classmethod
    def create(  # noqa: PLR0913 - mirrors the record fields
        cls,
        pattern: ConflictPattern,
        severity: Severity,
        entity_id: str,
        description: str,
        *,
        entity_type: EntityType = EntityType.TASK,
        project_id: str | None = None,
        current_version: int = 0,
        attempted_version: int = 0,
        conflicting_fields: list[str] | None = None,
        suggested_resolutions: list[str] | None = None,
        current_data: Mapping[str, Any] | None = None,
        attempted_data: Mapping[str, Any] | None = None,
        task_ids: list[str] | None = None,
    ) -> Conflict:
        """Create a conflict with a deterministic id."""
        return cls(
            id=conflict_id(pattern, entity_id, description),
            pattern=pattern,
            severity=severity,
            entity_id=entity_id,
            entity_type=entity_type,
            project_id=project_id,
            description=description,
            current_version=current_version,
            attempted_version=attempted_version,
            conflicting_fields=list(conflicting_fields or []),
            suggested_resolutions=list(suggested_resolutions or []),
            current_data=dict(current_data) if current_data is not None else None,
            attempted_data=dict(attempted_data) if attempted_data is not None else None,
            task_ids=list(task_ids or [entity_id]),
        )

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR

    def to_dict(self) -> dict[str, Any]:
        """Serialize to plain data for records."""
        return {
            "id": self.id,
            "pattern": self.pattern.value,
            "severity": self.severity.value,
            "entity_id": self.entity_id,
            "entity_type": self.entity_type.value,
            "project_id": self.project_id,
            "description": self.description,
            "current_version": self.current_version,
            "attempted_version": self.attempted_version,
            "conflicting_fields": list(self.conflicting_fields),
            "suggested_resolutions": list(self.suggested_resolutions),
            "current_data": self.current_data,
            "attempted_data": self.attempted_data,
            "task_ids": list(self.task_ids),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Conflict:
        """Inverse of ``to_dict``."""
        return cls(
            id=str(data["id"]),
            pattern=ConflictPattern(data["pattern"]),
            severity=Severity(data["severity"]),
            entity_id=str(data["entity_id"]),
            entity_type=EntityType(data.get("entity_type", EntityType.TASK.value)),
            project_id=data.get("project_id"),
            description=str(data.get("description", "")),
            current_version=int(data.get("current_version", 0)),
            attempted_version=int(data.get("attempted_version", 0)),
            conflicting_fields=list(data.get("conflicting_fields", [])),
            suggested_resolutions=list(data.get("suggested_resolutions", [])),
            current_data=data.get("current_data"),
            attempted_data=data.get("attempted_data"),
            task_ids=list(data.get("task_ids", [])),
        )
