"""Conflict detection: optimistic concurrency, schedule validation and integrity scans."""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any

from ..calendar import CalendarMapper
from ..config import CalendarConfig
from ..exceptions import MissingReferenceError
from ..logger import get_logger
from ..models import Conflict, ConflictPattern, DependencyEdge, DependencyType, EntityType, Severity
from ..scheduler.graph import find_cycle, find_path
from ..store import ProjectStore

logger = get_logger()

# Fields whose concurrent change makes an update conflict an error
WATCHED_FIELDS: dict[EntityType, tuple[str, ...]] = {
    EntityType.TASK: (
        "title",
        "description",
        "status",
        "priority",
        "start_date",
        "due_date",
        "progress",
        "assignee_id",
        "parent_id",
        "duration",
    ),
    EntityType.DEPENDENCY: ("predecessor_id", "successor_id", "type", "lag"),
    EntityType.PROJECT: ("name", "visibility", "scheduling_enabled"),
}


def normalize(value: Any) -> Any:
    """Comparable form of a field value (dates as ISO text, numbers as float)."""
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return float(value)
    if value == "":
        return None
    return value


def changed_fields(
    entity_type: EntityType,
    current: Mapping[str, Any],
    attempted: Mapping[str, Any],
) -> list[str]:
    """Watched fields present in ``attempted`` whose value differs from ``current``."""
    return [
        name
        for name in WATCHED_FIELDS[entity_type]
        if name in attempted and normalize(current.get(name)) != normalize(attempted[name])
    ]


def _is_completed(record: Mapping[str, Any]) -> bool:
    return bool(record.get("is_completed")) or record.get("status") == "done"


@dataclass
class ProposedChange:
    """A requested change to one task's dates or assignee.

    Fields left as None keep their stored value. Set ``clear_assignee`` to
    propose removing the assignee.
    """

    task_id: str
    start_date: date | None = None
    end_date: date | None = None
    assignee_id: str | None = None
    clear_assignee: bool = False  # Unassign; takes precedence over assignee_id


class ConflictDetectionService:
    """Surfaces conflicts as data; detected conflicts are registered with the store.

    The "read current, compare" step is a best-effort pre-check. Writes must
    still go through the store's version check.
    """

    def __init__(self, store: ProjectStore, calendar: CalendarConfig | None = None):
        self.store = store
        self.calendar = calendar or CalendarConfig()

    def _register(self, conflict: Conflict) -> Conflict:
        self.store.save_conflict(conflict)
        logger.checks(f"  Conflict {conflict.id}: {conflict.description}")
        return conflict

    # Optimistic-concurrency mode

    def detect_conflict(
        self,
        entity_type: EntityType,
        entity_id: str,
        expected_version: int,
        attempted_values: Mapping[str, Any],
        project_id: str | None = None,
    ) -> Conflict | None:
        """Compare the version a caller read with the stored entity.

        Returns:
            None if the versions match, otherwise a DELETE_CONFLICT (entity gone)
            or UPDATE_CONFLICT (error if a watched field differs, else warning)
        """
        current = self.store.get_entity(entity_type, entity_id)
        attempted = dict(attempted_values)

        if current is None:
            return self._register(
                Conflict.create(
                    ConflictPattern.DELETE_CONFLICT,
                    Severity.ERROR,
                    entity_id,
                    f"{entity_type.value.capitalize()} '{entity_id}' has been deleted",
                    entity_type=entity_type,
                    project_id=project_id,
                    attempted_version=expected_version,
                    attempted_data=attempted,
                    suggested_resolutions=["Entity no longer exists - refresh data"],
                )
            )

        current_version = int(current.get("version") or 0)
        if current_version == expected_version:
            return None

        fields = changed_fields(entity_type, current, attempted)
        severity = Severity.ERROR if fields else Severity.WARNING
        return self._register(
            Conflict.create(
                ConflictPattern.UPDATE_CONFLICT,
                severity,
                entity_id,
                f"{entity_type.value.capitalize()} '{entity_id}' changed from version "
                f"{expected_version} to {current_version}",
                entity_type=entity_type,
                project_id=project_id or current.get("project_id"),
                current_version=current_version,
                attempted_version=expected_version,
                conflicting_fields=fields,
                suggested_resolutions=self._suggestions(fields),
                current_data=current,
                attempted_data=attempted,
            )
        )

    @staticmethod
    def _suggestions(fields: list[str]) -> list[str]:
        if not fields:
            return ["No field conflicts detected - safe to retry"]
        suggestions = [
            "Review changes and resolve conflicts manually",
            f"Conflicted fields: {', '.join(fields)}",
        ]
        if "status" in fields or "progress" in fields:
            suggestions.append("Consider merging status/progress changes")
        if "start_date" in fields or "due_date" in fields:
            suggestions.append("Coordinate schedule changes with team")
        return suggestions

    # Schedule-validation mode

    def validate_schedule(  # noqa: PLR0912 - one pass over each rule family
        self,
        project_id: str,
        changes: Iterable[ProposedChange],
    ) -> list[Conflict]:
        """Check a batch of proposed task changes against stored state.

        Checks dependency ordering, resource overlaps with other proposed and
        stored assignments, locked tasks (error) and completed tasks (warning).
        """
        changes = list(changes)
        tasks = {t["id"]: t for t in self.store.list_tasks(project_id)}
        dependencies = self.store.list_dependencies(project_id)
        conflicts: list[Conflict] = []

        proposed: dict[str, dict[str, Any]] = {}
        for change in changes:
            task = tasks.get(change.task_id)
            if task is None:
                conflicts.append(
                    self._register(
                        Conflict.create(
                            ConflictPattern.SCHEDULE_CONFLICT,
                            Severity.ERROR,
                            change.task_id,
                            f"Task '{change.task_id}' does not exist",
                            project_id=project_id,
                            suggested_resolutions=["Entity no longer exists - refresh data"],
                        )
                    )
                )
                continue
            assignee = change.assignee_id or task.get("assignee_id")
            proposed[change.task_id] = {
                "start_date": change.start_date or task.get("start_date"),
                "due_date": change.end_date or task.get("due_date"),
                "assignee_id": None if change.clear_assignee else assignee,
            }

        def dates_of(task_id: str) -> tuple[date | None, date | None]:
            source = proposed.get(task_id) or tasks.get(task_id) or {}
            return source.get("start_date"), source.get("due_date")

        for task_id, values in proposed.items():
            task = tasks[task_id]
            rescheduled = (
                values["start_date"] != task.get("start_date")
                or values["due_date"] != task.get("due_date")
            )

            # Business rules
            if rescheduled and task.get("schedule_locked"):
                conflicts.append(
                    self._register(
                        Conflict.create(
                            ConflictPattern.SCHEDULE_CONFLICT,
                            Severity.ERROR,
                            task_id,
                            f"Task '{task_id}' is locked and cannot be rescheduled",
                            project_id=project_id,
                            current_version=int(task.get("version") or 0),
                            suggested_resolutions=["Unlock the task first"],
                        )
                    )
                )
            if rescheduled and _is_completed(task):
                conflicts.append(
                    self._register(
                        Conflict.create(
                            ConflictPattern.SCHEDULE_CONFLICT,
                            Severity.WARNING,
                            task_id,
                            f"Task '{task_id}' is completed; rescheduling changes history",
                            project_id=project_id,
                            current_version=int(task.get("version") or 0),
                            suggested_resolutions=["Confirm the completed task should move"],
                        )
                    )
                )

            # Dependency ordering
            start, end = values["start_date"], values["due_date"]
            for dep in dependencies:
                if dep["successor_id"] != task_id or dep["predecessor_id"] not in tasks:
                    continue
                pred_id = dep["predecessor_id"]
                pred_start, pred_end = dates_of(pred_id)
                dep_type = DependencyType(dep.get("type") or DependencyType.FS.value)
                problem = self._ordering_problem(
                    dep_type, float(dep.get("lag") or 0.0), pred_start, pred_end, start, end
                )
                if problem:
                    conflicts.append(
                        self._register(
                            Conflict.create(
                                ConflictPattern.DEPENDENCY_CONFLICT,
                                Severity.WARNING,
                                task_id,
                                f"Task '{task_id}' {problem} of predecessor '{pred_id}' "
                                f"({dep_type.value})",
                                project_id=project_id,
                                suggested_resolutions=[
                                    "Move the task after its predecessor",
                                    "Recalculate the schedule",
                                ],
                                task_ids=[pred_id, task_id],
                            )
                        )
                    )

            # Resource overlap
            assignee = values["assignee_id"]
            if not assignee or start is None or end is None:
                continue
            overlapping = []
            for other_id, other in tasks.items():
                if other_id == task_id or _is_completed(other):
                    continue
                other_values = proposed.get(other_id, other)
                if other_values.get("assignee_id") != assignee:
                    continue
                other_start, other_end = other_values.get("start_date"), other_values.get("due_date")
                if other_start is None or other_end is None:
                    continue
                if start <= other_end and other_start <= end:
                    overlapping.append(other_id)
            if overlapping:
                conflicts.append(
                    self._register(
                        Conflict.create(
                            ConflictPattern.RESOURCE_CONFLICT,
                            Severity.WARNING,
                            task_id,
                            f"Assignee '{assignee}' is also booked on {', '.join(overlapping)} "
                            f"between {start} and {end}",
                            project_id=project_id,
                            suggested_resolutions=[
                                "Shift one of the tasks",
                                "Reassign one of the tasks",
                            ],
                            task_ids=[task_id, *overlapping],
                        )
                    )
                )

        return conflicts

    def _ordering_problem(  # noqa: PLR0913
        self,
        dep_type: DependencyType,
        lag: float,
        pred_start: date | None,
        pred_end: date | None,
        start: date | None,
        end: date | None,
    ) -> str | None:
        """Describe how a successor's dates break one dependency, or None.

        Dates are inclusive working days; lag is rounded up to whole days.
        """
        anchor = pred_start or pred_end or start or end or date.today()  # noqa: DTZ011
        mapper = CalendarMapper(anchor, self.calendar)
        days = math.ceil(lag)
        if dep_type == DependencyType.FS:
            if pred_end is None or start is None:
                return None
            required = mapper.add_working_days(pred_end, 1 + days)
            return f"starts {start}, before the finish {pred_end}" if start < required else None
        if dep_type == DependencyType.SS:
            if pred_start is None or start is None:
                return None
            required = mapper.add_working_days(pred_start, days)
            return f"starts {start}, before the start {pred_start}" if start < required else None
        if dep_type == DependencyType.FF:
            if pred_end is None or end is None:
                return None
            required = mapper.add_working_days(pred_end, days)
            return f"finishes {end}, before the finish {pred_end}" if end < required else None
        if dep_type == DependencyType.SF:
            if pred_start is None or end is None:
                return None
            required = mapper.add_working_days(pred_start, days - 1)
            return f"finishes {end}, before the start {pred_start}" if end < required else None
        raise ValueError(f"Unknown dependency type: {dep_type}")

    # Integrity mode

    def check_integrity(
        self,
        project_id: str,
        extra_dependencies: Iterable[DependencyEdge] = (),
    ) -> list[Conflict]:
        """Scan a project for orphaned dependencies, cycles and inverted date ranges.

        Args:
            project_id: Project to scan
            extra_dependencies: Edges not yet persisted, checked together with stored ones
        """
        all_tasks = {t["id"]: t for t in self.store.list_tasks(project_id, include_deleted=True)}
        live = {task_id for task_id, t in all_tasks.items() if not t.get("deleted_at")}
        conflicts: list[Conflict] = []

        adjacency: dict[str, list[str]] = {task_id: [] for task_id in live}
        for dep in self.store.list_dependencies(project_id):
            missing = [
                endpoint
                for endpoint in (dep["predecessor_id"], dep["successor_id"])
                if endpoint not in live
            ]
            if missing:
                conflicts.append(
                    self._register(
                        Conflict.create(
                            ConflictPattern.DEPENDENCY_CONFLICT,
                            Severity.WARNING,
                            dep["id"],
                            f"Dependency {dep['predecessor_id']} -> {dep['successor_id']} "
                            f"references deleted task {', '.join(missing)}",
                            entity_type=EntityType.DEPENDENCY,
                            project_id=project_id,
                            current_version=int(dep.get("version") or 0),
                            suggested_resolutions=["Remove the orphaned dependency"],
                            task_ids=[dep["predecessor_id"], dep["successor_id"]],
                        )
                    )
                )
                continue
            adjacency[dep["predecessor_id"]].append(dep["successor_id"])

        for edge in extra_dependencies:
            if edge.predecessor_id in adjacency and edge.successor_id in live:
                adjacency[edge.predecessor_id].append(edge.successor_id)

        for cycle in self._cycles(adjacency):
            conflicts.append(
                self._register(
                    Conflict.create(
                        ConflictPattern.DEPENDENCY_CONFLICT,
                        Severity.ERROR,
                        cycle[0],
                        f"Circular dependency: {' -> '.join(cycle)}",
                        project_id=project_id,
                        suggested_resolutions=["Remove one dependency in the cycle"],
                        task_ids=cycle[:-1],
                    )
                )
            )

        for task_id in sorted(live):
            task = all_tasks[task_id]
            start, due = task.get("start_date"), task.get("due_date")
            if start is not None and due is not None and start > due:
                conflicts.append(
                    self._register(
                        Conflict.create(
                            ConflictPattern.SCHEDULE_CONFLICT,
                            Severity.ERROR,
                            task_id,
                            f"Task '{task_id}' starts {start}, after its due date {due}",
                            project_id=project_id,
                            current_version=int(task.get("version") or 0),
                            suggested_resolutions=["Fix the start or due date"],
                        )
                    )
                )

        logger.checks(f"Integrity check of {project_id}: {len(conflicts)} conflicts")
        return conflicts

    @staticmethod
    def _cycles(adjacency: dict[str, list[str]]) -> list[list[str]]:
        """All cycles found by repeatedly breaking the last edge of each one found."""
        remaining = {node: list(targets) for node, targets in adjacency.items()}
        cycles: list[list[str]] = []
        while (cycle := find_cycle(remaining)) is not None:
            cycles.append(cycle)
            remaining[cycle[-2]].remove(cycle[-1])
        return cycles

    def check_new_dependency(self, project_id: str, edge: DependencyEdge) -> Conflict | None:
        """Reject an edge that would close a cycle, before it is persisted.

        Returns:
            A DEPENDENCY_CONFLICT naming the cycle path, or None if the edge is safe

        Raises:
            MissingReferenceError: If either endpoint is not a live task
        """
        live = {t["id"] for t in self.store.list_tasks(project_id)}
        for endpoint in (edge.predecessor_id, edge.successor_id):
            if endpoint not in live:
                raise MissingReferenceError(f"Task '{endpoint}' does not exist in {project_id}")

        adjacency: dict[str, list[str]] = {task_id: [] for task_id in live}
        for dep in self.store.list_dependencies(project_id):
            if dep["predecessor_id"] in live and dep["successor_id"] in live:
                adjacency[dep["predecessor_id"]].append(dep["successor_id"])

        path = find_path(adjacency, edge.successor_id, edge.predecessor_id)
        if path is None:
            return None

        cycle = [*path, edge.successor_id]
        return self._register(
            Conflict.create(
                ConflictPattern.DEPENDENCY_CONFLICT,
                Severity.ERROR,
                edge.successor_id,
                f"Adding dependency {edge.predecessor_id} -> {edge.successor_id} "
                f"would create a cycle: {' -> '.join(cycle)}",
                entity_type=EntityType.DEPENDENCY,
                project_id=project_id,
                suggested_resolutions=["Remove the existing path or reverse the dependency"],
                task_ids=path,
            )
        )
