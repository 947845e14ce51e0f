"""Persistence collaborator contract and an in-memory implementation.

Scheduling and conflict services never own task, dependency or project
records; they read copies through a ``ProjectStore`` and write back through
``update_entity``, which performs an atomic check-and-increment on the
record's ``version``.
"""

from __future__ import annotations

import copy
import threading
import uuid
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Protocol

from .exceptions import MissingReferenceError, StaleVersionError
from .logger import get_logger
from .models import Conflict, DependencyEdge, DependencyType, EntityType, TaskNode

if TYPE_CHECKING:
    from .scheduler.core import ComputedSchedule

logger = get_logger()

TASK_FIELDS = (
    "id",
    "project_id",
    "title",
    "duration",
    "start_date",
    "due_date",
    "assignee_id",
    "is_completed",
    "progress",
    "allocation",
    "status",
    "schedule_locked",
    "version",
    "deleted_at",
)

PROTECTED_FIELDS = frozenset({"id", "version", "project_id"})


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ProjectStore(Protocol):
    """What the core needs from the external persistence layer."""

    def get_entity(
        self, entity_type: EntityType, entity_id: str, *, include_deleted: bool = False
    ) -> dict[str, Any] | None: ...

    def update_entity(
        self,
        entity_type: EntityType,
        entity_id: str,
        values: Mapping[str, Any],
        expected_version: int | None = None,
    ) -> dict[str, Any]: ...

    def list_tasks(self, project_id: str, *, include_deleted: bool = False) -> list[dict[str, Any]]: ...

    def list_dependencies(
        self, project_id: str, *, include_deleted: bool = False
    ) -> list[dict[str, Any]]: ...

    def save_schedule(self, schedule: ComputedSchedule) -> None: ...

    def get_schedule(self, schedule_id: str) -> ComputedSchedule | None: ...

    def list_schedules(self, project_id: str) -> list[ComputedSchedule]: ...

    def save_conflict(self, conflict: Conflict) -> None: ...

    def get_conflict(self, conflict_id: str) -> Conflict | None: ...

    def archive_conflict(self, conflict_id: str, resolution: Mapping[str, Any]) -> None: ...

    def log_activity(self, entry: Mapping[str, Any]) -> None: ...

    def snapshot_project(self, project_id: str) -> str: ...

    def restore_snapshot(self, backup_id: str) -> int: ...


class InMemoryProjectStore:
    """Thread-safe dict-backed store.

    Every read returns a deep copy; mutation happens only through the
    store's own methods while holding its lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entities: dict[EntityType, dict[str, dict[str, Any]]] = {
            entity_type: {} for entity_type in EntityType
        }
        self._schedules: dict[str, ComputedSchedule] = {}
        self._conflicts: dict[str, Conflict] = {}
        self._archived: dict[str, dict[str, Any]] = {}
        self._backups: dict[str, dict[str, Any]] = {}
        self.activity: list[dict[str, Any]] = []

    # Seeding

    def add_project(self, project_id: str, **values: Any) -> dict[str, Any]:
        record = {"id": project_id, "version": 1, "deleted_at": None, **values}
        with self._lock:
            self._entities[EntityType.PROJECT][project_id] = record
        return copy.deepcopy(record)

    def add_task(
        self, task: TaskNode | Mapping[str, Any], project_id: str = "default"
    ) -> dict[str, Any]:
        """Insert a task record; a TaskNode's predecessor links become dependency records."""
        if isinstance(task, TaskNode):
            record = task.to_record()
            edges = [
                DependencyEdge(link.task_id, task.id, link.type, link.lag)
                for link in task.predecessors
            ]
        else:
            record = {field: None for field in TASK_FIELDS} | dict(task)
            edges = []
        record.setdefault("version", 1)
        record["version"] = record["version"] or 1
        record["project_id"] = project_id
        record.setdefault("deleted_at", None)
        with self._lock:
            self._entities[EntityType.TASK][str(record["id"])] = record
        for edge in edges:
            self.add_dependency(edge, project_id)
        return copy.deepcopy(record)

    def add_dependency(self, edge: DependencyEdge, project_id: str = "default") -> dict[str, Any]:
        dep_id = edge.id or f"{edge.predecessor_id}->{edge.successor_id}"
        record = {
            "id": dep_id,
            "project_id": project_id,
            "predecessor_id": edge.predecessor_id,
            "successor_id": edge.successor_id,
            "type": edge.type.value,
            "lag": edge.lag,
            "version": 1,
            "deleted_at": None,
        }
        with self._lock:
            self._entities[EntityType.DEPENDENCY][dep_id] = record
        return copy.deepcopy(record)

    def delete_entity(self, entity_type: EntityType, entity_id: str) -> None:
        """Soft delete: the record stays but is hidden from normal reads."""
        with self._lock:
            record = self._entities[entity_type].get(entity_id)
            if record is None:
                raise MissingReferenceError(f"No {entity_type.value} '{entity_id}'")
            record["deleted_at"] = _now()
            record["version"] = int(record.get("version") or 0) + 1

    # Entity access

    def get_entity(
        self, entity_type: EntityType, entity_id: str, *, include_deleted: bool = False
    ) -> dict[str, Any] | None:
        with self._lock:
            record = self._entities[entity_type].get(entity_id)
            if record is None or (record.get("deleted_at") and not include_deleted):
                return None
            return copy.deepcopy(record)

    def update_entity(
        self,
        entity_type: EntityType,
        entity_id: str,
        values: Mapping[str, Any],
        expected_version: int | None = None,
    ) -> dict[str, Any]:
        """Atomically check the version, apply values and increment the version.

        Raises:
            MissingReferenceError: If the entity does not exist or was deleted
            StaleVersionError: If ``expected_version`` is not the stored version
        """
        with self._lock:
            record = self._entities[entity_type].get(entity_id)
            if record is None or record.get("deleted_at"):
                raise MissingReferenceError(f"No {entity_type.value} '{entity_id}'")
            current_version = int(record.get("version") or 0)
            if expected_version is not None and expected_version != current_version:
                raise StaleVersionError(entity_id, expected_version, current_version)
            for key, value in values.items():
                if key not in PROTECTED_FIELDS:
                    record[key] = copy.deepcopy(value)
            record["version"] = current_version + 1
            return copy.deepcopy(record)

    def list_tasks(self, project_id: str, *, include_deleted: bool = False) -> list[dict[str, Any]]:
        return self._list(EntityType.TASK, project_id, include_deleted)

    def list_dependencies(
        self, project_id: str, *, include_deleted: bool = False
    ) -> list[dict[str, Any]]:
        return self._list(EntityType.DEPENDENCY, project_id, include_deleted)

    def _list(
        self, entity_type: EntityType, project_id: str, include_deleted: bool
    ) -> list[dict[str, Any]]:
        with self._lock:
            return [
                copy.deepcopy(record)
                for record in self._entities[entity_type].values()
                if record.get("project_id") == project_id
                and (include_deleted or not record.get("deleted_at"))
            ]

    # Schedules

    def save_schedule(self, schedule: ComputedSchedule) -> None:
        with self._lock:
            self._schedules[schedule.id] = copy.deepcopy(schedule)

    def get_schedule(self, schedule_id: str) -> ComputedSchedule | None:
        with self._lock:
            schedule = self._schedules.get(schedule_id)
            return copy.deepcopy(schedule) if schedule is not None else None

    def list_schedules(self, project_id: str) -> list[ComputedSchedule]:
        """Schedules for a project, newest first."""
        with self._lock:
            schedules = [s for s in self._schedules.values() if s.project_id == project_id]
        return copy.deepcopy(sorted(schedules, key=lambda s: s.calculated_at, reverse=True))

    # Conflicts

    def save_conflict(self, conflict: Conflict) -> None:
        with self._lock:
            self._conflicts[conflict.id] = copy.deepcopy(conflict)

    def get_conflict(self, conflict_id: str) -> Conflict | None:
        with self._lock:
            conflict = self._conflicts.get(conflict_id)
            return copy.deepcopy(conflict) if conflict is not None else None

    def archive_conflict(self, conflict_id: str, resolution: Mapping[str, Any]) -> None:
        with self._lock:
            conflict = self._conflicts.pop(conflict_id, None)
            if conflict is None:
                raise MissingReferenceError(f"No active conflict '{conflict_id}'")
            self._archived[conflict_id] = {
                "conflict": conflict,
                "resolution": dict(resolution),
                "archived_at": _now(),
            }

    def archived_conflict(self, conflict_id: str) -> dict[str, Any] | None:
        with self._lock:
            entry = self._archived.get(conflict_id)
            return copy.deepcopy(entry) if entry is not None else None

    # Activity and backups

    def log_activity(self, entry: Mapping[str, Any]) -> None:
        with self._lock:
            self.activity.append({"at": _now(), **entry})

    def snapshot_project(self, project_id: str) -> str:
        """Copy every record of a project; returns a backup id."""
        backup_id = str(uuid.uuid4())
        with self._lock:
            records = {
                entity_type: {
                    entity_id: copy.deepcopy(record)
                    for entity_id, record in entities.items()
                    if record.get("project_id") == project_id
                    or (entity_type == EntityType.PROJECT and entity_id == project_id)
                }
                for entity_type, entities in self._entities.items()
            }
            self._backups[backup_id] = {"project_id": project_id, "records": records}
        logger.changes(f"Created backup {backup_id} of project {project_id}")
        return backup_id

    def restore_snapshot(self, backup_id: str) -> int:
        """Put a project's records back as they were at snapshot time.

        Versions keep increasing so that stale writers still fail.

        Returns:
            Number of records restored
        """
        with self._lock:
            backup = self._backups.get(backup_id)
            if backup is None:
                raise MissingReferenceError(f"No backup '{backup_id}'")
            restored = 0
            for entity_type, records in backup["records"].items():
                for entity_id, saved in records.items():
                    live = self._entities[entity_type].get(entity_id)
                    record = copy.deepcopy(saved)
                    live_version = int(live.get("version") or 0) if live else 0
                    record["version"] = max(live_version, int(saved.get("version") or 0)) + 1
                    self._entities[entity_type][entity_id] = record
                    restored += 1
        logger.changes(f"Restored {restored} records from backup {backup_id}")
        return restored


def task_nodes(records: Iterable[Mapping[str, Any]]) -> list[TaskNode]:
    return [TaskNode.from_record(record) for record in records]


def dependency_edges(records: Iterable[Mapping[str, Any]]) -> list[DependencyEdge]:
    return [
        DependencyEdge(
            predecessor_id=str(record["predecessor_id"]),
            successor_id=str(record["successor_id"]),
            type=DependencyType(record.get("type") or DependencyType.FS.value),
            lag=float(record.get("lag") or 0.0),
            id=record.get("id"),
        )
        for record in records
    ]
