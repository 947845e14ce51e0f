"""High-level scheduling service over a project store."""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING

from ..calendar import CalendarMapper
from ..config import UnifiedConfig
from ..exceptions import (
    MissingReferenceError,
    ScheduleNotFoundError,
    StaleVersionError,
    ValidationError,
)
from ..logger import get_logger
from ..models import Conflict, ConflictPattern, EntityType, Severity
from ..store import dependency_edges, task_nodes
from . import engine
from .core import ComputedSchedule, TaskDateChange

if TYPE_CHECKING:
    from ..conflicts.detection import ConflictDetectionService
    from ..store import ProjectStore

logger = get_logger()

HISTORY_LIMIT = 10


def _default_conflicts() -> list[Conflict]:
    return []


@dataclass
class ApplyResult:
    """Outcome of writing a computed schedule back to the store."""

    applied_count: int
    rollback_token: str | None
    changes: list[TaskDateChange]
    conflicts: list[Conflict] = field(default_factory=_default_conflicts)  # 409-equivalents


@dataclass
class PreviewResult:
    """Diff between a computed schedule and live task dates."""

    changed_tasks: list[TaskDateChange]
    estimated_savings: int  # Working days earlier than the live finish (negative if later)


@dataclass
class RollbackResult:
    """Outcome of restoring the pre-image of an applied schedule."""

    restored_count: int
    conflicts: list[Conflict] = field(default_factory=_default_conflicts)


class SchedulingService:
    """Coordinates calculation, persistence of results, apply, preview and rollback.

    This service:
    - Reads request-scoped task/dependency snapshots from the store
    - Runs the pure calculation pipeline (``engine.run``)
    - Writes computed dates back with a version check per task, turning
      stale writes into conflicts instead of failures
    """

    def __init__(
        self,
        store: ProjectStore,
        config: UnifiedConfig | None = None,
        detector: ConflictDetectionService | None = None,
    ):
        """Initialize the service.

        Args:
            store: Persistence collaborator holding tasks, dependencies and schedules
            config: Calendar, resource capacities and solver tuning
            detector: Used to describe stale writes; created on demand if omitted
        """
        self.store = store
        self.config = config or UnifiedConfig()
        if detector is None:
            from ..conflicts.detection import ConflictDetectionService

            detector = ConflictDetectionService(store, self.config.calendar)
        self.detector = detector

    def calculate(
        self,
        project_id: str,
        project_start: date,
        deadline: date | None = None,
        mandatory_dates: dict[str, date] | None = None,
    ) -> ComputedSchedule:
        """Calculate a schedule from the live project state and store it.

        Findings are returned in the schedule; only structural problems raise.
        """
        task_records = self.store.list_tasks(project_id)
        live = {record["id"] for record in task_records}
        dep_records = [
            dep
            for dep in self.store.list_dependencies(project_id)
            if dep["predecessor_id"] in live and dep["successor_id"] in live
        ]

        schedule = engine.calculate(
            task_nodes(task_records),
            dependency_edges(dep_records),
            self.config.calendar,
            deadline,
            project_start=project_start,
            project_id=project_id,
            config=self.config.scheduler,
            capacities=self.config.resources,
            mandatory_dates=mandatory_dates,
        )
        stored = self.store.get_schedule(schedule.id)
        if stored is not None and stored.applied:
            # Same content as an applied record; keep its apply state for rollback
            logger.checks(f"Schedule {schedule.id} unchanged since it was applied")
            return stored
        self.store.save_schedule(schedule)
        for conflict in schedule.conflicts:
            self.store.save_conflict(conflict)
        return schedule

    def _get_schedule(self, schedule_id: str) -> ComputedSchedule:
        schedule = self.store.get_schedule(schedule_id)
        if schedule is None:
            raise ScheduleNotFoundError(f"Computed schedule '{schedule_id}' not found")
        return schedule

    def diff(
        self,
        schedule: ComputedSchedule,
        scope: Iterable[str] | None = None,
    ) -> list[TaskDateChange]:
        """Tasks whose live dates differ from the computed ones."""
        in_scope = set(scope) if scope is not None else None
        changes: list[TaskDateChange] = []
        for result in schedule.results:
            if in_scope is not None and result.task_id not in in_scope:
                continue
            live = self.store.get_entity(EntityType.TASK, result.task_id)
            if live is None:
                continue
            previous_start, previous_end = live.get("start_date"), live.get("due_date")
            if previous_start == result.start_date and previous_end == result.end_date:
                continue
            changes.append(
                TaskDateChange(
                    task_id=result.task_id,
                    previous_start=previous_start,
                    previous_end=previous_end,
                    new_start=result.start_date,
                    new_end=result.end_date,
                )
            )
        return changes

    def apply_schedule(
        self,
        schedule_id: str,
        scope: Iterable[str] | None = None,
        expected_versions: Mapping[str, int] | None = None,
    ) -> ApplyResult:
        """Write computed dates back to the store.

        Args:
            schedule_id: Stored computed schedule
            scope: Only apply to these task ids
            expected_versions: Task versions the caller last read; defaults to
                the version read here

        Raises:
            ScheduleNotFoundError: If the schedule id is unknown
        """
        schedule = self._get_schedule(schedule_id)
        expected_versions = expected_versions or {}
        changes = self.diff(schedule, scope)
        applied: list[TaskDateChange] = []
        conflicts: list[Conflict] = []
        pre_image: dict[str, dict[str, object]] = {}

        for change in changes:
            live = self.store.get_entity(EntityType.TASK, change.task_id)
            if live is None:
                continue
            if live.get("is_completed") or live.get("status") == "done":
                logger.checks(f"  Skipping completed task {change.task_id}")
                continue
            if live.get("schedule_locked"):
                conflicts.append(
                    Conflict.create(
                        ConflictPattern.SCHEDULE_CONFLICT,
                        Severity.ERROR,
                        change.task_id,
                        f"Task '{change.task_id}' is locked and cannot be rescheduled",
                        project_id=schedule.project_id,
                        current_version=int(live.get("version") or 0),
                        attempted_version=int(live.get("version") or 0),
                        suggested_resolutions=["Unlock the task first"],
                        current_data={
                            "start_date": change.previous_start,
                            "due_date": change.previous_end,
                        },
                        attempted_data={"start_date": change.new_start, "due_date": change.new_end},
                    )
                )
                self.store.save_conflict(conflicts[-1])
                continue

            values = {"start_date": change.new_start, "due_date": change.new_end}
            expected = expected_versions.get(change.task_id, int(live.get("version") or 0))
            try:
                updated = self.store.update_entity(EntityType.TASK, change.task_id, values, expected)
            except (StaleVersionError, MissingReferenceError):
                conflict = self.detector.detect_conflict(
                    EntityType.TASK, change.task_id, expected, values, schedule.project_id
                )
                if conflict is not None:
                    conflicts.append(conflict)
                continue

            pre_image[change.task_id] = {
                "start_date": change.previous_start,
                "due_date": change.previous_end,
                "version": updated["version"],
            }
            applied.append(change)
            logger.changes(
                f"  {change.task_id}: {change.previous_start}..{change.previous_end} -> "
                f"{change.new_start}..{change.new_end}"
            )

        rollback_token = str(uuid.uuid4()) if applied else None
        schedule.applied = True
        schedule.applied_at = datetime.now(timezone.utc)
        schedule.rollback_token = rollback_token
        schedule.pre_image = pre_image
        self.store.save_schedule(schedule)
        self.store.log_activity(
            {
                "action": "schedule_applied",
                "schedule_id": schedule.id,
                "project_id": schedule.project_id,
                "applied_count": len(applied),
            }
        )
        logger.changes(
            f"Applied schedule {schedule.id}: {len(applied)} tasks updated, "
            f"{len(conflicts)} conflicts"
        )
        return ApplyResult(
            applied_count=len(applied),
            rollback_token=rollback_token,
            changes=applied,
            conflicts=conflicts,
        )

    def preview_schedule(self, schedule_id: str) -> PreviewResult:
        """Diff a stored schedule against live task dates without writing anything.

        Raises:
            ScheduleNotFoundError: If the schedule id is unknown
        """
        schedule = self._get_schedule(schedule_id)
        changes = self.diff(schedule)

        live_ends = []
        for result in schedule.results:
            live = self.store.get_entity(EntityType.TASK, result.task_id)
            if live is not None and live.get("due_date") is not None:
                live_ends.append(live["due_date"])

        savings = 0
        if live_ends and schedule.project_finish_date is not None:
            mapper = CalendarMapper(schedule.project_start, self.config.calendar)
            savings = mapper.elapsed_units(max(live_ends)) - mapper.elapsed_units(
                schedule.project_finish_date
            )
        return PreviewResult(changed_tasks=changes, estimated_savings=savings)

    def rollback_schedule(
        self,
        schedule_id: str,
        rollback_token: str,
        expected_versions: Mapping[str, int] | None = None,
    ) -> RollbackResult:
        """Restore task dates captured when the schedule was applied.

        Tasks edited since the apply are left alone and reported as conflicts.
        Their pre-image entries and the token are kept, so the rollback can be
        retried once the conflicts are settled.

        Args:
            schedule_id: Applied computed schedule
            rollback_token: Token returned by ``apply_schedule``
            expected_versions: Task versions to check instead of the ones
                recorded at apply time, for a retry after an edit

        Raises:
            ScheduleNotFoundError: If the schedule id is unknown
            ValidationError: If the token does not match the last apply
        """
        schedule = self._get_schedule(schedule_id)
        if not schedule.applied or schedule.rollback_token != rollback_token:
            raise ValidationError(f"Rollback token does not match schedule '{schedule_id}'")
        expected_versions = expected_versions or {}

        restored = 0
        conflicts: list[Conflict] = []
        remaining: dict[str, dict[str, object]] = {}
        for task_id, pre in schedule.pre_image.items():
            values = {"start_date": pre.get("start_date"), "due_date": pre.get("due_date")}
            expected = expected_versions.get(task_id, int(pre.get("version") or 0))
            try:
                self.store.update_entity(EntityType.TASK, task_id, values, expected)
            except (StaleVersionError, MissingReferenceError):
                conflict = self.detector.detect_conflict(
                    EntityType.TASK, task_id, expected, values, schedule.project_id
                )
                if conflict is not None:
                    conflicts.append(conflict)
                remaining[task_id] = pre
                continue
            restored += 1

        schedule.pre_image = remaining
        if not remaining:
            schedule.applied = False
            schedule.applied_at = None
            schedule.rollback_token = None
        self.store.save_schedule(schedule)
        self.store.log_activity(
            {
                "action": "schedule_rolled_back",
                "schedule_id": schedule.id,
                "project_id": schedule.project_id,
                "restored_count": restored,
            }
        )
        logger.changes(f"Rolled back schedule {schedule.id}: {restored} tasks restored")
        return RollbackResult(restored_count=restored, conflicts=conflicts)

    def schedule_history(
        self, project_id: str, limit: int = HISTORY_LIMIT
    ) -> list[ComputedSchedule]:
        """Most recent computed schedules for a project, newest first."""
        return self.store.list_schedules(project_id)[:limit]
