"""Conflict resolution: single and bulk, with pre-images for rollback."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import date
from typing import Any

from ..exceptions import CpmschedError, MissingReferenceError, ResolutionError, StaleVersionError
from ..logger import get_logger
from ..models import Conflict, EntityType, Severity
from ..store import PROTECTED_FIELDS, ProjectStore
from .core import (
    ALTERNATIVES,
    RECOMMENDATIONS,
    AutoResolveLevel,
    BulkOptions,
    BulkResolution,
    MergeRules,
    Recommendation,
    ResolutionOutcome,
    ResolutionStrategy,
    merge_date,
    merge_progress,
)
from .detection import ConflictDetectionService

logger = get_logger()

# Fields reported when a merge produced a value neither side proposed
SIGNIFICANT_FIELDS = ("start_date", "due_date", "progress", "assignee_id")


def _as_date(value: Any) -> date | None:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def merge_values(
    current: Mapping[str, Any],
    incoming: Mapping[str, Any],
    rules: MergeRules,
) -> dict[str, Any]:
    """Field-level merge; fields without a rule take the incoming value."""
    merged = dict(current)
    for key, value in incoming.items():
        if key in PROTECTED_FIELDS:
            continue
        if key == "start_date" and rules.start_date is not None:
            merged[key] = merge_date(_as_date(current.get(key)), _as_date(value), rules.start_date)
        elif key in ("due_date", "end_date") and rules.end_date is not None:
            merged[key] = merge_date(_as_date(current.get(key)), _as_date(value), rules.end_date)
        elif key == "progress" and rules.progress is not None:
            merged[key] = merge_progress(current.get(key), value, rules.progress)
        else:
            merged[key] = value
    return merged


class ConflictResolutionService:
    """Applies a resolution strategy to stored conflicts.

    Every write goes through the store's version check. A write that loses a
    race is reported as a failed outcome carrying a fresh conflict rather
    than raised.
    """

    def __init__(self, store: ProjectStore, detector: ConflictDetectionService | None = None):
        self.store = store
        self.detector = detector or ConflictDetectionService(store)

    def recommend(self, conflict: Conflict) -> Recommendation:
        """Default strategy and confidence for a conflict, with ranked alternatives."""
        strategy, confidence, reason = RECOMMENDATIONS[conflict.pattern]
        reasons = [reason]
        if conflict.conflicting_fields:
            reasons.append(
                f"{len(conflict.conflicting_fields)} fields changed concurrently: "
                f"{', '.join(conflict.conflicting_fields)}"
            )
        if conflict.is_error:
            reasons.append("Error severity: review the result before continuing")
        alternatives = sorted(
            (alt for alt in ALTERNATIVES if alt.strategy != strategy),
            key=lambda alt: alt.confidence,
            reverse=True,
        )
        return Recommendation(strategy, confidence, reasons, alternatives)

    def resolve_conflict(
        self,
        conflict_id: str,
        strategy: ResolutionStrategy | str,
        values: Mapping[str, Any] | None = None,
        merge_rules: MergeRules | None = None,
    ) -> ResolutionOutcome:
        """Resolve one stored conflict.

        Args:
            conflict_id: Id of an active conflict
            strategy: CURRENT, INCOMING, MANUAL or MERGE
            values: Explicit values for MANUAL
            merge_rules: Field rules for MERGE (defaults to incoming everywhere)

        Raises:
            ResolutionError: If the conflict is unknown, the strategy is invalid,
                or the strategy lacks the values it needs
        """
        conflict = self.store.get_conflict(conflict_id)
        if conflict is None:
            raise ResolutionError(conflict_id, "conflict not found or already resolved")
        try:
            strategy = ResolutionStrategy(strategy)
        except ValueError as e:
            raise ResolutionError(conflict_id, f"unknown strategy '{strategy}'") from e

        current = self.store.get_entity(conflict.entity_type, conflict.entity_id)
        if current is None:
            if strategy != ResolutionStrategy.CURRENT:
                raise ResolutionError(
                    conflict_id, f"{conflict.entity_type.value} '{conflict.entity_id}' was deleted"
                )
            return self._finish(
                conflict,
                ResolutionOutcome(
                    conflict_id=conflict_id,
                    success=True,
                    applied_strategy=strategy,
                    warnings=["Entity no longer exists; nothing to keep"],
                ),
            )

        incoming = dict(conflict.attempted_data or {})
        warnings: list[str] = []

        if strategy == ResolutionStrategy.CURRENT:
            return self._finish(
                conflict,
                ResolutionOutcome(
                    conflict_id=conflict_id,
                    success=True,
                    applied_strategy=strategy,
                    final_values=current,
                ),
            )
        if strategy == ResolutionStrategy.INCOMING:
            if not incoming:
                raise ResolutionError(conflict_id, "no incoming values were recorded")
            changes = incoming
        elif strategy == ResolutionStrategy.MANUAL:
            if not values:
                raise ResolutionError(conflict_id, "manual resolution requires values")
            changes = dict(values)
        elif strategy == ResolutionStrategy.MERGE:
            if not incoming:
                raise ResolutionError(conflict_id, "no incoming values to merge")
            try:
                merged = merge_values(current, incoming, merge_rules or MergeRules())
            except ValueError as e:
                raise ResolutionError(conflict_id, f"cannot merge values: {e}") from e
            changes = {key: merged[key] for key in incoming if key not in PROTECTED_FIELDS}
            for name in SIGNIFICANT_FIELDS:
                if (
                    name in merged
                    and merged[name] != current.get(name)
                    and merged[name] != _coerce_like(merged[name], incoming.get(name))
                ):
                    warnings.append(f"Field '{name}' was merged with custom logic")
        else:
            raise ResolutionError(conflict_id, f"unhandled strategy '{strategy}'")

        changes = {key: value for key, value in changes.items() if key not in PROTECTED_FIELDS}
        version = int(current.get("version") or 0)
        try:
            updated = self.store.update_entity(
                conflict.entity_type, conflict.entity_id, changes, expected_version=version
            )
        except (StaleVersionError, MissingReferenceError) as e:
            fresh = self.detector.detect_conflict(
                conflict.entity_type, conflict.entity_id, version, changes, conflict.project_id
            )
            logger.changes(f"Resolution of {conflict_id} went stale: {e}")
            return ResolutionOutcome(
                conflict_id=conflict_id,
                success=False,
                applied_strategy=strategy,
                warnings=warnings,
                error=str(e),
                conflict=fresh,
            )

        rollback_data = {
            "entity_type": conflict.entity_type.value,
            "entity_id": conflict.entity_id,
            "values": {key: current.get(key) for key in changes},
            "version": updated["version"],
        }
        return self._finish(
            conflict,
            ResolutionOutcome(
                conflict_id=conflict_id,
                success=True,
                applied_strategy=strategy,
                final_values=updated,
                rollback_data=rollback_data,
                warnings=warnings,
            ),
        )

    def _finish(self, conflict: Conflict, outcome: ResolutionOutcome) -> ResolutionOutcome:
        """Archive the conflict and log the decision."""
        assert outcome.applied_strategy is not None
        self.store.archive_conflict(
            conflict.id,
            {"strategy": outcome.applied_strategy.value, "warnings": list(outcome.warnings)},
        )
        self.store.log_activity(
            {
                "action": "conflict_resolved",
                "conflict_id": conflict.id,
                "pattern": conflict.pattern.value,
                "entity_type": conflict.entity_type.value,
                "entity_id": conflict.entity_id,
                "strategy": outcome.applied_strategy.value,
            }
        )
        logger.changes(
            f"Resolved {conflict.id} ({conflict.pattern.value}) with {outcome.applied_strategy.value}"
        )
        return outcome

    def rollback(self, outcome: ResolutionOutcome) -> dict[str, Any]:
        """Restore the pre-image captured by a resolution.

        Raises:
            ResolutionError: If there is nothing to roll back or the entity changed since
        """
        data = outcome.rollback_data
        if not data:
            raise ResolutionError(outcome.conflict_id, "no rollback data")
        try:
            restored = self.store.update_entity(
                EntityType(data["entity_type"]),
                data["entity_id"],
                data["values"],
                expected_version=data["version"],
            )
        except (StaleVersionError, MissingReferenceError) as e:
            raise ResolutionError(outcome.conflict_id, f"rollback failed: {e}") from e
        logger.changes(f"Rolled back resolution of {outcome.conflict_id}")
        return restored

    def restore_backup(self, backup_id: str) -> int:
        """Restore a project snapshot taken by ``resolve_bulk``."""
        return self.store.restore_snapshot(backup_id)

    def resolve_bulk(
        self,
        conflicts: Iterable[Conflict],
        options: BulkOptions | None = None,
    ) -> BulkResolution:
        """Resolve many conflicts; one failure never aborts the batch.

        There is no transaction across entities. Request ``create_backup`` and
        call ``restore_backup`` to undo a partially failed batch.
        """
        options = options or BulkOptions()
        conflicts = list(conflicts)

        backup_ids: dict[str, str] = {}
        if options.create_backup:
            for project_id in dict.fromkeys(c.project_id for c in conflicts if c.project_id):
                backup_ids[project_id] = self.store.snapshot_project(project_id)

        merge_rules = MergeRules.preserve_user_changes() if options.preserve_user_changes else None
        outcomes: list[ResolutionOutcome] = []
        for conflict in conflicts:
            if self.store.get_conflict(conflict.id) is None:
                self.store.save_conflict(conflict)

            skip_reason = self._gate(conflict, options.auto_resolve_level)
            strategy = options.strategy
            if skip_reason is None and strategy is None:
                if conflict.severity == Severity.WARNING:
                    strategy = ResolutionStrategy.MERGE
                else:
                    skip_reason = "requires manual resolution"
            if skip_reason is not None:
                logger.checks(f"  Skipping {conflict.id}: {skip_reason}")
                outcomes.append(
                    ResolutionOutcome(
                        conflict_id=conflict.id,
                        success=False,
                        applied_strategy=None,
                        warnings=[skip_reason],
                        skipped=True,
                    )
                )
                continue

            assert strategy is not None
            try:
                outcome = self.resolve_conflict(conflict.id, strategy, options.values, merge_rules)
            except CpmschedError as e:
                logger.changes(f"Failed to resolve {conflict.id}: {e}")
                outcome = ResolutionOutcome(
                    conflict_id=conflict.id,
                    success=False,
                    applied_strategy=strategy,
                    error=str(e),
                )
            outcomes.append(outcome)

        result = BulkResolution(outcomes=outcomes, backup_ids=backup_ids)
        logger.changes(
            f"Bulk resolution: {len(result.resolved)} resolved, {len(result.failed)} failed, "
            f"{len(result.skipped)} skipped"
        )
        return result

    @staticmethod
    def _gate(conflict: Conflict, level: AutoResolveLevel) -> str | None:
        if level == AutoResolveLevel.NONE:
            return "auto-resolve disabled"
        if level == AutoResolveLevel.WARNINGS:
            return "error severity requires review" if conflict.is_error else None
        if level == AutoResolveLevel.ALL:
            return None
        raise ValueError(f"Unknown auto-resolve level: {level}")


def _coerce_like(reference: Any, value: Any) -> Any:
    """Parse an ISO string to a date when comparing against a date."""
    if isinstance(reference, date) and isinstance(value, str):
        return _as_date(value)
    return value
