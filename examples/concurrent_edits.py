"""Example: calculate, apply and reconcile a schedule against a store.

Two users work on the same project. One applies a freshly computed schedule
while the other edits a task they loaded earlier; the stale edit surfaces as
an UPDATE_CONFLICT which is then resolved by merging.

Usage:
    python examples/concurrent_edits.py
"""

from datetime import date

from cpmsched.conflicts import ConflictResolutionService, MergeRules, ProgressRule
from cpmsched.exceptions import StaleVersionError
from cpmsched.logger import setup_logger
from cpmsched.models import DependencyEdge, EntityType, TaskNode
from cpmsched.scheduler import SchedulingService
from cpmsched.store import InMemoryProjectStore


def main() -> None:
    setup_logger(1)

    store = InMemoryProjectStore()
    store.add_project("demo")
    store.add_task(TaskNode(id="design", title="Write design", duration=2), "demo")
    store.add_task(TaskNode(id="build", title="Build", duration=5), "demo")
    store.add_task(TaskNode(id="ship", title="Ship", duration=3), "demo")
    store.add_dependency(DependencyEdge("design", "build"), "demo")
    store.add_dependency(DependencyEdge("build", "ship", lag=1), "demo")

    service = SchedulingService(store)
    schedule = service.calculate("demo", project_start=date(2025, 1, 6))
    print(f"Critical path: {' -> '.join(schedule.critical_path)}")
    print(f"Finish: {schedule.project_finish_date}")

    # Second user read "build" before the schedule was applied
    stale = store.get_entity(EntityType.TASK, "build")
    assert stale is not None

    applied = service.apply_schedule(schedule.id)
    print(f"Applied {applied.applied_count} tasks (rollback token {applied.rollback_token})")

    attempted = {"progress": 40.0}
    try:
        store.update_entity(EntityType.TASK, "build", attempted, expected_version=stale["version"])
    except StaleVersionError as e:
        print(f"Write rejected: {e}")
        conflict = service.detector.detect_conflict(
            EntityType.TASK, "build", stale["version"], attempted, "demo"
        )
        assert conflict is not None
        print(f"{conflict.severity.value}: {conflict.description}")

        resolver = ConflictResolutionService(store, service.detector)
        recommendation = resolver.recommend(conflict)
        print(f"Recommended: {recommendation.strategy.value} ({recommendation.confidence:.0%})")
        outcome = resolver.resolve_conflict(
            conflict.id, recommendation.strategy, merge_rules=MergeRules(progress=ProgressRule.MAX)
        )
        print(f"Resolved: progress={outcome.final_values['progress']}")


if __name__ == "__main__":
    main()
