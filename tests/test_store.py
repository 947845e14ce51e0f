"""Tests for the in-memory project store."""

import threading

import pytest

from cpmsched.exceptions import MissingReferenceError, StaleVersionError
from cpmsched.models import DependencyType, EntityType, Link, TaskNode
from cpmsched.store import InMemoryProjectStore, dependency_edges, task_nodes
from tests.conftest import task


class TestVersionedUpdates:
    """Test the atomic check-and-increment."""

    def test_update_increments_version(self, store: InMemoryProjectStore) -> None:
        updated = store.update_entity(EntityType.TASK, "A", {"title": "Alpha"}, expected_version=1)

        assert updated["version"] == 2
        assert updated["title"] == "Alpha"

    def test_stale_version_rejected(self, store: InMemoryProjectStore) -> None:
        store.update_entity(EntityType.TASK, "A", {"title": "Alpha"})

        with pytest.raises(StaleVersionError) as exc_info:
            store.update_entity(EntityType.TASK, "A", {"title": "Other"}, expected_version=1)

        assert exc_info.value.actual_version == 2
        record = store.get_entity(EntityType.TASK, "A")
        assert record is not None
        assert record["title"] == "Alpha"

    def test_protected_fields_ignored(self, store: InMemoryProjectStore) -> None:
        updated = store.update_entity(
            EntityType.TASK, "A", {"id": "Z", "version": 50, "project_id": "other"}
        )

        assert (updated["id"], updated["version"], updated["project_id"]) == ("A", 2, "p1")

    def test_concurrent_writers_one_wins(self, store: InMemoryProjectStore) -> None:
        outcomes: list[str] = []
        barrier = threading.Barrier(8)

        def writer(n: int) -> None:
            barrier.wait()
            try:
                store.update_entity(EntityType.TASK, "A", {"progress": n}, expected_version=1)
                outcomes.append("ok")
            except StaleVersionError:
                outcomes.append("stale")

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert outcomes.count("ok") == 1
        assert outcomes.count("stale") == 7

    def test_reads_are_copies(self, store: InMemoryProjectStore) -> None:
        record = store.get_entity(EntityType.TASK, "A")
        assert record is not None
        record["title"] = "changed"

        fresh = store.get_entity(EntityType.TASK, "A")
        assert fresh is not None
        assert fresh["title"] == "A"


class TestDeletion:
    """Test soft deletes."""

    def test_deleted_hidden_from_reads(self, store: InMemoryProjectStore) -> None:
        store.delete_entity(EntityType.TASK, "B")

        assert store.get_entity(EntityType.TASK, "B") is None
        assert store.get_entity(EntityType.TASK, "B", include_deleted=True) is not None
        assert [t["id"] for t in store.list_tasks("p1")] == ["A", "C"]
        assert len(store.list_tasks("p1", include_deleted=True)) == 3

    def test_update_after_delete(self, store: InMemoryProjectStore) -> None:
        store.delete_entity(EntityType.TASK, "B")

        with pytest.raises(MissingReferenceError):
            store.update_entity(EntityType.TASK, "B", {"title": "x"})

    def test_delete_unknown(self, store: InMemoryProjectStore) -> None:
        with pytest.raises(MissingReferenceError):
            store.delete_entity(EntityType.TASK, "Z")


class TestSeedingAndConversion:
    """Test seeding from task nodes and converting records back."""

    def test_task_links_become_dependencies(self) -> None:
        store = InMemoryProjectStore()
        store.add_task(task("A"), "p1")
        store.add_task(
            TaskNode("B", duration=2, predecessors=[Link("A", DependencyType.SS, 1.0)]), "p1"
        )

        edges = dependency_edges(store.list_dependencies("p1"))

        assert [(e.predecessor_id, e.successor_id, e.type, e.lag) for e in edges] == [
            ("A", "B", DependencyType.SS, 1.0)
        ]
        assert edges[0].id == "A->B"

    def test_task_nodes_from_records(self, store: InMemoryProjectStore) -> None:
        nodes = task_nodes(store.list_tasks("p1"))

        assert [(n.id, n.duration, n.version) for n in nodes] == [
            ("A", 2.0, 1),
            ("B", 5.0, 1),
            ("C", 3.0, 1),
        ]


class TestBackups:
    """Test project snapshots."""

    def test_restore_keeps_versions_increasing(self, store: InMemoryProjectStore) -> None:
        backup_id = store.snapshot_project("p1")
        store.update_entity(EntityType.TASK, "A", {"title": "Alpha"})
        store.delete_entity(EntityType.TASK, "B")

        restored = store.restore_snapshot(backup_id)

        assert restored == 6
        a = store.get_entity(EntityType.TASK, "A")
        assert a is not None
        assert (a["title"], a["version"]) == ("A", 3)
        assert store.get_entity(EntityType.TASK, "B") is not None

    def test_unknown_backup(self, store: InMemoryProjectStore) -> None:
        with pytest.raises(MissingReferenceError):
            store.restore_snapshot("missing")
