"""Pytest configuration and fixtures for cpmsched tests."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date
from typing import Any

import pytest

from cpmsched.context import set_config_path
from cpmsched.logger import reset_logger
from cpmsched.models import DependencyEdge, DependencyType, Link, TaskNode
from cpmsched.store import InMemoryProjectStore

# A Monday, so units 0-4 are Mon-Fri of the first week
PROJECT_START = date(2025, 1, 6)


@pytest.fixture(autouse=True)
def clean_logger() -> None:
    """Reset logger state before each test for isolation."""
    reset_logger()


@pytest.fixture(autouse=True)
def clean_context() -> None:
    """Clear the config path a CLI test may have set."""
    set_config_path(None)


def task(task_id: str, duration: float = 1.0, *preds: str, **kwargs: Any) -> TaskNode:
    """Create a TaskNode with finish-to-start predecessors.

    Example:
        task("C", 3, "A", "B", assignee_id="alice")
    """
    return TaskNode(
        id=task_id,
        title=kwargs.pop("title", task_id),
        duration=duration,
        predecessors=[Link(pred) for pred in preds],
        **kwargs,
    )


def edge(
    pred: str,
    succ: str,
    dep_type: DependencyType = DependencyType.FS,
    lag: float = 0.0,
) -> DependencyEdge:
    """Create a DependencyEdge."""
    return DependencyEdge(pred, succ, dep_type, lag)


def abc_chain() -> tuple[list[TaskNode], list[DependencyEdge]]:
    """A(2d) -> B(5d) -> C(3d) with one day of lag between B and C."""
    tasks = [task("A", 2), task("B", 5), task("C", 3)]
    deps = [edge("A", "B"), edge("B", "C", lag=1)]
    return tasks, deps


@pytest.fixture
def store() -> InMemoryProjectStore:
    """Store seeded with project 'p1' holding the A -> B -> C chain."""
    s = InMemoryProjectStore()
    s.add_project("p1")
    tasks, deps = abc_chain()
    for t in tasks:
        s.add_task(t, "p1")
    for d in deps:
        s.add_dependency(d, "p1")
    return s


@pytest.fixture
def make_store() -> Callable[..., InMemoryProjectStore]:
    """Factory for a store seeded with arbitrary tasks and edges in project 'p1'."""

    def _make(
        tasks: list[TaskNode],
        deps: list[DependencyEdge] | None = None,
    ) -> InMemoryProjectStore:
        s = InMemoryProjectStore()
        s.add_project("p1")
        for t in tasks:
            s.add_task(t, "p1")
        for d in deps or []:
            s.add_dependency(d, "p1")
        return s

    return _make
