"""Id-indexed task graph shared by the scheduling passes and conflict detection.

Tasks live in a dict keyed by id and refer to each other only through
``Link`` records. All traversals use explicit stacks or queues so that very
large projects cannot exhaust the interpreter's recursion limit.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Mapping
from dataclasses import replace

from ..exceptions import CircularDependencyError, InvalidConstraintError, MissingReferenceError
from ..models import DependencyEdge, Link, TaskNode


def find_cycle(adjacency: Mapping[str, Iterable[str]]) -> list[str] | None:
    """Find one cycle in a directed graph.

    Depth-first search with an explicit recursion stack. Nodes are visited in
    mapping order so the reported cycle is deterministic.

    Args:
        adjacency: Node id -> ids of nodes it points to

    Returns:
        The cycle as a closed path (first id repeated at the end), or None
    """
    visited: set[str] = set()
    on_stack: set[str] = set()

    for root in adjacency:
        if root in visited:
            continue
        path: list[str] = [root]
        iterators = [iter(adjacency.get(root, ()))]
        visited.add(root)
        on_stack.add(root)

        while iterators:
            next_id = next(iterators[-1], None)
            if next_id is None:
                on_stack.discard(path.pop())
                iterators.pop()
                continue
            if next_id in on_stack:
                return [*path[path.index(next_id) :], next_id]
            if next_id in visited:
                continue
            visited.add(next_id)
            on_stack.add(next_id)
            path.append(next_id)
            iterators.append(iter(adjacency.get(next_id, ())))

    return None


def find_path(adjacency: Mapping[str, Iterable[str]], start: str, goal: str) -> list[str] | None:
    """Shortest path from ``start`` to ``goal`` (breadth-first), or None."""
    if start == goal:
        return [start]
    parents: dict[str, str] = {}
    queue = deque([start])
    seen = {start}
    while queue:
        node = queue.popleft()
        for next_id in adjacency.get(node, ()):
            if next_id in seen:
                continue
            parents[next_id] = node
            if next_id == goal:
                path = [goal]
                while path[-1] != start:
                    path.append(parents[path[-1]])
                return list(reversed(path))
            seen.add(next_id)
            queue.append(next_id)
    return None


class TaskGraph:
    """Request-scoped snapshot of tasks and the edges between them."""

    def __init__(self, tasks: dict[str, TaskNode]):
        self.tasks = tasks

    @classmethod
    def build(
        cls,
        tasks: Iterable[TaskNode],
        dependencies: Iterable[DependencyEdge] = (),
    ) -> TaskGraph:
        """Copy tasks and attach predecessor/successor links.

        Predecessor links already present on the input tasks are kept and
        ``dependencies`` are appended to them; successor lists are rebuilt
        from the predecessor side. The input objects are never mutated.

        Raises:
            InvalidConstraintError: If two tasks share an id
            MissingReferenceError: If an edge references an unknown task
        """
        copies: dict[str, TaskNode] = {}
        for task in tasks:
            if task.id in copies:
                raise InvalidConstraintError(f"Duplicate task id '{task.id}'")
            copies[task.id] = replace(task, predecessors=list(task.predecessors), successors=[])

        for edge in dependencies:
            if edge.successor_id not in copies:
                raise MissingReferenceError(
                    f"Dependency {edge.predecessor_id} -> {edge.successor_id} "
                    f"references unknown task '{edge.successor_id}'"
                )
            link = Link(edge.predecessor_id, edge.type, edge.lag)
            if link not in copies[edge.successor_id].predecessors:
                copies[edge.successor_id].predecessors.append(link)

        for task in copies.values():
            for link in task.predecessors:
                if link.task_id not in copies:
                    raise MissingReferenceError(
                        f"Task '{task.id}' depends on unknown task '{link.task_id}'"
                    )
                copies[link.task_id].successors.append(Link(task.id, link.type, link.lag))

        return cls(copies)

    def successor_map(self) -> dict[str, list[str]]:
        """Task id -> successor ids, in insertion order."""
        return {
            task_id: [link.task_id for link in task.successors]
            for task_id, task in self.tasks.items()
        }

    def edges(self) -> list[DependencyEdge]:
        return [
            DependencyEdge(link.task_id, task_id, link.type, link.lag)
            for task_id, task in self.tasks.items()
            for link in task.predecessors
        ]

    def topological_order(self) -> list[str]:
        """Kahn's algorithm; ties keep input order.

        Raises:
            CircularDependencyError: Naming one cycle if ordering is impossible
        """
        in_degree = {task_id: len(task.predecessors) for task_id, task in self.tasks.items()}
        queue = deque(task_id for task_id, degree in in_degree.items() if degree == 0)
        order: list[str] = []

        while queue:
            task_id = queue.popleft()
            order.append(task_id)
            for link in self.tasks[task_id].successors:
                in_degree[link.task_id] -= 1
                if in_degree[link.task_id] == 0:
                    queue.append(link.task_id)

        if len(order) != len(self.tasks):
            remaining = {
                task_id: [
                    link.task_id
                    for link in self.tasks[task_id].successors
                    if in_degree[link.task_id] > 0
                ]
                for task_id, degree in in_degree.items()
                if degree > 0
            }
            cycle = find_cycle(remaining) or sorted(remaining)
            raise CircularDependencyError(cycle)

        return order

    def sources(self) -> list[str]:
        return [task_id for task_id, task in self.tasks.items() if not task.predecessors]

    def sinks(self) -> list[str]:
        return [task_id for task_id, task in self.tasks.items() if not task.successors]
