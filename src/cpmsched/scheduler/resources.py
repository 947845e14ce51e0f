"""Per-assignee allocation timelines."""

from __future__ import annotations

import bisect
from dataclasses import dataclass, field

from ..calendar import EPSILON
from ..config import MAX_CAPACITY
from ..logger import get_logger

logger = get_logger()


@dataclass(frozen=True)
class Assignment:
    """A task occupying a resource over a half-open window of working units."""

    task_id: str
    start: int
    end: int
    allocation: float = 100.0  # Percent

    def overlaps(self, start: int, end: int) -> bool:
        return self.start < end and start < self.end


@dataclass
class Overload:
    """A stretch of units where summed allocation exceeds capacity."""

    resource_id: str
    start: int
    end: int
    total_allocation: float
    task_ids: list[str] = field(default_factory=list[str])

    @property
    def description(self) -> str:
        return (
            f"{self.total_allocation:g}% allocated over units {self.start}-{self.end} "
            f"({', '.join(self.task_ids)})"
        )


class ResourceTimeline:
    """Tracks assignments for one resource, sorted by start unit.

    Unlike a busy-period list the assignments are never merged: each keeps its
    task id and allocation so that overloads can name the tasks involved.
    """

    def __init__(self, resource_id: str, capacity: float = MAX_CAPACITY) -> None:
        self.resource_id = resource_id
        self.capacity = capacity
        self.assignments: list[Assignment] = []

    def add(self, assignment: Assignment) -> None:
        """Insert an assignment, keeping the list sorted by (start, end)."""
        idx = bisect.bisect_right(
            self.assignments, (assignment.start, assignment.end), key=lambda a: (a.start, a.end)
        )
        self.assignments.insert(idx, assignment)

    def remove(self, task_id: str) -> Assignment | None:
        for idx, assignment in enumerate(self.assignments):
            if assignment.task_id == task_id:
                return self.assignments.pop(idx)
        return None

    def overlapping(self, start: int, end: int, exclude: str | None = None) -> list[Assignment]:
        """Assignments sharing at least one unit with [start, end)."""
        # Assignments starting at or after ``end`` cannot overlap
        stop = bisect.bisect_left(self.assignments, end, key=lambda a: a.start)
        return [
            a
            for a in self.assignments[:stop]
            if a.task_id != exclude and a.overlaps(start, end)
        ]

    def overloads(self) -> list[Overload]:
        """Sweep the timeline and report stretches above capacity.

        Adjacent stretches involving the same tasks are reported once.
        """
        points = sorted({p for a in self.assignments for p in (a.start, a.end)})
        found: list[Overload] = []
        for seg_start, seg_end in zip(points, points[1:]):
            active = [a for a in self.assignments if a.start <= seg_start and a.end >= seg_end]
            total = sum(a.allocation for a in active)
            if total <= self.capacity + EPSILON:
                continue
            task_ids = [a.task_id for a in active]
            if found and found[-1].end == seg_start and found[-1].task_ids == task_ids:
                found[-1].end = seg_end
                continue
            found.append(Overload(self.resource_id, seg_start, seg_end, total, task_ids))
        return found

    def allocated_days(self) -> float:
        """Working days of full-time-equivalent work assigned."""
        return sum((a.end - a.start) * a.allocation / 100 for a in self.assignments)

    def utilization(self, horizon: float) -> float:
        """Share of the capacity used over ``horizon`` working units."""
        available = horizon * self.capacity / 100
        if available <= 0:
            return 0.0
        return self.allocated_days() / available


def build_timelines(
    windows: dict[str, tuple[str, int, int, float]],
    capacities: dict[str, float] | None = None,
) -> dict[str, ResourceTimeline]:
    """Group task windows by assignee.

    Args:
        windows: task id -> (assignee, start unit, end unit, allocation)
        capacities: assignee -> capacity percent (default 100)
    """
    capacities = capacities or {}
    timelines: dict[str, ResourceTimeline] = {}
    for task_id, (resource_id, start, end, allocation) in windows.items():
        if end <= start:
            continue
        if resource_id not in timelines:
            timelines[resource_id] = ResourceTimeline(
                resource_id, capacities.get(resource_id, MAX_CAPACITY)
            )
        timelines[resource_id].add(Assignment(task_id, start, end, allocation))
    return timelines
