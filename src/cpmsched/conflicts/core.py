"""Resolution strategies, merge rules and outcome records."""

from __future__ import annotations

import math
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any

from ..models import Conflict, ConflictPattern


def _default_dict() -> dict[str, Any]:
    return {}


class ResolutionStrategy(str, Enum):
    """How a conflict is resolved."""

    CURRENT = "current"  # Keep the stored values
    INCOMING = "incoming"  # Take the caller's attempted values
    MANUAL = "manual"  # Take explicitly supplied values
    MERGE = "merge"  # Field-level merge rules


class DateRule(str, Enum):
    """Merge rule for date fields."""

    CURRENT = "current"
    INCOMING = "incoming"
    EARLIEST = "earliest"
    LATEST = "latest"


class ProgressRule(str, Enum):
    """Merge rule for the progress field."""

    CURRENT = "current"
    INCOMING = "incoming"
    MAX = "max"
    AVG = "avg"


class AutoResolveLevel(str, Enum):
    """Which conflicts a bulk resolution may touch."""

    NONE = "none"  # Skip everything
    WARNINGS = "warnings"  # Skip errors
    ALL = "all"


@dataclass
class MergeRules:
    """Per-field merge rules; fields without a rule take the incoming value."""

    start_date: DateRule | None = None
    end_date: DateRule | None = None
    progress: ProgressRule | None = None

    @classmethod
    def preserve_user_changes(cls) -> MergeRules:
        """Rules that keep what the user typed and never lose reported progress."""
        return cls(
            start_date=DateRule.INCOMING,
            end_date=DateRule.INCOMING,
            progress=ProgressRule.MAX,
        )


def merge_date(current: date | None, incoming: date | None, rule: DateRule) -> date | None:
    if rule == DateRule.CURRENT:
        return current
    if rule == DateRule.INCOMING:
        return incoming
    if current is None or incoming is None:
        return current if incoming is None else incoming
    if rule == DateRule.EARLIEST:
        return min(current, incoming)
    if rule == DateRule.LATEST:
        return max(current, incoming)
    raise ValueError(f"Unknown date rule: {rule}")


def merge_progress(
    current: float | None, incoming: float | None, rule: ProgressRule
) -> float | None:
    if rule == ProgressRule.CURRENT:
        return current
    if rule == ProgressRule.INCOMING:
        return incoming
    if current is None or incoming is None:
        return current if incoming is None else incoming
    if rule == ProgressRule.MAX:
        return max(current, incoming)
    if rule == ProgressRule.AVG:
        # Half-up rounding to whole percent
        return float(math.floor((current + incoming) / 2 + 0.5))
    raise ValueError(f"Unknown progress rule: {rule}")


@dataclass
class ResolutionOutcome:
    """Result of resolving one conflict.

    A failed outcome carries ``error``; a write that went stale also carries
    the new ``conflict`` so the caller can choose again.
    """

    conflict_id: str
    success: bool
    applied_strategy: ResolutionStrategy | None
    final_values: dict[str, Any] = field(default_factory=_default_dict)
    rollback_data: dict[str, Any] | None = None
    warnings: list[str] = field(default_factory=list[str])
    error: str | None = None
    conflict: Conflict | None = None
    skipped: bool = False


@dataclass
class BulkOptions:
    """Options for bulk resolution.

    ``strategy`` None picks per conflict: MERGE for warnings; errors are left
    for manual review.
    """

    strategy: ResolutionStrategy | None = None
    auto_resolve_level: AutoResolveLevel = AutoResolveLevel.WARNINGS
    create_backup: bool = False
    preserve_user_changes: bool = False
    values: dict[str, Any] | None = None  # For MANUAL


@dataclass
class BulkResolution:
    """Outcomes of a bulk run, in input order."""

    outcomes: list[ResolutionOutcome]
    backup_ids: dict[str, str] = field(default_factory=dict[str, str])  # project -> backup

    def __iter__(self) -> Iterator[ResolutionOutcome]:
        return iter(self.outcomes)

    def __len__(self) -> int:
        return len(self.outcomes)

    @property
    def resolved(self) -> list[ResolutionOutcome]:
        return [o for o in self.outcomes if o.success]

    @property
    def failed(self) -> list[ResolutionOutcome]:
        return [o for o in self.outcomes if not o.success and not o.skipped]

    @property
    def skipped(self) -> list[ResolutionOutcome]:
        return [o for o in self.outcomes if o.skipped]


@dataclass
class Alternative:
    """A non-recommended strategy with its trade-offs."""

    strategy: ResolutionStrategy
    confidence: float
    pros: list[str]
    cons: list[str]


@dataclass
class Recommendation:
    """Default strategy for a conflict plus ranked alternatives."""

    strategy: ResolutionStrategy
    confidence: float
    reasons: list[str]
    alternatives: list[Alternative]


# Pattern -> (strategy, confidence, reason)
RECOMMENDATIONS: dict[ConflictPattern, tuple[ResolutionStrategy, float, str]] = {
    ConflictPattern.UPDATE_CONFLICT: (
        ResolutionStrategy.MERGE,
        0.8,
        "Concurrent edits usually touch different fields and can be merged",
    ),
    ConflictPattern.DELETE_CONFLICT: (
        ResolutionStrategy.CURRENT,
        0.9,
        "The entity was deleted; keeping the current state avoids resurrecting it",
    ),
    ConflictPattern.SCHEDULE_CONFLICT: (
        ResolutionStrategy.INCOMING,
        0.7,
        "The incoming schedule reflects the latest calculation",
    ),
    ConflictPattern.DEPENDENCY_CONFLICT: (
        ResolutionStrategy.MANUAL,
        0.6,
        "Dependency changes affect other tasks and need review",
    ),
    ConflictPattern.RESOURCE_CONFLICT: (
        ResolutionStrategy.MERGE,
        0.7,
        "Merging keeps both assignments while dates are adjusted",
    ),
}

ALTERNATIVES: list[Alternative] = [
    Alternative(
        ResolutionStrategy.MERGE,
        0.6,
        pros=["Keeps non-overlapping changes from both sides"],
        cons=["Merged values may not match what either side intended"],
    ),
    Alternative(
        ResolutionStrategy.INCOMING,
        0.4,
        pros=["Simple", "Keeps the latest user intent"],
        cons=["Discards concurrent changes made by others"],
    ),
    Alternative(
        ResolutionStrategy.CURRENT,
        0.3,
        pros=["No data is overwritten"],
        cons=["The attempted change is lost"],
    ),
]
