"""Conflict detection and resolution under optimistic concurrency.

Main entry points:
- ConflictDetectionService: Version checks, schedule validation and integrity scans
- ConflictResolutionService: Single and bulk resolution with rollback
"""

from .core import (
    Alternative,
    AutoResolveLevel,
    BulkOptions,
    BulkResolution,
    DateRule,
    MergeRules,
    ProgressRule,
    Recommendation,
    ResolutionOutcome,
    ResolutionStrategy,
    merge_date,
    merge_progress,
)
from .detection import ConflictDetectionService, ProposedChange
from .resolution import ConflictResolutionService, merge_values

__all__ = [
    "ConflictDetectionService",
    "ConflictResolutionService",
    "ProposedChange",
    "ResolutionStrategy",
    "ResolutionOutcome",
    "MergeRules",
    "DateRule",
    "ProgressRule",
    "AutoResolveLevel",
    "BulkOptions",
    "BulkResolution",
    "Recommendation",
    "Alternative",
    "merge_date",
    "merge_progress",
    "merge_values",
]
