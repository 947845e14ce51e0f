"""Scheduler package - critical-path scheduling with calendar and resource constraints.

This package provides:
- Forward and backward passes over a typed, lagged dependency graph
- A constraint solver for mandatory dates, resource capacity and leveling
- A pure calculation pipeline and a store-backed SchedulingService

Main entry points:
- calculate / run: Compute a ComputedSchedule from a task snapshot
- SchedulingService: Calculate, apply, preview and roll back against a store
- ForwardPassEngine / BackwardPassEngine: The individual passes
"""

# Passes
from .backward_pass import BackwardPassEngine, critical_path_stats, optimization_opportunities

# Constraint solving
from .constraints import ConstraintSolver

# Core dataclasses
from .core import (
    BackwardPassResult,
    ComputedSchedule,
    ConstraintViolation,
    CriticalPathStats,
    FloatOpportunity,
    ForwardPassResult,
    LevelingAdjustment,
    ScheduleResult,
    SolverResult,
    TaskDateChange,
    TaskTimes,
    ViolationType,
    predecessor_finish_bound,
    required_start,
)

# Pipeline
from .engine import Calculation, calculate, run, schedule_id
from .forward_pass import ForwardPassEngine

# Graph utilities
from .graph import TaskGraph, find_cycle, find_path

# Schedule record files
from .records import read_schedule_record, write_schedule_record

# Resource timelines
from .resources import Assignment, Overload, ResourceTimeline, build_timelines

# High-level service
from .service import ApplyResult, PreviewResult, RollbackResult, SchedulingService

__all__ = [
    # Core dataclasses
    "TaskTimes",
    "ForwardPassResult",
    "BackwardPassResult",
    "ScheduleResult",
    "ComputedSchedule",
    "ConstraintViolation",
    "ViolationType",
    "LevelingAdjustment",
    "SolverResult",
    "TaskDateChange",
    "CriticalPathStats",
    "FloatOpportunity",
    "required_start",
    "predecessor_finish_bound",
    # Passes
    "ForwardPassEngine",
    "BackwardPassEngine",
    "critical_path_stats",
    "optimization_opportunities",
    # Constraint solving
    "ConstraintSolver",
    "Assignment",
    "Overload",
    "ResourceTimeline",
    "build_timelines",
    # Graph utilities
    "TaskGraph",
    "find_cycle",
    "find_path",
    # Pipeline
    "Calculation",
    "calculate",
    "run",
    "schedule_id",
    # Records
    "read_schedule_record",
    "write_schedule_record",
    # High-level service
    "SchedulingService",
    "ApplyResult",
    "PreviewResult",
    "RollbackResult",
]
