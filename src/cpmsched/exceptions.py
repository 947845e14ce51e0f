"""Custom exceptions for cpmsched.

Only structural problems are raised. Schedule, resource, dependency and
optimistic-concurrency findings are returned as ``Conflict`` records instead.
"""

from __future__ import annotations


class CpmschedError(Exception):
    """Base exception for all cpmsched errors."""

    pass


class ValidationError(CpmschedError):
    """Raised when input validation fails."""

    pass


class CircularDependencyError(ValidationError):
    """Raised when the dependency graph cannot be ordered topologically."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Circular dependency detected: {' -> '.join(cycle)}")


class MissingReferenceError(ValidationError):
    """Raised when a dependency references a task that is not in the task set."""

    pass


class InvalidConstraintError(ValidationError):
    """Raised for malformed calendar, resource or task constraints."""

    pass


class ParseError(CpmschedError):
    """Raised when a YAML project or record file cannot be parsed."""

    pass


class ScheduleNotFoundError(CpmschedError):
    """Raised when a computed schedule id is unknown to the store."""

    pass


class StaleVersionError(CpmschedError):
    """Raised by a store when an atomic check-and-increment finds a newer version."""

    def __init__(self, entity_id: str, expected_version: int | None, actual_version: int | None):
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Entity '{entity_id}' is at version {actual_version}, expected {expected_version}"
        )


class ResolutionError(CpmschedError):
    """Raised when a single conflict resolution attempt cannot be carried out."""

    def __init__(self, conflict_id: str, message: str):
        self.conflict_id = conflict_id
        super().__init__(f"Cannot resolve conflict '{conflict_id}': {message}")
