"""Configuration models and the YAML config loader.

A single ``cpmsched_config.yaml`` holds the working calendar, resource
capacities and scheduler tuning:

    calendar:
      working_days: [0, 1, 2, 3, 4]   # Monday = 0
      hours_per_day: 8
      holidays: [2025-12-25]
    resources:
      alice: 100
      bob: 50
    scheduler:
      float_tolerance: 0.1
"""

from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from . import context
from .exceptions import InvalidConstraintError, ParseError

CONFIG_FILENAME = "cpmsched_config.yaml"

DAYS_IN_WEEK = 7
MAX_HOURS_PER_DAY = 24
MAX_CAPACITY = 100.0


class CalendarConfig(BaseModel):
    """Working calendar: weekday mask, holidays and hours per working day."""

    working_days: list[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4])
    hours_per_day: float = 8.0
    holidays: list[date] = Field(default_factory=list)

    @field_validator("working_days")
    @classmethod
    def validate_working_days(cls, value: list[int]) -> list[int]:
        """Working days must be a non-empty set of weekday numbers (Monday = 0)."""
        if not value:
            raise ValueError("working_days must contain at least one weekday")
        for day in value:
            if not 0 <= day < DAYS_IN_WEEK:
                raise ValueError(f"working day {day} is not a weekday number (0-6)")
        return sorted(set(value))

    @field_validator("hours_per_day")
    @classmethod
    def validate_hours_per_day(cls, value: float) -> float:
        """Hours per day must be in (0, 24]."""
        if not 0 < value <= MAX_HOURS_PER_DAY:
            raise ValueError(f"hours_per_day {value} must be in (0, 24]")
        return value


class SchedulingConfig(BaseModel):
    """Tuning for the CPM engine and constraint solver."""

    algorithm: str = "cpm"
    float_tolerance: float = 0.1  # Days; |total float| at or below this is critical
    drift_tolerance: float = 0.1  # Days of snapping before a warning is raised
    level_resources: bool = True
    underutilization_threshold: float = 0.6
    critical_ratio_threshold: float = 0.4
    high_float_threshold: float = 5.0  # Days


class UnifiedConfig(BaseModel):
    """Everything loaded from ``cpmsched_config.yaml``."""

    calendar: CalendarConfig = CalendarConfig()
    scheduler: SchedulingConfig = SchedulingConfig()
    resources: dict[str, float] = Field(default_factory=dict)  # assignee -> capacity %

    @field_validator("resources")
    @classmethod
    def validate_capacities(cls, value: dict[str, float]) -> dict[str, float]:
        """Capacities are concurrent percentages in [0, 100]."""
        for name, capacity in value.items():
            if not 0 <= capacity <= MAX_CAPACITY:
                raise ValueError(f"capacity for '{name}' must be within 0-100, got {capacity}")
        return value


def validate_capacities(capacities: dict[str, float] | None) -> dict[str, float]:
    """Check a resource-capacity map, raising ``InvalidConstraintError`` on bad values."""
    if not capacities:
        return {}
    for name, capacity in capacities.items():
        if not 0 <= capacity <= MAX_CAPACITY:
            raise InvalidConstraintError(
                f"Capacity for resource '{name}' must be within 0-100, got {capacity}"
            )
    return dict(capacities)


def build_config(data: dict[str, Any]) -> UnifiedConfig:
    """Validate raw config data.

    Raises:
        InvalidConstraintError: If any section is malformed
    """
    try:
        return UnifiedConfig.model_validate(data)
    except PydanticValidationError as e:
        raise InvalidConstraintError(f"Invalid configuration: {e}") from e


def load_config(config_path: Path | str) -> UnifiedConfig:
    """Load configuration from a YAML file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ParseError: If the file is not valid YAML
        InvalidConstraintError: If the configuration is invalid
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        with config_path.open() as f:
            data: Any = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ParseError(f"Failed to parse {config_path}: {e}") from e

    if data is None:
        return UnifiedConfig()
    if not isinstance(data, dict):
        raise ParseError(f"Config file {config_path} must contain a mapping")

    return build_config(data)


def discover_config(
    project_path: Path | None = None,
    config_path: Path | None = None,
) -> UnifiedConfig:
    """Find and load configuration, falling back to defaults.

    Search order:
    1. Explicit config_path argument
    2. Global context (set via CLI --config)
    3. Project file directory / cpmsched_config.yaml
    4. Current directory / cpmsched_config.yaml
    """
    if config_path and config_path.exists():
        return load_config(config_path)

    ctx_config = context.get_config_path()
    if ctx_config and ctx_config.exists():
        return load_config(ctx_config)

    if project_path is not None:
        dir_config = Path(project_path).parent / CONFIG_FILENAME
        if dir_config.exists():
            return load_config(dir_config)

    cwd_config = Path(CONFIG_FILENAME)
    if cwd_config.exists():
        return load_config(cwd_config)

    return UnifiedConfig()
