"""Computed schedule record files.

A record preserves one calculation (per-task results, critical path,
conflicts and apply state) so it can be previewed, applied or rolled back
later, or handed to another tool.
"""

from __future__ import annotations

from datetime import date, datetime
from pathlib import Path
from typing import Any, cast

import yaml

from ..exceptions import ParseError
from .core import ComputedSchedule

SCHEDULE_RECORD_VERSION = 1

_DATE_FIELDS = ("project_start", "project_finish_date", "deadline")
_DATETIME_FIELDS = ("calculated_at", "applied_at")
_RESULT_DATE_FIELDS = ("start_date", "end_date")
_DATA_DATE_FIELDS = ("start_date", "due_date")


def _plain(value: Any) -> Any:
    """Dates and datetimes as ISO strings, recursively."""
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in cast(dict[str, Any], value).items()}
    if isinstance(value, list):
        return [_plain(item) for item in cast(list[Any], value)]
    return value


def write_schedule_record(path: Path, schedule: ComputedSchedule) -> None:
    """Write a computed schedule to a YAML record file.

    Args:
        path: Path to write the record
        schedule: Schedule to export
    """
    output: dict[str, Any] = {
        "version": SCHEDULE_RECORD_VERSION,
        "schedule": _plain(schedule.to_dict()),
    }

    with path.open("w") as f:
        yaml.safe_dump(output, f, default_flow_style=False, sort_keys=False)


def _parse_date(value: Any, field_name: str) -> date | None:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as e:
        raise ParseError(f"Invalid date in '{field_name}': {e}") from e


def _parse_data_dates(value: Any, field_name: str) -> Any:
    """Task date fields inside a conflict payload or pre-image entry."""
    if not isinstance(value, dict):
        return value
    data = dict(cast(dict[str, Any], value))
    for key in _DATA_DATE_FIELDS:
        if key in data:
            data[key] = _parse_date(data[key], f"{field_name}.{key}")
    return data


def _parse_datetime(value: Any, field_name: str) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError as e:
        raise ParseError(f"Invalid timestamp in '{field_name}': {e}") from e


def read_schedule_record(path: Path) -> ComputedSchedule:  # noqa: PLR0912 - validation needs many branches
    """Load a computed schedule record.

    Raises:
        ParseError: If the file is not valid YAML, has an unsupported version,
            or is missing required fields
    """
    try:
        with path.open() as f:
            raw_data: Any = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ParseError(f"Failed to parse {path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise ParseError(f"Invalid schedule record format: expected dict, got {type(raw_data)}")

    data = cast(dict[str, Any], raw_data)

    version = data.get("version")
    if version is None:
        raise ParseError("Schedule record missing 'version' field")
    if not isinstance(version, int):
        raise ParseError(f"Schedule record version must be int, got {type(version)}")
    if version != SCHEDULE_RECORD_VERSION:
        raise ParseError(
            f"Unsupported schedule record version {version}, expected {SCHEDULE_RECORD_VERSION}"
        )

    raw_schedule = data.get("schedule")
    if not isinstance(raw_schedule, dict):
        raise ParseError("Schedule record 'schedule' field must be a dict")
    schedule_data = dict(cast(dict[str, Any], raw_schedule))

    for required in ("id", "project_id", "calculated_at", "project_start", "project_finish_units"):
        if schedule_data.get(required) is None:
            raise ParseError(f"Schedule record missing '{required}'")

    for field_name in _DATE_FIELDS:
        schedule_data[field_name] = _parse_date(schedule_data.get(field_name), field_name)
    for field_name in _DATETIME_FIELDS:
        schedule_data[field_name] = _parse_datetime(schedule_data.get(field_name), field_name)

    raw_results = schedule_data.get("results") or []
    if not isinstance(raw_results, list):
        raise ParseError("Schedule record 'results' field must be a list")
    results: list[dict[str, Any]] = []
    for item in cast(list[Any], raw_results):
        if not isinstance(item, dict):
            raise ParseError("Each schedule result must be a dict")
        result = dict(cast(dict[str, Any], item))
        for field_name in _RESULT_DATE_FIELDS:
            result[field_name] = _parse_date(result.get(field_name), field_name)
        results.append(result)
    schedule_data["results"] = results

    raw_conflicts = schedule_data.get("conflicts") or []
    if not isinstance(raw_conflicts, list):
        raise ParseError("Schedule record 'conflicts' field must be a list")
    conflicts: list[dict[str, Any]] = []
    for item in cast(list[Any], raw_conflicts):
        if not isinstance(item, dict):
            raise ParseError("Each schedule conflict must be a dict")
        conflict = dict(cast(dict[str, Any], item))
        for field_name in ("current_data", "attempted_data"):
            conflict[field_name] = _parse_data_dates(conflict.get(field_name), field_name)
        conflicts.append(conflict)
    schedule_data["conflicts"] = conflicts

    raw_pre_image = schedule_data.get("pre_image") or {}
    if not isinstance(raw_pre_image, dict):
        raise ParseError("Schedule record 'pre_image' field must be a dict")
    schedule_data["pre_image"] = {
        task_id: _parse_data_dates(entry, f"pre_image.{task_id}")
        for task_id, entry in cast(dict[str, Any], raw_pre_image).items()
    }

    try:
        return ComputedSchedule.from_dict(schedule_data)
    except (KeyError, TypeError, ValueError) as e:
        raise ParseError(f"Invalid schedule record {path}: {e}") from e
