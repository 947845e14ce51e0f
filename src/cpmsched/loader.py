"""Project snapshot loading from YAML.

A project file lists tasks with their durations and dependencies:

    project: website
    start: 2025-01-06
    deadline: 2025-02-28
    tasks:
      design:
        title: Design
        duration: 2d
        assignee: alice
      build:
        duration: 5d
        depends_on: [design]
      launch:
        duration: 16h
        depends_on:
          - build SS + 2d
          - {id: design, type: FF, lag: 1d}
        mandatory_finish: 2025-02-14
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, cast

import yaml

from .config import CalendarConfig, UnifiedConfig, discover_config
from .exceptions import InvalidConstraintError, ParseError
from .logger import get_logger
from .models import DependencyEdge, DependencyType, TaskNode

logger = get_logger()

_DURATION_RE = re.compile(
    r"^(?P<sign>[+-])?\s*(?P<num>\d+(?:\.\d+)?)\s*(?P<unit>[dhw])?$", re.IGNORECASE
)


@dataclass
class ProjectSnapshot:
    """Everything a calculation needs, read from one project file."""

    project_id: str
    start: date
    tasks: list[TaskNode]
    dependencies: list[DependencyEdge]
    deadline: date | None = None
    mandatory_dates: dict[str, date] = field(default_factory=dict[str, date])
    config: UnifiedConfig = field(default_factory=UnifiedConfig)


def parse_duration(
    value: Any,
    calendar: CalendarConfig | None = None,
    *,
    signed: bool = False,
) -> float:
    """Parse a duration into working days.

    Supported formats:
    - 3 or 2.5 - working days
    - "5d" - working days
    - "16h" - hours, divided by the calendar's hours per day
    - "2w" - working weeks (as many days as the calendar works per week)

    A leading sign is accepted only when ``signed`` is set (dependency lags).

    Raises:
        ParseError: If the value is not a recognised duration
    """
    calendar = calendar or CalendarConfig()
    if isinstance(value, bool):
        raise ParseError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        days = float(value)
    else:
        match = _DURATION_RE.match(str(value).strip())
        if not match:
            raise ParseError(f"Invalid duration: {value!r}")
        num = float(match.group("num"))
        unit = (match.group("unit") or "d").lower()
        if unit == "h":
            days = num / calendar.hours_per_day
        elif unit == "w":
            days = num * len(calendar.working_days)
        else:
            days = num
        if match.group("sign") == "-":
            days = -days

    if days < 0 and not signed:
        raise ParseError(f"Duration cannot be negative: {value!r}")
    return days


def _parse_date(value: Any, where: str) -> date | None:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as e:
        raise ParseError(f"Invalid date for {where}: {value!r}") from e


def _parse_dependency(raw: Any, task_id: str, calendar: CalendarConfig) -> DependencyEdge:
    """One ``depends_on`` entry: shorthand string or ``{id, type, lag}`` mapping."""
    if isinstance(raw, str):
        try:
            return DependencyEdge.parse(
                raw,
                task_id,
                days_per_week=len(calendar.working_days),
                hours_per_day=calendar.hours_per_day,
            )
        except InvalidConstraintError as e:
            raise ParseError(f"Task '{task_id}': {e}") from e

    if not isinstance(raw, dict):
        raise ParseError(f"Task '{task_id}': dependency must be a string or mapping, got {raw!r}")
    data = cast(dict[str, Any], raw)
    predecessor = data.get("id") or data.get("task")
    if not predecessor:
        raise ParseError(f"Task '{task_id}': dependency mapping needs an 'id'")
    try:
        dep_type = DependencyType(str(data.get("type") or "FS").upper())
    except ValueError as e:
        raise ParseError(f"Task '{task_id}': unknown dependency type {data.get('type')!r}") from e
    lag = parse_duration(data.get("lag", 0), calendar, signed=True)
    return DependencyEdge(str(predecessor), task_id, dep_type, lag)


def _parse_task(
    task_id: str,
    raw: Any,
    calendar: CalendarConfig,
) -> tuple[TaskNode, list[DependencyEdge], date | None]:
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ParseError(f"Task '{task_id}' must be a mapping")
    data = cast(dict[str, Any], raw)

    depends_on = data.get("depends_on") or []
    if isinstance(depends_on, str):
        depends_on = [depends_on]
    edges = [_parse_dependency(dep, task_id, calendar) for dep in cast(list[Any], depends_on)]

    try:
        task = TaskNode(
            id=task_id,
            title=str(data.get("title") or task_id),
            duration=parse_duration(data.get("duration", 0), calendar),
            start_date=_parse_date(data.get("start_date"), f"task '{task_id}' start_date"),
            end_date=_parse_date(data.get("end_date"), f"task '{task_id}' end_date"),
            assignee_id=data.get("assignee"),
            is_completed=bool(data.get("completed", False)),
            progress=float(data.get("progress", 0)),
            allocation=float(data.get("allocation", 100)),
            status=data.get("status"),
            schedule_locked=bool(data.get("locked", False)),
        )
    except (TypeError, ValueError) as e:
        raise ParseError(f"Task '{task_id}': {e}") from e
    mandatory = _parse_date(data.get("mandatory_finish"), f"task '{task_id}' mandatory_finish")
    return task, edges, mandatory


def parse_project(data: dict[str, Any], config: UnifiedConfig | None = None) -> ProjectSnapshot:
    """Build a snapshot from already-parsed YAML data.

    Raises:
        ParseError: If required keys are missing or values are malformed
    """
    config = config or UnifiedConfig()

    start = _parse_date(data.get("start"), "project start")
    if start is None:
        raise ParseError("Project file missing 'start' date")

    raw_tasks = data.get("tasks") or {}
    if isinstance(raw_tasks, list):
        # List form: each entry carries its own id
        entries: list[tuple[str, Any]] = []
        for item in cast(list[Any], raw_tasks):
            if not isinstance(item, dict) or "id" not in item:
                raise ParseError("Each task in a task list needs an 'id'")
            entries.append((str(item["id"]), item))
    elif isinstance(raw_tasks, dict):
        entries = [(str(k), v) for k, v in cast(dict[Any, Any], raw_tasks).items()]
    else:
        raise ParseError("'tasks' must be a mapping or a list")

    tasks: list[TaskNode] = []
    dependencies: list[DependencyEdge] = []
    mandatory_dates: dict[str, date] = {}
    seen: set[str] = set()
    for task_id, raw in entries:
        if task_id in seen:
            raise ParseError(f"Duplicate task id '{task_id}'")
        seen.add(task_id)
        task, edges, mandatory = _parse_task(task_id, raw, config.calendar)
        tasks.append(task)
        dependencies.extend(edges)
        if mandatory is not None:
            mandatory_dates[task_id] = mandatory

    return ProjectSnapshot(
        project_id=str(data.get("project") or "default"),
        start=start,
        tasks=tasks,
        dependencies=dependencies,
        deadline=_parse_date(data.get("deadline"), "project deadline"),
        mandatory_dates=mandatory_dates,
        config=config,
    )


def load_project(
    path: Path | str,
    config_path: Path | None = None,
    *,
    config: UnifiedConfig | None = None,
) -> ProjectSnapshot:
    """Load a project file together with its configuration.

    Args:
        path: Path to the project YAML file
        config_path: Optional explicit path to a config file
        config: Optional explicit config (overrides discovery)

    Raises:
        FileNotFoundError: If the project file doesn't exist
        ParseError: If the file is not valid YAML or has malformed entries
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Project file not found: {path}")

    try:
        with path.open() as f:
            data: Any = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ParseError(f"Failed to parse {path}: {e}") from e

    if not isinstance(data, dict):
        raise ParseError(f"Project file {path} must contain a mapping")

    if config is None:
        config = discover_config(path, config_path)

    try:
        snapshot = parse_project(cast(dict[str, Any], data), config)
    except InvalidConstraintError as e:
        raise ParseError(f"{path}: {e}") from e

    logger.debug(
        f"Loaded {len(snapshot.tasks)} tasks and {len(snapshot.dependencies)} dependencies "
        f"from {path}"
    )
    return snapshot
