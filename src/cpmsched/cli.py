"""Command-line interface for cpmsched."""

from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Annotated

import typer

from . import context
from .conflicts.detection import ConflictDetectionService
from .exceptions import CpmschedError
from .loader import ProjectSnapshot, load_project
from .logger import setup_logger
from .models import Conflict
from .scheduler import (
    ComputedSchedule,
    critical_path_stats,
    optimization_opportunities,
    read_schedule_record,
    run,
    write_schedule_record,
)
from .store import InMemoryProjectStore

app = typer.Typer(
    name="cpmsched",
    help="Critical-path scheduling with calendar, resource and conflict checks",
    add_completion=False,
)


@app.callback()
def main_callback(
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose",
            "-v",
            help="Verbosity level: 0=silent (default), 1=show changes, 2=show all checks, 3=debug",
            min=0,
            max=3,
        ),
    ] = 0,
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="Path to config file (default: cpmsched_config.yaml)",
        ),
    ] = None,
) -> None:
    """Global options for cpmsched commands."""
    setup_logger(verbose)
    context.set_config_path(config)


def _parse_date_option(date_str: str | None, option_name: str) -> date | None:
    """Parse a YYYY-MM-DD date given on the command line."""
    if date_str is None:
        return None

    try:
        return date.fromisoformat(date_str)
    except ValueError:
        typer.echo(
            f"Error: Invalid {option_name} '{date_str}'. Use YYYY-MM-DD format.",
            err=True,
        )
        raise typer.Exit(1) from None


def _load(file: Path) -> ProjectSnapshot:
    try:
        return load_project(file)
    except FileNotFoundError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None
    except CpmschedError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None


def _display_conflicts(conflicts: list[Conflict]) -> None:
    if not conflicts:
        return
    typer.echo("\nConflicts:", err=True)
    for conflict in conflicts:
        typer.echo(
            f"  [{conflict.severity.value}] {conflict.pattern.value}: {conflict.description}",
            err=True,
        )
        for resolution in conflict.suggested_resolutions:
            typer.echo(f"      - {resolution}", err=True)


def _display_schedule(schedule: ComputedSchedule, titles: dict[str, str]) -> None:
    """Display schedule results to stdout."""
    typer.echo(f"Schedule {schedule.id} ({schedule.project_id})")
    typer.echo("=" * 80)
    typer.echo(f"{'Task':<24} {'Start':<12} {'End':<12} {'ES':>6} {'EF':>6} {'TF':>6} {'FF':>6}")
    for result in schedule.results:
        name = titles.get(result.task_id, result.task_id)
        marker = "*" if result.is_critical else " "
        typer.echo(
            f"{marker}{name[:23]:<23} {result.start_date!s:<12} {result.end_date!s:<12} "
            f"{result.earliest_start:>6.1f} {result.earliest_finish:>6.1f} "
            f"{result.total_float:>6.1f} {result.free_float:>6.1f}"
        )
    typer.echo("")
    typer.echo(f"Project finish: {schedule.project_finish_date}")
    if schedule.deadline is not None:
        typer.echo(f"Deadline:       {schedule.deadline}")
    typer.echo(f"Critical path:  {' -> '.join(schedule.critical_path) or '(none)'}")


@app.command()
def calculate(
    file: Annotated[Path, typer.Argument(help="Path to the project YAML file")] = Path(
        "project.yaml"
    ),
    deadline: Annotated[
        str | None,
        typer.Option("--deadline", "-d", help="Project deadline (YYYY-MM-DD). Overrides the file"),
    ] = None,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write the computed schedule record to this file"),
    ] = None,
) -> None:
    """Compute the critical-path schedule of a project."""
    parsed_deadline = _parse_date_option(deadline, "deadline")
    snapshot = _load(file)
    config = snapshot.config

    try:
        calculation = run(
            snapshot.tasks,
            snapshot.dependencies,
            config.calendar,
            parsed_deadline or snapshot.deadline,
            project_start=snapshot.start,
            project_id=snapshot.project_id,
            config=config.scheduler,
            capacities=config.resources,
            mandatory_dates=snapshot.mandatory_dates,
        )
    except CpmschedError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None

    schedule = calculation.schedule
    _display_schedule(schedule, {task.id: task.title for task in snapshot.tasks})

    stats = critical_path_stats(calculation.backward)
    typer.echo(
        f"Critical tasks: {stats.critical_path_length}/{stats.total_tasks} "
        f"(average float {stats.average_float:.1f} days)"
    )
    opportunities = optimization_opportunities(calculation.backward)
    if opportunities:
        typer.echo("\nFlexible tasks:")
        for opportunity in opportunities:
            typer.echo(f"  {opportunity.task_id}: {opportunity.recommendation}")

    if schedule.suggestions:
        typer.echo("\nSuggestions:")
        for suggestion in schedule.suggestions:
            typer.echo(f"  - {suggestion}")

    _display_conflicts(schedule.conflicts)

    if output:
        write_schedule_record(output, schedule)
        typer.echo(f"\nSchedule record written to {output}")


@app.command()
def check(
    file: Annotated[Path, typer.Argument(help="Path to the project YAML file")] = Path(
        "project.yaml"
    ),
) -> None:
    """Check a project for dangling dependencies, cycles and inverted dates."""
    snapshot = _load(file)

    store = InMemoryProjectStore()
    store.add_project(snapshot.project_id)
    for task in snapshot.tasks:
        store.add_task(task, snapshot.project_id)
    for edge in snapshot.dependencies:
        store.add_dependency(edge, snapshot.project_id)

    detector = ConflictDetectionService(store, snapshot.config.calendar)
    conflicts = detector.check_integrity(snapshot.project_id)
    if not conflicts:
        typer.echo(f"{snapshot.project_id}: no problems found")
        return

    _display_conflicts(conflicts)
    if any(conflict.is_error for conflict in conflicts):
        raise typer.Exit(1)


@app.command()
def show(
    record: Annotated[Path, typer.Argument(help="Schedule record written by 'calculate -o'")],
) -> None:
    """Display a stored schedule record."""
    if not record.exists():
        typer.echo(f"Error: File not found: {record}", err=True)
        raise typer.Exit(1)

    try:
        schedule = read_schedule_record(record)
    except CpmschedError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None

    _display_schedule(schedule, {})
    if schedule.applied:
        typer.echo(f"Applied at:     {schedule.applied_at}")
    _display_conflicts(schedule.conflicts)


def main() -> int:
    """Main entry point."""
    # Typer handles sys.exit() internally
    app()
    return 0


if __name__ == "__main__":
    main()
