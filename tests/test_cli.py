"""Tests for CLI commands."""

from pathlib import Path

import pytest
from typer.testing import CliRunner

from cpmsched.cli import app

runner = CliRunner()

CHAIN_PROJECT = """
project: demo
start: 2025-01-06
tasks:
  a:
    title: Alpha
    duration: 2d
  b:
    duration: 5d
    depends_on: [a]
  c:
    duration: 3d
    depends_on: ["b + 1d"]
"""


@pytest.fixture
def project_file(tmp_path: Path) -> Path:
    path = tmp_path / "project.yaml"
    path.write_text(CHAIN_PROJECT)
    return path


class TestCalculateCommand:
    """Test the calculate CLI command."""

    def test_calculate_basic_output(self, project_file: Path) -> None:
        result = runner.invoke(app, ["calculate", str(project_file)])

        assert result.exit_code == 0
        assert "(demo)" in result.output
        assert "*Alpha" in result.output
        assert "Project finish: 2025-01-20" in result.output
        assert "Critical path:  a -> b -> c" in result.output
        assert "Critical tasks: 3/3 (average float 0.0 days)" in result.output
        assert "Conflicts:" not in result.output

    def test_calculate_with_deadline(self, project_file: Path) -> None:
        result = runner.invoke(app, ["calculate", str(project_file), "-d", "2025-01-24"])

        assert result.exit_code == 0
        assert "Deadline:       2025-01-24" in result.output
        assert "Critical path:  (none)" in result.output
        assert "Flexible tasks:" in result.output

    def test_missed_deadline_lists_conflicts(self, project_file: Path) -> None:
        result = runner.invoke(app, ["calculate", str(project_file), "--deadline", "2025-01-16"])

        assert result.exit_code == 0
        assert "Conflicts:" in result.output
        assert "[error] SCHEDULE_CONFLICT" in result.output

    def test_invalid_deadline(self, project_file: Path) -> None:
        result = runner.invoke(app, ["calculate", str(project_file), "-d", "16/01/2025"])

        assert result.exit_code == 1
        assert "Invalid deadline" in result.output

    def test_missing_file(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["calculate", str(tmp_path / "missing.yaml")])

        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_unknown_predecessor(self, tmp_path: Path) -> None:
        path = tmp_path / "project.yaml"
        path.write_text("start: 2025-01-06\ntasks:\n  a:\n    depends_on: [ghost]\n")

        result = runner.invoke(app, ["calculate", str(path)])

        assert result.exit_code == 1
        assert "ghost" in result.output

    def test_config_next_to_project(self, project_file: Path) -> None:
        (project_file.parent / "cpmsched_config.yaml").write_text(
            "calendar:\n  holidays: [2025-01-13]\n"
        )

        result = runner.invoke(app, ["calculate", str(project_file)])

        assert result.exit_code == 0
        assert "Project finish: 2025-01-21" in result.output

    def test_explicit_config_option(self, project_file: Path, tmp_path: Path) -> None:
        config_dir = tmp_path / "settings"
        config_dir.mkdir()
        config = config_dir / "calendar.yaml"
        config.write_text("calendar:\n  working_days: [0, 1, 2, 3]\n")

        result = runner.invoke(app, ["-c", str(config), "calculate", str(project_file)])

        assert result.exit_code == 0
        assert "Project finish: 2025-01-22" in result.output

    def test_example_project(self) -> None:
        result = runner.invoke(app, ["calculate", "examples/website.yaml"])

        assert result.exit_code == 0
        assert "Schedule " in result.output
        assert "Visual design" in result.output


class TestRecordCommands:
    """Test writing and showing schedule records."""

    def test_output_then_show(self, project_file: Path, tmp_path: Path) -> None:
        record = tmp_path / "schedule.yaml"

        result = runner.invoke(app, ["calculate", str(project_file), "-o", str(record)])
        assert result.exit_code == 0
        assert "Schedule record written to" in result.output
        assert record.exists()

        result = runner.invoke(app, ["show", str(record)])

        assert result.exit_code == 0
        assert "Project finish: 2025-01-20" in result.output
        assert "Critical path:  a -> b -> c" in result.output

    def test_show_missing_record(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["show", str(tmp_path / "none.yaml")])

        assert result.exit_code == 1
        assert "File not found" in result.output

    def test_show_invalid_record(self, tmp_path: Path) -> None:
        record = tmp_path / "record.yaml"
        record.write_text("version: 99\n")

        result = runner.invoke(app, ["show", str(record)])

        assert result.exit_code == 1
        assert "Unsupported schedule record version" in result.output


class TestCheckCommand:
    """Test the check CLI command."""

    def test_clean_project(self, project_file: Path) -> None:
        result = runner.invoke(app, ["check", str(project_file)])

        assert result.exit_code == 0
        assert "demo: no problems found" in result.output

    def test_cycle_fails(self, tmp_path: Path) -> None:
        path = tmp_path / "project.yaml"
        path.write_text(
            "start: 2025-01-06\n"
            "tasks:\n"
            "  a:\n    depends_on: [b]\n"
            "  b:\n    depends_on: [a]\n"
        )

        result = runner.invoke(app, ["check", str(path)])

        assert result.exit_code == 1
        assert "Circular dependency" in result.output

    def test_dangling_dependency_is_a_warning(self, tmp_path: Path) -> None:
        path = tmp_path / "project.yaml"
        path.write_text("start: 2025-01-06\ntasks:\n  a:\n    depends_on: [ghost]\n")

        result = runner.invoke(app, ["check", str(path)])

        assert result.exit_code == 0
        assert "[warning] DEPENDENCY_CONFLICT" in result.output
        assert "ghost" in result.output

    def test_inverted_dates(self, tmp_path: Path) -> None:
        path = tmp_path / "project.yaml"
        path.write_text(
            "start: 2025-01-06\n"
            "tasks:\n"
            "  a:\n    start_date: 2025-01-10\n    end_date: 2025-01-08\n"
        )

        result = runner.invoke(app, ["check", str(path)])

        assert result.exit_code == 1
        assert "after its due date" in result.output
