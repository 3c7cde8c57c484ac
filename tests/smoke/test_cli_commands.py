"""
Smoke Tests for CLI Commands.

These tests verify that CLI commands run without errors and produce output.
They don't validate correctness deeply - just that commands work.

Usage:
    pytest tests/smoke/test_cli_commands.py -v
    pytest tests/smoke/test_cli_commands.py -v -m smoke
"""

import json
import subprocess
import sys
from pathlib import Path

import pytest
from typer.testing import CliRunner

from learnloop.cli import app

# Mark all tests in this module as smoke tests
pytestmark = pytest.mark.smoke

# Project root
PROJECT_ROOT = Path(__file__).parent.parent.parent

runner = CliRunner()


def run_cli_command(command: str, timeout: int = 30) -> tuple[int, str, str]:
    """
    Run a CLI command in a subprocess and return exit code, stdout, stderr.

    Args:
        command: The command to run (after 'python -m learnloop.cli')
        timeout: Maximum time to wait

    Returns:
        Tuple of (exit_code, stdout, stderr)
    """
    full_command = f"{sys.executable} -m learnloop.cli {command}"

    result = subprocess.run(
        full_command,
        shell=True,
        cwd=PROJECT_ROOT,
        capture_output=True,
        text=True,
        timeout=timeout,
    )

    return result.returncode, result.stdout, result.stderr


@pytest.fixture
def lecture_file(tmp_path, sample_lecture_data):
    path = tmp_path / "lecture.json"
    path.write_text(json.dumps(sample_lecture_data), encoding="utf-8")
    return path


class TestCLIHelp:
    """Test that help commands work."""

    def test_main_help(self):
        """Main help should display without errors."""
        code, stdout, stderr = run_cli_command("--help")

        assert code == 0, f"Help failed: {stderr}"
        assert "learnloop" in stdout.lower()
        assert "Commands" in stdout

    @pytest.mark.parametrize("command", ["score", "due", "play", "init-db"])
    def test_command_help(self, command):
        result = runner.invoke(app, [command, "--help"])

        assert result.exit_code == 0, result.output


class TestCLIScore:
    """Test score command."""

    def test_exact_outcome(self):
        result = runner.invoke(app, ["score", "absolutely_sure", "correct"])

        assert result.exit_code == 0, result.output
        assert "+300" in result.output

    def test_graded_outcome(self):
        result = runner.invoke(app, ["score", "maybe", "85", "--base", "100"])

        assert result.exit_code == 0, result.output
        assert "+85" in result.output

    def test_invalid_confidence(self):
        result = runner.invoke(app, ["score", "certain", "correct"])

        assert result.exit_code == 1

    def test_invalid_outcome(self):
        result = runner.invoke(app, ["score", "maybe", "sideways"])

        assert result.exit_code != 0


class TestCLIDatabase:
    """Test init-db and due against a SQLite file."""

    def test_init_db_then_due(self, tmp_path):
        db = f"sqlite:///{tmp_path / 'learnloop.db'}"

        init = runner.invoke(app, ["init-db", "--db", db])
        due = runner.invoke(app, ["due", "learner-1", "--db", db, "--today", "2025-03-01"])

        assert init.exit_code == 0, init.output
        assert "Database initialized" in init.output
        assert due.exit_code == 0, due.output
        assert "Nothing due" in due.output


class TestCLIPlay:
    """Test play command with a simulated clock."""

    def test_play_offline(self, lecture_file):
        result = runner.invoke(
            app,
            ["play", str(lecture_file), "--learner", "learner-1", "--offline", "--step", "5"],
            input="C\nmaybe\n" * 3,
        )

        assert result.exit_code == 0, result.output
        assert "Answered 3/3" in result.output
        assert "300" in result.output
        assert "Lecture complete" in result.output

    def test_play_with_coarse_step_reaches_every_pause_point(self, lecture_file):
        result = runner.invoke(
            app,
            ["play", str(lecture_file), "--offline", "--step", "7"],
            input="C\nmaybe\n" * 3,
        )

        assert result.exit_code == 0, result.output
        assert "Answered 3/3" in result.output
        assert "Playback ended before" not in result.output

    def test_play_rejects_bad_lecture(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text('{"id": "x", "pause_points": [{"id": "p"}]}', encoding="utf-8")

        result = runner.invoke(app, ["play", str(path), "--offline"])

        assert result.exit_code == 1
