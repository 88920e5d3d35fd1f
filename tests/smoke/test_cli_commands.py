"""
Smoke Tests for CLI Commands.

These tests verify that CLI commands run without errors and produce output.
They don't validate correctness deeply - just that commands work.

Usage:
    pytest tests/smoke/test_cli_commands.py -v
    pytest tests/smoke/test_cli_commands.py -v -m smoke
"""

import os
import subprocess
import sys
from pathlib import Path

import pytest

# Mark all tests in this module as smoke tests
pytestmark = pytest.mark.smoke

# Project root
PROJECT_ROOT = Path(__file__).parent.parent.parent


def run_cli_command(command: str, timeout: int = 30, database_url: str | None = None) -> tuple[int, str, str]:
    """
    Run a CLI command and return exit code, stdout, stderr.

    Args:
        command: The command to run (after 'python -m mastery_engine.cli.main')
        timeout: Maximum time to wait
        database_url: Override DATABASE_URL for the subprocess

    Returns:
        Tuple of (exit_code, stdout, stderr)
    """
    full_command = f"{sys.executable} -m mastery_engine.cli.main {command}"
    env = dict(os.environ, COLUMNS="200")
    if database_url:
        env["DATABASE_URL"] = database_url

    result = subprocess.run(
        full_command,
        shell=True,
        cwd=PROJECT_ROOT,
        capture_output=True,
        text=True,
        timeout=timeout,
        env=env,
    )

    return result.returncode, result.stdout, result.stderr


class TestCLIHelp:
    """Test that help commands work."""

    def test_main_help(self):
        code, stdout, stderr = run_cli_command("--help")

        assert code == 0, f"Help failed: {stderr}"
        assert "Commands" in stdout
        assert "diagnose" in stdout

    def test_db_help(self):
        code, stdout, stderr = run_cli_command("db --help")

        assert code == 0, f"db help failed: {stderr}"
        assert "init" in stdout


class TestCLITransitions:
    def test_full_table(self):
        code, stdout, stderr = run_cli_command("transitions")

        assert code == 0, f"transitions failed: {stderr}"
        assert "BOSS_CHALLENGE" in stdout

    def test_single_state(self):
        code, stdout, _ = run_cli_command("transitions completed")

        assert code == 0
        assert "IDLE" in stdout

    def test_unknown_state(self):
        code, stdout, _ = run_cli_command("transitions NAPPING")

        assert code == 1
        assert "Unknown state" in stdout


class TestCLISchedule:
    def test_fifth_review(self):
        code, stdout, stderr = run_cli_command("schedule --interval 16 --easiness 2.5 --count 4")

        assert code == 0, f"schedule failed: {stderr}"
        assert "40" in stdout

    def test_incorrect_review(self):
        code, stdout, _ = run_cli_command("schedule -i 40 -e 2.5 -c 5 --incorrect")

        assert code == 0
        assert "2.30" in stdout

    def test_negative_count_rejected(self):
        code, _, _ = run_cli_command("schedule --count -1")

        assert code == 1


class TestCLIDiagnose:
    def test_simulated_placement(self):
        code, stdout, stderr = run_cli_command("diagnose --grade K --known 9")

        assert code == 0, f"diagnose failed: {stderr}"
        assert "Frontier: 1.OA.5" in stdout


class TestCLIDatabase:
    def test_init_seed_and_reviews(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'engine.db'}"

        code, stdout, stderr = run_cli_command("db init --seed", database_url=url)
        assert code == 0, f"db init failed: {stderr}"
        assert "Seeded 21 knowledge nodes" in stdout

        code, stdout, stderr = run_cli_command("reviews student-1", database_url=url)
        assert code == 0, f"reviews failed: {stderr}"
        assert "0 due, 0 overdue" in stdout
