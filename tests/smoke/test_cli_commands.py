"""
Smoke Tests for CLI Commands.

These tests verify that CLI commands run without errors and produce output.
They don't validate correctness deeply - just that commands work.

Usage:
    pytest tests/smoke/test_cli_commands.py -v
    pytest tests/smoke/test_cli_commands.py -v -m smoke
"""

import json
import os
import subprocess
import sys
from pathlib import Path

import pytest

# Mark all tests in this module as smoke tests
pytestmark = pytest.mark.smoke

# Project root
PROJECT_ROOT = Path(__file__).parent.parent.parent


@pytest.fixture
def cli_env(tmp_path):
    """Environment pointing the CLI at a throwaway database and a dead remote."""
    env = {k: v for k, v in os.environ.items() if not k.startswith("TRIVIAFEED_")}
    env.update(
        {
            "DATABASE_URL": f"sqlite:///{tmp_path / 'cli.db'}",
            "LOG_FILE": "",
            "LOG_LEVEL": "WARNING",
            "REMOTE_URL": "http://127.0.0.1:9",
            "REMOTE_RETRY_ATTEMPTS": "1",
            "REMOTE_TIMEOUT_SECONDS": "2",
            "DEVICE_ID": "smoke",
        }
    )
    return env


@pytest.fixture
def question_bank(tmp_path):
    path = tmp_path / "bank.json"
    path.write_text(
        json.dumps(
            [
                {
                    "id": "q-1",
                    "question": "What is the chemical symbol for gold?",
                    "topic": "Science",
                    "subtopic": "Chemistry",
                    "answers": [{"text": "Ag", "isCorrect": False}, {"text": "Au", "isCorrect": True}],
                },
                {"id": "q-2", "question": "Who painted the Mona Lisa?", "topic": "Arts", "correct_index": 0},
                {"id": "q-3", "question": "In which year did WW2 end?", "topic": "History", "correct_index": 0},
                {"id": "q-4", "question": "who painted the mona lisa", "topic": "Arts"},
            ]
        ),
        encoding="utf-8",
    )
    return path


def run_cli_command(args: list[str], env: dict | None = None, timeout: int = 30) -> tuple[int, str, str]:
    """
    Run a CLI command and return exit code, stdout, stderr.

    Args:
        args: Arguments after 'python -m triviafeed.cli.main'
        env: Environment for the subprocess
        timeout: Maximum time to wait

    Returns:
        Tuple of (exit_code, stdout, stderr)
    """
    result = subprocess.run(
        [sys.executable, "-m", "triviafeed.cli.main", *args],
        cwd=PROJECT_ROOT,
        env=env,
        capture_output=True,
        text=True,
        timeout=timeout,
    )

    return result.returncode, result.stdout, result.stderr


class TestCLIHelp:
    """Test that help commands work."""

    def test_main_help(self, cli_env):
        """Main help should display without errors."""
        code, stdout, stderr = run_cli_command(["--help"], cli_env)

        assert code == 0, f"Help failed: {stderr}"
        assert "Commands" in stdout
        assert "feed" in stdout

    @pytest.mark.parametrize(
        "command",
        ["import", "feed", "answer", "skip", "weights", "sync", "pull", "status", "prune-feed-log"],
    )
    def test_command_help(self, cli_env, command):
        code, stdout, stderr = run_cli_command([command, "--help"], cli_env)

        assert code == 0, f"{command} help failed: {stderr}"

    def test_version(self, cli_env):
        code, stdout, stderr = run_cli_command(["version"], cli_env)

        assert code == 0, f"Version failed: {stderr}"
        assert "triviafeed" in stdout


class TestCLIFeedFlow:
    """Test import, feed, answer and weights against a temporary database."""

    def test_import_then_answer(self, cli_env, question_bank):
        code, stdout, stderr = run_cli_command(["import", str(question_bank), "--user", "alice"], cli_env)
        assert code == 0, f"Import failed: {stderr}"
        assert "Import Summary" in stdout

        code, stdout, stderr = run_cli_command(["answer", "alice", "q-1", "1"], cli_env)
        assert code == 0, f"Answer failed: {stderr}"
        assert "Recorded correct answer" in stdout

        code, stdout, stderr = run_cli_command(["answer", "alice", "q-1", "0"], cli_env)
        assert code == 1

        code, stdout, stderr = run_cli_command(["weights", "alice"], cli_env)
        assert code == 0, f"Weights failed: {stderr}"
        assert "Science" in stdout

    def test_feed_on_empty_pool(self, cli_env):
        code, stdout, stderr = run_cli_command(["feed", "bob", "--count", "3"], cli_env)

        assert code == 0, f"Feed failed: {stderr}"
        assert "Pool exhausted" in stdout

    def test_skip(self, cli_env, question_bank):
        run_cli_command(["import", str(question_bank)], cli_env)

        code, stdout, stderr = run_cli_command(["skip", "alice", "q-3"], cli_env)

        assert code == 0, f"Skip failed: {stderr}"
        assert "Recorded skip" in stdout


class TestCLISync:
    """Sync must degrade to 'offline', never crash."""

    def test_sync_unreachable_remote(self, cli_env, question_bank):
        run_cli_command(["import", str(question_bank)], cli_env)
        run_cli_command(["answer", "alice", "q-2", "0"], cli_env)

        code, stdout, stderr = run_cli_command(["sync"], cli_env)

        assert code == 0, f"Sync failed: {stderr}"
        assert "unreachable" in stdout

    def test_prune_feed_log(self, cli_env):
        code, stdout, stderr = run_cli_command(["prune-feed-log", "--days", "7"], cli_env)

        assert code == 0, f"Prune failed: {stderr}"
        assert "Deleted 0" in stdout

    def test_sync_watch_with_disabled_interval(self, cli_env):
        code, stdout, stderr = run_cli_command(["sync", "--watch", "--interval", "0"], cli_env)

        assert code == 0, f"Sync watch failed: {stderr}"
        assert "Background sync disabled" in stdout


class TestCLIStatus:
    """Status reads the local store only."""

    def test_status_counts(self, cli_env, question_bank):
        run_cli_command(["import", str(question_bank)], cli_env)
        run_cli_command(["answer", "alice", "q-2", "0"], cli_env)

        code, stdout, stderr = run_cli_command(["status"], cli_env)

        assert code == 0, f"Status failed: {stderr}"
        assert "Local Store" in stdout
        assert "Queued for upload" in stdout
