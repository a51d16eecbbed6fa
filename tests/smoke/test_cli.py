"""
Smoke Tests for the helix CLI.

These tests verify that CLI commands run without errors and produce output.
Each test gets its own SQLite database and offline cache.

Usage:
    pytest tests/smoke/test_cli.py -v
    pytest tests/smoke/test_cli.py -v -m smoke
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


@pytest.fixture
def helix(tmp_path):
    """Run `helix <args>` against a throwaway database; returns (code, stdout, stderr)."""
    env = {
        **os.environ,
        "HELIX_STORE_BACKEND": "sql",
        "HELIX_DATABASE_URL": f"sqlite:///{tmp_path / 'state.db'}",
        "HELIX_CACHE_DIR": str(tmp_path / "cache"),
        "HELIX_LOG_LEVEL": "WARNING",
        "PYTHONIOENCODING": "utf-8",
        "COLUMNS": "160",
    }

    def run(*args: str, timeout: int = 60) -> tuple[int, str, str]:
        result = subprocess.run(
            [sys.executable, "-m", "helix_sync.cli.main", *args],
            cwd=PROJECT_ROOT,
            env=env,
            capture_output=True,
            text=True,
            encoding="utf-8",
            timeout=timeout,
        )
        return result.returncode, result.stdout, result.stderr

    return run


class TestCLIHelp:
    """Test that help commands work."""

    def test_main_help(self, helix):
        code, stdout, stderr = helix("--help")

        assert code == 0, f"Help failed: {stderr}"
        assert "Commands" in stdout
        for command in ("init", "status", "due", "review", "sync", "history"):
            assert command in stdout

    def test_review_help(self, helix):
        code, stdout, stderr = helix("review", "--help")
        assert code == 0, f"Review help failed: {stderr}"


class TestCLIFlow:
    """Test a learner's lifecycle through the CLI."""

    def test_init(self, helix):
        code, stdout, stderr = helix("init", "u1")

        assert code == 0, f"Init failed: {stderr}"
        assert "u1" in stdout
        assert "version 1" in stdout

    def test_status(self, helix):
        helix("init", "u1")
        code, stdout, stderr = helix("status", "u1")

        assert code == 0, f"Status failed: {stderr}"
        assert "stitch_t1_p1" in stdout
        assert "t1-g1" in stdout
        assert "Stitches completed" in stdout

    def test_review_then_history(self, helix):
        helix("init", "u1")

        code, stdout, stderr = helix("review", "u1", "stitch_t1_p1", "correct")
        assert code == 0, f"Review failed: {stderr}"
        assert "mastery 1" in stdout

        code, stdout, stderr = helix("history", "u1")
        assert code == 0, f"History failed: {stderr}"
        assert "creation" in stdout
        assert "update" in stdout

    def test_review_unknown_unit(self, helix):
        helix("init", "u1")
        code, stdout, _ = helix("review", "u1", "ghost", "correct")

        assert code == 1
        assert "Rejected" in stdout

    def test_due_nothing(self, helix):
        helix("init", "u1")
        code, stdout, stderr = helix("due", "u1")

        assert code == 0, f"Due failed: {stderr}"
        assert "Nothing due" in stdout

    def test_sync(self, helix):
        helix("init", "u1")
        code, stdout, stderr = helix("sync", "u1")

        assert code == 0, f"Sync failed: {stderr}"
        assert "noop" in stdout
