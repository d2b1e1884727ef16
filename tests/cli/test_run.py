"""Tests for memoplane run command."""

import json
import sys
from pathlib import Path

import pytest
from click.testing import CliRunner

from memoplane.cli.main import cli

runner = CliRunner()

SCRIPT = """\
import sys

from memoplane import memoize

OFFSET = 1


@memoize
def slow_square(n):
    return n * n + OFFSET


print(slow_square(int(sys.argv[1])))
"""


@pytest.fixture
def script(program_dir: Path) -> Path:
    path = program_dir / "main.py"
    path.write_text(SCRIPT)
    return path


class TestRunCommand:
    """memoplane run command tests."""

    def test_given_script_when_run_then_output_and_commit(self, script: Path) -> None:
        # When
        result = runner.invoke(cli, ["run", "--stats", str(script), "7"])

        # Then
        assert result.exit_code == 0, result.output
        assert "50" in result.stdout
        assert "0 hits, 1 miss, 1 commit" in result.output
        assert (script.parent / ".memoplane" / "cache.db").exists()

    def test_given_second_run_when_run_then_replays(self, script: Path) -> None:
        """A fresh process replays the first run's result."""
        # Given
        runner.invoke(cli, ["run", str(script), "7"])

        # When
        result = runner.invoke(cli, ["run", "--stats", str(script), "7"])

        # Then
        assert result.exit_code == 0, result.output
        assert "50" in result.stdout
        assert "1 hit, 0 misses, 0 commits" in result.output

    def test_given_edited_global_when_run_then_recomputes(self, script: Path) -> None:
        # Given
        runner.invoke(cli, ["run", str(script), "7"])
        script.write_text(SCRIPT.replace("OFFSET = 1", "OFFSET = 2"))

        # When
        result = runner.invoke(cli, ["run", "--stats", str(script), "7"])

        # Then
        assert "51" in result.stdout
        assert "0 hits, 1 miss, 1 commit" in result.output

    def test_given_run_when_status_then_entry_listed(self, script: Path) -> None:
        runner.invoke(cli, ["run", str(script), "3"])

        result = runner.invoke(cli, ["status", "--json", str(script.parent)])

        assert json.loads(result.stdout)["callables"] == {"__main__.slow_square": 1}

    def test_given_disabled_config_when_run_then_nothing_cached(self, script: Path) -> None:
        runner.invoke(cli, ["init", "--disabled", str(script.parent)])

        result = runner.invoke(cli, ["run", "--stats", str(script), "7"])

        assert "50" in result.stdout
        assert "0 commits" in result.output

    def test_given_failing_script_when_run_then_state_restored(self, program_dir: Path) -> None:
        # Given
        broken = program_dir / "broken.py"
        broken.write_text("raise SystemExit(3)\n")
        argv_before = list(sys.argv)

        # When
        result = runner.invoke(cli, ["run", str(broken)])

        # Then
        assert result.exit_code == 3
        assert sys.argv == argv_before
        assert str(program_dir) not in sys.path
