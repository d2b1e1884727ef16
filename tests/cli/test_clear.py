"""Tests for memoplane clear command."""

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

from click.testing import CliRunner

from memoplane.cli.clear import clear_cache
from memoplane.cli.main import cli

runner = CliRunner()


def _total(program: Path) -> int:
    result = runner.invoke(cli, ["status", "--json", str(program)])
    return json.loads(result.stdout)["total"]


class TestClearCommand:
    """memoplane clear command tests."""

    def test_given_entries_when_clear_yes_then_removes_all(self, populated_program: Path) -> None:
        # When
        result = runner.invoke(cli, ["clear", "--yes", str(populated_program)])

        # Then
        assert result.exit_code == 0, result.output
        assert "Removed 3 entries" in result.output
        assert _total(populated_program) == 0

    def test_given_callable_when_clear_then_removes_only_its_entries(self, populated_program: Path) -> None:
        result = runner.invoke(cli, ["clear", "-y", "--callable", "app.load", str(populated_program)])

        assert "Removed 2 entries" in result.output
        assert _total(populated_program) == 1

    def test_given_no_cache_when_clear_then_nothing_to_do(self, program_dir: Path) -> None:
        result = runner.invoke(cli, ["clear", "--yes", str(program_dir)])

        assert result.exit_code == 0
        assert "Nothing to clear" in result.output

    def test_given_declined_prompt_when_clear_then_keeps_entries(self, populated_program: Path) -> None:
        """Without --yes the user is asked first."""
        # Given
        prompt = MagicMock()
        prompt.ask.return_value = False

        # When
        with patch("memoplane.cli.clear.questionary.confirm", return_value=prompt) as confirm:
            removed = clear_cache(populated_program)

        # Then
        confirm.assert_called_once()
        assert removed is None
        assert _total(populated_program) == 3

    def test_given_confirmed_prompt_when_clear_then_removes(self, populated_program: Path) -> None:
        prompt = MagicMock()
        prompt.ask.return_value = True

        with patch("memoplane.cli.clear.questionary.confirm", return_value=prompt):
            removed = clear_cache(populated_program)

        assert removed == 3
