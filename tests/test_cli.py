"""Tests for the command line interface."""

from unittest.mock import patch

import pytest
from click.testing import CliRunner

from conftest import at, make_direct, make_group, make_message
from conversation_sync.__main__ import cli


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def invoke(runner: CliRunner, args: list[str], result: tuple):
    """Run the CLI with the network fetch replaced by `result`."""

    async def fake_load(_config):
        return result

    with patch("conversation_sync.__main__._load_conversations", fake_load), patch(
        "conversation_sync.__main__.setup_logging"
    ):
        return runner.invoke(cli, args)


CONVERSATIONS = (
    make_direct("c2", updated_at=at(20), unread_count=2, last_message=make_message("m2", "c2", content="see you")),
    make_group("g1", updated_at=at(10), name="Launch"),
    make_direct("c1", updated_at=at(5), peer_id="u3", display_name="Grace Hopper"),
)


class TestListCommand:
    """Tests for the list command."""

    def test_lists_in_order(self, runner: CliRunner) -> None:
        """Conversations should be printed most recent first."""
        result = invoke(runner, ["list"], (True, CONVERSATIONS))
        assert result.exit_code == 0
        assert "Found 3 conversations (showing 3)" in result.output
        assert result.output.index("Ada Lovelace") < result.output.index("Launch")
        assert result.output.index("Launch") < result.output.index("Grace Hopper")
        assert "(2 unread)" in result.output
        assert "Last: see you" in result.output

    def test_unread_only(self, runner: CliRunner) -> None:
        result = invoke(runner, ["list", "--unread-only"], (True, CONVERSATIONS))
        assert result.exit_code == 0
        assert "Found 1 conversations" in result.output
        assert "Launch" not in result.output

    def test_limit(self, runner: CliRunner) -> None:
        result = invoke(runner, ["list", "-n", "1"], (True, CONVERSATIONS))
        assert "showing 1" in result.output
        assert "Grace Hopper" not in result.output

    def test_verbose_shows_ids(self, runner: CliRunner) -> None:
        result = invoke(runner, ["list", "-v"], (True, CONVERSATIONS))
        assert "ID: c2" in result.output
        assert "Email: u2@example.com" in result.output

    def test_fetch_failure_exits_nonzero(self, runner: CliRunner) -> None:
        """A failed refresh should report an error and exit with status 1."""
        result = invoke(runner, ["list"], (False, ()))
        assert result.exit_code == 1
        assert "Error fetching conversations" in result.output
