"""Integration tests for CLI commands.

These tests use real adapters over temp directories to verify actual CLI behavior.
"""

import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from agent_session_store.adapters.claude import ClaudeCodeAdapter, encode_project_path
from agent_session_store.adapters.gemini import GeminiAdapter
from agent_session_store.cli import main, parse_remote
from agent_session_store.origins import OriginsStore
from agent_session_store.registry import ProviderRegistry

PROJECT = "/home/user/web-app"


@pytest.fixture
def cli_runner():
    """Create a Click CLI runner."""
    return CliRunner()


@pytest.fixture
def cli_env(temp_dir):
    """Claude and Gemini sessions for one project under temp directories."""
    claude_dir = temp_dir / "claude"
    project_dir = claude_dir / encode_project_path(PROJECT)
    project_dir.mkdir(parents=True)
    entries = [
        {"type": "user", "uuid": "u1", "timestamp": "2025-01-10T10:00:00Z",
         "message": {"content": "Help me fix the authentication bug"}},
        {"type": "assistant", "uuid": "a1", "timestamp": "2025-01-10T10:00:05Z",
         "message": {"content": [{"type": "text", "text": "Patched the token check"}]}},
        {"type": "user", "uuid": "u2", "timestamp": "2025-01-10T10:01:00Z",
         "message": {"content": "Add rate limiting"}},
        {"type": "assistant", "uuid": "a2", "timestamp": "2025-01-10T10:01:05Z",
         "message": {"content": [{"type": "text", "text": "Added middleware"}]}},
    ]
    with open(project_dir / "sess-1.jsonl", "w") as f:
        for entry in entries:
            f.write(json.dumps(entry) + "\n")

    gemini_dir = temp_dir / "gemini"
    (gemini_dir / "web-app").mkdir(parents=True)
    (gemini_dir / "web-app" / "session-1-gem-1.json").write_text(
        json.dumps(
            {
                "sessionId": "gem-1",
                "startTime": "2025-01-09T10:00:00Z",
                "lastUpdated": "2025-01-09T10:10:00Z",
                "messages": [{"type": "user", "content": "Explain the build"}],
            }
        )
    )

    registry = ProviderRegistry()
    registry.register(ClaudeCodeAdapter(projects_dir=str(claude_dir), origins=OriginsStore(temp_dir / "o.json")))
    registry.register(GeminiAdapter(history_dir=str(gemini_dir)))
    return registry, project_dir


@pytest.fixture
def patched_cli_env(cli_env):
    """Route the CLI to the temp registry and keep logs out of the user's home."""
    registry, project_dir = cli_env
    with (
        patch("agent_session_store.cli.create_default_registry", return_value=registry),
        patch("agent_session_store.cli.setup_logging"),
    ):
        yield project_dir


class TestListCommand:
    def test_lists_all_agents(self, cli_runner, patched_cli_env):
        result = cli_runner.invoke(main, ["list", PROJECT])

        assert result.exit_code == 0
        assert "sess-1" in result.output
        assert "gem-1" in result.output
        assert "Showing 2 of 2 sessions" in result.output

    def test_agent_filter_and_paging(self, cli_runner, patched_cli_env):
        result = cli_runner.invoke(main, ["list", PROJECT, "--agent", "gemini-cli", "--limit", "1"])

        assert result.exit_code == 0
        assert "gem-1" in result.output
        assert "sess-1" not in result.output

    def test_no_sessions(self, cli_runner, patched_cli_env):
        result = cli_runner.invoke(main, ["list", "/nowhere"])

        assert result.exit_code == 0
        assert "No sessions found." in result.output


class TestShowAndSearch:
    def test_show_messages(self, cli_runner, patched_cli_env):
        result = cli_runner.invoke(main, ["show", PROJECT, "sess-1", "--agent", "claude-code", "--limit", "2"])

        assert result.exit_code == 0
        assert "Add rate limiting" in result.output
        assert "Added middleware" in result.output
        assert "authentication" not in result.output
        assert "Messages 3-4 of 4" in result.output

    def test_search(self, cli_runner, patched_cli_env):
        result = cli_runner.invoke(main, ["search", PROJECT, "rate", "--agent", "claude-code", "--mode", "user"])

        assert result.exit_code == 0
        assert "sess-1" in result.output

    def test_search_no_match(self, cli_runner, patched_cli_env):
        result = cli_runner.invoke(main, ["search", PROJECT, "kubernetes", "-a", "claude-code"])

        assert "No matches." in result.output


class TestDeletePair:
    def test_delete_with_yes(self, cli_runner, patched_cli_env):
        project_dir = patched_cli_env

        result = cli_runner.invoke(
            main, ["delete-pair", PROJECT, "sess-1", "u1", "--agent", "claude-code", "--yes"]
        )

        assert result.exit_code == 0
        assert "Deleted" in result.output
        remaining = [json.loads(line)["uuid"] for line in (project_dir / "sess-1.jsonl").read_text().splitlines()]
        assert remaining == ["u2", "a2"]

    def test_declined_confirmation_aborts(self, cli_runner, patched_cli_env):
        project_dir = patched_cli_env
        before = (project_dir / "sess-1.jsonl").read_text()

        result = cli_runner.invoke(
            main, ["delete-pair", PROJECT, "sess-1", "u1", "--agent", "claude-code"], input="n\n"
        )

        assert result.exit_code != 0
        assert (project_dir / "sess-1.jsonl").read_text() == before

    def test_missing_uuid_exits_1(self, cli_runner, patched_cli_env):
        result = cli_runner.invoke(
            main, ["delete-pair", PROJECT, "sess-1", "missing-uuid", "--agent", "claude-code", "-y"]
        )

        assert result.exit_code == 1
        assert "User message not found" in result.output

    def test_unregistered_agent(self, cli_runner, patched_cli_env):
        result = cli_runner.invoke(main, ["path", PROJECT, "sess-1", "--agent", "codex"])

        assert result.exit_code == 1
        assert "Unknown agent" in result.output


class TestPathCommand:
    def test_prints_path(self, cli_runner, patched_cli_env):
        project_dir = patched_cli_env

        result = cli_runner.invoke(main, ["path", PROJECT, "sess-1", "--agent", "claude-code"])

        assert result.exit_code == 0
        assert result.output.strip() == str(project_dir / "sess-1.jsonl")

    def test_missing_session(self, cli_runner, patched_cli_env):
        result = cli_runner.invoke(main, ["path", PROJECT, "nope", "--agent", "claude-code"])

        assert result.exit_code == 1


class TestParseRemote:
    def test_user_host_port(self):
        remote = parse_remote("dev@box:2222", "/k/id")

        assert (remote.user, remote.host, remote.port, remote.identity_file) == ("dev", "box", 2222, "/k/id")

    def test_host_only(self):
        remote = parse_remote("box")

        assert (remote.user, remote.host, remote.port) == (None, "box", 22)

    def test_none(self):
        assert parse_remote(None) is None


def test_version_flag(cli_runner):
    result = cli_runner.invoke(main, ["--version"])

    assert result.exit_code == 0
    assert "0.1.0" in result.output
