"""Tests for the Claude Code adapter."""

import asyncio
import json

import pytest

from agent_session_store.adapters.claude import (
    ClaudeCodeAdapter,
    calculate_cost,
    encode_project_path,
)
from agent_session_store.origins import OriginsStore

PROJECT = "/home/user/web-app"


def write_jsonl(path, entries):
    with open(path, "w") as f:
        for entry in entries:
            f.write(json.dumps(entry) + "\n")


def read_jsonl(path):
    return [json.loads(line) for line in path.read_text().splitlines() if line.strip()]


def conversation():
    return [
        {
            "type": "user",
            "uuid": "u1",
            "timestamp": "2025-01-10T10:00:00Z",
            "message": {"role": "user", "content": "Fix the auth bug"},
        },
        {
            "type": "assistant",
            "uuid": "a1",
            "timestamp": "2025-01-10T10:00:05Z",
            "message": {
                "role": "assistant",
                "content": [
                    {"type": "text", "text": "Reading the handler"},
                    {"type": "tool_use", "id": "toolu_1", "name": "Read", "input": {"path": "auth.py"}},
                ],
                "usage": {
                    "input_tokens": 1000,
                    "output_tokens": 200,
                    "cache_read_input_tokens": 50,
                    "cache_creation_input_tokens": 10,
                },
            },
        },
        {
            "type": "user",
            "uuid": "r1",
            "timestamp": "2025-01-10T10:00:06Z",
            "message": {
                "role": "user",
                "content": [{"type": "tool_result", "tool_use_id": "toolu_1", "content": "def login(): ..."}],
            },
        },
        {
            "type": "assistant",
            "uuid": "a2",
            "timestamp": "2025-01-10T10:00:10Z",
            "message": {"role": "assistant", "content": [{"type": "text", "text": "Fixed the cookie check"}]},
        },
        {
            "type": "user",
            "uuid": "u2",
            "timestamp": "2025-01-10T10:01:00Z",
            "message": {"role": "user", "content": "Now add tests"},
        },
        {
            "type": "assistant",
            "uuid": "a3",
            "timestamp": "2025-01-10T10:01:30Z",
            "message": {"role": "assistant", "content": [{"type": "text", "text": "Tests added"}]},
        },
    ]


@pytest.fixture
def claude_env(temp_dir):
    projects = temp_dir / "claude"
    project_dir = projects / encode_project_path(PROJECT)
    project_dir.mkdir(parents=True)
    write_jsonl(project_dir / "sess-1.jsonl", conversation())
    adapter = ClaudeCodeAdapter(
        projects_dir=str(projects), origins=OriginsStore(temp_dir / "origins.json")
    )
    return adapter, project_dir


def test_encode_project_path():
    assert encode_project_path("/home/user/my_app.v2") == "-home-user-my-app-v2"


def test_calculate_cost():
    assert calculate_cost(1_000_000, 0, 0, 0) == pytest.approx(3.0)
    assert calculate_cost(0, 1_000_000, 1_000_000, 1_000_000) == pytest.approx(15 + 0.30 + 3.75)


class TestListSessions:
    """Tests for listing and summarizing sessions."""

    def test_summary_fields(self, claude_env):
        adapter, _ = claude_env

        sessions = asyncio.run(adapter.list_sessions(PROJECT))

        assert len(sessions) == 1
        session = sessions[0]
        assert session.session_id == "sess-1"
        assert session.first_message == "Reading the handler"
        # Tool results posted back as "user" are not messages
        assert session.message_count == 5
        assert session.input_tokens == 1000
        assert session.output_tokens == 200
        assert session.cache_read_tokens == 50
        assert session.cache_creation_tokens == 10
        assert session.cost_usd == pytest.approx(calculate_cost(1000, 200, 50, 10))
        assert session.duration_seconds == 90

    def test_skips_agent_and_empty_files(self, claude_env):
        adapter, project_dir = claude_env
        write_jsonl(project_dir / "agent-abc.jsonl", conversation())
        (project_dir / "empty.jsonl").write_text("")

        sessions = asyncio.run(adapter.list_sessions(PROJECT))

        assert [s.session_id for s in sessions] == ["sess-1"]

    def test_preview_falls_back_to_user_text(self, claude_env):
        adapter, project_dir = claude_env
        write_jsonl(project_dir / "sess-2.jsonl", conversation()[:1])

        sessions = {s.session_id: s for s in asyncio.run(adapter.list_sessions(PROJECT))}

        assert sessions["sess-2"].first_message == "Fix the auth bug"

    def test_meta_entries_are_ignored(self, claude_env):
        adapter, project_dir = claude_env
        write_jsonl(
            project_dir / "sess-3.jsonl",
            [
                {"type": "user", "uuid": "m", "isMeta": True, "message": {"content": "caveat"}},
                {"type": "user", "uuid": "c", "timestamp": "2025-01-11T00:00:00Z",
                 "message": {"content": "<command-name>/clear</command-name>"}},
                {"type": "user", "uuid": "u", "timestamp": "2025-01-11T00:00:01Z",
                 "message": {"content": "real question"}},
            ],
        )

        sessions = {s.session_id: s for s in asyncio.run(adapter.list_sessions(PROJECT))}

        assert sessions["sess-3"].message_count == 1
        assert sessions["sess-3"].first_message == "real question"

    def test_attaches_origins(self, claude_env, temp_dir):
        adapter, _ = claude_env
        store = OriginsStore(temp_dir / "origins.json")
        store.register_session_origin(PROJECT, "sess-1", "auto", session_name="Auth fix")
        store.update_session_starred(PROJECT, "sess-1", True)

        session = asyncio.run(adapter.list_sessions(PROJECT))[0]

        assert session.origin == "auto"
        assert session.session_name == "Auth fix"
        assert session.starred is True

    def test_missing_project(self, claude_env):
        adapter, _ = claude_env

        assert asyncio.run(adapter.list_sessions("/no/such/project")) == []

    def test_corrupt_lines_are_skipped(self, claude_env):
        adapter, project_dir = claude_env
        with open(project_dir / "sess-1.jsonl", "a") as f:
            f.write("{truncated\n")

        sessions = asyncio.run(adapter.list_sessions(PROJECT))

        assert sessions[0].message_count == 5


class TestReadMessages:
    def test_reads_conversation(self, claude_env):
        adapter, _ = claude_env

        page = asyncio.run(adapter.read_session_messages(PROJECT, "sess-1"))

        assert [m.uuid for m in page.messages] == ["u1", "a1", "a2", "u2", "a3"]
        assert page.total == 5
        assert page.has_more is False
        tool_call = page.messages[1].tool_use[1]
        assert tool_call.kind == "tool_call"
        assert tool_call.call_id == "toolu_1"

    def test_window(self, claude_env):
        adapter, _ = claude_env

        page = asyncio.run(adapter.read_session_messages(PROJECT, "sess-1", offset=1, limit=2))

        assert [m.uuid for m in page.messages] == ["a2", "u2"]
        assert page.has_more is True

    def test_missing_session(self, claude_env):
        adapter, _ = claude_env

        page = asyncio.run(adapter.read_session_messages(PROJECT, "nope"))

        assert page.messages == []
        assert page.total == 0


class TestSearch:
    def test_user_mode(self, claude_env):
        adapter, _ = claude_env

        results = asyncio.run(adapter.search_sessions(PROJECT, "auth", "user"))

        assert len(results) == 1
        assert results[0].match_count == 1

    def test_tool_results_are_not_searched(self, claude_env):
        adapter, _ = claude_env

        assert asyncio.run(adapter.search_sessions(PROJECT, "def login", "all")) == []


class TestDeleteMessagePair:
    """Tests for removing one exchange from a session file."""

    def test_removes_span(self, claude_env):
        adapter, project_dir = claude_env

        result = asyncio.run(adapter.delete_message_pair(PROJECT, "sess-1", "u1"))

        assert result.success is True
        assert result.records_removed == 4
        assert [e["uuid"] for e in read_jsonl(project_dir / "sess-1.jsonl")] == ["u2", "a3"]

    def test_second_delete_is_not_found(self, claude_env):
        adapter, _ = claude_env
        asyncio.run(adapter.delete_message_pair(PROJECT, "sess-1", "u1"))

        result = asyncio.run(adapter.delete_message_pair(PROJECT, "sess-1", "u1"))

        assert result.success is False
        assert result.error == "User message not found"

    def test_strips_orphaned_tool_results(self, claude_env):
        adapter, project_dir = claude_env
        entries = [
            {"type": "user", "uuid": "u1", "message": {"content": "run it"}},
            {"type": "assistant", "uuid": "a1", "message": {"content": [
                {"type": "tool_use", "id": "toolu_9", "name": "Bash", "input": {}},
            ]}},
            {"type": "user", "uuid": "u2", "message": {"content": "and then?"}},
            {"type": "user", "uuid": "r9", "message": {"content": [
                {"type": "tool_result", "tool_use_id": "toolu_9", "content": "ok"},
                {"type": "text", "text": "late note"},
            ]}},
            {"type": "user", "uuid": "r10", "message": {"content": [
                {"type": "tool_result", "tool_use_id": "toolu_9", "content": "dup"},
            ]}},
        ]
        write_jsonl(project_dir / "sess-9.jsonl", entries)

        result = asyncio.run(adapter.delete_message_pair(PROJECT, "sess-9", "u1"))

        remaining = read_jsonl(project_dir / "sess-9.jsonl")
        assert result.success is True
        assert [e["uuid"] for e in remaining] == ["u2", "r9"]
        assert remaining[1]["message"]["content"] == [{"type": "text", "text": "late note"}]

    def test_fallback_content(self, claude_env):
        adapter, project_dir = claude_env

        result = asyncio.run(
            adapter.delete_message_pair(PROJECT, "sess-1", "stale-uuid", fallback_content="now add TESTS")
        )

        assert result.success is True
        assert [e["uuid"] for e in read_jsonl(project_dir / "sess-1.jsonl")] == ["u1", "a1", "r1", "a2"]

    def test_missing_file(self, claude_env):
        adapter, _ = claude_env

        result = asyncio.run(adapter.delete_message_pair(PROJECT, "nope", "u1"))

        assert result.success is False
        assert result.error == "Session file not found"

    def test_remote_is_refused(self, claude_env, remote_host):
        adapter, _ = claude_env

        result = asyncio.run(adapter.delete_message_pair(PROJECT, "sess-1", "u1", remote=remote_host))

        assert result.success is False
        assert result.error == "Delete not supported for remote sessions"


class TestRemote:
    def test_lists_and_reads_over_shell(self, temp_dir, remote_home, loopback_shell, remote_host):
        project_dir = remote_home / ".claude" / "projects" / encode_project_path(PROJECT)
        project_dir.mkdir(parents=True)
        write_jsonl(project_dir / "sess-r.jsonl", conversation())
        adapter = ClaudeCodeAdapter(
            projects_dir=str(temp_dir / "unused"),
            origins=OriginsStore(temp_dir / "origins.json"),
            shell=loopback_shell,
        )

        sessions = asyncio.run(adapter.list_sessions(PROJECT, remote=remote_host))
        page = asyncio.run(adapter.read_session_messages(PROJECT, "sess-r", remote=remote_host))
        path = asyncio.run(adapter.get_session_path(PROJECT, "sess-r", remote=remote_host))

        assert [s.session_id for s in sessions] == ["sess-r"]
        # No stat round trip: modified time comes from the last entry
        assert sessions[0].modified_at.isoformat() == "2025-01-10T10:01:30+00:00"
        assert page.total == 5
        assert path == f"~/.claude/projects/{encode_project_path(PROJECT)}/sess-r.jsonl"
        assert not any(c.startswith("stat") for c in loopback_shell.commands[:-1])
