"""Claude Code session adapter."""

import re
from dataclasses import dataclass

import orjson
from loguru import logger

from ..config import (
    AGENTS,
    CLAUDE_DIR,
    CLAUDE_PRICING,
    DEFAULT_MESSAGE_LIMIT,
    DEFAULT_PAGE_LIMIT,
    REMOTE_CLAUDE_DIR,
)
from ..errors import RemoteTransportError, UnsupportedOperationError
from ..filesystem import FileStat, FileSystem, filesystem_for
from ..mutation import (
    REMOTE_DELETE_UNSUPPORTED,
    SESSION_FILE_NOT_FOUND,
    USER_MESSAGE_NOT_FOUND,
    TurnEntry,
    plan_deletion,
)
from ..origins import OriginsStore
from ..remote import RemoteHost, RemoteShell
from ..search import match_session
from .base import (
    DeleteResult,
    ErrorCallback,
    Message,
    MessagesPage,
    SearchResult,
    SessionRecord,
    SessionsPage,
    TimeSpan,
    from_mtime,
    paginate,
    parse_json_lines,
    parse_timestamp,
    report_parse_error,
    sort_newest_first,
    tail_window,
    truncate_preview,
)
from .blocks import (
    extract_text,
    is_tool_result_only,
    parse_parts,
    strip_tool_results,
    summarize_tools,
    tool_result_refs,
    tool_use_ids,
)


def encode_project_path(project_path: str) -> str:
    """Claude names project dirs after the path with non-alphanumerics as '-'."""
    return re.sub(r"[^a-zA-Z0-9]", "-", project_path)


def calculate_cost(
    input_tokens: int, output_tokens: int, cache_read_tokens: int, cache_creation_tokens: int
) -> float:
    return (
        input_tokens * CLAUDE_PRICING["input"]
        + output_tokens * CLAUDE_PRICING["output"]
        + cache_read_tokens * CLAUDE_PRICING["cache_read"]
        + cache_creation_tokens * CLAUDE_PRICING["cache_creation"]
    ) / 1_000_000


def _is_system_entry(entry: dict) -> bool:
    """Meta entries and slash-command echoes are not part of the conversation."""
    if entry.get("isMeta"):
        return True
    message = entry.get("message")
    content = message.get("content", "") if isinstance(message, dict) else ""
    return isinstance(content, str) and content.startswith(("<command", "<local-command"))


def _to_message(entry: dict) -> Message | None:
    msg_type = entry.get("type")
    if msg_type not in ("user", "assistant") or _is_system_entry(entry):
        return None

    message = entry.get("message", {})
    if not isinstance(message, dict):
        return None
    content = message.get("content", "")
    if msg_type == "user" and is_tool_result_only(content):
        return None

    parts = parse_parts(content)
    text = extract_text(content, sep="\n") or summarize_tools(parts)
    if not text and not parts:
        return None

    return Message(
        role=msg_type,
        content=text,
        timestamp=parse_timestamp(entry.get("timestamp")),
        uuid=entry.get("uuid", ""),
        tool_use=parts or None,
    )


@dataclass
class _SessionFile:
    session_id: str
    path: str
    stat: FileStat | None
    content: str


class ClaudeCodeAdapter:
    """Adapter for Claude Code sessions."""

    agent_id = "claude-code"
    display_name = AGENTS["claude-code"]["badge"]
    color = AGENTS["claude-code"]["color"]

    def __init__(
        self,
        projects_dir: str | None = None,
        origins: OriginsStore | None = None,
        shell: RemoteShell | None = None,
        on_error: ErrorCallback | None = None,
    ) -> None:
        self._projects_dir = projects_dir if projects_dir is not None else str(CLAUDE_DIR)
        self._origins = origins if origins is not None else OriginsStore()
        self._shell = shell
        self._on_error = on_error
        self._log = logger.bind(agent=self.agent_id)

    def _project_dir(self, fs: FileSystem, project_path: str) -> str:
        base = REMOTE_CLAUDE_DIR if fs.is_remote else self._projects_dir
        return fs.join(base, encode_project_path(project_path))

    async def _session_files(self, fs: FileSystem, project_dir: str) -> list[_SessionFile]:
        entries = await fs.list_dir(project_dir)
        if not entries:
            return []

        files = []
        for entry in entries:
            # Skip agent subprocesses
            if entry.is_dir or not entry.name.endswith(".jsonl") or entry.name.startswith("agent-"):
                continue
            path = fs.join(project_dir, entry.name)
            stat = None
            if not fs.is_remote:
                stat = await fs.stat(path)
                if stat is None or stat.size == 0:
                    continue
            content = await fs.read_text(path)
            if not content:
                continue
            files.append(_SessionFile(entry.name[: -len(".jsonl")], path, stat, content))
        return files

    def _summarize(self, project_path: str, session: _SessionFile) -> SessionRecord | None:
        span = TimeSpan()
        first_user = ""
        first_assistant = ""
        message_count = 0
        input_tokens = output_tokens = cache_read = cache_creation = 0

        for _line, entry in parse_json_lines(session.content):
            if entry is None:
                continue
            span.add(parse_timestamp(entry.get("timestamp")))

            message = _to_message(entry)
            if message is None:
                continue
            message_count += 1

            if message.role == "user" and not first_user:
                first_user = extract_text(entry["message"].get("content", ""))
            elif message.role == "assistant":
                if not first_assistant:
                    first_assistant = extract_text(entry["message"].get("content", ""))
                usage = entry["message"].get("usage") or {}
                input_tokens += usage.get("input_tokens", 0) or 0
                output_tokens += usage.get("output_tokens", 0) or 0
                cache_read += usage.get("cache_read_input_tokens", 0) or 0
                cache_creation += usage.get("cache_creation_input_tokens", 0) or 0

        if message_count == 0:
            return None

        if session.stat is not None:
            modified = from_mtime(session.stat.mtime)
            size = session.stat.size
        else:
            modified = span.last or span.first
            size = len(session.content.encode("utf-8"))
        if modified is None:
            return None

        return SessionRecord(
            session_id=session.session_id,
            project_path=project_path,
            created_at=span.first or modified,
            modified_at=modified,
            first_message=truncate_preview(first_assistant or first_user),
            message_count=message_count,
            size_bytes=size,
            cost_usd=calculate_cost(input_tokens, output_tokens, cache_read, cache_creation),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cache_read_tokens=cache_read,
            cache_creation_tokens=cache_creation,
            duration_seconds=span.seconds,
        )

    async def list_sessions(
        self, project_path: str, remote: RemoteHost | None = None
    ) -> list[SessionRecord]:
        """List Claude Code sessions for a project, newest first."""
        fs = filesystem_for(remote, self._shell)
        try:
            files = await self._session_files(fs, self._project_dir(fs, project_path))
        except (RemoteTransportError, OSError) as e:
            self._log.warning(f"Could not list sessions for {project_path}: {e}")
            return []

        origins = self._origins.get_session_origins(project_path)
        sessions = []
        for session_file in files:
            try:
                record = self._summarize(project_path, session_file)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                report_parse_error(self.agent_id, session_file.path, e, self._on_error)
                continue
            if record is None:
                continue
            info = origins.get(record.session_id)
            if info is not None:
                record.origin = info.origin
                record.session_name = info.session_name
                record.starred = info.starred
            sessions.append(record)

        self._log.info(f"Found {len(sessions)} sessions for {project_path}")
        return sort_newest_first(sessions)

    async def list_sessions_paginated(
        self,
        project_path: str,
        cursor: str | None = None,
        limit: int = DEFAULT_PAGE_LIMIT,
        remote: RemoteHost | None = None,
    ) -> SessionsPage:
        return paginate(await self.list_sessions(project_path, remote), cursor, limit)

    async def _read(self, fs: FileSystem, project_path: str, session_id: str) -> tuple[str, str | None]:
        path = fs.join(self._project_dir(fs, project_path), f"{session_id}.jsonl")
        return path, await fs.read_text(path)

    async def read_session_messages(
        self,
        project_path: str,
        session_id: str,
        offset: int = 0,
        limit: int = DEFAULT_MESSAGE_LIMIT,
        remote: RemoteHost | None = None,
    ) -> MessagesPage:
        fs = filesystem_for(remote, self._shell)
        try:
            _path, content = await self._read(fs, project_path, session_id)
        except (RemoteTransportError, OSError) as e:
            self._log.warning(f"Could not read session {session_id}: {e}")
            content = None
        if content is None:
            return MessagesPage(messages=[], total=0, has_more=False)

        messages = [
            m
            for m in (_to_message(entry) for _line, entry in parse_json_lines(content) if entry)
            if m is not None
        ]
        return tail_window(messages, offset, limit)

    async def search_sessions(
        self,
        project_path: str,
        query: str,
        mode: str,
        remote: RemoteHost | None = None,
    ) -> list[SearchResult]:
        if not query.strip():
            return []

        fs = filesystem_for(remote, self._shell)
        try:
            files = await self._session_files(fs, self._project_dir(fs, project_path))
        except (RemoteTransportError, OSError) as e:
            self._log.warning(f"Could not search sessions for {project_path}: {e}")
            return []

        results = []
        for session_file in files:
            messages = (
                _to_message(entry)
                for _line, entry in parse_json_lines(session_file.content)
                if entry
            )
            result = match_session(
                session_file.session_id,
                ((m.role, m.content) for m in messages if m is not None),
                query,
                mode,
            )
            if result is not None:
                results.append(result)
        return results

    async def get_session_path(
        self, project_path: str, session_id: str, remote: RemoteHost | None = None
    ) -> str | None:
        fs = filesystem_for(remote, self._shell)
        path = fs.join(self._project_dir(fs, project_path), f"{session_id}.jsonl")
        try:
            return path if await fs.exists(path) else None
        except RemoteTransportError:
            return None

    async def delete_message_pair(
        self,
        project_path: str,
        session_id: str,
        user_message_uuid: str,
        fallback_content: str | None = None,
        remote: RemoteHost | None = None,
    ) -> DeleteResult:
        if remote is not None:
            return DeleteResult(success=False, error=REMOTE_DELETE_UNSUPPORTED)

        fs = filesystem_for(None)
        try:
            path, content = await self._read(fs, project_path, session_id)
            if content is None:
                return DeleteResult(success=False, error=SESSION_FILE_NOT_FOUND)

            lines = parse_json_lines(content)
            entries = [self._turn_entry(entry) for _line, entry in lines]
            plan = plan_deletion(entries, user_message_uuid, fallback_content)
            if plan is None:
                self._log.warning(f"User message {user_message_uuid} not found in {session_id}")
                return DeleteResult(success=False, error=USER_MESSAGE_NOT_FOUND)

            orphans = set(plan.orphan_indices)
            kept: list[str] = []
            for i, (line, entry) in enumerate(lines):
                if i in plan.span:
                    continue
                if i in orphans:
                    message = entry["message"]
                    remaining = strip_tool_results(message.get("content"), plan.deleted_tool_call_ids)
                    if not remaining:
                        continue
                    entry = {**entry, "message": {**message, "content": remaining}}
                    line = orjson.dumps(entry).decode("utf-8")
                kept.append(line)

            await fs.write_text(path, "\n".join(kept) + "\n" if kept else "")
        except (UnsupportedOperationError, OSError) as e:
            self._log.error(f"Error deleting message pair from {session_id}: {e}")
            return DeleteResult(success=False, error=str(e))

        removed = len(lines) - len(kept)
        self._log.info(f"Deleted message pair from {session_id}: {removed} lines removed")
        return DeleteResult(success=True, records_removed=removed)

    @staticmethod
    def _turn_entry(entry: dict | None) -> TurnEntry:
        if entry is None:
            return TurnEntry(uuid=None, is_user_turn=False)
        message = entry.get("message")
        content = message.get("content", "") if isinstance(message, dict) else ""
        is_user_turn = (
            entry.get("type") == "user"
            and not _is_system_entry(entry)
            and not is_tool_result_only(content)
        )
        return TurnEntry(
            uuid=entry.get("uuid"),
            is_user_turn=is_user_turn,
            text=extract_text(content),
            tool_call_ids=tool_use_ids(content),
            tool_result_refs=tool_result_refs(content),
        )
