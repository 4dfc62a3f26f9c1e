"""Codex CLI session adapter."""

import hashlib
import re
from dataclasses import dataclass, field
from datetime import datetime

from loguru import logger

from ..config import (
    AGENTS,
    CODEX_DIR,
    DEFAULT_MESSAGE_LIMIT,
    DEFAULT_PAGE_LIMIT,
    REMOTE_CODEX_DIR,
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
from ..remote import RemoteHost, RemoteShell, get_git_remote_url, normalize_git_url
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
    ToolCallPart,
    ToolResultPart,
    from_mtime,
    paginate,
    parse_json_lines,
    parse_timestamp,
    report_parse_error,
    sort_newest_first,
    tail_window,
    truncate_preview,
)

_YEAR = re.compile(r"^\d{4}$")
_MONTH_OR_DAY = re.compile(r"^\d{2}$")
_ROLLOUT_ID = re.compile(
    r"([0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})\.jsonl$", re.IGNORECASE
)

# User "messages" Codex injects to carry context, not typed by a human
_CONTEXT_PREFIXES = ("<environment_context>", "<user_instructions>")


def session_id_from_filename(filename: str) -> str:
    """rollout-2025-12-17T18-24-27-<uuid>.jsonl -> <uuid>"""
    match = _ROLLOUT_ID.search(filename)
    if match:
        return match.group(1)
    return filename[: -len(".jsonl")] if filename.endswith(".jsonl") else filename


def extract_text(content) -> str:
    """Join input_text/output_text/text parts of a Codex message."""
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    texts = []
    for part in content:
        if isinstance(part, dict) and part.get("type") in ("input_text", "output_text", "text"):
            text = part.get("text", "")
            if text and text.strip():
                texts.append(text)
    return " ".join(texts)


def read_metadata(data: dict | None) -> dict | None:
    """Session metadata from the first line, in either the flat or session_meta shape."""
    if not data:
        return None
    if data.get("type") == "session_meta" and isinstance(data.get("payload"), dict):
        return data["payload"]
    if "type" not in data and data.get("id") and data.get("timestamp"):
        return data
    return None


def _decode_output(output) -> str:
    if isinstance(output, list):
        try:
            return bytes(output).decode("utf-8", errors="replace")
        except (TypeError, ValueError):
            return ""
    if isinstance(output, dict):
        return str(output.get("output", ""))
    return "" if output is None else str(output)


def line_message_id(raw: str) -> str:
    """Id for a message line that carries none of its own.

    Derived from the line itself, so it survives rewrites of the file and
    stops resolving once the line is deleted.
    """
    return "codex-" + hashlib.sha1(raw.strip().encode("utf-8")).hexdigest()[:16]


@dataclass
class CodexLine:
    """One log line with what it contributes to the conversation."""

    raw: str
    data: dict | None
    message: Message | None = None
    is_user_turn: bool = False
    is_tool_event: bool = False
    tool_call_ids: set[str] = field(default_factory=set)
    tool_result_refs: set[str] = field(default_factory=set)


def parse_codex_lines(content: str) -> list[CodexLine]:
    """Parse a rollout file into lines, one CodexLine per raw line."""
    lines: list[CodexLine] = []

    for raw, data in parse_json_lines(content):
        line = CodexLine(raw=raw, data=data)
        lines.append(line)
        if data is None:
            continue

        entry_type = data.get("type")
        ts = parse_timestamp(data.get("timestamp"))
        role = None
        text = ""
        uuid = None
        tool_use = None

        if entry_type == "message":
            role, text = data.get("role"), extract_text(data.get("content"))
        elif entry_type == "response_item" and isinstance(data.get("payload"), dict):
            payload = data["payload"]
            payload_type = payload.get("type")
            if payload_type == "message":
                role, text = payload.get("role"), extract_text(payload.get("content"))
            elif payload_type == "function_call" and payload.get("call_id"):
                call_id = payload["call_id"]
                role, text = "assistant", f"Tool: {payload.get('name', '')}"
                tool_use = [ToolCallPart(call_id, payload.get("name", ""), payload.get("arguments"))]
                line.tool_call_ids.add(call_id)
                line.is_tool_event = True
            elif payload_type == "function_call_output" and payload.get("call_id"):
                call_id = payload["call_id"]
                role = "assistant"
                text = _decode_output(payload.get("output")) or "[Tool result]"
                tool_use = [ToolResultPart(call_id, text)]
                line.tool_result_refs.add(call_id)
                line.is_tool_event = True
        elif entry_type == "item.completed" and isinstance(data.get("item"), dict):
            item = data["item"]
            item_type = item.get("type")
            uuid = item.get("id")
            if item_type == "agent_message":
                role, text = "assistant", item.get("text", "")
            elif item_type == "tool_call":
                role, text = "assistant", f"Tool: {item.get('tool', '')}"
                if uuid:
                    tool_use = [ToolCallPart(uuid, item.get("tool", ""), item.get("args"))]
                    line.tool_call_ids.add(uuid)
                line.is_tool_event = True
            elif item_type == "tool_result":
                role = "assistant"
                text = _decode_output(item.get("output")) or "[Tool result]"
                ref = item.get("tool_call_id") or uuid
                if ref:
                    tool_use = [ToolResultPart(ref, text)]
                    line.tool_result_refs.add(ref)
                line.is_tool_event = True

        if role not in ("user", "assistant") or not text:
            continue
        if role == "user" and text.strip().startswith(_CONTEXT_PREFIXES):
            continue

        line.message = Message(
            role=role,
            content=text,
            timestamp=ts,
            uuid=uuid or line_message_id(raw),
            tool_use=tool_use,
        )
        line.is_user_turn = role == "user"

    return lines


@dataclass
class _SessionFile:
    filename: str
    path: str
    stat: FileStat | None
    content: str


class CodexAdapter:
    """Adapter for Codex CLI sessions.

    Codex keeps every session in one dated tree regardless of project, so
    membership is decided by the git remote recorded in the session's
    metadata line. Sessions without one are never listed.
    """

    agent_id = "codex"
    display_name = AGENTS["codex"]["badge"]
    color = AGENTS["codex"]["color"]

    def __init__(
        self,
        sessions_dir: str | None = None,
        shell: RemoteShell | None = None,
        on_error: ErrorCallback | None = None,
    ) -> None:
        self._sessions_dir = sessions_dir if sessions_dir is not None else str(CODEX_DIR)
        self._shell = shell
        self._on_error = on_error
        self._log = logger.bind(agent=self.agent_id)

    def _root(self, fs: FileSystem) -> str:
        return REMOTE_CODEX_DIR if fs.is_remote else self._sessions_dir

    async def _find_session_paths(self, fs: FileSystem) -> list[tuple[str, str]]:
        """All (filename, path) pairs under sessions/YYYY/MM/DD."""
        root = self._root(fs)
        found = []
        for year in await fs.list_dir(root) or []:
            if not year.is_dir or not _YEAR.match(year.name):
                continue
            year_dir = fs.join(root, year.name)
            for month in await fs.list_dir(year_dir) or []:
                if not month.is_dir or not _MONTH_OR_DAY.match(month.name):
                    continue
                month_dir = fs.join(year_dir, month.name)
                for day in await fs.list_dir(month_dir) or []:
                    if not day.is_dir or not _MONTH_OR_DAY.match(day.name):
                        continue
                    day_dir = fs.join(month_dir, day.name)
                    for entry in await fs.list_dir(day_dir) or []:
                        if not entry.is_dir and entry.name.endswith(".jsonl"):
                            found.append((entry.name, fs.join(day_dir, entry.name)))
        return found

    async def _project_files(
        self, fs: FileSystem, project_path: str, remote: RemoteHost | None
    ) -> list[_SessionFile]:
        project_url = await get_git_remote_url(project_path, remote, self._shell)
        if not project_url:
            self._log.info(f"No git remote for {project_path}, skipping Codex sessions")
            return []
        wanted = normalize_git_url(project_url)

        files = []
        for filename, path in await self._find_session_paths(fs):
            stat = None
            if not fs.is_remote:
                stat = await fs.stat(path)
                if stat is None or stat.size == 0:
                    continue
            content = await fs.read_text(path)
            if not content:
                continue
            first = parse_json_lines(content.split("\n", 1)[0])
            metadata = read_metadata(first[0][1] if first else None)
            git = (metadata or {}).get("git") or {}
            if not isinstance(git, dict) or not git.get("repository_url"):
                continue
            if normalize_git_url(git["repository_url"]) != wanted:
                continue
            files.append(_SessionFile(filename, path, stat, content))
        return files

    def _summarize(self, project_path: str, session: _SessionFile) -> SessionRecord | None:
        lines = parse_codex_lines(session.content)
        metadata = read_metadata(lines[0].data) if lines else None

        span = TimeSpan()
        first_message = ""
        message_count = 0
        input_tokens = output_tokens = cached_tokens = 0
        last_totals: dict | None = None
        saw_turn_usage = False

        for line in lines:
            data = line.data
            if data is None:
                continue
            span.add(parse_timestamp(data.get("timestamp")))

            if data.get("type") == "turn.completed" and isinstance(data.get("usage"), dict):
                usage = data["usage"]
                saw_turn_usage = True
                input_tokens += usage.get("input_tokens", 0) or 0
                output_tokens += usage.get("output_tokens", 0) or 0
                output_tokens += usage.get("reasoning_output_tokens", 0) or 0
                cached_tokens += usage.get("cached_input_tokens", 0) or 0
            elif data.get("type") == "event_msg":
                payload = data.get("payload") or {}
                if payload.get("type") == "token_count":
                    info = payload.get("info") or {}
                    last_totals = info.get("total_token_usage") or last_totals

            if line.message is not None and not line.is_tool_event:
                message_count += 1
                if not first_message and line.message.content.strip():
                    first_message = line.message.content

        # Newer rollouts only carry cumulative token_count events
        if not saw_turn_usage and last_totals:
            input_tokens = last_totals.get("input_tokens", 0) or 0
            output_tokens = (last_totals.get("output_tokens", 0) or 0) + (
                last_totals.get("reasoning_output_tokens", 0) or 0
            )
            cached_tokens = last_totals.get("cached_input_tokens", 0) or 0

        started: datetime | None = parse_timestamp((metadata or {}).get("timestamp"))
        span.add(started)
        if session.stat is not None:
            modified = from_mtime(session.stat.mtime)
            size = session.stat.size
        else:
            modified = span.last
            size = len(session.content.encode("utf-8"))
        if modified is None:
            return None

        return SessionRecord(
            session_id=(metadata or {}).get("id") or session_id_from_filename(session.filename),
            project_path=project_path,
            created_at=span.first or modified,
            modified_at=modified,
            first_message=truncate_preview(first_message),
            message_count=message_count,
            size_bytes=size,
            # Codex reports no cost and pricing varies by model
            cost_usd=None,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cache_read_tokens=cached_tokens,
            cache_creation_tokens=0,
            duration_seconds=span.seconds,
        )

    async def list_sessions(
        self, project_path: str, remote: RemoteHost | None = None
    ) -> list[SessionRecord]:
        """List Codex sessions whose git remote matches the project's origin."""
        fs = filesystem_for(remote, self._shell)
        try:
            files = await self._project_files(fs, project_path, remote)
        except (RemoteTransportError, OSError) as e:
            self._log.warning(f"Could not list sessions for {project_path}: {e}")
            return []

        sessions = []
        for session_file in files:
            try:
                record = self._summarize(project_path, session_file)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                report_parse_error(self.agent_id, session_file.path, e, self._on_error)
                continue
            if record is not None:
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

    async def _find_session_file(self, fs: FileSystem, session_id: str) -> tuple[str, str] | None:
        """Locate a rollout by the id in its filename, then by its metadata line."""
        paths = await self._find_session_paths(fs)
        for filename, path in paths:
            if session_id_from_filename(filename) == session_id:
                content = await fs.read_text(path)
                if content is not None:
                    return path, content

        for _filename, path in paths:
            content = await fs.read_text(path)
            if not content:
                continue
            first = parse_json_lines(content.split("\n", 1)[0])
            metadata = read_metadata(first[0][1] if first else None)
            if metadata and metadata.get("id") == session_id:
                return path, content
        return None

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
            found = await self._find_session_file(fs, session_id)
        except (RemoteTransportError, OSError) as e:
            self._log.warning(f"Could not read session {session_id}: {e}")
            found = None
        if found is None:
            self._log.warning(f"Session file not found: {session_id}")
            return MessagesPage(messages=[], total=0, has_more=False)

        _path, content = found
        messages = [line.message for line in parse_codex_lines(content) if line.message]
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
            files = await self._project_files(fs, project_path, remote)
        except (RemoteTransportError, OSError) as e:
            self._log.warning(f"Could not search sessions for {project_path}: {e}")
            return []

        results = []
        for session_file in files:
            lines = parse_codex_lines(session_file.content)
            metadata = read_metadata(lines[0].data) if lines else None
            session_id = (metadata or {}).get("id") or session_id_from_filename(session_file.filename)
            result = match_session(
                session_id,
                (
                    (line.message.role, line.message.content)
                    for line in lines
                    if line.message is not None and not line.is_tool_event
                ),
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
        try:
            found = await self._find_session_file(fs, session_id)
        except RemoteTransportError:
            return None
        return found[0] if found else None

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
            found = await self._find_session_file(fs, session_id)
            if found is None:
                self._log.warning(f"Session file not found for deletion: {session_id}")
                return DeleteResult(success=False, error=SESSION_FILE_NOT_FOUND)
            path, content = found

            lines = parse_codex_lines(content)
            entries = [
                TurnEntry(
                    uuid=line.message.uuid if line.message else None,
                    is_user_turn=line.is_user_turn,
                    text=line.message.content if line.message else "",
                    tool_call_ids=line.tool_call_ids,
                    tool_result_refs=line.tool_result_refs,
                )
                for line in lines
            ]
            plan = plan_deletion(entries, user_message_uuid, fallback_content)
            if plan is None:
                self._log.warning(f"User message {user_message_uuid} not found in {session_id}")
                return DeleteResult(success=False, error=USER_MESSAGE_NOT_FOUND)

            drop = set(plan.span) | set(plan.orphan_indices)
            kept = [line.raw for i, line in enumerate(lines) if i not in drop]
            await fs.write_text(path, "\n".join(kept) + "\n" if kept else "")
        except (UnsupportedOperationError, OSError) as e:
            self._log.error(f"Error deleting message pair from {session_id}: {e}")
            return DeleteResult(success=False, error=str(e))

        if plan.deleted_tool_call_ids:
            self._log.info(
                f"Cleaned up tool results for {sorted(plan.deleted_tool_call_ids)} in {session_id}"
            )
        removed = len(lines) - len(kept)
        self._log.info(f"Deleted message pair from {session_id}: {removed} lines removed")
        return DeleteResult(success=True, records_removed=removed)
