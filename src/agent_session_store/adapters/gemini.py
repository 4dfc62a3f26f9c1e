"""Gemini CLI session adapter."""

import hashlib
import os
import posixpath
import re

import orjson
from loguru import logger

from ..config import (
    AGENTS,
    DEFAULT_MESSAGE_LIMIT,
    DEFAULT_PAGE_LIMIT,
    GEMINI_DIR,
    REMOTE_GEMINI_DIR,
)
from ..errors import RemoteTransportError, UnsupportedOperationError
from ..filesystem import FileSystem, filesystem_for
from ..mutation import (
    REMOTE_DELETE_UNSUPPORTED,
    SESSION_FILE_NOT_FOUND,
    USER_MESSAGE_NOT_FOUND,
    TurnEntry,
    plan_deletion,
)
from ..remote import RemoteHost, RemoteShell
from ..search import match_session
from .base import (
    DeleteResult,
    ErrorCallback,
    Message,
    MessagesPage,
    Part,
    SearchResult,
    SessionRecord,
    SessionsPage,
    ToolCallPart,
    ToolResultPart,
    duration_between,
    from_mtime,
    paginate,
    parse_timestamp,
    report_parse_error,
    sort_newest_first,
    tail_window,
    truncate_preview,
)

_SESSION_FILE = re.compile(r"^session-[^-]+-(.+)\.json$")
PROJECT_ROOT_MARKER = ".project_root"
TITLE_LENGTH = 50


def session_id_from_filename(filename: str) -> str | None:
    match = _SESSION_FILE.match(filename)
    return match.group(1) if match else None


def is_conversation_message(msg: dict) -> bool:
    """Only user and gemini entries are conversation; info/error/warning are not."""
    return msg.get("type") in ("user", "gemini")


def message_id(msg: dict) -> str:
    """The entry's own id, else one derived from its timestamp and content."""
    if isinstance(msg.get("id"), str) and msg["id"]:
        return msg["id"]
    key = orjson.dumps(
        [msg.get("type"), msg.get("timestamp"), msg.get("content"), msg.get("displayContent")]
    )
    return "gemini-" + hashlib.sha1(key).hexdigest()[:16]


def extract_content(content) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts = [p.get("text", "") for p in content if isinstance(p, dict)]
        return " ".join(t for t in texts if t and t.strip())
    return ""


def display_text(msg: dict) -> str:
    display = (msg.get("displayContent") or "").strip()
    if display:
        return display
    return extract_content(msg.get("content")).strip()


def first_user_text(messages: list) -> str:
    for msg in messages:
        if isinstance(msg, dict) and msg.get("type") == "user":
            text = display_text(msg)
            if text:
                return text
    return ""


def format_tool_calls(tool_calls: list) -> str:
    lines = []
    for tc in tool_calls:
        name = tc.get("name") or "unknown_tool"
        status = f" ({tc['status']})" if tc.get("status") else ""
        lines.append(f"[Tool: {name}{status}]")
    return "\n".join(lines)


def _tool_parts(tool_calls: list) -> list[Part]:
    parts: list[Part] = []
    for tc in tool_calls:
        call_id = tc.get("id")
        if not call_id:
            continue
        parts.append(ToolCallPart(call_id, tc.get("name", ""), tc.get("args")))
        if tc.get("result") is not None:
            result = tc["result"]
            output = result if isinstance(result, str) else orjson.dumps(result).decode("utf-8")
            parts.append(ToolResultPart(call_id, output, is_error=tc.get("status") == "error"))
    return parts


def _tool_calls(msg: dict) -> list:
    calls = msg.get("toolCalls")
    if not isinstance(calls, list):
        return []
    return [tc for tc in calls if isinstance(tc, dict)]


def to_messages(document: dict) -> list[Message]:
    messages = []
    for msg in document.get("messages") or []:
        if not isinstance(msg, dict) or not is_conversation_message(msg):
            continue
        text = display_text(msg)
        tool_calls = _tool_calls(msg)
        if tool_calls:
            summary = format_tool_calls(tool_calls)
            text = f"{text}\n\n{summary}" if text else summary
        messages.append(
            Message(
                role="user" if msg["type"] == "user" else "assistant",
                content=text,
                timestamp=parse_timestamp(msg.get("timestamp")),
                uuid=message_id(msg),
                tool_use=_tool_parts(tool_calls) or None,
            )
        )
    return messages


class GeminiAdapter:
    """Adapter for Gemini CLI sessions.

    One history directory per project, one JSON document per session.
    """

    agent_id = "gemini-cli"
    display_name = AGENTS["gemini-cli"]["badge"]
    color = AGENTS["gemini-cli"]["color"]

    def __init__(
        self,
        history_dir: str | None = None,
        shell: RemoteShell | None = None,
        on_error: ErrorCallback | None = None,
    ) -> None:
        self._history_dir = history_dir if history_dir is not None else str(GEMINI_DIR)
        self._shell = shell
        self._on_error = on_error
        self._log = logger.bind(agent=self.agent_id)

    @staticmethod
    def _same_path(fs: FileSystem, recorded: str, project_path: str) -> bool:
        norm = posixpath.normpath if fs.is_remote else os.path.abspath
        return norm(recorded.strip()) == norm(project_path)

    async def _history_dir_for(self, fs: FileSystem, project_path: str) -> str | None:
        """Directory named after the project's basename, else the one whose marker matches."""
        base = REMOTE_GEMINI_DIR if fs.is_remote else self._history_dir
        entries = await fs.list_dir(base)
        if not entries:
            return None
        dirs = [e.name for e in entries if e.is_dir]

        basename = fs.basename(project_path)
        if basename in dirs:
            direct = fs.join(base, basename)
            marker = await fs.read_text(fs.join(direct, PROJECT_ROOT_MARKER))
            # No marker: the basename match is the best we have
            if marker is None or self._same_path(fs, marker, project_path):
                return direct

        for name in dirs:
            if name == basename:
                continue
            candidate = fs.join(base, name)
            marker = await fs.read_text(fs.join(candidate, PROJECT_ROOT_MARKER))
            if marker is not None and self._same_path(fs, marker, project_path):
                return candidate
        return None

    async def _session_files(self, fs: FileSystem, history_dir: str) -> list[tuple[str, str]]:
        entries = await fs.list_dir(history_dir) or []
        return [
            (e.name, fs.join(history_dir, e.name))
            for e in entries
            if not e.is_dir and e.name.startswith("session-") and e.name.endswith(".json")
        ]

    async def _load(self, fs: FileSystem, path: str) -> tuple[dict, str] | None:
        content = await fs.read_text(path)
        if not content:
            return None
        try:
            document = orjson.loads(content)
        except orjson.JSONDecodeError as e:
            report_parse_error(self.agent_id, path, e, self._on_error)
            return None
        if not isinstance(document, dict):
            return None
        return document, content

    def _summarize(
        self, project_path: str, filename: str, document: dict, size: int, mtime: float | None
    ) -> SessionRecord:
        session_id = document.get("sessionId") or session_id_from_filename(filename) or filename
        raw_messages = [m for m in document.get("messages") or [] if isinstance(m, dict)]
        conversation = [m for m in raw_messages if is_conversation_message(m)]

        summary = (document.get("summary") or "").strip()
        first_user = first_user_text(conversation)
        title = summary or first_user[:TITLE_LENGTH] or f"Gemini session {session_id[:8]}"

        fallback = from_mtime(mtime) if mtime is not None else None
        started = parse_timestamp(document.get("startTime")) or fallback
        last_active = parse_timestamp(document.get("lastUpdated")) or fallback or started
        if started is None:
            raise ValueError("session has no startTime")

        return SessionRecord(
            session_id=session_id,
            project_path=project_path,
            created_at=started,
            modified_at=last_active,
            first_message=truncate_preview(first_user or title),
            message_count=len(conversation),
            size_bytes=size,
            duration_seconds=duration_between(started, last_active),
            session_name=title,
        )

    async def list_sessions(
        self, project_path: str, remote: RemoteHost | None = None
    ) -> list[SessionRecord]:
        """List Gemini CLI sessions for a project, newest first."""
        fs = filesystem_for(remote, self._shell)
        sessions = []
        try:
            history_dir = await self._history_dir_for(fs, project_path)
            if history_dir is None:
                self._log.info(f"No Gemini history directory for {project_path}")
                return []

            for filename, path in await self._session_files(fs, history_dir):
                stat = None
                if not fs.is_remote:
                    stat = await fs.stat(path)
                    if stat is None or stat.size == 0:
                        continue
                loaded = await self._load(fs, path)
                if loaded is None:
                    continue
                document, content = loaded
                size = stat.size if stat else len(content.encode("utf-8"))
                try:
                    sessions.append(
                        self._summarize(
                            project_path, filename, document, size, stat.mtime if stat else None
                        )
                    )
                except (KeyError, TypeError, ValueError, AttributeError) as e:
                    report_parse_error(self.agent_id, path, e, self._on_error)
        except (RemoteTransportError, OSError) as e:
            self._log.warning(f"Could not list sessions for {project_path}: {e}")
            return []

        return sort_newest_first(sessions)

    async def list_sessions_paginated(
        self,
        project_path: str,
        cursor: str | None = None,
        limit: int = DEFAULT_PAGE_LIMIT,
        remote: RemoteHost | None = None,
    ) -> SessionsPage:
        return paginate(await self.list_sessions(project_path, remote), cursor, limit)

    async def _find_session(
        self, fs: FileSystem, project_path: str, session_id: str
    ) -> tuple[str, dict] | None:
        history_dir = await self._history_dir_for(fs, project_path)
        if history_dir is None:
            return None
        files = await self._session_files(fs, history_dir)

        for filename, path in files:
            if session_id_from_filename(filename) == session_id:
                loaded = await self._load(fs, path)
                if loaded is not None:
                    return path, loaded[0]

        for _filename, path in files:
            loaded = await self._load(fs, path)
            if loaded is not None and loaded[0].get("sessionId") == session_id:
                return path, loaded[0]
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
            found = await self._find_session(fs, project_path, session_id)
        except (RemoteTransportError, OSError) as e:
            self._log.warning(f"Could not read session {session_id}: {e}")
            found = None
        if found is None:
            return MessagesPage(messages=[], total=0, has_more=False)
        return tail_window(to_messages(found[1]), offset, limit)

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
        results = []
        try:
            history_dir = await self._history_dir_for(fs, project_path)
            if history_dir is None:
                return []
            for filename, path in await self._session_files(fs, history_dir):
                loaded = await self._load(fs, path)
                if loaded is None:
                    continue
                document = loaded[0]
                session_id = (
                    document.get("sessionId") or session_id_from_filename(filename) or filename
                )
                result = match_session(
                    session_id,
                    ((m.role, m.content) for m in to_messages(document)),
                    query,
                    mode,
                )
                if result is not None:
                    results.append(result)
        except (RemoteTransportError, OSError) as e:
            self._log.warning(f"Could not search sessions for {project_path}: {e}")
            return []
        return results

    async def get_session_path(
        self, project_path: str, session_id: str, remote: RemoteHost | None = None
    ) -> str | None:
        fs = filesystem_for(remote, self._shell)
        try:
            found = await self._find_session(fs, project_path, session_id)
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
        """Rewrite the session document without the exchange.

        Addressable messages are the user/gemini entries, under the ids
        read_session_messages gives them. Info and warning entries between
        them go with the span.
        """
        if remote is not None:
            return DeleteResult(success=False, error=REMOTE_DELETE_UNSUPPORTED)

        fs = filesystem_for(None)
        try:
            found = await self._find_session(fs, project_path, session_id)
            if found is None:
                return DeleteResult(success=False, error=SESSION_FILE_NOT_FOUND)
            path, document = found

            raw = [m for m in document.get("messages") or [] if isinstance(m, dict)]
            entries = [
                TurnEntry(
                    uuid=message_id(msg) if is_conversation_message(msg) else None,
                    is_user_turn=msg.get("type") == "user",
                    text=display_text(msg),
                )
                for msg in raw
            ]

            plan = plan_deletion(entries, user_message_uuid, fallback_content)
            if plan is None:
                self._log.warning(f"User message {user_message_uuid} not found in {session_id}")
                return DeleteResult(success=False, error=USER_MESSAGE_NOT_FOUND)

            # Gemini records a tool call and its result in the same toolCalls
            # item, so dropping the span leaves no dangling results behind.
            kept = [msg for i, msg in enumerate(raw) if i not in plan.span]

            document = {**document, "messages": kept}
            await fs.write_text(
                path, orjson.dumps(document, option=orjson.OPT_INDENT_2).decode("utf-8")
            )
        except (UnsupportedOperationError, OSError) as e:
            self._log.error(f"Error deleting message pair from {session_id}: {e}")
            return DeleteResult(success=False, error=str(e))

        removed = len(raw) - len(kept)
        self._log.info(f"Deleted message pair from {session_id}: {removed} messages removed")
        return DeleteResult(success=True, records_removed=removed)
