"""Factory Droid session adapter.

Sessions live in ``~/.factory/sessions/<encoded-path>/<uuid>.jsonl`` with a
``<uuid>.settings.json`` sidecar carrying token usage and active time.
"""

import os
import re

import orjson
from loguru import logger

from ..config import (
    AGENTS,
    DEFAULT_MESSAGE_LIMIT,
    DEFAULT_PAGE_LIMIT,
    FACTORY_DIR,
    REMOTE_FACTORY_DIR,
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
    tool_result_refs,
    tool_use_ids,
)

DEFAULT_PREVIEW = "Factory Droid session"


def encode_project_path(project_path: str, remote: bool = False) -> str:
    """Replace path separators with '-'. Local paths are resolved first."""
    path = project_path.replace("\\", "/") if remote else os.path.abspath(project_path)
    return re.sub(r"[\\/]", "-", path)


def _conversation_entry(entry: dict | None) -> dict | None:
    """The entry's message when it is a user or assistant message line."""
    if not entry or entry.get("type") != "message":
        return None
    message = entry.get("message")
    if not isinstance(message, dict) or message.get("role") not in ("user", "assistant"):
        return None
    return message


def _to_message(entry: dict) -> Message | None:
    message = _conversation_entry(entry)
    if message is None:
        return None
    content = message.get("content", "")
    if message["role"] == "user" and is_tool_result_only(content):
        return None

    text = extract_text(content)
    parts = parse_parts(content)
    if not text and not parts:
        return None
    return Message(
        role=message["role"],
        content=text,
        timestamp=parse_timestamp(entry.get("timestamp")),
        uuid=entry.get("id", ""),
        tool_use=parts or None,
    )


class FactoryDroidAdapter:
    """Adapter for Factory Droid sessions."""

    agent_id = "factory-droid"
    display_name = AGENTS["factory-droid"]["badge"]
    color = AGENTS["factory-droid"]["color"]

    def __init__(
        self,
        sessions_dir: str | None = None,
        shell: RemoteShell | None = None,
        on_error: ErrorCallback | None = None,
    ) -> None:
        self._sessions_dir = sessions_dir if sessions_dir is not None else str(FACTORY_DIR)
        self._shell = shell
        self._on_error = on_error
        self._log = logger.bind(agent=self.agent_id)

    def _project_dir(self, fs: FileSystem, project_path: str) -> str:
        if fs.is_remote:
            return fs.join(REMOTE_FACTORY_DIR, encode_project_path(project_path, remote=True))
        return fs.join(self._sessions_dir, encode_project_path(project_path))

    async def _read_settings(self, fs: FileSystem, path: str) -> dict:
        content = await fs.read_text(path)
        if not content:
            return {}
        try:
            settings = orjson.loads(content)
        except orjson.JSONDecodeError as e:
            report_parse_error(self.agent_id, path, e, self._on_error)
            return {}
        return settings if isinstance(settings, dict) else {}

    async def _summarize(
        self, fs: FileSystem, project_path: str, project_dir: str, name: str
    ) -> SessionRecord | None:
        session_id = name[: -len(".jsonl")]
        path = fs.join(project_dir, name)
        content = await fs.read_text(path)
        if content is None:
            return None
        stat = None if fs.is_remote else await fs.stat(path)
        settings = await self._read_settings(fs, fs.join(project_dir, f"{session_id}.settings.json"))

        span = TimeSpan()
        first_user = ""
        message_count = 0
        for _line, entry in parse_json_lines(content):
            message = _conversation_entry(entry)
            if message is None:
                continue
            span.add(parse_timestamp(entry.get("timestamp")))
            if message["role"] == "user" and is_tool_result_only(message.get("content")):
                continue
            message_count += 1
            if message["role"] == "user" and not first_user:
                first_user = extract_text(message.get("content", ""))

        fallback = from_mtime(stat.mtime) if stat else None
        created = span.first or fallback
        modified = span.last or fallback
        if created is None or modified is None:
            return None

        usage = settings.get("tokenUsage") if isinstance(settings.get("tokenUsage"), dict) else {}
        active_ms = settings.get("assistantActiveTimeMs")
        duration = round(active_ms / 1000) if active_ms else span.seconds

        return SessionRecord(
            session_id=session_id,
            project_path=project_path,
            created_at=created,
            modified_at=modified,
            first_message=truncate_preview(first_user) or DEFAULT_PREVIEW,
            message_count=message_count,
            size_bytes=stat.size if stat else len(content.encode("utf-8")),
            input_tokens=usage.get("inputTokens") or 0,
            output_tokens=usage.get("outputTokens") or 0,
            cache_read_tokens=usage.get("cacheReadTokens") or 0,
            cache_creation_tokens=usage.get("cacheCreationTokens") or 0,
            duration_seconds=int(duration),
        )

    async def _session_names(self, fs: FileSystem, project_dir: str) -> list[str]:
        entries = await fs.list_dir(project_dir) or []
        return [e.name for e in entries if not e.is_dir and e.name.endswith(".jsonl")]

    async def list_sessions(
        self, project_path: str, remote: RemoteHost | None = None
    ) -> list[SessionRecord]:
        """List Factory Droid sessions for a project, newest first."""
        fs = filesystem_for(remote, self._shell)
        project_dir = self._project_dir(fs, project_path)
        try:
            names = await self._session_names(fs, project_dir)
        except (RemoteTransportError, OSError) as e:
            self._log.warning(f"Could not list sessions for {project_path}: {e}")
            return []

        sessions = []
        for name in names:
            try:
                record = await self._summarize(fs, project_path, project_dir, name)
            except (RemoteTransportError, OSError) as e:
                self._log.warning(f"Error reading session {name}: {e}")
                continue
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                report_parse_error(self.agent_id, fs.join(project_dir, name), e, self._on_error)
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

    async def _messages(self, fs: FileSystem, project_path: str, session_id: str) -> list[Message]:
        path = fs.join(self._project_dir(fs, project_path), f"{session_id}.jsonl")
        content = await fs.read_text(path)
        if content is None:
            return []
        return [
            m
            for m in (_to_message(entry) for _line, entry in parse_json_lines(content) if entry)
            if m is not None
        ]

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
            messages = await self._messages(fs, project_path, session_id)
        except (RemoteTransportError, OSError) as e:
            self._log.warning(f"Could not read session {session_id}: {e}")
            messages = []
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
        results = []
        for session in await self.list_sessions(project_path, remote):
            try:
                messages = await self._messages(fs, project_path, session.session_id)
            except (RemoteTransportError, OSError) as e:
                self._log.warning(f"Skipping session {session.session_id} in search: {e}")
                continue
            result = match_session(
                session.session_id, ((m.role, m.content) for m in messages), query, mode
            )
            if result is not None:
                results.append(result)
        return results

    async def get_session_path(
        self, project_path: str, session_id: str, remote: RemoteHost | None = None
    ) -> str | None:
        fs = filesystem_for(remote, self._shell)
        return fs.join(self._project_dir(fs, project_path), f"{session_id}.jsonl")

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
        path = fs.join(self._project_dir(fs, project_path), f"{session_id}.jsonl")
        try:
            content = await fs.read_text(path)
            if content is None:
                return DeleteResult(success=False, error=SESSION_FILE_NOT_FOUND)

            lines = parse_json_lines(content)
            plan = plan_deletion(
                [self._turn_entry(entry) for _line, entry in lines], user_message_uuid, fallback_content
            )
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
        message = _conversation_entry(entry)
        if message is None:
            return TurnEntry(uuid=entry.get("id") if entry else None, is_user_turn=False)
        content = message.get("content", "")
        return TurnEntry(
            uuid=entry.get("id"),
            is_user_turn=message["role"] == "user" and not is_tool_result_only(content),
            text=extract_text(content),
            tool_call_ids=tool_use_ids(content),
            tool_result_refs=tool_result_refs(content),
        )
