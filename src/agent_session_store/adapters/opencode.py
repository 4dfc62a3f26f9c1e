"""OpenCode session adapter.

OpenCode moved from a tree of per-entity JSON files to a SQLite database in
v1.2, and installs that upgraded in place can hold sessions in both. The
database is read first; legacy-only sessions are merged in behind it.
"""

import asyncio
import hashlib
import posixpath
from pathlib import Path

import orjson
from loguru import logger

from ..config import (
    AGENTS,
    DEFAULT_MESSAGE_LIMIT,
    DEFAULT_PAGE_LIMIT,
    OPENCODE_DB,
    OPENCODE_DIR,
    REMOTE_OPENCODE_DIR,
)
from ..errors import RemoteTransportError, UnsupportedOperationError
from ..filesystem import FileSystem, filesystem_for
from ..mutation import (
    REMOTE_DELETE_UNSUPPORTED,
    USER_MESSAGE_NOT_FOUND,
    TurnEntry,
    plan_deletion,
)
from ..reconcile import merge_listings
from ..remote import RemoteHost, RemoteShell
from ..search import match_session
from . import opencode_db
from .base import (
    DeleteResult,
    ErrorCallback,
    MessagesPage,
    SearchResult,
    SessionRecord,
    SessionsPage,
    paginate,
    report_parse_error,
    sort_newest_first,
    tail_window,
)
from .opencode_model import (
    OpenCodeMessage,
    OpenCodeSession,
    call_id_of,
    message_from_data,
    summarize_session,
    text_of,
    to_messages,
    tool_parts,
)

SQLITE_DELETE_UNSUPPORTED = "Delete not supported for OpenCode v1.2+ SQLite sessions"
NO_MESSAGES = "No messages found in session"
GLOBAL_PROJECT = "global"


def hash_project_path(project_path: str) -> str:
    return hashlib.sha1(project_path.encode("utf-8")).hexdigest()


class OpenCodeAdapter:
    """Adapter for OpenCode sessions."""

    agent_id = "opencode"
    display_name = AGENTS["opencode"]["badge"]
    color = AGENTS["opencode"]["color"]

    def __init__(
        self,
        storage_dir: str | None = None,
        db_path: str | None = None,
        shell: RemoteShell | None = None,
        on_error: ErrorCallback | None = None,
    ) -> None:
        self._storage_dir = storage_dir if storage_dir is not None else str(OPENCODE_DIR)
        self._db_path = Path(db_path) if db_path is not None else OPENCODE_DB
        self._shell = shell
        self._on_error = on_error
        self._log = logger.bind(agent=self.agent_id)

    def _root(self, fs: FileSystem) -> str:
        return REMOTE_OPENCODE_DIR if fs.is_remote else self._storage_dir

    @staticmethod
    def _normalize(fs: FileSystem, path: str) -> str:
        if fs.is_remote:
            return posixpath.normpath(path).rstrip("/") or "/"
        return opencode_db.normalize_path(path)

    async def _read_json(self, fs: FileSystem, path: str) -> dict | None:
        content = await fs.read_text(path)
        if not content:
            return None
        try:
            data = orjson.loads(content)
        except orjson.JSONDecodeError as e:
            report_parse_error(self.agent_id, path, e, self._on_error)
            return None
        return data if isinstance(data, dict) else None

    async def _json_files(self, fs: FileSystem, directory: str) -> list[str]:
        entries = await fs.list_dir(directory) or []
        return sorted(e.name for e in entries if not e.is_dir and e.name.endswith(".json"))

    # Legacy JSON storage

    async def _find_project_id(self, fs: FileSystem, project_path: str) -> str | None:
        """Project whose worktree is or contains the path, else the SHA1 id, else global."""
        project_dir = fs.join(self._root(fs), "project")
        files = await self._json_files(fs, project_dir)
        if not files:
            return None

        wanted = self._normalize(fs, project_path)
        for name in files:
            if name == f"{GLOBAL_PROJECT}.json":
                continue
            project = await self._read_json(fs, fs.join(project_dir, name))
            if not project or not project.get("worktree") or not project.get("id"):
                continue
            if opencode_db.path_related(self._normalize(fs, project["worktree"]), wanted):
                self._log.debug(f"Found project {project['id']} for {wanted}")
                return project["id"]

        hashed = hash_project_path(project_path)
        if f"{hashed}.json" in files:
            return hashed

        # Sessions run outside any project land in "global", tagged with their directory
        return GLOBAL_PROJECT

    def _session_in(self, fs: FileSystem, directory: str | None, project_path: str) -> bool:
        if not directory:
            return False
        session_dir = self._normalize(fs, directory)
        wanted = self._normalize(fs, project_path)
        return session_dir == wanted or session_dir.startswith(wanted + "/")

    async def _load_legacy_messages(self, fs: FileSystem, session_id: str) -> list[OpenCodeMessage]:
        root = self._root(fs)
        message_dir = fs.join(root, "message", session_id)
        messages = []
        for name in await self._json_files(fs, message_dir):
            data = await self._read_json(fs, fs.join(message_dir, name))
            if not data or not data.get("id"):
                continue
            msg = message_from_data(data["id"], data)
            part_dir = fs.join(root, "part", msg.id)
            for part_name in await self._json_files(fs, part_dir):
                part = await self._read_json(fs, fs.join(part_dir, part_name))
                if part is not None:
                    part.setdefault("id", part_name[: -len(".json")])
                    msg.parts.append(part)
            messages.append(msg)
        messages.sort(key=lambda m: m.created or 0)
        return messages

    async def _list_legacy(self, fs: FileSystem, project_path: str) -> list[SessionRecord]:
        project_id = await self._find_project_id(fs, project_path)
        if project_id is None:
            return []

        session_dir = fs.join(self._root(fs), "session", project_id)
        sessions = []
        for name in await self._json_files(fs, session_dir):
            path = fs.join(session_dir, name)
            data = await self._read_json(fs, path)
            if not data or not data.get("id"):
                continue
            if project_id == GLOBAL_PROJECT and not self._session_in(fs, data.get("directory"), project_path):
                continue

            time_data = data.get("time") if isinstance(data.get("time"), dict) else {}
            session = OpenCodeSession(
                id=data["id"],
                title=data.get("title") or "",
                directory=data.get("directory") or "",
                created=time_data.get("created") or 0,
                updated=time_data.get("updated") or 0,
            )
            messages = await self._load_legacy_messages(fs, session.id)
            size = 0
            if not fs.is_remote:
                stat = await fs.stat(path)
                size = stat.size if stat else 0
            try:
                sessions.append(summarize_session(session, project_path, messages, size))
            except (KeyError, TypeError, ValueError) as e:
                report_parse_error(self.agent_id, path, e, self._on_error)
        return sort_newest_first(sessions)

    # Provider contract

    async def list_sessions(
        self, project_path: str, remote: RemoteHost | None = None
    ) -> list[SessionRecord]:
        """List OpenCode sessions for a project, newest first.

        Remote hosts are read from the legacy JSON storage only.
        """
        fs = filesystem_for(remote, self._shell)
        if fs.is_remote:
            try:
                return await self._list_legacy(fs, project_path)
            except RemoteTransportError as e:
                self._log.warning(f"Could not list remote sessions for {project_path}: {e}")
                return []

        db_sessions = await asyncio.to_thread(opencode_db.list_sessions, self._db_path, project_path)
        try:
            legacy = await self._list_legacy(fs, project_path)
        except OSError as e:
            self._log.warning(f"Could not read legacy sessions for {project_path}: {e}")
            legacy = []

        merged = merge_listings(db_sessions, legacy)
        if db_sessions:
            self._log.info(
                f"Merged {len(db_sessions)} database + {len(merged) - len(db_sessions)} "
                f"JSON-only sessions for {project_path}"
            )
        return merged

    async def list_sessions_paginated(
        self,
        project_path: str,
        cursor: str | None = None,
        limit: int = DEFAULT_PAGE_LIMIT,
        remote: RemoteHost | None = None,
    ) -> SessionsPage:
        return paginate(await self.list_sessions(project_path, remote), cursor, limit)

    async def _load_messages(self, fs: FileSystem, session_id: str) -> list[OpenCodeMessage]:
        if not fs.is_remote:
            from_db = await asyncio.to_thread(
                opencode_db.load_session_messages, self._db_path, session_id
            )
            if from_db:
                return from_db
        return await self._load_legacy_messages(fs, session_id)

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
            messages = await self._load_messages(fs, session_id)
        except (RemoteTransportError, OSError) as e:
            self._log.warning(f"Could not read session {session_id}: {e}")
            messages = []
        return tail_window(to_messages(messages), offset, limit)

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
                messages = await self._load_messages(fs, session.session_id)
            except (RemoteTransportError, OSError) as e:
                self._log.warning(f"Skipping session {session.session_id} in search: {e}")
                continue
            result = match_session(
                session.session_id,
                ((m.role, text_of(m.parts)) for m in messages),
                query,
                mode,
            )
            if result is not None:
                results.append(result)
        return results

    async def get_session_path(
        self, project_path: str, session_id: str, remote: RemoteHost | None = None
    ) -> str | None:
        """Legacy message directory, or None for a database-backed session."""
        fs = filesystem_for(remote, self._shell)
        if not fs.is_remote:
            from_db = await asyncio.to_thread(
                opencode_db.load_session_messages, self._db_path, session_id
            )
            if from_db:
                return None
        return fs.join(self._root(fs), "message", session_id)

    async def delete_message_pair(
        self,
        project_path: str,
        session_id: str,
        user_message_uuid: str,
        fallback_content: str | None = None,
        remote: RemoteHost | None = None,
    ) -> DeleteResult:
        """Delete the exchange's message and part files from legacy storage."""
        if remote is not None:
            return DeleteResult(success=False, error=REMOTE_DELETE_UNSUPPORTED)

        from_db = await asyncio.to_thread(
            opencode_db.load_session_messages, self._db_path, session_id
        )
        if from_db:
            # The database is owned by the live OpenCode process and opened read-only
            self._log.warning(f"Refusing to delete from database-backed session {session_id}")
            return DeleteResult(success=False, error=SQLITE_DELETE_UNSUPPORTED)

        fs = filesystem_for(None)
        try:
            messages = await self._load_legacy_messages(fs, session_id)
            if not messages:
                self._log.warning(f"No messages found in session {session_id}")
                return DeleteResult(success=False, error=NO_MESSAGES)

            entries = [
                TurnEntry(
                    uuid=msg.id,
                    is_user_turn=msg.role == "user",
                    text=text_of(msg.parts),
                    tool_call_ids={
                        i for p in tool_parts(msg.parts) for i in (p.get("id"), p.get("callID")) if i
                    },
                )
                for msg in messages
            ]
            plan = plan_deletion(entries, user_message_uuid, fallback_content)
            if plan is None:
                self._log.warning(f"User message {user_message_uuid} not found in {session_id}")
                return DeleteResult(success=False, error=USER_MESSAGE_NOT_FOUND)

            removed = await self._remove_messages(fs, session_id, [messages[i] for i in plan.span])
            if plan.deleted_tool_call_ids:
                remaining = [m for i, m in enumerate(messages) if i not in plan.span]
                removed += await self._remove_orphan_tool_parts(
                    fs, remaining, plan.deleted_tool_call_ids
                )
                self._log.info(
                    f"Cleaned up tool parts for {sorted(plan.deleted_tool_call_ids)} in {session_id}"
                )
        except (UnsupportedOperationError, OSError) as e:
            self._log.error(f"Error deleting message pair from {session_id}: {e}")
            return DeleteResult(success=False, error=str(e))

        self._log.info(f"Deleted message pair from {session_id}: {removed} files removed")
        return DeleteResult(success=True, records_removed=removed)

    async def _remove_messages(
        self, fs: FileSystem, session_id: str, messages: list[OpenCodeMessage]
    ) -> int:
        """Delete each message file and its part directory. Not atomic across files."""
        root = self._root(fs)
        removed = 0
        for msg in messages:
            message_file = fs.join(root, "message", session_id, f"{msg.id}.json")
            if await fs.exists(message_file):
                await fs.remove(message_file)
                removed += 1

            part_dir = fs.join(root, "part", msg.id)
            for name in await self._json_files(fs, part_dir):
                await fs.remove(fs.join(part_dir, name))
                removed += 1
            await fs.rmtree(part_dir)
        return removed

    async def _remove_orphan_tool_parts(
        self, fs: FileSystem, messages: list[OpenCodeMessage], deleted_ids: set[str]
    ) -> int:
        """Delete remaining tool parts that answer or reference a deleted tool call."""
        root = self._root(fs)
        removed = 0
        for msg in messages:
            for part in tool_parts(msg.parts):
                state = orjson.dumps(part.get("state") or {}).decode("utf-8")
                if call_id_of(part) not in deleted_ids and not any(i in state for i in deleted_ids):
                    continue
                part_file = fs.join(root, "part", msg.id, f"{part['id']}.json")
                if await fs.exists(part_file):
                    await fs.remove(part_file)
                    removed += 1
                    self._log.info(f"Removed orphaned tool part {part['id']}")
        return removed
