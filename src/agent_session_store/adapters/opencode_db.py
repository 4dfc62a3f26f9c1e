"""Read-only access to the OpenCode v1.2+ SQLite database.

The database belongs to the running OpenCode process. Every call opens it
read-only and closes it before returning; nothing is held between calls.
A missing file, a missing table or any sqlite error makes the reader return
None so the caller can fall back to the legacy JSON storage.
"""

import os
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import orjson
from loguru import logger

from ..errors import SchemaMismatchError
from .base import SessionRecord
from .opencode_model import (
    OpenCodeMessage,
    OpenCodeSession,
    message_from_data,
    summarize_session,
)

log = logger.bind(agent="opencode")

_SESSION_COLUMNS = (
    "id, project_id, directory, title, time_created, time_updated, "
    "summary_additions, summary_deletions, summary_files"
)


@contextmanager
def open_readonly(db_path: Path) -> Iterator[sqlite3.Connection]:
    conn = sqlite3.connect(f"{db_path.resolve().as_uri()}?mode=ro", uri=True, timeout=5)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def table_exists(conn: sqlite3.Connection, table: str) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()
    return row is not None


def require_tables(conn: sqlite3.Connection, *tables: str) -> None:
    for table in tables:
        if not table_exists(conn, table):
            raise SchemaMismatchError(table)


def _json(value) -> dict | None:
    if not value:
        return None
    try:
        data = orjson.loads(value)
    except orjson.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def normalize_path(path: str) -> str:
    return os.path.abspath(path).rstrip("/") or "/"


def path_related(stored: str, wanted: str) -> bool:
    """Same path, or either one a subdirectory of the other."""
    return stored == wanted or wanted.startswith(stored + "/") or stored.startswith(wanted + "/")


def _load_messages(conn: sqlite3.Connection, session_id: str) -> list[OpenCodeMessage]:
    has_parts = table_exists(conn, "part")
    messages = []
    rows = conn.execute(
        "SELECT id, time_created, data FROM message WHERE session_id = ? ORDER BY time_created ASC",
        (session_id,),
    ).fetchall()
    for row in rows:
        data = _json(row["data"])
        if data is None:
            continue
        msg = message_from_data(row["id"], data, created=row["time_created"] or 0)
        if has_parts:
            for part_row in conn.execute(
                "SELECT id, data FROM part WHERE message_id = ? ORDER BY time_created ASC",
                (row["id"],),
            ):
                part = _json(part_row["data"])
                if part is not None:
                    part.setdefault("id", part_row["id"])
                    part.setdefault("type", "text")
                    msg.parts.append(part)
        messages.append(msg)
    return messages


def list_sessions(db_path: Path, project_path: str) -> list[SessionRecord] | None:
    """Sessions for a project from the database, or None when it cannot be used."""
    if not db_path.is_file():
        return None

    wanted = normalize_path(project_path)
    try:
        with open_readonly(db_path) as conn:
            require_tables(conn, "session", "project")

            project_ids = [
                row["id"]
                for row in conn.execute("SELECT id, worktree FROM project")
                if row["worktree"] and path_related(normalize_path(row["worktree"]), wanted)
            ]
            if project_ids:
                placeholders = ",".join("?" for _ in project_ids)
                rows = conn.execute(
                    f"SELECT {_SESSION_COLUMNS} FROM session "
                    f"WHERE project_id IN ({placeholders}) ORDER BY time_updated DESC",
                    project_ids,
                ).fetchall()
            else:
                # No project row: match on the session's working directory
                rows = conn.execute(
                    f"SELECT {_SESSION_COLUMNS} FROM session "
                    "WHERE directory = ? OR directory LIKE ? ORDER BY time_updated DESC",
                    (wanted, wanted + "/%"),
                ).fetchall()

            has_messages = table_exists(conn, "message")
            sessions = []
            for row in rows:
                session = OpenCodeSession(
                    id=row["id"],
                    title=row["title"] or "",
                    directory=row["directory"] or "",
                    created=row["time_created"] or 0,
                    updated=row["time_updated"] or 0,
                )
                messages = _load_messages(conn, session.id) if has_messages else []
                sessions.append(summarize_session(session, project_path, messages))
    except (sqlite3.Error, SchemaMismatchError) as e:
        log.warning(f"OpenCode database unusable, falling back to JSON storage: {e}")
        return None

    log.info(f"Found {len(sessions)} sessions in database for {wanted}")
    return sessions


def load_session_messages(db_path: Path, session_id: str) -> list[OpenCodeMessage] | None:
    """A session's messages from the database, or None when it is not there."""
    if not db_path.is_file():
        return None
    try:
        with open_readonly(db_path) as conn:
            require_tables(conn, "message")
            messages = _load_messages(conn, session_id)
    except (sqlite3.Error, SchemaMismatchError) as e:
        log.warning(f"Could not load messages from OpenCode database: {e}")
        return None
    return messages or None
