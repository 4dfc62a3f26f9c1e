"""Per-session metadata owned by this engine: origin, name, star, context usage.

Stored as a single JSON document::

    {"origins": {"/project/path": {"<session id>": "user" | {...}}}}

A bare string entry is the origin alone; an object entry carries the
optional name, star and context usage next to it.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import orjson
from loguru import logger

from .config import ORIGINS_FILE


@dataclass
class SessionOrigin:
    origin: str
    session_name: str | None = None
    starred: bool | None = None
    context_usage: float | None = None


class OriginsStore:
    """JSON-file backed store of session origins."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path if path is not None else ORIGINS_FILE

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, Any]:
        try:
            with open(self._path, "rb") as f:
                data = orjson.loads(f.read())
        except FileNotFoundError:
            return {"origins": {}}
        except (orjson.JSONDecodeError, OSError) as e:
            logger.warning(f"Ignoring unreadable origins file {self._path}: {e}")
            return {"origins": {}}
        if not isinstance(data, dict) or not isinstance(data.get("origins"), dict):
            return {"origins": {}}
        return data

    def _save(self, data: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._path, "wb") as f:
            f.write(orjson.dumps(data, option=orjson.OPT_INDENT_2))

    def _update(self, project_path: str, session_id: str, **fields: Any) -> None:
        data = self._load()
        project = data["origins"].setdefault(project_path, {})
        entry = project.get(session_id)
        if isinstance(entry, str):
            entry = {"origin": entry}
        elif not isinstance(entry, dict):
            entry = {"origin": "user"}
        entry.update(fields)
        project[session_id] = entry
        self._save(data)

    def register_session_origin(
        self,
        project_path: str,
        session_id: str,
        origin: str,
        session_name: str | None = None,
    ) -> None:
        data = self._load()
        project = data["origins"].setdefault(project_path, {})
        if session_name:
            project[session_id] = {"origin": origin, "sessionName": session_name}
        else:
            project[session_id] = origin
        self._save(data)

    def update_session_name(self, project_path: str, session_id: str, session_name: str) -> None:
        self._update(project_path, session_id, sessionName=session_name)

    def update_session_starred(self, project_path: str, session_id: str, starred: bool) -> None:
        self._update(project_path, session_id, starred=starred)

    def update_session_context_usage(
        self, project_path: str, session_id: str, context_usage: float
    ) -> None:
        self._update(project_path, session_id, contextUsage=context_usage)

    def get_session_origins(self, project_path: str) -> dict[str, SessionOrigin]:
        project = self._load()["origins"].get(project_path, {})
        if not isinstance(project, dict):
            return {}

        result = {}
        for session_id, entry in project.items():
            if isinstance(entry, str):
                result[session_id] = SessionOrigin(origin=entry)
            elif isinstance(entry, dict):
                result[session_id] = SessionOrigin(
                    origin=entry.get("origin", "user"),
                    session_name=entry.get("sessionName"),
                    starred=entry.get("starred"),
                    context_usage=entry.get("contextUsage"),
                )
        return result
