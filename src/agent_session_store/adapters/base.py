"""Record model and provider protocol shared by every agent adapter."""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal, Protocol

import orjson
from loguru import logger

from ..config import DEFAULT_MESSAGE_LIMIT, DEFAULT_PAGE_LIMIT, PREVIEW_LENGTH
from ..remote import RemoteHost

Role = Literal["user", "assistant"]
SearchMode = Literal["title", "user", "assistant", "all"]


@dataclass
class SessionRecord:
    """Normalized summary of one agent session."""

    session_id: str
    project_path: str
    created_at: datetime
    modified_at: datetime
    first_message: str  # At most PREVIEW_LENGTH chars
    message_count: int  # User + assistant messages only
    size_bytes: int = 0
    cost_usd: float | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0
    duration_seconds: int = 0
    session_name: str | None = None
    origin: str | None = None  # "user" or "auto"
    starred: bool | None = None


@dataclass
class TextPart:
    text: str
    kind: Literal["text"] = "text"


@dataclass
class ReasoningPart:
    text: str
    kind: Literal["reasoning"] = "reasoning"


@dataclass
class ToolCallPart:
    call_id: str
    name: str
    input: Any = None
    kind: Literal["tool_call"] = "tool_call"


@dataclass
class ToolResultPart:
    call_id: str  # Id of the tool call this answers
    output: str = ""
    is_error: bool = False
    kind: Literal["tool_result"] = "tool_result"


Part = TextPart | ReasoningPart | ToolCallPart | ToolResultPart


@dataclass
class Message:
    """One user or assistant message, flattened for display."""

    role: Role
    content: str
    timestamp: datetime | None
    uuid: str
    tool_use: list[Part] | None = None


@dataclass
class SessionsPage:
    sessions: list[SessionRecord]
    has_more: bool
    total_count: int
    next_cursor: str | None


@dataclass
class MessagesPage:
    messages: list[Message]
    total: int
    has_more: bool


@dataclass
class SearchResult:
    session_id: str
    match_type: Literal["title", "user", "assistant"]
    match_preview: str
    match_count: int


@dataclass
class DeleteResult:
    success: bool
    error: str | None = None
    records_removed: int | None = None


@dataclass
class ParseError:
    """A session file or entry that could not be parsed."""

    agent: str
    file_path: str
    error_type: str
    message: str


ErrorCallback = Callable[[ParseError], None]


class SessionProvider(Protocol):
    """Contract every agent storage adapter implements."""

    agent_id: str
    display_name: str

    async def list_sessions(
        self, project_path: str, remote: RemoteHost | None = None
    ) -> list[SessionRecord]:
        """List the project's sessions, newest first."""
        ...

    async def list_sessions_paginated(
        self,
        project_path: str,
        cursor: str | None = None,
        limit: int = DEFAULT_PAGE_LIMIT,
        remote: RemoteHost | None = None,
    ) -> SessionsPage:
        """Return one page of list_sessions, resuming after ``cursor``."""
        ...

    async def read_session_messages(
        self,
        project_path: str,
        session_id: str,
        offset: int = 0,
        limit: int = DEFAULT_MESSAGE_LIMIT,
        remote: RemoteHost | None = None,
    ) -> MessagesPage:
        """Return a window of messages counted back from the most recent one."""
        ...

    async def search_sessions(
        self,
        project_path: str,
        query: str,
        mode: SearchMode,
        remote: RemoteHost | None = None,
    ) -> list[SearchResult]:
        ...

    async def get_session_path(
        self, project_path: str, session_id: str, remote: RemoteHost | None = None
    ) -> str | None:
        """Best-effort on-disk location of a session, if it has one."""
        ...

    async def delete_message_pair(
        self,
        project_path: str,
        session_id: str,
        user_message_uuid: str,
        fallback_content: str | None = None,
        remote: RemoteHost | None = None,
    ) -> DeleteResult:
        """Delete a user message and the responses that follow it."""
        ...


def paginate(
    sessions: list[SessionRecord], cursor: str | None, limit: int
) -> SessionsPage:
    """Slice a full listing into a page. An unknown cursor restarts at 0."""
    start = 0
    if cursor:
        for i, session in enumerate(sessions):
            if session.session_id == cursor:
                start = i + 1
                break

    page = sessions[start : start + limit]
    has_more = start + limit < len(sessions)
    next_cursor = page[-1].session_id if has_more and page else None
    return SessionsPage(
        sessions=page,
        has_more=has_more,
        total_count=len(sessions),
        next_cursor=next_cursor,
    )


def tail_window(messages: list[Message], offset: int, limit: int) -> MessagesPage:
    """Window of ``limit`` messages ending ``offset`` messages before the last."""
    total = len(messages)
    end = max(0, total - offset)
    start = max(0, total - offset - limit)
    return MessagesPage(messages=messages[start:end], total=total, has_more=start > 0)


def sort_newest_first(sessions: list[SessionRecord]) -> list[SessionRecord]:
    return sorted(sessions, key=lambda s: s.modified_at, reverse=True)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string or epoch milliseconds into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    return None


def from_mtime(mtime: float) -> datetime:
    return datetime.fromtimestamp(mtime, tz=timezone.utc)


def duration_between(first: datetime | None, last: datetime | None) -> int:
    """Whole seconds from first to last, never negative."""
    if first is None or last is None:
        return 0
    return max(0, int((last - first).total_seconds()))


def truncate_preview(text: str, length: int = PREVIEW_LENGTH) -> str:
    return text[:length]


def parse_json_lines(content: str) -> list[tuple[str, dict | None]]:
    """Split a JSONL document into (raw line, parsed object) pairs.

    Blank lines are dropped. A line that is not a JSON object keeps its raw
    text with None in place of the object, so a rewrite can preserve it.
    """
    lines = []
    for line in content.split("\n"):
        if not line.strip():
            continue
        try:
            data = orjson.loads(line)
        except orjson.JSONDecodeError:
            lines.append((line, None))
            continue
        lines.append((line, data if isinstance(data, dict) else None))
    return lines


def report_parse_error(
    agent: str,
    file_path: str,
    exc: Exception,
    on_error: ErrorCallback | None = None,
) -> None:
    """Log a parse failure and hand it to the caller's callback, if any."""
    error = ParseError(
        agent=agent,
        file_path=file_path,
        error_type=type(exc).__name__,
        message=str(exc),
    )
    logger.bind(agent=agent).debug(f"Skipping {file_path}: {error.error_type}: {error.message}")
    if on_error is not None:
        on_error(error)


@dataclass
class TimeSpan:
    """Running first/last timestamp seen while scanning a session."""

    first: datetime | None = None
    last: datetime | None = None

    def add(self, ts: datetime | None) -> None:
        if ts is None:
            return
        if self.first is None or ts < self.first:
            self.first = ts
        if self.last is None or ts > self.last:
            self.last = ts

    @property
    def seconds(self) -> int:
        return duration_between(self.first, self.last)

