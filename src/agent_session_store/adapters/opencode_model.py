"""OpenCode message model shared by the database and legacy JSON readers."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import orjson

from .base import (
    Message,
    Part,
    ReasoningPart,
    SessionRecord,
    TextPart,
    ToolCallPart,
    ToolResultPart,
    parse_timestamp,
    truncate_preview,
)


@dataclass
class OpenCodeMessage:
    id: str
    role: str
    created: int  # Unix ms
    tokens: dict[str, Any] = field(default_factory=dict)
    cost: float = 0.0
    parts: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class OpenCodeSession:
    id: str
    title: str
    directory: str
    created: int  # Unix ms
    updated: int  # Unix ms


def message_from_data(message_id: str, data: dict, created: int | None = None) -> OpenCodeMessage:
    """Build a message from a legacy message file or a database ``data`` column."""
    time_data = data.get("time") if isinstance(data.get("time"), dict) else {}
    tokens = data.get("tokens") if isinstance(data.get("tokens"), dict) else {}
    return OpenCodeMessage(
        id=message_id,
        role=data.get("role") or "user",
        created=created if created is not None else time_data.get("created") or 0,
        tokens=tokens,
        cost=data.get("cost") or 0.0,
    )


def text_of(parts: list[dict]) -> str:
    return " ".join(
        p["text"] for p in parts if p.get("type") == "text" and isinstance(p.get("text"), str) and p["text"]
    ).strip()


def tool_parts(parts: list[dict]) -> list[dict]:
    return [p for p in parts if p.get("type") == "tool"]


def call_id_of(part: dict) -> str:
    return part.get("callID") or part.get("id") or ""


def to_parts(parts: list[dict]) -> list[Part]:
    """Normalize OpenCode parts. A tool part holds both the call and its state."""
    result: list[Part] = []
    for p in parts:
        part_type = p.get("type")
        if part_type == "text" and p.get("text"):
            result.append(TextPart(p["text"]))
        elif part_type == "reasoning" and p.get("text"):
            result.append(ReasoningPart(p["text"]))
        elif part_type == "tool" and call_id_of(p):
            state = p.get("state") if isinstance(p.get("state"), dict) else {}
            result.append(ToolCallPart(call_id_of(p), p.get("tool", ""), state.get("input")))
            if state.get("output") is not None or state.get("error") is not None:
                output = state.get("output", state.get("error"))
                if not isinstance(output, str):
                    output = orjson.dumps(output).decode("utf-8")
                result.append(
                    ToolResultPart(call_id_of(p), output, is_error=state.get("status") == "error")
                )
    return result


def to_messages(messages: list[OpenCodeMessage]) -> list[Message]:
    result = []
    for msg in messages:
        if msg.role not in ("user", "assistant"):
            continue
        text = text_of(msg.parts)
        parts = to_parts(tool_parts(msg.parts))
        if not text and not parts:
            continue
        result.append(
            Message(
                role=msg.role,
                content=text,
                timestamp=parse_timestamp(msg.created) if msg.created else None,
                uuid=msg.id,
                tool_use=parts or None,
            )
        )
    return result


def summarize_session(
    session: OpenCodeSession,
    project_path: str,
    messages: list[OpenCodeMessage],
    size_bytes: int = 0,
) -> SessionRecord:
    """Aggregate tokens, cost, preview and duration over a session's messages."""
    input_tokens = output_tokens = cache_read = cache_write = 0
    cost = 0.0
    first_user = first_assistant = ""

    for msg in messages:
        tokens = msg.tokens
        input_tokens += tokens.get("input") or 0
        output_tokens += tokens.get("output") or 0
        cache = tokens.get("cache") if isinstance(tokens.get("cache"), dict) else {}
        cache_read += cache.get("read") or 0
        cache_write += cache.get("write") or 0
        cost += msg.cost or 0.0

        text = text_of(msg.parts)
        if msg.role == "user" and not first_user:
            first_user = text
        elif msg.role == "assistant" and not first_assistant:
            first_assistant = text

    duration = 0
    if len(messages) >= 2 and messages[0].created and messages[-1].created:
        duration = max(0, (messages[-1].created - messages[0].created) // 1000)

    created = parse_timestamp(session.created) if session.created else None
    updated = parse_timestamp(session.updated) if session.updated else None
    if created is None:
        created = parse_timestamp(messages[0].created) if messages and messages[0].created else None
    if created is None:
        created = updated or datetime.now(timezone.utc)

    return SessionRecord(
        session_id=session.id,
        project_path=project_path,
        created_at=created,
        modified_at=updated or created,
        first_message=truncate_preview(first_assistant or first_user or session.title),
        message_count=sum(1 for m in messages if m.role in ("user", "assistant")),
        size_bytes=size_bytes,
        cost_usd=cost,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cache_read_tokens=cache_read,
        cache_creation_tokens=cache_write,
        duration_seconds=int(duration),
    )
