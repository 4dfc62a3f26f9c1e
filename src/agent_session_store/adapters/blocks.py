"""Helpers for Anthropic-style message content.

Claude Code and Factory Droid both store ``message.content`` either as a
plain string or as a list of typed blocks (text, thinking, tool_use,
tool_result).
"""

from typing import Any

from .base import Part, ReasoningPart, TextPart, ToolCallPart, ToolResultPart


def extract_text(content: Any, sep: str = " ") -> str:
    """Join the text blocks of a message's content."""
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    texts = []
    for block in content:
        if isinstance(block, str):
            texts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text" and block.get("text"):
            texts.append(block["text"])
    return sep.join(texts).strip()


def _result_output(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return extract_text(content, sep="\n")
    return ""


def parse_part(block: Any) -> Part | None:
    """Map one content block onto a Part, or None for shapes we don't know."""
    if not isinstance(block, dict):
        return None
    block_type = block.get("type")
    if block_type == "text":
        return TextPart(text=block.get("text", ""))
    if block_type == "thinking":
        return ReasoningPart(text=block.get("thinking", "") or block.get("text", ""))
    if block_type == "tool_use" and block.get("id"):
        return ToolCallPart(call_id=block["id"], name=block.get("name", ""), input=block.get("input"))
    if block_type == "tool_result" and block.get("tool_use_id"):
        return ToolResultPart(
            call_id=block["tool_use_id"],
            output=_result_output(block.get("content")),
            is_error=bool(block.get("is_error")),
        )
    return None


def parse_parts(content: Any) -> list[Part]:
    if not isinstance(content, list):
        return []
    return [p for p in (parse_part(b) for b in content) if p is not None]


def is_tool_result_only(content: Any) -> bool:
    """True when a "user" message only carries tool results back to the model."""
    if not isinstance(content, list) or not content:
        return False
    return all(isinstance(b, dict) and b.get("type") == "tool_result" for b in content)


def tool_use_ids(content: Any) -> set[str]:
    if not isinstance(content, list):
        return set()
    return {
        b["id"]
        for b in content
        if isinstance(b, dict) and b.get("type") == "tool_use" and b.get("id")
    }


def tool_result_refs(content: Any) -> set[str]:
    if not isinstance(content, list):
        return set()
    return {
        b["tool_use_id"]
        for b in content
        if isinstance(b, dict) and b.get("type") == "tool_result" and b.get("tool_use_id")
    }


def strip_tool_results(content: Any, call_ids: set[str]) -> Any:
    """Drop tool_result blocks answering any of ``call_ids``."""
    if not isinstance(content, list):
        return content
    return [
        b
        for b in content
        if not (
            isinstance(b, dict)
            and b.get("type") == "tool_result"
            and b.get("tool_use_id") in call_ids
        )
    ]


def summarize_tools(parts: list[Part]) -> str:
    """One line per tool call, used when a message has no text of its own."""
    return "\n".join(f"[Tool: {p.name}]" for p in parts if isinstance(p, ToolCallPart))
