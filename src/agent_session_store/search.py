"""Substring search over a session's messages."""

from collections.abc import Iterable

from .adapters.base import SearchResult
from .config import SEARCH_CONTEXT_CHARS, SEARCH_MODES


def build_preview(text: str, query: str, context: int = SEARCH_CONTEXT_CHARS) -> str:
    """Cut ``context`` chars either side of the first hit, marking truncation with '...'."""
    idx = text.lower().find(query.lower())
    if idx < 0:
        return ""
    start = max(0, idx - context)
    end = min(len(text), idx + len(query) + context)
    return ("..." if start > 0 else "") + text[start:end] + ("..." if end < len(text) else "")


def match_session(
    session_id: str,
    messages: Iterable[tuple[str, str]],
    query: str,
    mode: str,
) -> SearchResult | None:
    """Classify a session's hits for ``query`` under ``mode``.

    ``messages`` yields (role, text) pairs in conversation order. A "title"
    hit is the first user message containing the query, since most formats
    persist no title of their own. Returns None when the session does not
    qualify for the mode.
    """
    if mode not in SEARCH_MODES:
        raise ValueError(f"Unknown search mode: {mode!r}")

    if not query.strip():
        return None
    needle = query.lower()

    title_match = False
    user_matches = 0
    assistant_matches = 0
    preview = ""

    for role, text in messages:
        if not text or needle not in text.lower():
            continue
        if role == "user":
            if not title_match:
                title_match = True
                if not preview:
                    preview = build_preview(text, needle)
            user_matches += 1
        elif role == "assistant":
            assistant_matches += 1
            if not preview and mode in ("assistant", "all"):
                preview = build_preview(text, needle)

    if mode == "title":
        if not title_match:
            return None
        return SearchResult(session_id, "title", preview, 1)
    if mode == "user":
        if not user_matches:
            return None
        return SearchResult(session_id, "user", preview, user_matches)
    if mode == "assistant":
        if not assistant_matches:
            return None
        return SearchResult(session_id, "assistant", preview, assistant_matches)

    if not (title_match or user_matches or assistant_matches):
        return None
    if title_match:
        match_type = "title"
    elif user_matches:
        match_type = "user"
    else:
        match_type = "assistant"
    return SearchResult(session_id, match_type, preview, user_matches + assistant_matches)
