"""Deletion planning for "delete one exchange".

Adapters flatten their session into a list of TurnEntry records, one per
underlying record (log line, document message, message file), then ask
plan_deletion which records to drop and which remaining ones hold
tool results for tool calls that are going away.
"""

from dataclasses import dataclass, field

USER_MESSAGE_NOT_FOUND = "User message not found"
SESSION_FILE_NOT_FOUND = "Session file not found"
REMOTE_DELETE_UNSUPPORTED = "Delete not supported for remote sessions"


@dataclass
class TurnEntry:
    uuid: str | None
    is_user_turn: bool  # A human prompt, not a tool result posted back as "user"
    text: str = ""
    tool_call_ids: set[str] = field(default_factory=set)
    tool_result_refs: set[str] = field(default_factory=set)


@dataclass
class DeletionPlan:
    start: int
    end: int  # Exclusive
    deleted_tool_call_ids: set[str]
    orphan_indices: list[int]

    @property
    def span(self) -> range:
        return range(self.start, self.end)


def find_target(
    entries: list[TurnEntry], user_message_uuid: str, fallback_content: str | None = None
) -> int | None:
    """Index of the user turn to delete, by uuid then by normalized text."""
    for i, entry in enumerate(entries):
        if entry.is_user_turn and entry.uuid == user_message_uuid:
            return i

    if fallback_content:
        wanted = fallback_content.strip().lower()
        for i in range(len(entries) - 1, -1, -1):
            entry = entries[i]
            if entry.is_user_turn and entry.text.strip().lower() == wanted:
                return i

    return None


def plan_deletion(
    entries: list[TurnEntry], user_message_uuid: str, fallback_content: str | None = None
) -> DeletionPlan | None:
    """Compute the span to delete and the orphaned tool results outside it.

    The span runs from the target user turn up to, not including, the next
    user turn. Returns None when the target cannot be found.
    """
    start = find_target(entries, user_message_uuid, fallback_content)
    if start is None:
        return None

    end = len(entries)
    for i in range(start + 1, len(entries)):
        if entries[i].is_user_turn:
            end = i
            break

    deleted: set[str] = set()
    for entry in entries[start:end]:
        deleted |= entry.tool_call_ids

    orphans = [
        i
        for i, entry in enumerate(entries)
        if not start <= i < end and entry.tool_result_refs & deleted
    ]
    return DeletionPlan(start=start, end=end, deleted_tool_call_ids=deleted, orphan_indices=orphans)
