"""Merge of two listings of the same sessions from different storage generations."""

from .adapters.base import SessionRecord, sort_newest_first


def merge_listings(
    primary: list[SessionRecord] | None, fallback: list[SessionRecord]
) -> list[SessionRecord]:
    """Merge ``fallback`` into ``primary``, keeping primary's record for shared ids.

    An empty or missing primary listing means the newer storage is not in
    use, so the fallback listing is returned as is. Ids are assumed stable
    across the two generations.
    """
    if not primary:
        return list(fallback)

    seen = {s.session_id for s in primary}
    merged = list(primary)
    merged.extend(s for s in fallback if s.session_id not in seen)
    return sort_newest_first(merged)
