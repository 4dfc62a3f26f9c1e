"""Tests for exchange deletion planning."""

from agent_session_store.mutation import TurnEntry, find_target, plan_deletion


def conversation() -> list[TurnEntry]:
    return [
        TurnEntry("u1", True, "first question"),
        TurnEntry("a1", False, "answer", tool_call_ids={"call_1"}),
        TurnEntry("r1", False, tool_result_refs={"call_1"}),
        TurnEntry("a2", False, "done"),
        TurnEntry("u2", True, "second question"),
        TurnEntry("a3", False, "second answer"),
    ]


class TestFindTarget:
    def test_by_uuid(self):
        assert find_target(conversation(), "u2") == 4

    def test_uuid_of_non_user_turn_is_ignored(self):
        assert find_target(conversation(), "a1") is None

    def test_fallback_content_matches_last_occurrence(self):
        entries = conversation() + [TurnEntry("u3", True, "  First Question ")]

        assert find_target(entries, "missing", "first question") == 6

    def test_not_found(self):
        assert find_target(conversation(), "missing", "nothing like it") is None


class TestPlanDeletion:
    """Tests for the span and orphan computation."""

    def test_span_runs_to_next_user_turn(self):
        plan = plan_deletion(conversation(), "u1")

        assert list(plan.span) == [0, 1, 2, 3]
        assert plan.deleted_tool_call_ids == {"call_1"}
        assert plan.orphan_indices == []

    def test_last_exchange_runs_to_end(self):
        plan = plan_deletion(conversation(), "u2")

        assert list(plan.span) == [4, 5]

    def test_orphaned_result_outside_span(self):
        entries = [
            TurnEntry("u1", True, "q"),
            TurnEntry("a1", False, "calling", tool_call_ids={"call_9"}),
            TurnEntry("u2", True, "next"),
            TurnEntry("r9", False, tool_result_refs={"call_9"}),
        ]

        plan = plan_deletion(entries, "u1")

        assert list(plan.span) == [0, 1]
        assert plan.orphan_indices == [3]

    def test_missing_target(self):
        assert plan_deletion(conversation(), "nope") is None
