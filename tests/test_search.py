"""Tests for substring search and match classification."""

import pytest

from agent_session_store.search import build_preview, match_session

CONVERSATION = [
    ("user", "Please fix the login bug"),
    ("assistant", "The login handler drops the cookie"),
    ("user", "Does login work now?"),
    ("assistant", "Yes, login works"),
    ("assistant", "Unrelated note"),
]


class TestMatchSession:
    """Tests for per-mode counting."""

    def test_title_mode_counts_one(self):
        result = match_session("s1", CONVERSATION, "login", "title")

        assert result.match_type == "title"
        assert result.match_count == 1
        assert "login bug" in result.match_preview

    def test_user_mode_counts_user_hits(self):
        result = match_session("s1", CONVERSATION, "LOGIN", "user")

        assert result.match_type == "user"
        assert result.match_count == 2

    def test_assistant_mode_counts_assistant_hits(self):
        result = match_session("s1", CONVERSATION, "login", "assistant")

        assert result.match_type == "assistant"
        assert result.match_count == 2

    def test_all_mode_sums_and_prefers_title(self):
        result = match_session("s1", CONVERSATION, "login", "all")

        assert result.match_type == "title"
        assert result.match_count == 4

    def test_all_mode_assistant_only(self):
        result = match_session("s1", CONVERSATION, "cookie", "all")

        assert result.match_type == "assistant"
        assert result.match_count == 1
        assert "cookie" in result.match_preview

    def test_assistant_only_hit_does_not_qualify_for_title(self):
        assert match_session("s1", CONVERSATION, "cookie", "title") is None
        assert match_session("s1", CONVERSATION, "cookie", "user") is None

    def test_all_mode_preview_is_first_hit(self):
        conversation = [("assistant", "token appears here"), ("user", "token in user text")]

        result = match_session("s1", conversation, "token", "all")

        assert result.match_preview == "token appears here"

    def test_no_match(self):
        assert match_session("s1", CONVERSATION, "kubernetes", "all") is None

    def test_surrounding_spaces_are_part_of_query(self):
        conversation = [("user", "concatenate the lists"), ("user", "feed the cat")]

        result = match_session("s1", conversation, " cat", "user")

        assert result.match_count == 1
        assert result.match_preview == "feed the cat"

    def test_blank_query(self):
        assert match_session("s1", CONVERSATION, "   ", "all") is None

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            match_session("s1", CONVERSATION, "login", "everything")


class TestBuildPreview:
    def test_short_text_untouched(self):
        assert build_preview("fix the bug", "bug") == "fix the bug"

    def test_ellipses_on_both_sides(self):
        text = "a" * 100 + "needle" + "b" * 100

        preview = build_preview(text, "needle")

        assert preview == "..." + "a" * 60 + "needle" + "b" * 60 + "..."

    def test_case_insensitive(self):
        assert build_preview("Hello World", "world") == "Hello World"

    def test_missing(self):
        assert build_preview("hello", "xyz") == ""
