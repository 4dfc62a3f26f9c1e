"""Tests for the session origins store."""

import json

from agent_session_store.origins import OriginsStore


class TestOriginsStore:
    def test_register_plain_origin(self, temp_dir):
        store = OriginsStore(temp_dir / "origins.json")

        store.register_session_origin("/proj", "s1", "auto")

        data = json.loads((temp_dir / "origins.json").read_text())
        assert data == {"origins": {"/proj": {"s1": "auto"}}}
        assert store.get_session_origins("/proj")["s1"].origin == "auto"

    def test_register_with_name(self, temp_dir):
        store = OriginsStore(temp_dir / "origins.json")

        store.register_session_origin("/proj", "s1", "user", session_name="Refactor")

        info = store.get_session_origins("/proj")["s1"]
        assert info.origin == "user"
        assert info.session_name == "Refactor"

    def test_update_upgrades_string_entry(self, temp_dir):
        store = OriginsStore(temp_dir / "origins.json")
        store.register_session_origin("/proj", "s1", "auto")

        store.update_session_starred("/proj", "s1", True)
        store.update_session_name("/proj", "s1", "Named")

        info = store.get_session_origins("/proj")["s1"]
        assert info.origin == "auto"
        assert info.starred is True
        assert info.session_name == "Named"

    def test_update_creates_user_entry(self, temp_dir):
        store = OriginsStore(temp_dir / "origins.json")

        store.update_session_context_usage("/proj", "new", 42.5)

        info = store.get_session_origins("/proj")["new"]
        assert info.origin == "user"
        assert info.context_usage == 42.5

    def test_unreadable_file_is_empty(self, temp_dir):
        path = temp_dir / "origins.json"
        path.write_text("{not json")

        assert OriginsStore(path).get_session_origins("/proj") == {}

    def test_missing_file_is_empty(self, temp_dir):
        assert OriginsStore(temp_dir / "nope.json").get_session_origins("/proj") == {}
