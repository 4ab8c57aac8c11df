"""Unit tests for state.py - Persisted observed records."""

import json
import os
import stat

import pytest

from state import STATE_VERSION, StateError, StateStore


class TestStateStore:
    """Tests for StateStore."""

    def test_missing_file_is_empty(self, tmp_path):
        store = StateStore(tmp_path / "state.json").load()
        assert len(store) == 0
        assert store.addresses() == []

    def test_save_and_load(self, tmp_path, login_state):
        path = tmp_path / "state.json"
        store = StateStore(path)
        store.put("login.app", "login", login_state)
        store.save()

        loaded = StateStore(path).load()
        assert loaded.get("login.app") == {"kind": "login", "state": login_state}
        assert "login.app" in loaded

    def test_file_layout(self, tmp_path, login_state):
        path = tmp_path / "state.json"
        store = StateStore(path)
        store.put("login.app", "login", login_state)
        store.save()

        data = json.loads(path.read_text())
        assert data["version"] == STATE_VERSION
        assert data["resources"]["login.app"]["kind"] == "login"

    def test_file_is_private(self, tmp_path, login_state):
        path = tmp_path / "state.json"
        store = StateStore(path)
        store.put("login.app", "login", login_state)
        store.save()

        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        assert not (tmp_path / "state.json.tmp").exists()

    def test_keeps_tracking_order(self, tmp_path):
        store = StateStore(tmp_path / "state.json")
        store.put("database.sales", "database", {"name": "sales"})
        store.put("login.app", "login", {"name": "app"})
        store.put("database.sales", "database", {"name": "sales2"})
        assert store.addresses() == ["database.sales", "login.app"]

    def test_remove(self, tmp_path):
        store = StateStore(tmp_path / "state.json")
        store.put("login.app", "login", {"name": "app"})
        store.remove("login.app")
        store.remove("login.missing")
        assert len(store) == 0

    def test_put_copies_state(self, tmp_path):
        store = StateStore(tmp_path / "state.json")
        record = {"name": "app"}
        store.put("login.app", "login", record)
        record["name"] = "changed"
        assert store.get("login.app")["state"]["name"] == "app"

    def test_items_can_be_modified_while_iterating(self, tmp_path):
        store = StateStore(tmp_path / "state.json")
        store.put("login.a", "login", {"name": "a"})
        store.put("login.b", "login", {"name": "b"})
        for address, _ in store.items():
            store.remove(address)
        assert len(store) == 0

    def test_invalid_json_raises(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")
        with pytest.raises(StateError, match="not valid JSON"):
            StateStore(path).load()

    def test_unsupported_version_raises(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"version": 99, "resources": {}}))
        with pytest.raises(StateError, match="Unsupported state version"):
            StateStore(path).load()
