"""
Dashboard session persistence tests.
"""

import json

import pytest

from mcp_index.sessions import CONNECTIONS_FILE, SessionStore


@pytest.fixture
def store(tmp_path):
    return SessionStore(tmp_path / "sessions")


def stored(store):
    return json.loads(store.path.read_text(encoding="utf-8"))


def test_open_persists(store):
    record = store.open("client-1")

    assert record["isActive"] is True
    assert record["clientId"] == "client-1"
    data = stored(store)
    assert data["version"] == 1
    assert [c["id"] for c in data["connections"]] == [record["id"]]
    assert store.path.name == CONNECTIONS_FILE


def test_anonymous_client(store):
    assert store.open()["clientId"] == "anonymous"


def test_close_moves_to_history(store):
    record = store.open("client-1")

    store.close(record["id"], "client_disconnect")

    assert store.active() == []
    history = store.history()
    assert history[0]["disconnectReason"] == "client_disconnect"
    assert stored(store)["connections"][0]["isActive"] is False


def test_close_unknown_is_noop(store):
    store.close("missing")
    assert not store.path.exists()


def test_unchanged_content_not_rewritten(store):
    store.open("client-1")
    writes = store.write_count
    assert store.persist() is False
    assert store.write_count == writes


def test_restart_marks_active_as_disconnected(store):
    record = store.open("client-1")

    reloaded = SessionStore(store.directory)

    assert reloaded.active() == []
    history = reloaded.history()
    assert history[0]["id"] == record["id"]
    assert history[0]["disconnectReason"] == "server_restart"


def test_retention_drops_old_entries(store):
    record = store.open("old")
    store.close(record["id"])
    store._records[record["id"]]["disconnectedAt"] = "2020-01-01T00:00:00.000Z"

    store.persist()

    assert store.history() == []


def test_clear_history(store):
    first = store.open("a")
    store.open("b")
    store.close(first["id"])

    assert store.clear_history() == 1
    assert [r["clientId"] for r in store.active()] == ["b"]


def test_status(store):
    store.open("a")
    status = store.status()
    assert status["activeConnections"] == 1
    assert status["historyEntries"] == 0
    assert status["exists"] is True
    assert status["writeCount"] == 1
    assert status["retention"] == {"maxHistoryEntries": 500, "maxHistoryDays": 7}


def test_unreadable_file_ignored(tmp_path):
    directory = tmp_path / "sessions"
    directory.mkdir()
    (directory / CONNECTIONS_FILE).write_text("not json", encoding="utf-8")
    assert SessionStore(directory).history() == []
