"""Integration tests: full RPC lifecycle over a real SQLite store and an in-memory surface."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from reelshelf.server.rpc import DaemonState, create_rpc_app
from reelshelf.session import SessionCoordinator
from reelshelf.storage import LibraryStore


@pytest.fixture()
def daemon(tmp_path, surface):
    """Run the RPC app with a connected store, the way the daemon wires it up."""
    store = LibraryStore(tmp_path / "library.db")
    state = DaemonState()
    state.store = store
    state.coordinator = SessionCoordinator(store, surface)

    with TestClient(create_rpc_app(state)) as client:
        client.portal.call(store.connect)
        client.portal.call(state.coordinator.load_library)
        yield client, state
        client.portal.call(state.coordinator.close)
        client.portal.call(store.close)


def _rpc(client: TestClient, cmd: str, **params) -> dict:
    resp = client.post("/rpc", json={"cmd": cmd, "params": params})
    assert resp.status_code == 200
    return resp.json()


def _ids(body: dict) -> list[int]:
    return [e["id"] for e in body["data"]["entries"]]


# ---------------------------------------------------------------------------
# Full lifecycle: edit → save → reload → play → stop → shutdown
# ---------------------------------------------------------------------------


def test_full_rpc_lifecycle(daemon, surface):
    """Walk through a library session via RPC."""
    client, state = daemon

    # 1. Empty library
    body = _rpc(client, "status")
    assert body["ok"] is True
    assert body["data"]["entries_stored"] == 0
    assert body["data"]["session"]["state"] == {"mode": "browsing"}

    # 2. Build the library in one edit session
    assert _rpc(client, "enter_edit")["data"]["state"]["mode"] == "editing"
    body = _rpc(
        client,
        "stage",
        edits=[
            {"op": "insert", "entry": {"title": "Alien", "locator": "/films/alien.mkv"}},
            {"op": "insert", "entry": {"title": "Brazil", "locator": "/films/brazil.mkv"}},
            {"op": "insert", "entry": {"title": "Clue", "locator": "/films/clue.mkv"}, "position": 0},
        ],
    )
    assert body["ok"] is True
    assert _ids(body) == [3, 1, 2]
    assert _rpc(client, "status")["data"]["entries_stored"] == 0

    body = _rpc(client, "save_edit")
    assert body["ok"] is True
    assert body["data"]["state"] == {"mode": "browsing"}
    assert _rpc(client, "status")["data"]["entries_stored"] == 3

    # 3. Reload returns exactly what was saved
    body = _rpc(client, "reload")
    assert _ids(body) == [3, 1, 2]
    assert [e["position"] for e in body["data"]["entries"]] == [0, 1, 2]

    # 4. Play, then stop
    body = _rpc(client, "select", entry_id=1)
    assert body["data"]["state"]["locator"] == "/films/alien.mkv"
    assert _rpc(client, "select", entry_id=2)["code"] == "session_conflict"
    assert _rpc(client, "stop_playback")["ok"] is True
    assert len(surface.attached) == 1
    assert len(surface.detached) == 1

    # 5. Shutdown
    assert not state.shutdown_event.is_set()
    assert _rpc(client, "shutdown")["ok"] is True
    assert state.shutdown_event.is_set()


# ---------------------------------------------------------------------------
# Cancel leaves the stored library untouched
# ---------------------------------------------------------------------------


def test_cancel_discards_staged_edits(daemon):
    client, state = daemon
    _rpc(client, "enter_edit")
    _rpc(client, "stage", edits=[{"op": "insert", "entry": {"title": "Heat", "locator": "/films/heat.mkv"}}])
    _rpc(client, "save_edit")

    _rpc(client, "enter_edit")
    body = _rpc(client, "stage", edits=[{"op": "remove", "entry_id": 1}])
    assert _ids(body) == []

    body = _rpc(client, "cancel_edit")
    assert body["ok"] is True
    assert _ids(body) == [1]
    assert _ids(_rpc(client, "reload")) == [1]

    sessions = client.portal.call(state.store.list_edit_sessions)
    assert [s["status"] for s in sessions] == ["discarded", "committed"]


def test_second_save_is_invalid_state(daemon):
    client, _state = daemon
    _rpc(client, "enter_edit")
    assert _rpc(client, "save_edit")["ok"] is True

    body = _rpc(client, "save_edit")
    assert body["ok"] is False
    assert body["code"] == "invalid_session_state"
