import pytest
from sqlalchemy.exc import DataError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.websockets import WebSocketDisconnect

from core.config import settings

CHANNEL = "appearance_channel"


def _subscribe(ws, channel: str = CHANNEL) -> None:
    welcome = ws.receive_json()
    assert welcome["type"] == "welcome"
    ws.send_json({"type": "subscribe", "channel": channel})
    confirm = ws.receive_json()
    assert confirm["type"] == "confirm_subscription"
    assert confirm["channel"] == channel


def _assert_no_pending_broadcast(ws) -> None:
    """Frames on a connection are ordered: if pong comes next, nothing was queued before it."""
    ws.send_json({"type": "ping"})
    assert ws.receive_json()["type"] == "pong"


def test_list_users_returns_all_rows(client, seed_users):
    seed_users(
        {"id": 1, "name": "alice", "online": False},
        {"id": 2, "name": "bob", "online": True},
    )

    resp = client.get("/api/v1/users")

    assert resp.status_code == 200
    body = resp.json()
    assert [(u["id"], u["name"], u["online"]) for u in body] == [
        (1, "alice", False),
        (2, "bob", True),
    ]


def test_list_users_empty(client):
    resp = client.get("/api/v1/users")
    assert resp.status_code == 200
    assert resp.json() == []


def test_list_users_does_not_broadcast(client, seed_users):
    seed_users({"id": 1, "name": "alice", "online": False})

    with client.websocket_connect("/cable") as ws:
        _subscribe(ws)
        assert client.get("/api/v1/users").status_code == 200
        _assert_no_pending_broadcast(ws)


def test_update_online_returns_user_and_broadcasts(client, seed_users):
    seed_users({"id": 7, "name": "carol", "online": False})

    with client.websocket_connect("/cable") as ws:
        _subscribe(ws)

        resp = client.put("/api/v1/users/7", json={"online": True})

        assert resp.status_code == 200
        assert resp.json()["id"] == 7
        assert resp.json()["online"] is True

        frame = ws.receive_json()
        assert frame["type"] == "message"
        assert frame["channel"] == CHANNEL
        assert frame["data"]["id"] == 7
        assert frame["data"]["online"] is True
        assert frame["ts"].endswith("Z")
        assert frame["data"]["updated_at"].endswith("Z")
        assert resp.json()["updated_at"].endswith("Z")


def test_update_persists_online_flag(client, seed_users, fetch_user):
    seed_users({"id": 1, "name": "alice", "online": False})

    assert client.put("/api/v1/users/1", json={"online": True}).status_code == 200

    assert bool(fetch_user(1)["online"]) is True


def test_patch_is_accepted(client, seed_users):
    seed_users({"id": 1, "name": "alice", "online": True})

    resp = client.patch("/api/v1/users/1", json={"online": False})

    assert resp.status_code == 200
    assert resp.json()["online"] is False


def test_update_unknown_user_is_404_without_broadcast(client, seed_users):
    seed_users({"id": 1, "name": "alice", "online": False})

    with client.websocket_connect("/cable") as ws:
        _subscribe(ws)

        resp = client.put("/api/v1/users/999", json={"online": True})

        assert resp.status_code == 404
        body = resp.json()
        assert body["error"]["type"] == "UserNotFound"
        assert body["data"] is None
        _assert_no_pending_broadcast(ws)


def test_update_ignores_fields_outside_allow_list(client, seed_users, fetch_user):
    seed_users({"id": 1, "name": "alice", "online": False})

    resp = client.put("/api/v1/users/1", json={"online": True, "name": "x", "id": 42})

    assert resp.status_code == 200
    assert resp.json()["name"] == "alice"
    assert resp.json()["id"] == 1
    row = fetch_user(1)
    assert row["name"] == "alice"
    assert bool(row["online"]) is True


def test_update_rejects_non_boolean_online(client, seed_users, fetch_user):
    seed_users({"id": 1, "name": "alice", "online": False})

    with client.websocket_connect("/cable") as ws:
        _subscribe(ws)

        resp = client.put("/api/v1/users/1", json={"online": "yes"})

        assert resp.status_code == 422
        assert resp.json()["error"]["type"] == "ValidationError"
        _assert_no_pending_broadcast(ws)
    assert bool(fetch_user(1)["online"]) is False


def test_update_without_change_still_broadcasts(client, seed_users):
    seed_users({"id": 1, "name": "alice", "online": True})

    with client.websocket_connect("/cable") as ws:
        _subscribe(ws)

        assert client.put("/api/v1/users/1", json={"online": True}).status_code == 200

        frame = ws.receive_json()
        assert frame["data"]["id"] == 1
        assert frame["data"]["online"] is True


def test_sequential_updates_broadcast_in_order(client, seed_users):
    seed_users({"id": 3, "name": "dave", "online": False})

    with client.websocket_connect("/cable") as ws:
        _subscribe(ws)

        client.put("/api/v1/users/3", json={"online": True})
        client.put("/api/v1/users/3", json={"online": False})

        first = ws.receive_json()
        second = ws.receive_json()
        assert (first["data"]["online"], second["data"]["online"]) == (True, False)


def test_every_subscriber_receives_a_copy(client, seed_users):
    seed_users({"id": 1, "name": "alice", "online": False})

    with client.websocket_connect("/cable") as ws1, client.websocket_connect("/cable") as ws2:
        _subscribe(ws1)
        _subscribe(ws2)

        client.put("/api/v1/users/1", json={"online": True})

        assert ws1.receive_json()["data"] == ws2.receive_json()["data"]


def test_late_subscriber_gets_no_replay(client, seed_users):
    seed_users({"id": 1, "name": "alice", "online": False})

    client.put("/api/v1/users/1", json={"online": True})

    with client.websocket_connect("/cable") as ws:
        _subscribe(ws)
        _assert_no_pending_broadcast(ws)


def test_unsubscribed_connection_receives_nothing(client, seed_users):
    seed_users({"id": 1, "name": "alice", "online": False})

    with client.websocket_connect("/cable") as ws:
        _subscribe(ws)
        ws.send_json({"type": "unsubscribe", "channel": CHANNEL})
        # ping/pong round trip guarantees the unsubscribe was processed
        _assert_no_pending_broadcast(ws)

        client.put("/api/v1/users/1", json={"online": True})

        _assert_no_pending_broadcast(ws)


def test_connection_without_subscription_receives_nothing(client, seed_users):
    seed_users({"id": 1, "name": "alice", "online": False})

    with client.websocket_connect("/cable") as ws:
        assert ws.receive_json()["type"] == "welcome"

        client.put("/api/v1/users/1", json={"online": True})

        _assert_no_pending_broadcast(ws)


def test_unknown_channel_is_rejected(client):
    with client.websocket_connect("/cable") as ws:
        ws.receive_json()
        ws.send_json({"type": "subscribe", "channel": "chat"})
        frame = ws.receive_json()
        assert frame["type"] == "reject_subscription"
        assert frame["channel"] == "chat"


def test_malformed_frames_get_error_and_keep_connection(client):
    with client.websocket_connect("/cable") as ws:
        ws.receive_json()

        ws.send_text("not json")
        assert ws.receive_json()["type"] == "error"

        ws.send_json({"type": "shout"})
        assert ws.receive_json()["type"] == "error"

        _assert_no_pending_broadcast(ws)


def test_resourceful_routes_outside_scope_are_not_exposed(client, seed_users):
    seed_users({"id": 1, "name": "alice", "online": False})

    assert client.post("/api/v1/users", json={"online": True}).status_code == 405
    assert client.delete("/api/v1/users/1").status_code == 405
    assert client.get("/api/v1/users/1").status_code == 405


def test_request_id_is_echoed(client):
    resp = client.get("/health", headers={"X-Request-ID": "req-123"})

    assert resp.status_code == 200
    assert resp.headers["X-Request-ID"] == "req-123"


@pytest.mark.parametrize("user_id", [3000000000, 9223372036854775808])
def test_update_out_of_range_id_is_404_without_broadcast(client, seed_users, user_id):
    seed_users({"id": 1, "name": "alice", "online": False})

    with client.websocket_connect("/cable") as ws:
        _subscribe(ws)

        resp = client.put(f"/api/v1/users/{user_id}", json={"online": True})

        assert resp.status_code == 404
        assert resp.json()["error"]["type"] == "UserNotFound"
        _assert_no_pending_broadcast(ws)


def test_non_numeric_id_is_rejected_as_validation_error(client):
    resp = client.put("/api/v1/users/abc", json={"online": True})

    assert resp.status_code == 422
    assert resp.json()["error"]["type"] == "ValidationError"


def test_update_rejects_explicit_null_online(client, seed_users, fetch_user):
    seed_users({"id": 1, "name": "alice", "online": True})

    with client.websocket_connect("/cable") as ws:
        _subscribe(ws)

        resp = client.put("/api/v1/users/1", json={"online": None})

        assert resp.status_code == 422
        _assert_no_pending_broadcast(ws)
    assert bool(fetch_user(1)["online"]) is True


@pytest.mark.parametrize("error_cls", [IntegrityError, DataError])
def test_store_rejection_is_422_without_broadcast(client, seed_users, fetch_user, monkeypatch, error_cls):
    seed_users({"id": 1, "name": "alice", "online": False})

    async def rejecting_flush(self, objects=None):
        raise error_cls("UPDATE users", {}, Exception("constraint failed"))

    monkeypatch.setattr(AsyncSession, "flush", rejecting_flush)

    with client.websocket_connect("/cable") as ws:
        _subscribe(ws)

        resp = client.put("/api/v1/users/1", json={"online": True})

        assert resp.status_code == 422
        assert resp.json()["error"]["type"] == "DomainValidationError"
        _assert_no_pending_broadcast(ws)
    assert bool(fetch_user(1)["online"]) is False


def test_idle_connection_is_pinged_then_closed(client, monkeypatch):
    monkeypatch.setattr(settings, "REALTIME_WS_IDLE_PING_INTERVAL_S", 0.05)
    monkeypatch.setattr(settings, "REALTIME_WS_MISSED_PING_LIMIT", 1)

    with client.websocket_connect("/cable") as ws:
        assert ws.receive_json()["type"] == "welcome"
        assert ws.receive_json()["type"] == "ping"

        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_json()

        assert exc_info.value.code == 1001
