"""Tests for the server connection manager, the WebSocket endpoint and the internal API."""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from campuslink_backend.exceptions import ConnectionLimitError
from campuslink_backend.server import create_app
from campuslink_backend.settings import settings
from campuslink_backend.websocket.auth import Principal
from campuslink_backend.websocket.connection_manager import ConnectionManager
from campuslink_backend.websocket.hub import create_hub
from campuslink_backend.websocket.pubsub import LocalPubSub

SECRET = "internal-test-secret"


def _socket():
    websocket = AsyncMock()
    websocket.send_json = AsyncMock()
    return websocket


@pytest.fixture
def app(authenticator):
    hub = create_hub(
        pubsub=LocalPubSub(),
        authenticator=authenticator,
        presence_grace_period=0,
    )
    return create_app(hub)


@pytest.fixture
def client(app, monkeypatch):
    monkeypatch.setattr(settings, "INTERNAL_SHARED_SECRET", SECRET)
    with TestClient(app) as client:
        yield client


def _next_of_type(ws, frame_type):
    while True:
        frame = ws.receive_json()
        if frame["type"] == frame_type:
            return frame


class TestConnectionManager:

    @pytest.mark.asyncio
    async def test_connected_frame_is_sent_first(self):
        manager = ConnectionManager(LocalPubSub(), max_total_connections=10, max_connections_per_user=2)
        await manager.start()
        websocket = _socket()

        connection = await manager.connect(websocket, Principal(user_id="alice", role="student"))

        first = websocket.send_json.await_args_list[0].args[0]
        assert first == {
            "type": "system:connected",
            "user_id": "alice",
            "role": "student",
            "session_id": connection.session_id,
        }
        assert connection.channels == {"user:alice", "all"}
        await manager.stop()

    @pytest.mark.asyncio
    async def test_per_user_limit(self):
        manager = ConnectionManager(LocalPubSub(), max_total_connections=10, max_connections_per_user=1)
        await manager.start()
        await manager.connect(_socket(), Principal(user_id="alice"))

        with pytest.raises(ConnectionLimitError) as exc_info:
            await manager.connect(_socket(), Principal(user_id="alice"))

        assert exc_info.value.code == 4008
        assert manager.get_metrics()["total_connection_limit_hits"] == 1
        await manager.stop()

    @pytest.mark.asyncio
    async def test_total_limit(self):
        manager = ConnectionManager(LocalPubSub(), max_total_connections=1, max_connections_per_user=5)
        await manager.start()
        await manager.connect(_socket(), Principal(user_id="alice"))
        with pytest.raises(ConnectionLimitError):
            await manager.connect(_socket(), Principal(user_id="bob"))
        await manager.stop()

    @pytest.mark.asyncio
    async def test_room_publish_and_disconnect_cleanup(self):
        manager = ConnectionManager(LocalPubSub(), max_total_connections=10, max_connections_per_user=5)
        await manager.start()
        in_room, outside = _socket(), _socket()
        member = await manager.connect(in_room, Principal(user_id="alice"))
        await manager.connect(outside, Principal(user_id="bob"))

        assert await manager.join_room(member, "class-10a") is True
        assert await manager.join_room(member, "class-10a") is False
        await manager.publish_to_room("class-10a", "activity:new", {"id": "a1"})

        in_room.send_json.assert_awaited_with({"type": "activity:new", "data": {"id": "a1"}})
        assert all(
            call.args[0]["type"] != "activity:new" for call in outside.send_json.await_args_list
        )

        await manager.disconnect(member)
        assert manager.room_sessions("class-10a") == set()
        assert not manager.is_user_connected("alice")
        assert manager.get_connection_count() == 1
        await manager.stop()

    @pytest.mark.asyncio
    async def test_pubsub_message_without_type_is_dropped(self):
        manager = ConnectionManager(LocalPubSub(), max_total_connections=10, max_connections_per_user=5)
        await manager.start()
        websocket = _socket()
        await manager.connect(websocket, Principal(user_id="alice"))
        sent_before = websocket.send_json.await_count

        await manager._handle_pubsub_message("user:alice", {"data": {"id": "n1"}})
        assert websocket.send_json.await_count == sent_before

        await manager._handle_pubsub_message(
            "user:alice", {"type": "notification:new", "channel": "user:alice", "data": {"id": "n1"}}
        )
        websocket.send_json.assert_awaited_with({"type": "notification:new", "data": {"id": "n1"}})
        await manager.stop()

    @pytest.mark.asyncio
    async def test_failed_send_does_not_stop_fan_out(self):
        manager = ConnectionManager(LocalPubSub(), max_total_connections=10, max_connections_per_user=5)
        await manager.start()
        broken, healthy = _socket(), _socket()
        await manager.connect(broken, Principal(user_id="alice"))
        await manager.connect(healthy, Principal(user_id="bob"))
        broken.send_json.side_effect = RuntimeError("gone")

        await manager.broadcast("activity:new", {"id": "a1"})

        healthy.send_json.assert_awaited_with({"type": "activity:new", "data": {"id": "a1"}})
        assert manager.get_metrics()["total_send_errors"] == 1
        await manager.stop()


class TestWebSocketEndpoint:

    def test_handshake_and_request(self, client):
        with client.websocket_connect("/ws?token=token-alice") as ws:
            connected = ws.receive_json()
            assert connected["type"] == "system:connected"
            assert connected["user_id"] == "alice"

            ws.send_json({"type": "notifications:get", "data": {"limit": 5}, "ack_id": "a1"})
            ack = _next_of_type(ws, "system:ack")
            assert ack == {
                "type": "system:ack",
                "ack_id": "a1",
                "success": True,
                "data": {"notifications": [], "unread_count": 0},
            }

    def test_bad_token_is_rejected(self, client):
        with client.websocket_connect("/ws?token=wrong") as ws:
            error = ws.receive_json()
            assert error["type"] == "system:error"
            assert error["code"] == "AUTH_FAILED"
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()
            assert exc_info.value.code == 4001

    def test_missing_token_is_rejected(self, client):
        with client.websocket_connect("/ws") as ws:
            assert ws.receive_json()["code"] == "AUTH_FAILED"

    def test_unknown_command_gets_failed_ack(self, client):
        with client.websocket_connect("/ws?token=token-alice") as ws:
            ws.receive_json()
            ws.send_json({"type": "grades:get", "ack_id": "x1"})
            ack = _next_of_type(ws, "system:ack")
            assert ack["success"] is False
            assert ack["error"]["reason"] == "unknown_command"

    def test_invalid_payload_gets_failed_ack(self, client):
        with client.websocket_connect("/ws?token=token-alice") as ws:
            ws.receive_json()
            ws.send_json({"type": "notification:read", "data": {}, "ack_id": "x2"})
            ack = _next_of_type(ws, "system:ack")
            assert ack["error"]["reason"] == "invalid_payload"
            assert ack["error"]["details"]["errors"][0]["loc"] == ["notification_id"]

    def test_invalid_json_and_unknown_event(self, client):
        with client.websocket_connect("/ws?token=token-alice") as ws:
            ws.receive_json()
            ws.send_text("not json")
            assert _next_of_type(ws, "system:error")["code"] == "INVALID_JSON"

            ws.send_json({"type": "grades:subscribe"})
            assert _next_of_type(ws, "system:error")["code"] == "UNHANDLED_EVENT"

            ws.send_json({"data": {}})
            assert _next_of_type(ws, "system:error")["code"] == "INVALID_EVENT"

    def test_ping_gets_pong(self, client):
        with client.websocket_connect("/ws?token=token-alice") as ws:
            ws.receive_json()
            ws.send_json({"type": "system:ping"})
            assert "timestamp" in _next_of_type(ws, "system:pong")


class TestInternalApi:

    def test_notification_is_created_and_pushed(self, client):
        with client.websocket_connect("/ws?token=token-alice") as ws:
            ws.receive_json()
            response = client.post(
                "/internal/notifications",
                json={"user_id": "alice", "type": "exam", "title": "Exam", "message": "Tomorrow 9:00"},
                headers={"X-Internal-Secret": SECRET},
            )
            assert response.status_code == 201
            created = response.json()
            assert created["user_id"] == "alice"
            assert created["read"] is False

            pushed = _next_of_type(ws, "notification:new")
            assert pushed["data"]["id"] == created["id"]

    def test_activity_is_recorded(self, client):
        response = client.post(
            "/internal/activities",
            json={"user_id": "carol", "type": "result_publish", "description": "Term results", "room": "class-10a"},
            headers={"X-Internal-Secret": SECRET},
        )
        assert response.status_code == 201
        assert response.json()["type"] == "result_publish"

    def test_presence_is_seeded(self, client):
        response = client.put(
            "/internal/presence/dave",
            json={"status": "offline", "last_seen": "2026-01-05T08:30:00+00:00"},
            headers={"X-Internal-Secret": SECRET},
        )
        assert response.status_code == 200
        assert response.json()["user_id"] == "dave"

    @pytest.mark.parametrize("headers", [{}, {"X-Internal-Secret": "wrong"}])
    def test_secret_is_required(self, client, headers):
        response = client.post("/internal/notifications", json={"user_id": "alice"}, headers=headers)
        assert response.status_code == 401

    def test_unconfigured_secret_disables_api(self, app, monkeypatch):
        monkeypatch.setattr(settings, "INTERNAL_SHARED_SECRET", None)
        with TestClient(app) as client:
            response = client.post(
                "/internal/notifications", json={"user_id": "alice"}, headers={"X-Internal-Secret": "x"}
            )
        assert response.status_code == 503

    def test_notification_is_updated_and_deleted(self, client):
        headers = {"X-Internal-Secret": SECRET}
        with client.websocket_connect("/ws?token=token-alice") as ws:
            ws.receive_json()
            created = client.post(
                "/internal/notifications",
                json={"user_id": "alice", "title": "Exam", "message": "Room 12"},
                headers=headers,
            ).json()
            _next_of_type(ws, "notification:new")

            response = client.patch(
                f"/internal/notifications/alice/{created['id']}",
                json={"message": "Room 14"},
                headers=headers,
            )
            assert response.status_code == 200
            assert response.json()["message"] == "Room 14"
            updated = _next_of_type(ws, "notification:update")
            assert updated["data"]["message"] == "Room 14"
            assert updated["data"]["read"] is False

            response = client.delete(f"/internal/notifications/alice/{created['id']}", headers=headers)
            assert response.status_code == 204
            deleted = _next_of_type(ws, "notification:delete")
            assert deleted["data"] == {"notification_id": created["id"]}

    @pytest.mark.parametrize("method", ["patch", "delete"])
    def test_unknown_notification_is_not_found(self, client, method):
        kwargs = {"json": {"title": "x"}} if method == "patch" else {}
        response = getattr(client, method)(
            "/internal/notifications/alice/missing", headers={"X-Internal-Secret": SECRET}, **kwargs
        )
        assert response.status_code == 404

    def test_metrics_require_secret(self, client):
        assert client.get("/realtime/metrics").status_code == 401
        assert client.get("/realtime/metrics", headers={"X-Internal-Secret": "wrong"}).status_code == 401

    def test_metrics(self, client):
        with client.websocket_connect("/ws?token=token-alice") as ws:
            ws.receive_json()
            metrics = client.get("/realtime/metrics", headers={"X-Internal-Secret": SECRET}).json()
            assert metrics["current_connections"] == 1
            assert metrics["current_users"] == 1
