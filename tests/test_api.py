"""Integration tests for the HTTP surface.

Requests go through the real FastAPI app (routing, dependency injection,
error handlers) against the shared in-memory database.  The change feed and
rate limiter are swapped for per-test instances.
"""
import asyncio
import json
from unittest.mock import patch

import httpx
import pytest
import pytest_asyncio

from app.api.chat import SessionBoundMessages
from app.api.deps import get_change_feed, get_rate_limiter, get_session_factory
from app.database import get_db
from app.errors import AccessDeniedError
from app.main import app
from app.services.change_feed import match_filter
from app.services.message_service import MESSAGES_TABLE, MessageService
from tests.conftest import USER_X, USER_Y, USER_Z

API = "/api/v1"


def _as(user_id):
    return {"X-User-Id": str(user_id)}


@pytest_asyncio.fixture
async def client(session_factory, feed, rate_limiter):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_change_feed] = lambda: feed
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


async def _mutual_match(client) -> str:
    first = await client.post(f"{API}/swipes", json={"target_user_id": str(USER_Y), "is_like": True},
                              headers=_as(USER_X))
    assert first.status_code == 201
    second = await client.post(f"{API}/swipes", json={"target_user_id": str(USER_X), "is_like": True},
                               headers=_as(USER_Y))
    assert second.status_code == 201
    return second.json()["match_id"]


class TestHealth:

    @pytest.mark.asyncio
    async def test_liveness(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "healthy"}

    @pytest.mark.asyncio
    async def test_deep_health_checks_database(self, client):
        resp = await client.get("/health/deep")
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["database"] == "connected"
        assert body["redis"] == "not_configured"

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, client):
        resp = await client.get("/health", headers={"X-Request-ID": "req-123"})
        assert resp.headers["X-Request-ID"] == "req-123"
        assert (await client.get("/health")).headers["X-Request-ID"]


class TestIdentityHeader:

    @pytest.mark.asyncio
    async def test_missing_header(self, client):
        resp = await client.get(f"{API}/matches")
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_malformed_header(self, client):
        resp = await client.get(f"{API}/matches", headers={"X-User-Id": "not-a-uuid"})
        assert resp.status_code == 401


class TestProfilesApi:

    @pytest.mark.asyncio
    async def test_onboarding_flow(self, client):
        new_user = "55555555-5555-5555-5555-555555555555"
        body = {"name": "Nia", "skills": ["go"], "interests": ["compilers"]}

        resp = await client.post(f"{API}/profiles", json=body, headers=_as(new_user))
        assert resp.status_code == 201
        assert resp.json()["id"] == new_user

        again = await client.post(f"{API}/profiles", json=body, headers=_as(new_user))
        assert again.status_code == 409

        upd = await client.put(f"{API}/profiles/me", json={"bio": "Hi"}, headers=_as(new_user))
        assert upd.status_code == 200
        assert upd.json()["bio"] == "Hi"

        me = await client.get(f"{API}/profiles/me", headers=_as(new_user))
        assert me.json()["name"] == "Nia"

    @pytest.mark.asyncio
    async def test_invalid_profile_rejected(self, client):
        resp = await client.post(
            f"{API}/profiles",
            json={"name": "", "skills": [], "interests": ["x"]},
            headers=_as(USER_X),
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_discover(self, client, profiles):
        resp = await client.get(f"{API}/profiles/discover", headers=_as(USER_X))
        assert resp.status_code == 200
        assert [p["id"] for p in resp.json()] == [str(USER_Z), str(USER_Y)]


class TestSwipeAndMatchApi:

    @pytest.mark.asyncio
    async def test_mutual_like_creates_match(self, client, profiles):
        first = await client.post(f"{API}/swipes", json={"target_user_id": str(USER_Y), "is_like": True},
                                  headers=_as(USER_X))
        assert first.json()["is_mutual_match"] is False

        second = await client.post(f"{API}/swipes", json={"target_user_id": str(USER_X), "is_like": True},
                                   headers=_as(USER_Y))
        body = second.json()
        assert body["is_mutual_match"] is True
        assert body["is_new_match"] is True

        detail = await client.get(f"{API}/matches/{body['match_id']}", headers=_as(USER_X))
        assert detail.status_code == 200
        assert detail.json()["user1_id"] == str(USER_X)
        assert detail.json()["user2_id"] == str(USER_Y)
        assert detail.json()["user1"]["name"] == "Xavier"
        assert detail.json()["user2"]["name"] == "Yara"

    @pytest.mark.asyncio
    async def test_duplicate_swipe_is_conflict(self, client, profiles):
        payload = {"target_user_id": str(USER_Y), "is_like": True}
        await client.post(f"{API}/swipes", json=payload, headers=_as(USER_X))
        resp = await client.post(f"{API}/swipes", json=payload, headers=_as(USER_X))
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_self_swipe_is_unprocessable(self, client, profiles):
        resp = await client.post(f"{API}/swipes", json={"target_user_id": str(USER_X), "is_like": True},
                                 headers=_as(USER_X))
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_outsider_cannot_read_match(self, client, profiles):
        match_id = await _mutual_match(client)
        with patch("app.main.capture_exception") as capture:
            resp = await client.get(f"{API}/matches/{match_id}", headers=_as(USER_Z))
        assert resp.status_code == 403
        assert resp.json() == {"detail": "Operation not permitted."}
        capture.assert_called_once()


class TestMessagesApi:

    @pytest.mark.asyncio
    async def test_send_list_and_match_summary(self, client, profiles, feed):
        match_id = await _mutual_match(client)
        sub = feed.subscribe(MESSAGES_TABLE, match_filter(match_id))

        sent = await client.post(f"{API}/chat/{match_id}/messages", json={"content": "  hello  "},
                                 headers=_as(USER_X))
        assert sent.status_code == 201
        assert sent.json()["content"] == "hello"

        event = await asyncio.wait_for(sub.get(), timeout=1)
        assert str(event["id"]) == sent.json()["id"]

        history = await client.get(f"{API}/chat/{match_id}/messages", headers=_as(USER_Y))
        assert [m["content"] for m in history.json()] == ["hello"]

        summary = await client.get(f"{API}/matches", headers=_as(USER_Y))
        (item,) = summary.json()
        assert (item["user1_id"], item["user2_id"]) == (str(USER_X), str(USER_Y))
        assert item["profile"]["name"] == "Xavier"
        assert item["last_message"]["content"] == "hello"
        assert item["unread_count"] == 1

    @pytest.mark.asyncio
    async def test_too_long_message(self, client, profiles):
        match_id = await _mutual_match(client)
        resp = await client.post(f"{API}/chat/{match_id}/messages", json={"content": "a" * 501},
                                 headers=_as(USER_X))
        assert resp.status_code == 422
        assert resp.json()["detail"] == "Message too long"

    @pytest.mark.asyncio
    async def test_outsider_cannot_send(self, client, profiles):
        match_id = await _mutual_match(client)
        with patch("app.main.capture_exception") as capture:
            resp = await client.post(f"{API}/chat/{match_id}/messages", json={"content": "hi"},
                                     headers=_as(USER_Z))
        assert resp.status_code == 403
        capture.assert_called_once()

        history = await client.get(f"{API}/chat/{match_id}/messages", headers=_as(USER_X))
        assert history.json() == []

    @pytest.mark.asyncio
    async def test_rate_limited_send(self, client, profiles, rate_limiter):
        match_id = await _mutual_match(client)
        for i in range(30):
            ok = await client.post(f"{API}/chat/{match_id}/messages", json={"content": f"m{i}"},
                                   headers=_as(USER_X))
            assert ok.status_code == 201

        resp = await client.post(f"{API}/chat/{match_id}/messages", json={"content": "one more"},
                                 headers=_as(USER_X))
        assert resp.status_code == 429
        assert int(resp.headers["Retry-After"]) >= 1
        assert resp.json()["retry_after"] >= 1


class TestSessionBoundMessages:

    @pytest.mark.asyncio
    async def test_round_trip_through_own_sessions(self, client, profiles, feed, rate_limiter,
                                                   session_factory):
        match_id = await _mutual_match(client)
        backend = SessionBoundMessages(MessageService(feed, rate_limiter), session_factory)

        row = await backend.insert_message(match_id, USER_Y, "from the socket")
        rows = await backend.fetch_messages(match_id, USER_X)

        assert [r["id"] for r in rows] == [row["id"]]

        with pytest.raises(AccessDeniedError):
            await backend.fetch_messages(match_id, USER_Z)


class SocketClient:
    """Speaks the ASGI websocket protocol to the app on the test's own loop."""

    def __init__(self, path: str, user_id=None) -> None:
        headers = [(b"x-user-id", str(user_id).encode())] if user_id is not None else []
        self.scope = {
            "type": "websocket",
            "asgi": {"version": "3.0"},
            "scheme": "ws",
            "http_version": "1.1",
            "path": path,
            "raw_path": path.encode(),
            "root_path": "",
            "query_string": b"",
            "headers": headers,
            "client": ("testclient", 50000),
            "server": ("testserver", 80),
            "subprotocols": [],
        }
        self._to_app: asyncio.Queue = asyncio.Queue()
        self._from_app: asyncio.Queue = asyncio.Queue()
        self._task: asyncio.Task | None = None

    async def connect(self) -> dict:
        await self._to_app.put({"type": "websocket.connect"})
        self._task = asyncio.create_task(app(self.scope, self._to_app.get, self._from_app.put))
        return await self.next_event()

    async def next_event(self) -> dict:
        return await asyncio.wait_for(self._from_app.get(), timeout=2)

    async def receive_json(self) -> dict:
        event = await self.next_event()
        assert event["type"] == "websocket.send", event
        return json.loads(event["text"])

    async def send_text(self, text: str) -> None:
        await self._to_app.put({"type": "websocket.receive", "text": text})

    async def send_json(self, data: dict) -> None:
        await self.send_text(json.dumps(data))

    async def disconnect(self) -> None:
        await self._to_app.put({"type": "websocket.disconnect", "code": 1000})
        await self.finished()

    async def finished(self) -> None:
        await asyncio.wait_for(self._task, timeout=2)


async def _open_socket(match_id, user_id) -> tuple[SocketClient, dict]:
    socket = SocketClient(f"{API}/chat/{match_id}/ws", user_id)
    accepted = await socket.connect()
    assert accepted["type"] == "websocket.accept"
    snapshot = await socket.receive_json()
    assert snapshot["type"] == "snapshot"
    return socket, snapshot


class TestChatSocket:

    @pytest.mark.asyncio
    async def test_snapshot_then_live_peer_message(self, client, profiles, feed):
        match_id = await _mutual_match(client)
        await client.post(f"{API}/chat/{match_id}/messages", json={"content": "before"},
                          headers=_as(USER_Y))

        socket, snapshot = await _open_socket(match_id, USER_X)
        assert snapshot["state"] == "active"
        assert [m["content"] for m in snapshot["messages"]] == ["before"]

        sent = await client.post(f"{API}/chat/{match_id}/messages", json={"content": "live"},
                                 headers=_as(USER_Y))
        frame = await socket.receive_json()
        assert frame["type"] == "message"
        assert frame["message"]["id"] == sent.json()["id"]

        await socket.disconnect()
        assert feed.subscription_count == 0

    @pytest.mark.asyncio
    async def test_send_reaches_peer_once_and_sender_gets_only_the_result(
        self, client, profiles, feed
    ):
        match_id = await _mutual_match(client)
        sender, _ = await _open_socket(match_id, USER_X)
        peer, _ = await _open_socket(match_id, USER_Y)

        await sender.send_json({"type": "send", "content": "  hi there  "})
        result = await sender.receive_json()
        assert result["type"] == "send_result"
        assert result["ok"] is True
        assert result["message"]["content"] == "hi there"

        delivered = await peer.receive_json()
        assert delivered["type"] == "message"
        assert delivered["message"]["id"] == result["message"]["id"]

        # The next frame the sender sees answers the refresh, not an echo.
        await sender.send_json({"type": "refresh"})
        state = await sender.receive_json()
        assert state == {"type": "state", "state": "active", "error": None}

        await sender.disconnect()
        await peer.disconnect()
        assert feed.subscription_count == 0

        history = await client.get(f"{API}/chat/{match_id}/messages", headers=_as(USER_Y))
        assert [m["content"] for m in history.json()] == ["hi there"]

    @pytest.mark.asyncio
    async def test_invalid_send_reports_error(self, client, profiles):
        match_id = await _mutual_match(client)
        socket, _ = await _open_socket(match_id, USER_X)

        await socket.send_json({"type": "send", "content": "   "})
        result = await socket.receive_json()

        assert result["ok"] is False
        assert result["error"] == "Message cannot be empty"
        await socket.disconnect()

    @pytest.mark.asyncio
    async def test_malformed_frame_keeps_session_alive(self, client, profiles, feed):
        match_id = await _mutual_match(client)
        socket, _ = await _open_socket(match_id, USER_X)

        await socket.send_text("not json")
        error = await socket.receive_json()
        assert error["type"] == "state"
        assert error["error"].startswith("Malformed frame")

        await socket.send_json({"type": "bogus"})
        unknown = await socket.receive_json()
        assert unknown["error"] == "Unknown frame type 'bogus'."

        await socket.send_json({"type": "send", "content": "still here"})
        result = await socket.receive_json()
        assert result["type"] == "send_result"
        assert result["ok"] is True

        await socket.disconnect()
        assert feed.subscription_count == 0

    @pytest.mark.asyncio
    async def test_outsider_is_closed_and_reported(self, client, profiles, feed):
        match_id = await _mutual_match(client)

        with patch("app.api.chat.capture_exception") as capture:
            socket = SocketClient(f"{API}/chat/{match_id}/ws", USER_Z)
            closed = await socket.connect()
            await socket.finished()

        assert closed["type"] == "websocket.close"
        assert closed["code"] == 4403
        capture.assert_called_once()
        assert capture.call_args.kwargs["operation"] == "chat_ws_connect"
        assert capture.call_args.kwargs["user_id"] == USER_Z
        assert feed.subscription_count == 0

    @pytest.mark.asyncio
    async def test_missing_identity_is_closed(self, client, profiles):
        match_id = await _mutual_match(client)
        socket = SocketClient(f"{API}/chat/{match_id}/ws")

        closed = await socket.connect()
        await socket.finished()

        assert closed["type"] == "websocket.close"
        assert closed["code"] == 4401
