"""Tests for the FastAPI app: websocket flow, health and admin routes."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from auth import StaticTokenResolver
from conversation_store import InMemoryConversationStore
from main import Services, create_app
from pipeline import ChatPipeline
from search import SearchService
from session import SessionRegistry

ADMIN = "admin-secret"


@pytest.fixture
def services(upstream, make_client):
    client = make_client(upstream)
    search = SearchService("", "")
    store = InMemoryConversationStore()
    return Services(
        client=client,
        search=search,
        store=store,
        pipeline=ChatPipeline(client, search, store),
        resolver=StaticTokenResolver({"tok-alice": "alice"}),
        registry=SessionRegistry(),
        admin_token=ADMIN,
    )


@pytest.fixture
def app_client(services):
    with TestClient(create_app(services)) as client:
        yield client


def _receive_until(ws, event_type, limit=50):
    events = []
    for _ in range(limit):
        event = ws.receive_json()
        events.append(event)
        if event["type"] == event_type:
            return events
    raise AssertionError(f"no {event_type} within {limit} events: {events}")


class TestWebSocket:
    def test_chat_round_trip(self, app_client, services, upstream):
        upstream.script("k1", ["Hello", " world"])
        chat_id = asyncio.run(services.store.create_conversation("alice"))
        with app_client.websocket_connect("/ws?token=tok-alice") as ws:
            ws.send_json({"type": "user_message", "content": "hi", "chatId": chat_id})
            events = _receive_until(ws, "ai_complete")
        types = [e["type"] for e in events]
        assert types[0] == "ai_thinking"
        assert "".join(e["content"] for e in events if e["type"] == "ai_chunk") == "Hello world"
        saved = asyncio.run(services.store.load_conversation(chat_id, "alice"))
        assert [m.content for m in saved] == ["hi", "Hello world"]

    def test_token_from_cookie(self, app_client, services):
        chat_id = asyncio.run(services.store.create_conversation("alice"))
        with app_client.websocket_connect("/ws", headers={"cookie": "auth_token=tok-alice"}) as ws:
            ws.send_json({"type": "set_active_chat", "chatId": chat_id})
            ws.send_json({"type": "user_message", "content": "hi"})
            events = _receive_until(ws, "ai_complete")
        assert events[-1]["chatId"] == chat_id

    def test_unauthenticated_submission_gets_error(self, app_client):
        with app_client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "user_message", "content": "hi", "chatId": "1"})
            event = ws.receive_json()
        assert event["type"] == "error"
        assert "log in" in event["message"]

    def test_ping(self, app_client):
        with app_client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

    def test_malformed_frame_keeps_connection(self, app_client):
        with app_client.websocket_connect("/ws") as ws:
            ws.send_text("not json")
            assert ws.receive_json()["type"] == "error"
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

    def test_session_registered_while_connected(self, app_client, services):
        with app_client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "ping"})
            ws.receive_json()
            assert len(services.registry) == 1


class TestHealth:
    def test_health(self, app_client):
        body = app_client.get("/health").json()
        assert body["status"] == "ok"
        assert body["store"] == "memory"
        assert body["credentials"] == 1
        assert body["search_configured"] is False
        assert body["cache"]["size"] == 0
        assert body["sessions"] == 0


class TestAdmin:
    def test_requires_token(self, app_client):
        assert app_client.get("/admin/cache").status_code == 403
        assert app_client.get("/admin/cache", headers={"X-Admin-Token": "wrong"}).status_code == 403

    def test_cache_stats_and_clear(self, app_client, services):
        services.client.cache.put("k", "v")
        headers = {"X-Admin-Token": ADMIN}
        assert app_client.get("/admin/cache", headers=headers).json()["size"] == 1
        assert app_client.delete("/admin/cache", headers=headers).json() == {"cleared": 1}
        assert len(services.client.cache) == 0

    def test_telemetry_summary(self, app_client):
        body = app_client.get("/admin/telemetry", headers={"X-Admin-Token": ADMIN}).json()
        assert body["total_requests"] == 0

    def test_disabled_without_admin_token(self, services):
        services.admin_token = ""
        with TestClient(create_app(services)) as client:
            assert client.get("/admin/cache", headers={"X-Admin-Token": ""}).status_code == 403
