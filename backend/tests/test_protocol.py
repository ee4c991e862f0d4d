"""Tests for websocket frame parsing and server event shapes."""

import json

import pytest

import protocol
from errors import MalformedClientMessage


class TestParseClientMessage:
    def test_user_message(self):
        msg = protocol.parse_client_message(json.dumps({
            "type": "user_message", "content": "hi", "chatId": "c1",
        }))
        assert isinstance(msg, protocol.UserMessageIn)
        assert msg.content == "hi"
        assert msg.chat_id == "c1"
        assert msg.image is None

    def test_numeric_chat_id_coerced(self):
        msg = protocol.parse_client_message('{"type": "set_active_chat", "chatId": 42}')
        assert isinstance(msg, protocol.SetActiveChatIn)
        assert msg.chat_id == "42"

    def test_image_payload(self):
        msg = protocol.parse_client_message(json.dumps({
            "type": "user_message", "content": "", "image": "data:image/png;base64,AAA",
        }))
        assert msg.image.startswith("data:image/png")
        assert msg.chat_id is None

    def test_ping(self):
        assert isinstance(protocol.parse_client_message('{"type": "ping"}'), protocol.PingIn)

    def test_bytes_frame(self):
        assert isinstance(protocol.parse_client_message(b'{"type": "ping"}'), protocol.PingIn)

    def test_unknown_type_ignored(self):
        assert protocol.parse_client_message('{"type": "typing"}') is None

    def test_extra_fields_ignored(self):
        msg = protocol.parse_client_message('{"type": "ping", "ts": 123}')
        assert isinstance(msg, protocol.PingIn)

    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", '"ping"', "{"])
    def test_malformed(self, raw):
        with pytest.raises(MalformedClientMessage):
            protocol.parse_client_message(raw)

    def test_wrong_field_type(self):
        with pytest.raises(MalformedClientMessage):
            protocol.parse_client_message('{"type": "user_message", "content": {"a": 1}}')


class TestServerEvents:
    def test_chunk(self):
        assert protocol.chunk("abc", "c1") == {"type": "ai_chunk", "content": "abc", "chatId": "c1"}
        assert protocol.chunk_reset("", "c1") == {"type": "ai_chunk_reset", "content": "", "chatId": "c1"}

    def test_search_events(self):
        assert protocol.search_started("foo", "c1") == {"type": "search_started", "query": "foo", "chatId": "c1"}
        assert protocol.search_results("foo", [], "c1")["results"] == []
        assert protocol.search_complete("c1") == {"type": "search_complete", "chatId": "c1"}

    def test_lifecycle_events(self):
        assert protocol.thinking() == {"type": "ai_thinking"}
        assert protocol.complete("c1") == {"type": "ai_complete", "chatId": "c1"}
        assert protocol.error("nope") == {"type": "error", "message": "nope"}
        assert protocol.pong() == {"type": "pong"}
        assert protocol.heartbeat() == {"type": "heartbeat"}
