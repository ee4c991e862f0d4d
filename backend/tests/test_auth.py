"""Tests for token-based identity resolution."""

import asyncio
from types import SimpleNamespace

from auth import Identity, StaticTokenResolver, token_from_websocket


def test_parse_token_map():
    assert StaticTokenResolver.parse("t1:alice, t2:bob,broken,:x") == {"t1": "alice", "t2": "bob"}


def test_known_token_resolves():
    resolver = StaticTokenResolver({"t1": "alice"})
    assert asyncio.run(resolver.resolve("t1")) == Identity(user_id="alice")


def test_unknown_token_rejected():
    resolver = StaticTokenResolver({"t1": "alice"})
    assert asyncio.run(resolver.resolve("nope")) is None
    assert asyncio.run(resolver.resolve(None)) is None


def test_anonymous_fallback():
    resolver = StaticTokenResolver({}, allow_anonymous=True, default_user_id="guest")
    identity = asyncio.run(resolver.resolve(None))
    assert identity.user_id == "guest"
    assert identity.anonymous is True


def test_token_prefers_cookie():
    ws = SimpleNamespace(cookies={"auth_token": "from-cookie"}, query_params={"token": "from-query"})
    assert token_from_websocket(ws) == "from-cookie"


def test_token_from_query():
    ws = SimpleNamespace(cookies={}, query_params={"token": "from-query"})
    assert token_from_websocket(ws) == "from-query"
    assert token_from_websocket(SimpleNamespace(cookies={}, query_params={})) is None
