"""Tests for the generation client: failover, caching and replay."""

import asyncio

import pytest

from conversation_store import Message
from errors import InternalPipelineFailure, UpstreamExhausted
from llm.client import DeliveryMode
from response_cache import ResponseCache


def _history(*texts):
    msgs = []
    for i, t in enumerate(texts):
        msgs.append(Message(role="user" if i % 2 == 0 else "assistant", content=t))
    return msgs


class Collector:
    def __init__(self):
        self.chunks = []

    async def __call__(self, text, mode):
        self.chunks.append((text, mode))

    def text(self):
        return "".join(t for t, _ in self.chunks)


class TestLiveGeneration:
    def test_chunks_forwarded_in_order(self, upstream, make_client):
        upstream.script("k1", ["Hel", "lo ", "there"])
        client = make_client(upstream)
        sink = Collector()
        result = asyncio.run(client.generate(_history("hi"), sink))
        assert result.text == "Hello there"
        assert sink.text() == "Hello there"
        assert all(mode is DeliveryMode.LIVE for _, mode in sink.chunks)
        assert result.replayed is False
        assert result.attempts == 1

    def test_empty_deltas_dropped(self, upstream, make_client):
        upstream.script("k1", ["a", "", "b"])
        sink = Collector()
        asyncio.run(make_client(upstream).generate(_history("hi"), sink))
        assert [t for t, _ in sink.chunks] == ["a", "b"]

    def test_history_must_end_with_user(self, upstream, make_client):
        client = make_client(upstream)
        with pytest.raises(InternalPipelineFailure):
            asyncio.run(client.generate(_history("hi", "hello"), Collector()))
        assert upstream.calls == []

    def test_chat_params_sent(self, upstream, make_client):
        client = make_client(upstream)
        asyncio.run(client.generate(_history("hi"), Collector()))
        _, _, params = upstream.calls[0]
        assert params == client.chat_params


class TestFailover:
    def test_rotate_and_retry_with_next_key(self, upstream, make_client, sleeps):
        upstream.script("k1", RuntimeError("quota"))
        upstream.script("k2", ["fine"])
        client = make_client(upstream, keys=["k1", "k2"])
        result = asyncio.run(client.generate(_history("hi"), Collector()))
        assert result.text == "fine"
        assert result.attempts == 2
        assert upstream.keys_called() == ["k1", "k2"]
        assert client.pool.index == 1
        assert sleeps.delays == [1.0]

    def test_exhaustion_after_one_try_per_key(self, upstream, make_client, sleeps):
        upstream.script("k1", RuntimeError("a"))
        upstream.script("k2", RuntimeError("b"))
        upstream.script("k3", RuntimeError("c"))
        client = make_client(upstream, keys=["k1", "k2", "k3"])
        with pytest.raises(UpstreamExhausted) as exc:
            asyncio.run(client.generate(_history("hi"), Collector()))
        assert upstream.keys_called() == ["k1", "k2", "k3"]
        assert len(exc.value.failures) == 3
        # No rotation or backoff after the final attempt
        assert sleeps.delays == [1.0, 1.0]
        assert client.pool.index == 2

    def test_single_key_pool_never_rotates(self, upstream, make_client, sleeps):
        upstream.script("k1", RuntimeError("down"))
        client = make_client(upstream, keys=["k1"])
        with pytest.raises(UpstreamExhausted):
            asyncio.run(client.generate(_history("hi"), Collector()))
        assert client.pool.index == 0
        assert sleeps.delays == []

    def test_mid_stream_failure_returns_successful_attempt_text(self, upstream, make_client):
        upstream.script("k1", (["partial "], RuntimeError("reset")))
        upstream.script("k2", ["complete answer"])
        client = make_client(upstream, keys=["k1", "k2"])
        sink = Collector()
        result = asyncio.run(client.generate(_history("hi"), sink))
        assert result.text == "complete answer"
        # The sink saw the failed attempt; withdrawing it is up to on_retry
        assert sink.text() == "partial complete answer"

    def test_sink_failure_does_not_fail_over(self, upstream, make_client):
        upstream.script("k1", ["a", "b"])
        client = make_client(upstream, keys=["k1", "k2"])

        async def broken_sink(text, mode):
            raise ConnectionError("socket gone")

        with pytest.raises(ConnectionError):
            asyncio.run(client.generate(_history("hi"), broken_sink))
        assert upstream.keys_called() == ["k1"]
        assert client.pool.index == 0

    def test_on_retry_called_before_each_retry(self, upstream, make_client):
        upstream.script("k1", (["partial "], RuntimeError("reset")))
        upstream.script("k2", RuntimeError("quota"))
        upstream.script("k3", ["done"])
        client = make_client(upstream, keys=["k1", "k2", "k3"])
        retries = []

        async def on_retry(attempt):
            retries.append((attempt.number, attempt.index))

        result = asyncio.run(client.generate(_history("hi"), Collector(), on_retry=on_retry))
        assert result.text == "done"
        assert retries == [(2, 1), (3, 2)]

    def test_on_retry_not_called_on_first_success(self, upstream, make_client):
        retries = []

        async def on_retry(attempt):
            retries.append(attempt)

        asyncio.run(make_client(upstream).generate(_history("hi"), Collector(), on_retry=on_retry))
        assert retries == []

    def test_uncacheable_answer_is_not_stored(self, upstream, make_client):
        upstream.script("k1", ["not final"])
        client = make_client(upstream)
        result = asyncio.run(client.generate(_history("hi"), Collector(), cacheable=lambda text: False))
        assert result.text == "not final"
        assert client.cache.lookup(result.fingerprint) is None

    def test_exhausted_request_is_not_cached(self, upstream, make_client):
        upstream.script("k1", RuntimeError("down"))
        client = make_client(upstream)
        with pytest.raises(UpstreamExhausted):
            asyncio.run(client.generate(_history("hi"), Collector()))
        assert len(client.cache) == 0


class TestCacheReplay:
    def test_second_identical_request_replays(self, upstream, make_client):
        upstream.script("k1", ["cached answer"])
        client = make_client(upstream)
        asyncio.run(client.generate(_history("hi"), Collector()))
        sink = Collector()
        result = asyncio.run(client.generate(_history("hi"), sink))
        assert result.replayed is True
        assert result.text == "cached answer"
        assert len(upstream.calls) == 1
        assert all(mode is DeliveryMode.REPLAY for _, mode in sink.chunks)

    def test_replay_slices_and_delay(self, upstream, make_client, sleeps):
        text = "x" * 120
        cache = ResponseCache()
        client = make_client(upstream, cache=cache, replay_chunk_size=50, replay_delay=0.05)
        cache.put(client.history_fingerprint(_history("q")), text)
        sink = Collector()
        asyncio.run(client.generate(_history("q"), sink))
        assert [len(t) for t, _ in sink.chunks] == [50, 50, 20]
        assert sink.text() == text
        assert sleeps.delays == [0.05, 0.05, 0.05]

    def test_replay_never_touches_pool(self, upstream, make_client):
        cache = ResponseCache()
        client = make_client(upstream, keys=["k1", "k2"], cache=cache)
        cache.put(client.history_fingerprint(_history("q")), "stored")
        asyncio.run(client.generate(_history("q"), Collector()))
        assert upstream.calls == []
        assert client.pool.index == 0

    def test_fingerprint_uses_last_three_messages(self, upstream, make_client):
        client = make_client(upstream)
        a = _history("old", "x", "a", "b", "c")
        b = _history("different", "y", "a", "b", "c")
        assert client.history_fingerprint(a) == client.history_fingerprint(b)
        assert client.history_fingerprint(a) != client.history_fingerprint(_history("a", "b", "d"))

    def test_remember_overwrites_entry(self, upstream, make_client):
        client = make_client(upstream)
        first = asyncio.run(client.generate(_history("hi"), Collector()))
        client.remember(first.fingerprint, "final")
        again = asyncio.run(client.generate(_history("hi"), Collector()))
        assert again.text == "final"


class TestImageGeneration:
    IMAGE = "data:image/png;base64,iVBORw0KGgo="

    def test_image_turn_and_vision_params(self, upstream, make_client):
        upstream.script("k1", ["a cat"])
        client = make_client(upstream)
        result = asyncio.run(client.generate_with_image("what is this?", self.IMAGE, Collector()))
        assert result.text == "a cat"
        _, turns, params = upstream.calls[0]
        assert params == client.vision_params
        parts = turns[0]["parts"]
        assert "what is this?" in parts[0]["text"]
        assert parts[1]["inline_data"] == {"mime_type": "image/png", "data": "iVBORw0KGgo="}

    def test_image_answers_cached_separately_from_text(self, upstream, make_client):
        client = make_client(upstream)
        text_key = client.history_fingerprint([Message(role="user", content="what is this?")])
        image_key = client.image_fingerprint("what is this?", self.IMAGE)
        assert text_key != image_key
