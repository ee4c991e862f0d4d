"""Pytest conftest: backend/ on sys.path plus shared fakes.

The fakes stand in for the upstream model and collect what the
pipeline emits, so tests never touch the network.
"""

import sys
from pathlib import Path

import pytest

# Add backend/ to sys.path so `import settings`, `from llm.client import ...` etc. work
_backend_dir = str(Path(__file__).resolve().parent.parent)
if _backend_dir not in sys.path:
    sys.path.insert(0, _backend_dir)

from credentials import CredentialPool  # noqa: E402
from hooks import Hooks  # noqa: E402
from llm.client import GenerationClient  # noqa: E402
from llm.providers.base import LLMProvider  # noqa: E402
from response_cache import ResponseCache  # noqa: E402
from telemetry import TelemetryStore  # noqa: E402


class FakeProvider(LLMProvider):
    """Replays scripted responses for one API key.

    A script item is a list of chunks, an exception, or a
    ``(chunks, exception)`` pair that fails after streaming the chunks.
    """

    def __init__(self, upstream, key):
        self._upstream = upstream
        self.key = key

    @property
    def name(self) -> str:
        return "fake"

    async def stream(self, turns, *, params):
        self._upstream.calls.append((self.key, turns, params))
        script = self._upstream.scripts.get(self.key)
        item = script.pop(0) if script else self._upstream.default
        error = None
        if isinstance(item, BaseException):
            chunks, error = [], item
        elif isinstance(item, tuple):
            chunks, error = item
        else:
            chunks = item
        for c in chunks:
            yield c
        if error is not None:
            raise error


class FakeUpstream:
    def __init__(self, scripts=None, default=None):
        self.scripts = {k: list(v) for k, v in (scripts or {}).items()}
        self.default = default if default is not None else ["ok"]
        self.calls = []

    def script(self, key, *items):
        self.scripts.setdefault(key, []).extend(items)
        return self

    def provider(self, key):
        return FakeProvider(self, key)

    def keys_called(self):
        return [key for key, _, _ in self.calls]

    def last_user_text(self, call=-1):
        turns = self.calls[call][1]
        return turns[-1]["parts"][0]["text"]


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class EventRecorder:
    """Async sink collecting server events."""

    def __init__(self):
        self.events = []

    async def __call__(self, event):
        self.events.append(event)

    def types(self):
        return [e["type"] for e in self.events]

    def chunk_text(self):
        return "".join(e["content"] for e in self.events if e["type"] == "ai_chunk")

    def shown_text(self):
        """Reply text as a client renders it, honouring resets."""
        text = ""
        for e in self.events:
            if e["type"] == "ai_chunk_reset":
                text = e["content"]
            elif e["type"] == "ai_chunk":
                text += e["content"]
        return text


@pytest.fixture(autouse=True)
def _reset_registries():
    Hooks.clear()
    TelemetryStore.clear()
    yield
    Hooks.clear()
    TelemetryStore.clear()


@pytest.fixture
def sleeps():
    return SleepRecorder()


@pytest.fixture
def events():
    return EventRecorder()


@pytest.fixture
def make_client(sleeps):
    """Factory: ``make_client(upstream, keys=["k1"], cache=None, **kwargs)``."""

    def _make(upstream, keys=("k1",), cache=None, **kwargs):
        kwargs.setdefault("retry_backoff", 1.0)
        kwargs.setdefault("replay_chunk_size", 50)
        kwargs.setdefault("replay_delay", 0.05)
        return GenerationClient(
            CredentialPool(list(keys)),
            cache if cache is not None else ResponseCache(max_size=100, ttl=3600),
            provider_factory=upstream.provider,
            sleep=sleeps,
            **kwargs,
        )

    return _make


@pytest.fixture
def upstream():
    """Fresh fake upstream; configure with ``upstream.script(key, *items)``."""
    return FakeUpstream()
