"""Tests for provider turn conversion and the provider loader.

No network: SDK clients are constructed with dummy keys and only the
pure conversion helpers are exercised, or the SDK call is mocked.
"""

import asyncio
import base64
from dataclasses import replace
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from llm import providers
from llm.providers.base import GenerationParams
from llm.providers.gemini import GeminiProvider
from llm.providers.openai import OpenAIProvider

TURNS = [
    {"role": "user", "parts": [{"text": "system"}]},
    {"role": "model", "parts": [{"text": "ack"}]},
    {"role": "user", "parts": [
        {"text": "what is this?"},
        {"inline_data": {"mime_type": "image/png", "data": base64.b64encode(b"png-bytes").decode()}},
    ]},
]


class TestGemini:
    def test_contents_roles_and_parts(self):
        contents = GeminiProvider._to_contents(TURNS)
        assert [c.role for c in contents] == ["user", "model", "user"]
        assert contents[0].parts[0].text == "system"
        image = contents[2].parts[1]
        assert image.inline_data.mime_type == "image/png"
        assert image.inline_data.data == b"png-bytes"

    def test_stream_yields_text_and_passes_params(self):
        async def fake_stream():
            for text in ["Hel", None, "lo"]:
                yield SimpleNamespace(text=text)

        provider = GeminiProvider(api_key="dummy", model="gemini-test")
        generate = AsyncMock(return_value=fake_stream())
        provider._client = SimpleNamespace(aio=SimpleNamespace(models=SimpleNamespace(
            generate_content_stream=generate,
        )))

        async def collect():
            return [d async for d in provider.stream(TURNS[:1], params=GenerationParams(top_k=32))]

        assert asyncio.run(collect()) == ["Hel", "lo"]
        kwargs = generate.call_args.kwargs
        assert kwargs["model"] == "gemini-test"
        assert kwargs["config"].top_k == 32


class TestOpenAI:
    def test_messages(self):
        messages = OpenAIProvider._to_messages(TURNS)
        assert messages[0] == {"role": "user", "content": "system"}
        assert messages[1] == {"role": "assistant", "content": "ack"}
        content = messages[2]["content"]
        assert content[0] == {"type": "text", "text": "what is this?"}
        assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")


class TestLoader:
    @pytest.fixture(autouse=True)
    def _fresh(self):
        providers.reset()
        yield
        providers.reset()

    def _use(self, monkeypatch, name):
        import settings as settings_mod
        monkeypatch.setattr(settings_mod, "settings", replace(settings_mod.settings, LLM_PROVIDER=name))

    def test_memoised_per_key(self, monkeypatch):
        self._use(monkeypatch, "openai")
        a = providers.provider_for("k1")
        assert providers.provider_for("k1") is a
        assert providers.provider_for("k2") is not a
        assert a.name == "openai"

    def test_unknown_provider(self, monkeypatch):
        self._use(monkeypatch, "nope")
        with pytest.raises(ValueError, match="Unknown LLM_PROVIDER"):
            providers.provider_for("k1")

    def test_gemini_selected(self, monkeypatch):
        self._use(monkeypatch, "gemini")
        with patch("google.genai.Client") as client_cls:
            provider = providers.provider_for("k1")
        assert provider.name == "gemini"
        client_cls.assert_called_once_with(api_key="k1")
