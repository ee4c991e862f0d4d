"""OpenAI LLM provider.

Also works with any OpenAI-compatible API (Azure OpenAI, vLLM, Ollama,
Together AI, etc.); set LLM_BASE_URL to the custom endpoint.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator

from .base import GenerationParams, LLMProvider

logger = logging.getLogger(__name__)


class OpenAIProvider(LLMProvider):
    """OpenAI Chat Completions API (async, streaming)."""

    DEFAULT_MODEL = "gpt-4o"

    def __init__(self, api_key: str, model: str = "", base_url: str = ""):
        from openai import AsyncOpenAI  # type: ignore[import-untyped]

        kwargs: dict = {"api_key": api_key}
        if base_url:
            kwargs["base_url"] = base_url
        self._client = AsyncOpenAI(**kwargs)
        self._model = model or self.DEFAULT_MODEL
        logger.info(
            f"OpenAI provider ready (model={self._model}"
            f"{', base_url=' + base_url if base_url else ''})"
        )

    @property
    def name(self) -> str:
        return "openai"

    @staticmethod
    def _to_messages(turns: list[dict]) -> list[dict]:
        messages = []
        for turn in turns:
            role = "assistant" if turn["role"] == "model" else "user"
            content = []
            for part in turn["parts"]:
                if "inline_data" in part:
                    blob = part["inline_data"]
                    url = f"data:{blob['mime_type']};base64,{blob['data']}"
                    content.append({"type": "image_url", "image_url": {"url": url}})
                else:
                    content.append({"type": "text", "text": part["text"]})
            # Plain strings keep text-only turns valid for every compatible server.
            if all(c["type"] == "text" for c in content):
                messages.append({"role": role, "content": "".join(c["text"] for c in content)})
            else:
                messages.append({"role": role, "content": content})
        return messages

    async def stream(
        self,
        turns: list[dict],
        *,
        params: GenerationParams,
    ) -> AsyncIterator[str]:
        # top_k has no Chat Completions equivalent.
        stream = await self._client.chat.completions.create(
            model=self._model,
            messages=self._to_messages(turns),
            temperature=params.temperature,
            top_p=params.top_p,
            max_tokens=params.max_output_tokens,
            stream=True,
        )
        async for chunk in stream:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta
            if delta and delta.content:
                yield delta.content
