"""Google Gemini provider (google-genai SDK, async streaming)."""

from __future__ import annotations

import base64
import logging
from typing import AsyncIterator

from .base import GenerationParams, LLMProvider

logger = logging.getLogger(__name__)


class GeminiProvider(LLMProvider):
    """Gemini ``generate_content_stream`` over the async client."""

    DEFAULT_MODEL = "gemini-2.0-flash"

    def __init__(self, api_key: str, model: str = ""):
        from google import genai

        self._client = genai.Client(api_key=api_key)
        self._model = model or self.DEFAULT_MODEL
        logger.info(f"Gemini provider ready (model={self._model})")

    @property
    def name(self) -> str:
        return "gemini"

    @staticmethod
    def _to_contents(turns: list[dict]) -> list:
        from google.genai import types

        contents = []
        for turn in turns:
            parts = []
            for part in turn["parts"]:
                if "inline_data" in part:
                    blob = part["inline_data"]
                    parts.append(types.Part.from_bytes(
                        data=base64.b64decode(blob["data"]),
                        mime_type=blob["mime_type"],
                    ))
                else:
                    parts.append(types.Part(text=part["text"]))
            contents.append(types.Content(role=turn["role"], parts=parts))
        return contents

    async def stream(
        self,
        turns: list[dict],
        *,
        params: GenerationParams,
    ) -> AsyncIterator[str]:
        from google.genai import types

        config = types.GenerateContentConfig(
            temperature=params.temperature,
            top_k=params.top_k,
            top_p=params.top_p,
            max_output_tokens=params.max_output_tokens,
        )
        stream = await self._client.aio.models.generate_content_stream(
            model=self._model,
            contents=self._to_contents(turns),
            config=config,
        )
        async for chunk in stream:
            if chunk.text:
                yield chunk.text
