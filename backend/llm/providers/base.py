"""LLM provider base class.

Every provider implements one streaming method:
  - stream(turns, params=...)    (async-yields text delta strings)

A provider instance is bound to a single API key.  Failover across keys
happens one level up, in :mod:`llm.client`.

Turns use a provider-neutral shape::

    {"role": "user" | "model",
     "parts": [{"text": "..."},
               {"inline_data": {"mime_type": "image/png", "data": "<base64>"}}]}

To add a new provider:
  1. Create llm/providers/your_provider.py
  2. Subclass LLMProvider
  3. Register it in llm/providers/__init__.py
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator


@dataclass(frozen=True)
class GenerationParams:
    """Sampling parameters sent with every upstream call."""
    temperature: float = 0.9
    top_k: int = 1
    top_p: float = 1.0
    max_output_tokens: int = 2048


class LLMProvider(ABC):
    """Abstract base for LLM providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier (e.g. 'gemini', 'openai')."""
        ...

    @abstractmethod
    def stream(
        self,
        turns: list[dict],
        *,
        params: GenerationParams,
    ) -> AsyncIterator[str]:
        """Send turns and async-yield text deltas as they arrive."""
        ...
