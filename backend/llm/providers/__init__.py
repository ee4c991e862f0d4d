"""Dynamic LLM provider loader.

Reads LLM_PROVIDER from settings and returns a provider instance bound to
one API key.  Instances are memoised per key so failover back to an
earlier key reuses its client.  Provider SDKs are imported lazily; only
the selected provider's SDK needs to be installed.

Usage:
    from llm.providers import provider_for
    async for delta in provider_for(api_key).stream(turns, params=params):
        ...
"""

from __future__ import annotations

import logging

from .base import GenerationParams, LLMProvider

logger = logging.getLogger(__name__)

_providers: dict[str, LLMProvider] = {}

SUPPORTED = ("gemini", "openai")


def _load_provider(api_key: str) -> LLMProvider:
    """Instantiate the configured provider for *api_key*."""
    from settings import settings

    name = settings.LLM_PROVIDER.lower()

    if name == "gemini":
        from .gemini import GeminiProvider

        return GeminiProvider(api_key=api_key, model=settings.LLM_MODEL)
    elif name == "openai":
        from .openai import OpenAIProvider

        return OpenAIProvider(
            api_key=api_key,
            model=settings.LLM_MODEL,
            base_url=settings.LLM_BASE_URL,
        )
    else:
        raise ValueError(
            f"Unknown LLM_PROVIDER: '{name}'.  "
            f"Supported: {', '.join(SUPPORTED)}"
        )


def provider_for(api_key: str) -> LLMProvider:
    """Get the provider instance bound to *api_key*."""
    if api_key not in _providers:
        _providers[api_key] = _load_provider(api_key)
    return _providers[api_key]


def provider_name() -> str:
    from settings import settings

    return settings.LLM_PROVIDER.lower()


def reset() -> None:
    """Drop memoised providers (forces re-initialization on next call)."""
    _providers.clear()


__all__ = ["GenerationParams", "LLMProvider", "provider_for", "provider_name", "reset"]
