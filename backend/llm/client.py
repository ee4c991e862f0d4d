"""Generation client: cache, failover and chunk delivery around a provider.

One instance per process, shared by every session.  It owns the
credential pool and the response cache; nothing else it touches is
shared.

Request flow::

    fingerprint ─▶ cache hit?  ──yes──▶ replay stored text (paced slices)
                        │
                        no
                        ▼
    for attempt in pool.attempts():       # at most len(pool) tries
        on_retry(attempt)                 # from the second attempt on
        stream provider(attempt.credential) ─▶ on_chunk(delta, LIVE)
        success → cache.put (when cacheable), return
        failure → rotate + backoff (unless it was the last attempt)
    all failed → UpstreamExhausted

Usage:
    client = GenerationClient.from_settings()
    result = await client.generate(history, on_chunk)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from credentials import Attempt, CredentialPool
from errors import InternalPipelineFailure, UpstreamExhausted
from response_cache import ResponseCache, fingerprint

from .prompt_orchestrator import build_image_turns, build_turns
from .providers import GenerationParams, LLMProvider, provider_for

logger = logging.getLogger(__name__)


class DeliveryMode(str, Enum):
    """How a chunk reached the sink."""
    LIVE = "live"        # straight from the upstream stream
    REPLAY = "replay"    # sliced from a cached answer


ChunkSink = Callable[[str, DeliveryMode], Awaitable[None]]
# Called before a retry; the failed attempt's chunks were already delivered.
RetryHook = Callable[[Attempt], Awaitable[None]]


@dataclass
class GenerationResult:
    text: str
    fingerprint: str
    replayed: bool = False
    attempts: int = 0


class _SinkError(Exception):
    """Wraps an exception raised by the chunk sink during a live attempt."""

    def __init__(self, original: Exception):
        super().__init__(str(original))
        self.original = original


@dataclass
class AttemptOutcome:
    """Typed result of one upstream attempt."""
    attempt: Attempt
    ok: bool
    text: str = ""
    reason: str = ""


class GenerationClient:
    """Streaming generation with credential failover and response caching."""

    def __init__(
        self,
        pool: CredentialPool,
        cache: ResponseCache,
        *,
        provider_factory: Callable[[str], LLMProvider] = provider_for,
        chat_params: GenerationParams | None = None,
        vision_params: GenerationParams | None = None,
        retry_backoff: float = 1.0,
        replay_chunk_size: int = 50,
        replay_delay: float = 0.05,
        live_delay: float = 0.0,
        fingerprint_window: int = 3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.pool = pool
        self.cache = cache
        self._provider_factory = provider_factory
        self.chat_params = chat_params or GenerationParams()
        self.vision_params = vision_params or GenerationParams(temperature=0.7, top_k=32)
        self.retry_backoff = retry_backoff
        self.replay_chunk_size = max(1, replay_chunk_size)
        self.replay_delay = replay_delay
        self.live_delay = live_delay
        self.fingerprint_window = fingerprint_window
        self._sleep = sleep

    @classmethod
    def from_settings(cls, pool: CredentialPool | None = None) -> GenerationClient:
        from settings import settings

        return cls(
            pool or CredentialPool.from_settings(),
            ResponseCache(max_size=settings.CACHE_MAX_SIZE, ttl=settings.CACHE_TTL),
            chat_params=GenerationParams(
                temperature=settings.CHAT_TEMPERATURE,
                top_k=settings.CHAT_TOP_K,
                top_p=settings.CHAT_TOP_P,
                max_output_tokens=settings.MAX_OUTPUT_TOKENS,
            ),
            vision_params=GenerationParams(
                temperature=settings.VISION_TEMPERATURE,
                top_k=settings.VISION_TOP_K,
                top_p=settings.VISION_TOP_P,
                max_output_tokens=settings.MAX_OUTPUT_TOKENS,
            ),
            retry_backoff=settings.RETRY_BACKOFF,
            replay_chunk_size=settings.REPLAY_CHUNK_SIZE,
            replay_delay=settings.REPLAY_CHUNK_DELAY,
            live_delay=settings.LIVE_CHUNK_DELAY,
            fingerprint_window=settings.FINGERPRINT_WINDOW,
        )

    # ── Fingerprints ──────────────────────────────────────────────────────

    def history_fingerprint(self, history: list) -> str:
        recent = history[-self.fingerprint_window:] if self.fingerprint_window > 0 else []
        return fingerprint("|".join(m.content for m in recent), "text")

    @staticmethod
    def image_fingerprint(prompt: str, image: str) -> str:
        return fingerprint(prompt + (image or "")[:100], "image")

    # ── Public API ────────────────────────────────────────────────────────

    async def generate(
        self,
        history: list,
        on_chunk: Optional[ChunkSink] = None,
        *,
        on_retry: Optional[RetryHook] = None,
        cacheable: Optional[Callable[[str], bool]] = None,
    ) -> GenerationResult:
        """Stream a chat continuation of *history* (last message = user).

        ``cacheable(text)`` returning False keeps a successful answer out
        of the cache (the caller may ``remember`` a final one later).
        """
        key = self.history_fingerprint(history)
        try:
            turns = build_turns(history)
        except ValueError as e:
            raise InternalPipelineFailure(str(e)) from e
        return await self._run(key, turns, self.chat_params, on_chunk, on_retry, cacheable)

    async def generate_with_image(
        self,
        prompt: str,
        image: str,
        on_chunk: Optional[ChunkSink] = None,
        *,
        on_retry: Optional[RetryHook] = None,
    ) -> GenerationResult:
        """Stream an answer about one inline image (data URL)."""
        key = self.image_fingerprint(prompt, image)
        return await self._run(
            key, build_image_turns(prompt, image), self.vision_params, on_chunk, on_retry,
        )

    def remember(self, key: str, text: str) -> None:
        """Store *text* as the final answer for *key*."""
        self.cache.put(key, text)

    def cache_stats(self) -> dict:
        return self.cache.stats()

    def clear_cache(self) -> int:
        size = self.cache.clear()
        logger.info(f"Response cache cleared ({size} entries)")
        return size

    # ── Internals ─────────────────────────────────────────────────────────

    async def _run(
        self,
        key: str,
        turns: list[dict],
        params: GenerationParams,
        on_chunk: Optional[ChunkSink],
        on_retry: Optional[RetryHook] = None,
        cacheable: Optional[Callable[[str], bool]] = None,
    ) -> GenerationResult:
        cached = self.cache.lookup(key)
        if cached is not None:
            logger.debug(f"Response cache hit {key}")
            await self._replay(cached, on_chunk)
            return GenerationResult(text=cached, fingerprint=key, replayed=True)

        failures: list[str] = []
        for attempt in self.pool.attempts():
            if failures and on_retry is not None:
                await on_retry(attempt)
            outcome = await self._attempt(attempt, turns, params, on_chunk)
            if outcome.ok:
                if cacheable is None or cacheable(outcome.text):
                    self.cache.put(key, outcome.text)
                else:
                    logger.debug(f"Answer for {key} not cached (not final)")
                return GenerationResult(text=outcome.text, fingerprint=key, attempts=attempt.number)
            failures.append(outcome.reason)
            logger.warning(
                f"Upstream attempt {attempt.number}/{len(self.pool)} "
                f"with key #{attempt.index} failed: {outcome.reason}"
            )
            if not attempt.last:
                self.pool.rotate()
                await self._sleep(self.retry_backoff)

        logger.error(f"Upstream exhausted after {len(failures)} attempt(s)")
        raise UpstreamExhausted(failures)

    async def _attempt(
        self,
        attempt: Attempt,
        turns: list[dict],
        params: GenerationParams,
        on_chunk: Optional[ChunkSink],
    ) -> AttemptOutcome:
        parts: list[str] = []
        try:
            provider = self._provider_factory(attempt.credential)
            async for delta in provider.stream(turns, params=params):
                if not delta:
                    continue
                parts.append(delta)
                if on_chunk is not None:
                    try:
                        await on_chunk(delta, DeliveryMode.LIVE)
                    except Exception as e:
                        raise _SinkError(e) from e
                if self.live_delay > 0:
                    await self._sleep(self.live_delay)
        except _SinkError as e:
            # The client side failed, not the upstream: no failover.
            raise e.original from None
        except Exception as e:
            # CancelledError is a BaseException and passes straight through.
            return AttemptOutcome(attempt=attempt, ok=False, reason=f"{type(e).__name__}: {e}")
        return AttemptOutcome(attempt=attempt, ok=True, text="".join(parts))

    async def _replay(self, text: str, on_chunk: Optional[ChunkSink]) -> None:
        size = self.replay_chunk_size
        for i in range(0, len(text), size):
            if on_chunk is not None:
                await on_chunk(text[i:i + size], DeliveryMode.REPLAY)
            await self._sleep(self.replay_delay)
