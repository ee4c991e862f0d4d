"""Search augmentation: in-band ``:search <query>`` handling.

The model may answer with a line ``:search <keywords>`` instead of an
answer.  This module watches the live chunk stream for that command and,
when it appears, runs the search and a second generation pass over the
history plus the results.

State machine (one per request)::

    NORMAL ──command seen──▶ TRIGGERED      (one-shot; never resets)

    NORMAL     chunks are forwarded as they arrive
    TRIGGERED  the rest of the first pass is generated but not delivered;
               afterwards: search_started → search → search_results →
               search_complete → second pass, forwarded live

Scanning is incremental: each chunk is matched together with the
unresolved tail of the previous scan (at most a partial ``:search``
prefix), never the whole buffer.  That tail is held back from the client
until it either completes into a command or is ruled out, so a partial
command is never shown.

Replayed (cached) chunks are final answers and are forwarded unscanned.

Failover restarts a pass: the scanner starts over, and whatever the failed
attempt delivered is withdrawn with an ``ai_chunk_reset`` event.  Only the
successful attempt's text decides whether the search runs.  A first pass
that holds a command is never cached; the final answer is stored in its
place once the second pass succeeds.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional

import protocol
from conversation_store import Message
from credentials import Attempt
from llm.client import DeliveryMode, GenerationClient, GenerationResult
from llm.prompt_orchestrator import build_search_turn_text
from search import SearchResultSet, SearchService

logger = logging.getLogger(__name__)

# The query must contain a non-blank character on the command's own line.
COMMAND_RE = re.compile(r":search[ \t]+(\S[^\n]*)")
# A suffix that could still grow into a command.
_PARTIAL_RE = re.compile(r":(?:s(?:e(?:a(?:r(?:c(?:h[ \t]*)?)?)?)?)?)?\Z")


def parse_command(text: str) -> str | None:
    """Trimmed query of the first ``:search`` command in *text*, if any."""
    m = COMMAND_RE.search(text)
    return m.group(1).strip() if m else None


class CommandScanner:
    """Incremental detector for the first ``:search`` command in a stream."""

    def __init__(self):
        self._text = ""
        self._scan_from = 0      # start of the unresolved tail
        self._forwarded = 0      # text[:_forwarded] was handed out
        self.triggered = False
        self.query: str | None = None

    @property
    def text(self) -> str:
        return self._text

    def feed(self, chunk: str) -> str:
        """Append *chunk*.  Returns the text that is now safe to forward."""
        self._text += chunk
        if self.triggered:
            return ""

        m = COMMAND_RE.search(self._text, self._scan_from)
        if m:
            self.triggered = True
            safe = self._text[self._forwarded:m.start()]
            self._forwarded = m.start()
            return safe

        tail = _PARTIAL_RE.search(self._text, self._scan_from)
        self._scan_from = tail.start() if tail else len(self._text)
        safe = self._text[self._forwarded:self._scan_from]
        self._forwarded = self._scan_from
        return safe

    def flush(self) -> str:
        """Held-back tail once the stream ended without a command."""
        if self.triggered:
            return ""
        rest = self._text[self._forwarded:]
        self._forwarded = len(self._text)
        return rest


class SearchState(str, Enum):
    NORMAL = "normal"
    TRIGGERED = "triggered"


@dataclass
class RequestContext:
    """Ephemeral per-request state.  Never shared across requests."""
    chat_id: str
    state: SearchState = SearchState.NORMAL
    search: Optional[SearchResultSet] = None
    chunks_sent: int = 0
    delivered: str = ""      # what the client currently shows for this reply

    def record_chunk(self, text: str) -> None:
        self.chunks_sent += 1
        self.delivered += text

    def retract_to(self, keep: int) -> bool:
        """Drop delivered text past *keep* chars.  True when anything was dropped."""
        if len(self.delivered) <= keep:
            return False
        self.delivered = self.delivered[:keep]
        return True


@dataclass
class AugmentedAnswer:
    """Final assistant text plus what it took to produce it."""
    text: str
    first: GenerationResult
    second: Optional[GenerationResult] = None
    search: Optional[SearchResultSet] = None
    passes: list[str] = field(default_factory=list)

    @property
    def search_data(self) -> dict | None:
        return self.search.to_dict() if self.search is not None else None


EventSink = Callable[[dict], Awaitable[None]]


class SearchAugmentation:
    """Runs one chat request through the search-aware two-pass flow."""

    def __init__(
        self,
        client: GenerationClient,
        search: SearchService,
        emit: EventSink,
        ctx: RequestContext,
    ):
        self._client = client
        self._search = search
        self._emit = emit
        self.ctx = ctx

    async def _send_chunk(self, text: str) -> None:
        if not text:
            return
        self.ctx.record_chunk(text)
        await self._emit(protocol.chunk(text, self.ctx.chat_id))

    async def _retract_to(self, keep: int) -> None:
        if self.ctx.retract_to(keep):
            await self._emit(protocol.chunk_reset(self.ctx.delivered, self.ctx.chat_id))

    async def run(self, history: list[Message]) -> AugmentedAnswer:
        scanner = CommandScanner()

        async def first_pass(delta: str, mode: DeliveryMode) -> None:
            if mode is DeliveryMode.REPLAY:
                await self._send_chunk(delta)
                return
            await self._send_chunk(scanner.feed(delta))

        async def first_retry(attempt: Attempt) -> None:
            nonlocal scanner
            scanner = CommandScanner()
            await self._retract_to(0)

        first = await self._client.generate(
            history,
            first_pass,
            on_retry=first_retry,
            cacheable=lambda text: parse_command(text) is None,
        )
        query = None if first.replayed else parse_command(first.text)
        if query is None:
            await self._send_chunk(scanner.flush())
            return AugmentedAnswer(text=first.text, first=first, passes=["first"])

        self.ctx.state = SearchState.TRIGGERED
        logger.info(f"Search command detected in chat {self.ctx.chat_id}")
        result_set = await self._run_search(query)

        augmented = list(history) + [Message(
            role="user",
            content=build_search_turn_text(query, result_set.results),
        )]

        async def second_pass(delta: str, mode: DeliveryMode) -> None:
            await self._send_chunk(delta)

        kept = len(self.ctx.delivered)

        async def second_retry(attempt: Attempt) -> None:
            await self._retract_to(kept)

        second = await self._client.generate(augmented, second_pass, on_retry=second_retry)
        # The cache holds final answers, never the command itself.
        self._client.remember(first.fingerprint, second.text)
        return AugmentedAnswer(
            text=second.text,
            first=first,
            second=second,
            search=result_set,
            passes=["first", "second"],
        )

    async def _run_search(self, query: str) -> SearchResultSet:
        chat_id = self.ctx.chat_id
        await self._emit(protocol.search_started(query, chat_id))
        try:
            result_set = await self._search.search_with_results(query)
        except Exception:
            logger.exception(f"Search for {query!r} failed; continuing without results")
            result_set = SearchResultSet(query=query)
        self.ctx.search = result_set
        await self._emit(protocol.search_results(
            query, [r.to_dict() for r in result_set.results], chat_id,
        ))
        await self._emit(protocol.search_complete(chat_id))
        return result_set
