"""Chat pipeline: one user submission, end to end.

Steps (shared by text and image submissions):
  1. Check identity and conversation ownership
  2. Append the user message and persist the whole list (optimistic)
  3. Emit ``ai_thinking``
  4. Generate
       text:  last HISTORY_WINDOW messages → search augmentation (1–2 passes)
       image: single text+image pass, forwarded as-is
  5. Append the assistant message and persist the whole list again
  6. Emit ``ai_complete``

Errors become ``error`` events here; only cancellation escapes.
Persistence failures are logged and never block delivery.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

import protocol
from auth import Identity
from conversation_store import ConversationStore, Message
from credentials import Attempt
from errors import (
    AuthenticationRequired,
    ConversationUnavailable,
    InternalPipelineFailure,
    PipelineError,
    UpstreamExhausted,
)
from hooks import Hooks
from llm.client import DeliveryMode, GenerationClient
from llm.prompt_orchestrator import image_mime_type
from search import SearchService
from search_augmentation import RequestContext, SearchAugmentation
from telemetry import PipelineTelemetry, TelemetryStore

logger = logging.getLogger(__name__)

Send = Callable[[dict], Awaitable[None]]


def image_attachment(image: str) -> dict:
    """Metadata stored with a user message that carried an image."""
    return {
        "type": "image",
        "preview": image[:200] + "...",
        "size": len(image),
        "mime_type": image_mime_type(image),
    }


class ChatPipeline:
    """Turns user submissions into streamed, persisted assistant replies."""

    def __init__(
        self,
        client: GenerationClient,
        search: SearchService,
        store: ConversationStore,
        *,
        history_window: int = 20,
    ):
        self.client = client
        self.search = search
        self.store = store
        self.history_window = history_window

    async def handle_user_message(
        self,
        identity: Optional[Identity],
        content: str,
        image: Optional[str],
        chat_id: Optional[str],
        send: Send,
    ) -> None:
        """Run one submission, reporting every failure as an error event."""
        t = PipelineTelemetry(
            conversation_id=chat_id or "",
            user_id=identity.user_id if identity else "",
            modality="image" if image else "text",
        )
        t.mark("pipeline_start")
        try:
            await self._handle(identity, content, image, chat_id, send, t)
        except asyncio.CancelledError:
            t.outcome = "cancelled"
            raise
        except UpstreamExhausted as e:
            t.outcome = "upstream_exhausted"
            logger.error(f"Chat {chat_id}: {e}")
            await send(protocol.error(e.user_message))
        except PipelineError as e:
            t.outcome = type(e).__name__
            logger.info(f"Chat {chat_id}: {type(e).__name__}: {e}")
            await send(protocol.error(e.user_message))
        except Exception:
            t.outcome = "error"
            logger.exception(f"Pipeline failure in chat {chat_id}")
            await send(protocol.error(InternalPipelineFailure.user_message))
        finally:
            t.mark("pipeline_end")
            t.finalize()
            TelemetryStore.append(t)

    async def _handle(
        self,
        identity: Optional[Identity],
        content: str,
        image: Optional[str],
        chat_id: Optional[str],
        send: Send,
        t: PipelineTelemetry,
    ) -> None:
        if identity is None:
            raise AuthenticationRequired("submission on an unauthenticated session")
        if not chat_id:
            raise ConversationUnavailable(
                "no chat selected", user_message="Please select a conversation first.",
            )

        messages = await self.store.load_conversation(chat_id, identity.user_id)
        if messages is None:
            raise ConversationUnavailable(f"chat {chat_id} not found for {identity.user_id}")

        ctx = RequestContext(chat_id=chat_id)
        messages.append(Message(
            role="user",
            content=content,
            attachment=image_attachment(image) if image else None,
        ))
        await self._persist(chat_id, identity, messages, ctx)
        await send(protocol.thinking())

        async def emit(event: dict) -> None:
            if event["type"] == "ai_chunk":
                t.mark("first_chunk")
            await send(event)

        t.mark("generate_start")
        if image:
            async def forward(delta: str, mode: DeliveryMode) -> None:
                ctx.record_chunk(delta)
                await emit(protocol.chunk(delta, chat_id))

            async def restart(attempt: Attempt) -> None:
                if ctx.retract_to(0):
                    await emit(protocol.chunk_reset("", chat_id))

            result = await self.client.generate_with_image(content, image, forward, on_retry=restart)
            t.record_result(result)
            text, search_data = result.text, None
        else:
            history = Hooks.run_before_generation(messages[-self.history_window:], ctx)
            answer = await SearchAugmentation(self.client, self.search, emit, ctx).run(history)
            t.record_answer(answer)
            text, search_data = answer.text, answer.search_data
        t.mark("generate_end")
        t.chunks_sent = ctx.chunks_sent

        text = Hooks.run_after_generation(text, ctx)
        messages.append(Message(role="assistant", content=text, search_data=search_data))
        t.persisted = await self._persist(chat_id, identity, messages, ctx)
        await send(protocol.complete(chat_id))

    async def _persist(
        self,
        chat_id: str,
        identity: Identity,
        messages: list[Message],
        ctx: RequestContext,
    ) -> bool:
        """Replace the stored list.  Failures are logged, never raised."""
        messages = Hooks.run_before_persist(messages, ctx)
        try:
            ok = await self.store.replace_conversation(chat_id, identity.user_id, messages)
        except Exception:
            logger.exception(f"Persisting chat {chat_id} failed")
            return False
        if not ok:
            logger.error(f"Persisting chat {chat_id} was rejected by the store")
        return ok
