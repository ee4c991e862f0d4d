"""Streaming sessions: one per websocket connection.

A session owns the connection-level state: identity, selected chat,
liveness flag and the single in-flight generation.  Submissions run as a
task so the receive loop keeps reading (pings, chat switches) while a
reply streams.

Invariants:
  - at most one generation in flight per session; a second
    ``user_message`` is rejected with an error event
  - closing the session cancels the in-flight generation (and with it
    the upstream stream and any search call)
  - outbound frames are serialized; chunks keep generation order
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Optional

import protocol
from auth import Identity
from errors import MalformedClientMessage
from pipeline import ChatPipeline

logger = logging.getLogger(__name__)

BUSY_MESSAGE = "A reply is still being generated. Please wait for it to finish."


class ChatSession:
    """State and message handling for one live client connection."""

    def __init__(
        self,
        websocket,
        pipeline: ChatPipeline,
        identity: Optional[Identity],
        *,
        session_id: str | None = None,
    ):
        self.websocket = websocket
        self.pipeline = pipeline
        self.identity = identity
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.selected_chat_id: Optional[str] = None
        self.is_alive = True
        self.closed = False
        self._active: Optional[asyncio.Task] = None
        self._send_lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._active is not None and not self._active.done()

    async def send(self, event: dict) -> None:
        async with self._send_lock:
            await self.websocket.send_json(event)

    # ── Inbound ───────────────────────────────────────────────────────────

    async def handle_frame(self, raw: str | bytes) -> None:
        """Dispatch one client frame.  Any frame counts as a liveness signal."""
        self.is_alive = True
        try:
            msg = protocol.parse_client_message(raw)
        except MalformedClientMessage as e:
            logger.debug(f"Session {self.session_id}: malformed frame: {e}")
            await self.send(protocol.error(e.user_message))
            return
        if msg is None:
            return

        if isinstance(msg, protocol.PingIn):
            await self.send(protocol.pong())
        elif isinstance(msg, protocol.SetActiveChatIn):
            self.selected_chat_id = msg.chat_id
        elif isinstance(msg, protocol.UserMessageIn):
            await self.submit(msg)

    async def submit(self, msg: protocol.UserMessageIn) -> Optional[asyncio.Task]:
        """Start a generation, or reject it while another is in flight."""
        if self.busy:
            await self.send(protocol.error(BUSY_MESSAGE))
            return None
        chat_id = msg.chat_id or self.selected_chat_id
        self._active = asyncio.create_task(
            self.pipeline.handle_user_message(
                self.identity, msg.content, msg.image, chat_id, self.send,
            ),
            name=f"generation-{self.session_id}",
        )
        self._active.add_done_callback(self._log_task_failure)
        return self._active

    def _log_task_failure(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            # Typically the socket went away mid-reply.
            logger.info(f"Session {self.session_id}: generation ended early: {exc!r}")

    async def wait_idle(self) -> None:
        """Wait for the in-flight generation, if any (used by tests and shutdown)."""
        if self._active is not None:
            await asyncio.gather(self._active, return_exceptions=True)

    # ── Teardown ──────────────────────────────────────────────────────────

    async def cancel_active(self) -> None:
        task = self._active
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            logger.info(f"Session {self.session_id}: in-flight generation cancelled")

    async def terminate(self, code: int = 1001) -> None:
        """Cancel work and close the socket (idempotent)."""
        if self.closed:
            return
        self.closed = True
        await self.cancel_active()
        try:
            await self.websocket.close(code=code)
        except Exception as e:
            logger.debug(f"Session {self.session_id}: close failed: {e}")


class SessionRegistry:
    """Live sessions, keyed by session id (a user may hold several)."""

    def __init__(self):
        self._sessions: dict[str, ChatSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def add(self, session: ChatSession) -> None:
        self._sessions[session.session_id] = session
        who = session.identity.user_id if session.identity else "anonymous"
        logger.info(f"Session {session.session_id} opened ({who})")

    def remove(self, session: ChatSession) -> None:
        if self._sessions.pop(session.session_id, None) is not None:
            logger.info(f"Session {session.session_id} closed")

    def get(self, session_id: str) -> Optional[ChatSession]:
        return self._sessions.get(session_id)

    async def sweep(self) -> int:
        """Heartbeat tick: close silent sessions, probe the rest.

        Returns the number of sessions terminated.
        """
        terminated = 0
        for session in list(self._sessions.values()):
            if not session.is_alive:
                logger.info(f"Session {session.session_id} missed a heartbeat; terminating")
                await session.terminate()
                self.remove(session)
                terminated += 1
                continue
            session.is_alive = False
            try:
                await session.send(protocol.heartbeat())
            except Exception as e:
                logger.info(f"Session {session.session_id} heartbeat failed: {e}")
                await session.terminate()
                self.remove(session)
                terminated += 1
        return terminated

    async def close_all(self) -> None:
        for session in list(self._sessions.values()):
            await session.terminate(code=1001)
            self.remove(session)
