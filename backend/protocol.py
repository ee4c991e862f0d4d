"""WebSocket wire protocol: JSON frames in both directions.

Client → server::

    {"type": "user_message", "content": "...", "image": "data:...", "chatId": "..."}
    {"type": "set_active_chat", "chatId": "..."}
    {"type": "ping"}

Server → client::

    ai_thinking · ai_chunk{content, chatId} · ai_chunk_reset{content, chatId}
    search_started{query, chatId}
    search_results{query, results, chatId} · search_complete{chatId}
    ai_complete{chatId} · error{message} · pong · heartbeat
"""

from __future__ import annotations

import json
import logging
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError

from errors import MalformedClientMessage

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  INBOUND
# ═══════════════════════════════════════════════════════════════════════════

def _chat_id_as_str(v):
    # Numeric ids from older clients are accepted as strings.
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return str(int(v))
    return v


ChatId = Annotated[Optional[str], BeforeValidator(_chat_id_as_str)]


class _Inbound(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class UserMessageIn(_Inbound):
    type: Literal["user_message"]
    content: str = ""
    image: Optional[str] = None
    chat_id: ChatId = Field(default=None, alias="chatId")


class SetActiveChatIn(_Inbound):
    type: Literal["set_active_chat"]
    chat_id: ChatId = Field(default=None, alias="chatId")


class PingIn(_Inbound):
    type: Literal["ping"]


ClientMessage = Union[UserMessageIn, SetActiveChatIn, PingIn]

_INBOUND: dict[str, type[_Inbound]] = {
    "user_message": UserMessageIn,
    "set_active_chat": SetActiveChatIn,
    "ping": PingIn,
}


def parse_client_message(raw: str | bytes) -> ClientMessage | None:
    """Parse one client frame.

    Returns None for a well-formed frame of an unknown type (ignored).

    Raises
    ------
    MalformedClientMessage
        The frame is not a JSON object or fails validation.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedClientMessage(f"frame is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedClientMessage("frame is not a JSON object")

    model = _INBOUND.get(data.get("type"))
    if model is None:
        logger.debug(f"Ignoring client frame of type {data.get('type')!r}")
        return None
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise MalformedClientMessage(str(e)) from e


# ═══════════════════════════════════════════════════════════════════════════
#  OUTBOUND
# ═══════════════════════════════════════════════════════════════════════════

def thinking() -> dict:
    return {"type": "ai_thinking"}


def chunk(content: str, chat_id: str) -> dict:
    return {"type": "ai_chunk", "content": content, "chatId": chat_id}


def chunk_reset(content: str, chat_id: str) -> dict:
    """Replace the reply shown so far with *content* (after a failed attempt)."""
    return {"type": "ai_chunk_reset", "content": content, "chatId": chat_id}


def search_started(query: str, chat_id: str) -> dict:
    return {"type": "search_started", "query": query, "chatId": chat_id}


def search_results(query: str, results: list[dict], chat_id: str) -> dict:
    return {"type": "search_results", "query": query, "results": results, "chatId": chat_id}


def search_complete(chat_id: str) -> dict:
    return {"type": "search_complete", "chatId": chat_id}


def complete(chat_id: str) -> dict:
    return {"type": "ai_complete", "chatId": chat_id}


def error(message: str) -> dict:
    return {"type": "error", "message": message}


def pong() -> dict:
    return {"type": "pong"}


def heartbeat() -> dict:
    return {"type": "heartbeat"}
