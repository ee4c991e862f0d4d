"""Prompt orchestrator: builds provider turns from conversation history.

Chat requests
-------------
Every chat history opens with the system prompt (as a user turn) and a
greeting acknowledgement (as a model turn).  Prior messages follow in
order; messages that carried an image are skipped because their pixels
are not stored.  When an earlier reply in the window was grounded on a
search, its result titles and links go in as a user turn (plus a short
model acknowledgement) just before the final message.  The final message
must be the user's and is sent last.

Image requests
--------------
A single user turn: vision system prompt + text, then the inline image.
"""

from __future__ import annotations

import logging
import re

from .prompts import (
    GREETING_ACK,
    PREVIOUS_SEARCH_ACK,
    PREVIOUS_SEARCH_HEADER,
    PREVIOUS_SEARCH_ITEM,
    SEARCH_AUGMENTED_TURN,
    SEARCH_NO_RESULTS,
    SEARCH_RESULT_ITEM,
    SEARCH_RESULTS_HEADER,
    SYSTEM_PROMPT,
    VISION_SYSTEM_PROMPT,
)

logger = logging.getLogger(__name__)

_DATA_URL_RE = re.compile(r"^data:([a-zA-Z0-9]+/[a-zA-Z0-9\-.+]+);base64,")

DEFAULT_IMAGE_MIME = "image/jpeg"


def _text_turn(role: str, text: str) -> dict:
    return {"role": role, "parts": [{"text": text}]}


def build_turns(history: list) -> list[dict]:
    """Assemble provider turns for a chat continuation.

    Parameters
    ----------
    history : list[Message]
        Windowed conversation history, oldest first.  The last entry must
        be a user message.

    Raises
    ------
    ValueError
        If the history is empty or does not end with a user message.
    """
    if not history or history[-1].role != "user":
        raise ValueError("No user message found at the end of the history")

    turns = [_text_turn("user", SYSTEM_PROMPT), _text_turn("model", GREETING_ACK)]
    for msg in history[:-1]:
        if msg.image:
            continue
        if msg.role == "user":
            turns.append(_text_turn("user", msg.content))
        elif msg.role == "assistant":
            turns.append(_text_turn("model", msg.content))
    context = previous_search_context(history[:-1])
    if context:
        turns.append(_text_turn("user", context))
        turns.append(_text_turn("model", PREVIOUS_SEARCH_ACK))
    turns.append(_text_turn("user", history[-1].content))
    return turns


def previous_search_context(history: list) -> str:
    """Title/link list of the most recent search in *history* ("" if none)."""
    for msg in reversed(history):
        results = (msg.search_data or {}).get("results") or []
        if results:
            break
    else:
        return ""
    context = PREVIOUS_SEARCH_HEADER
    for n, r in enumerate(results, 1):
        context += PREVIOUS_SEARCH_ITEM.format(n=n, title=r.get("title", ""), link=r.get("link", ""))
    return context + "]\n"


def image_mime_type(data_url: str) -> str:
    """Mime type from a ``data:<mime>;base64,`` URL (jpeg when absent)."""
    m = _DATA_URL_RE.match(data_url or "")
    return m.group(1) if m else DEFAULT_IMAGE_MIME


def image_payload(data_url: str) -> str:
    """Base64 body of a data URL (the whole string when there is no header)."""
    head, sep, body = (data_url or "").partition(",")
    return body if sep else head


def build_image_turns(prompt: str, image: str) -> list[dict]:
    """Single-turn text + inline image request."""
    return [{
        "role": "user",
        "parts": [
            {"text": VISION_SYSTEM_PROMPT + "\n\n" + prompt},
            {"inline_data": {
                "mime_type": image_mime_type(image),
                "data": image_payload(image),
            }},
        ],
    }]


def format_search_context(results: list) -> str:
    """Render search results as the block embedded in the augmented turn."""
    context = SEARCH_RESULTS_HEADER
    if not results:
        return context + SEARCH_NO_RESULTS
    for n, r in enumerate(results, 1):
        context += SEARCH_RESULT_ITEM.format(n=n, title=r.title, link=r.link, snippet=r.snippet)
    return context


def build_search_turn_text(query: str, results: list) -> str:
    """Content of the synthetic user turn for the second generation pass."""
    return SEARCH_AUGMENTED_TURN.format(query=query, context=format_search_context(results))
