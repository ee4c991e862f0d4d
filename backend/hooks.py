"""Extension hooks: customize the response pipeline without touching core.

Register hooks using decorators:

    from hooks import Hooks

    @Hooks.before_generation
    def trim_history(history, ctx):
        return history[-10:]

    @Hooks.after_generation
    def filter_response(response, ctx):
        return response.replace("bad_word", "***")

    @Hooks.before_persist
    def tag_messages(messages, ctx):
        messages[-1].content += "\\n\\n-- sent from the web app"
        return messages

Hooks run in registration order.  Return the (possibly modified) value
to pass it to the next hook.  Return None to keep the original.
A hook that raises is logged and skipped.

``after_generation`` rewrites what is stored, not what was already
streamed to the client.

Load your hooks file at startup (e.g. import user_hooks in main.py).
"""

from __future__ import annotations

import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)


class Hooks:
    """Registry for pipeline extension points."""

    _before_generation: list[Callable] = []
    _after_generation: list[Callable] = []
    _before_persist: list[Callable] = []

    # ── Decorators ────────────────────────────────────────────────

    @classmethod
    def before_generation(cls, fn: Callable) -> Callable:
        """Called with (history, ctx) before the first generation pass.

        Signature: fn(history: list[Message], ctx) -> list[Message]
        """
        cls._before_generation.append(fn)
        return fn

    @classmethod
    def after_generation(cls, fn: Callable) -> Callable:
        """Called with (response_text, ctx) once the final answer exists.

        Signature: fn(response: str, ctx) -> str
        """
        cls._after_generation.append(fn)
        return fn

    @classmethod
    def before_persist(cls, fn: Callable) -> Callable:
        """Called with (messages, ctx) before each replace_conversation().

        Signature: fn(messages: list[Message], ctx) -> list[Message]
        """
        cls._before_persist.append(fn)
        return fn

    # ── Runners ───────────────────────────────────────────────────

    @staticmethod
    def _chain(hooks: list[Callable], value: Any, ctx: Any) -> Any:
        for fn in hooks:
            try:
                result = fn(value, ctx)
            except Exception:
                logger.exception(f"Hook {getattr(fn, '__name__', fn)!r} failed; skipped")
                continue
            if result is not None:
                value = result
        return value

    @classmethod
    def run_before_generation(cls, history: list, ctx: Any) -> list:
        return cls._chain(cls._before_generation, history, ctx)

    @classmethod
    def run_after_generation(cls, response: str, ctx: Any) -> str:
        return cls._chain(cls._after_generation, response, ctx)

    @classmethod
    def run_before_persist(cls, messages: list, ctx: Any) -> list:
        return cls._chain(cls._before_persist, messages, ctx)

    # ── Utilities ─────────────────────────────────────────────────

    @classmethod
    def clear(cls) -> None:
        """Remove all registered hooks (useful for testing)."""
        cls._before_generation.clear()
        cls._after_generation.clear()
        cls._before_persist.clear()
