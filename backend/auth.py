"""Identity resolution for websocket connections.

Authentication itself lives outside this service; the pipeline only needs
"who is on this socket".  The token comes from the ``auth_token`` cookie
or a ``token`` query parameter and is resolved by a pluggable resolver.

The bundled :class:`StaticTokenResolver` maps tokens from AUTH_TOKENS
(``"tok1:alice,tok2:bob"``).  Swap in a resolver backed by the real
session store by assigning ``app.state.identity_resolver``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

AUTH_COOKIE = "auth_token"


@dataclass(frozen=True)
class Identity:
    user_id: str
    anonymous: bool = False


class IdentityResolver(Protocol):
    async def resolve(self, token: Optional[str]) -> Optional[Identity]:
        ...


def token_from_websocket(websocket) -> Optional[str]:
    """Auth token from the cookie, else the ``token`` query parameter."""
    return websocket.cookies.get(AUTH_COOKIE) or websocket.query_params.get("token") or None


class StaticTokenResolver:
    """Token → user id map, optionally falling back to an anonymous user."""

    def __init__(
        self,
        tokens: dict[str, str] | None = None,
        *,
        allow_anonymous: bool = False,
        default_user_id: str = "public",
    ):
        self._tokens = dict(tokens or {})
        self._allow_anonymous = allow_anonymous
        self._default_user_id = default_user_id

    @staticmethod
    def parse(spec: str) -> dict[str, str]:
        """Parse ``"tok1:alice,tok2:bob"`` (malformed pairs are skipped)."""
        tokens = {}
        for pair in spec.split(","):
            token, sep, user = pair.strip().partition(":")
            if sep and token and user:
                tokens[token] = user
        return tokens

    @classmethod
    def from_settings(cls) -> StaticTokenResolver:
        from settings import settings

        return cls(
            cls.parse(settings.AUTH_TOKENS),
            allow_anonymous=settings.ALLOW_ANONYMOUS,
            default_user_id=settings.DEFAULT_USER_ID,
        )

    async def resolve(self, token: Optional[str]) -> Optional[Identity]:
        if token and token in self._tokens:
            return Identity(user_id=self._tokens[token])
        if self._allow_anonymous:
            return Identity(user_id=self._default_user_id, anonymous=True)
        return None
