"""Credential pool: ordered upstream API keys with cyclic failover.

The pool is process-wide: every session shares the same active key.
Rotation is a plain index bump; concurrent failures from two sessions may
both rotate, which only changes which key ends up active.

Usage:
    pool = CredentialPool.from_settings()
    for attempt in pool.attempts():
        ...  # call upstream with attempt.credential
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Attempt:
    """One try of a request against one credential."""
    number: int           # 1-based
    index: int            # pool position used
    credential: str
    last: bool            # no attempts remain after this one


class CredentialPool:
    """Ordered, cyclically rotating set of opaque credentials."""

    def __init__(self, credentials: list[str]):
        keys = [c.strip() for c in credentials if c and c.strip()]
        if not keys:
            raise ValueError("Credential pool needs at least one API key")
        self._credentials = keys
        self._index = 0

    @classmethod
    def from_settings(cls) -> CredentialPool:
        """Build from LLM_API_KEYS, falling back to LLM_API_KEY_FILE."""
        from settings import settings

        keys = [k for k in settings.LLM_API_KEYS.split(",") if k.strip()]
        if not keys:
            path = Path(settings.LLM_API_KEY_FILE)
            if path.is_file():
                keys = path.read_text(encoding="utf-8").splitlines()
        return cls(keys)

    def __len__(self) -> int:
        return len(self._credentials)

    @property
    def index(self) -> int:
        return self._index

    @property
    def current(self) -> str:
        return self._credentials[self._index]

    def rotate(self) -> int:
        """Advance to the next credential.  Returns the new index."""
        self._index = (self._index + 1) % len(self._credentials)
        logger.info(f"Credential pool rotated to key #{self._index}")
        return self._index

    def attempts(self) -> Iterator[Attempt]:
        """Yield at most ``len(pool)`` attempts, starting at the active key.

        Each attempt reads the active key at the time it is yielded, so the
        caller rotates between attempts with :meth:`rotate`.
        """
        total = len(self._credentials)
        for n in range(1, total + 1):
            yield Attempt(
                number=n,
                index=self._index,
                credential=self.current,
                last=n == total,
            )
