"""In-process response cache: fingerprint → full answer text.

Bounded by capacity (oldest-inserted entry evicted first) and by TTL.
Expired entries are dropped lazily on lookup and by :meth:`sweep_expired`,
which the app runs on a fixed interval.

Shared by every session; all operations are synchronous and never await,
so they are atomic with respect to the event loop.
"""

from __future__ import annotations

import hashlib
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)


def fingerprint(text: str, modality: str = "text") -> str:
    """Stable cache key over prompt context and modality."""
    h = hashlib.md5()
    h.update(text.encode("utf-8"))
    h.update(modality.encode("utf-8"))
    return h.hexdigest()


@dataclass
class CacheEntry:
    key: str
    value: str
    created_at: float


class ResponseCache:
    """Capacity- and TTL-bounded map with hit/miss counters."""

    def __init__(
        self,
        max_size: int = 100,
        ttl: float = 3600,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl = ttl
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.created_at > self.ttl

    def lookup(self, key: str) -> str | None:
        """Return the cached text, or None on miss / expiry."""
        entry = self._entries.get(key)
        if entry is not None:
            if not self._expired(entry, self._clock()):
                self.hits += 1
                return entry.value
            del self._entries[key]
        self.misses += 1
        return None

    def put(self, key: str, value: str) -> None:
        """Insert, evicting the oldest-inserted entry when full."""
        if key in self._entries:
            # Replacing keeps the size unchanged; the entry counts as new.
            del self._entries[key]
        while len(self._entries) >= self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Response cache evicted {evicted}")
        self._entries[key] = CacheEntry(key=key, value=value, created_at=self._clock())

    def discard(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def sweep_expired(self) -> int:
        """Drop every expired entry.  Returns the number removed."""
        now = self._clock()
        stale = [k for k, e in self._entries.items() if self._expired(e, now)]
        for k in stale:
            del self._entries[k]
        if stale:
            logger.info(f"Response cache sweep removed {len(stale)} expired entries")
        return len(stale)

    def clear(self) -> int:
        """Empty the cache and reset counters.  Returns entries removed."""
        size = len(self._entries)
        self._entries.clear()
        self.hits = 0
        self.misses = 0
        return size

    def stats(self) -> dict:
        total = self.hits + self.misses
        hit_rate = round(self.hits / total * 100, 2) if total else 0.0
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": f"{hit_rate}%",
        }
