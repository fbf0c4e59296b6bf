"""
Process-local embedding cache.

Entries are keyed by normalized text and expire after a fixed TTL. When the
cache is full, inserting a new key evicts the oldest inserted entry.
"""

from __future__ import annotations

import asyncio
import logging
import re
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable

from .config import CacheSettings

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")
_MAX_KEY_LENGTH = 200


@dataclass(frozen=True)
class CacheEntry:
    embedding: list[float]
    timestamp: float


class EmbeddingCache:
    """Bounded, TTL-expiring map from normalized text to embedding."""

    def __init__(
        self,
        *,
        max_size: int = 1000,
        ttl_seconds: float = 24 * 60 * 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: CacheSettings) -> "EmbeddingCache":
        return cls(max_size=settings.max_size, ttl_seconds=settings.ttl_seconds)

    @staticmethod
    def cache_key(text: str) -> str:
        return _WHITESPACE_RE.sub(" ", text.lower().strip())[:_MAX_KEY_LENGTH]

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.timestamp > self.ttl_seconds

    def get(self, text: str) -> list[float] | None:
        key = self.cache_key(text)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._expired(entry, self._clock()):
                del self._entries[key]
                return None
            return list(entry.embedding)

    def set(self, text: str, embedding: list[float]) -> None:
        key = self.cache_key(text)
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_size:
                self._entries.popitem(last=False)
            # Re-setting a key keeps its original insertion slot.
            self._entries[key] = CacheEntry(embedding=list(embedding), timestamp=self._clock())

    def clear_expired(self) -> int:
        """Drop every expired entry and return how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if self._expired(entry, now)]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict[str, Any]:
        with self._lock:
            size = len(self._entries)
        return {"size": size, "max_size": self.max_size, "ttl_seconds": self.ttl_seconds}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


_default_cache: EmbeddingCache | None = None


def default_cache() -> EmbeddingCache:
    """Return the process-wide cache, creating it from the environment."""
    global _default_cache
    if _default_cache is None:
        _default_cache = EmbeddingCache.from_settings(CacheSettings.from_env())
    return _default_cache


async def sweep_periodically(cache: EmbeddingCache, interval_seconds: float) -> None:
    """Remove expired entries every *interval_seconds* until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        removed = cache.clear_expired()
        if removed:
            logger.info("Removed %d expired embedding cache entries", removed)
