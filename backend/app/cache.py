from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from app.config import settings
from app.metrics import cache_lookups_total

logger = structlog.get_logger()


class TTLCache:
    """In-process cache of ``key -> (data, timestamp)`` with a TTL and a size cap.

    When more than ``max_entries`` keys are stored, the entries with the
    oldest timestamps are evicted first.  Lookups honour ``CACHE_ENABLED``:
    with caching disabled every ``get`` is a miss and every ``set`` a no-op.
    """

    def __init__(self, name: str, ttl_seconds: int, max_entries: int) -> None:
        self.name = name
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._entries: dict[str, tuple[Any, float]] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Any | None:
        """Return the cached value, or ``None`` when missing, expired, or disabled."""
        if not settings.CACHE_ENABLED:
            return None

        entry = self._entries.get(key)
        if entry is not None:
            data, stored_at = entry
            if time.time() - stored_at < self.ttl_seconds:
                self.hits += 1
                cache_lookups_total.labels(cache=self.name, result="hit").inc()
                logger.debug("cache_hit", cache=self.name, key=key)
                return data
            del self._entries[key]

        self.misses += 1
        cache_lookups_total.labels(cache=self.name, result="miss").inc()
        return None

    def set(self, key: str, data: Any) -> None:
        """Store ``data`` under ``key`` and evict the oldest entries above the size cap."""
        if not settings.CACHE_ENABLED:
            return

        self._entries[key] = (data, time.time())
        overflow = len(self._entries) - self.max_entries
        if overflow > 0:
            oldest = sorted(self._entries, key=lambda k: self._entries[k][1])[:overflow]
            for stale_key in oldest:
                del self._entries[stale_key]
            logger.info("cache_evicted", cache=self.name, evicted=len(oldest))

    async def get_or_fetch(self, key: str, fetch: Callable[[], Awaitable[Any]]) -> tuple[Any, bool]:
        """Return ``(data, cached)``, calling ``fetch`` and storing its result on a miss.

        Args:
            key: Cache key.
            fetch: Zero-argument coroutine function producing the fresh value.
                Exceptions it raises propagate and nothing is stored.

        Returns:
            A tuple of the data and whether it came from the cache.
        """
        cached = self.get(key)
        if cached is not None:
            return cached, True

        data = await fetch()
        self.set(key, data)
        return data, False

    def invalidate(self, key: str | None = None) -> None:
        """Drop one key, or every entry when ``key`` is ``None``."""
        if key is None:
            self._entries.clear()
            logger.info("cache_cleared", cache=self.name)
        else:
            self._entries.pop(key, None)

    def stats(self) -> dict[str, int]:
        return {"entries": len(self._entries), "hits": self.hits, "misses": self.misses}


def make_document_cache_key(document_id: str) -> str:
    return f"document:{document_id.strip()}"
