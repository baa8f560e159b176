"""In-memory cache store implementation."""

import logging

from cachehold.cache.base import CacheStore
from cachehold.cache.entry import CacheEntry

logger = logging.getLogger(__name__)


class MemoryStore(CacheStore):
    """
    In-memory cache store using a simple dictionary.

    Best for:
    - Single-process caches
    - Development and testing
    - Values that are cheap to rebuild after a restart

    Limitations:
    - Lost on restart
    - Grows with memory usage (no eviction)
    """

    def __init__(self) -> None:
        self._store: dict[str, CacheEntry] = {}

    @property
    def name(self) -> str:
        return "memory"

    async def get(self, key: str) -> CacheEntry | None:
        return self._store.get(key)

    async def put(self, key: str, entry: CacheEntry) -> None:
        self._store[key] = entry

    async def remove(self, key: str) -> bool:
        return self._store.pop(key, None) is not None

    async def clear(self) -> int:
        count = len(self._store)
        self._store.clear()
        if count:
            logger.debug(f"Cleared {count} in-memory cache entries")
        return count

    async def keys(self) -> list[str]:
        return list(self._store)

    def size(self) -> int:
        """Get current number of entries (sync method for convenience)."""
        return len(self._store)
