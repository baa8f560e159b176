"""Abstract base class for cache stores."""

from abc import ABC, abstractmethod
from typing import Any

from cachehold.cache.entry import CacheEntry


class CacheStore(ABC):
    """
    Abstract base class for cache stores.

    A store maps keys to CacheEntry objects. It applies no expiration
    policy of its own; freshness is decided by the Cache that owns it.
    Implement this class to add new storage backends.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """
        Identifier for this store type.

        Returns:
            Store name (e.g., 'memory', 'disk')
        """
        ...

    @abstractmethod
    async def get(self, key: str) -> CacheEntry | None:
        """
        Get an entry from the store.

        Args:
            key: Cache key

        Returns:
            The stored entry, or None if not found
        """
        ...

    @abstractmethod
    async def put(self, key: str, entry: CacheEntry) -> None:
        """
        Store an entry.

        Args:
            key: Cache key
            entry: Entry to store
        """
        ...

    @abstractmethod
    async def remove(self, key: str) -> bool:
        """
        Remove an entry.

        Args:
            key: Cache key

        Returns:
            True if an entry was removed, False if not found
        """
        ...

    @abstractmethod
    async def clear(self) -> int:
        """
        Remove all entries.

        Returns:
            Number of entries removed
        """
        ...

    @abstractmethod
    async def keys(self) -> list[str]:
        """List the keys currently stored."""
        ...

    async def flush(self) -> None:
        """Persist buffered state. Volatile stores have nothing to do."""

    async def free(self) -> None:
        """Drop in-memory state that can be reconstructed later."""

    async def close(self) -> None:
        """Flush and release resources."""
        await self.flush()

    async def health_check(self) -> dict[str, Any]:
        """
        Report store status.

        Returns:
            Dict with health status info
        """
        return {
            "store": self.name,
            "total_entries": len(await self.keys()),
        }
