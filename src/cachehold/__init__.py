"""cachehold - asyncio caching with single-flight rebuilds and disk persistence."""

from cachehold.cache import (
    Cache,
    CacheEntry,
    CacheManager,
    DiskStore,
    MemoryStore,
    create_cache,
    create_disk_cache,
    create_memory_cache,
)
from cachehold.config import CacheConfig

__version__ = "0.1.0"

__all__ = [
    "Cache",
    "CacheConfig",
    "CacheEntry",
    "CacheManager",
    "DiskStore",
    "MemoryStore",
    "create_cache",
    "create_disk_cache",
    "create_memory_cache",
]
