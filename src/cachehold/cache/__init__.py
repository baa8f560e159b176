"""
Cache module: single-flight caching over pluggable stores.

Provides the Cache orchestrator, in-memory and disk stores, and a factory
and registry for creating caches from configuration.
"""

from cachehold.cache.base import CacheStore
from cachehold.cache.cache import BuildContext, Cache
from cachehold.cache.disk import DiskStore
from cachehold.cache.entry import CacheEntry, CacheEntryMeta
from cachehold.cache.exceptions import (
    CacheConfigError,
    CacheError,
    HoldExistsError,
    InvalidCacheEntryError,
)
from cachehold.cache.factory import (
    CacheManager,
    create_cache,
    create_disk_cache,
    create_memory_cache,
    get_cache_manager,
    init_cache_manager,
    reset_cache_manager,
    shutdown_cache_manager,
)
from cachehold.cache.hold import Hold, PendingRegistry
from cachehold.cache.memory import MemoryStore
from cachehold.cache.streams import DelayedReadStream

__all__ = [
    "BuildContext",
    "Cache",
    "CacheConfigError",
    "CacheEntry",
    "CacheEntryMeta",
    "CacheError",
    "CacheManager",
    "CacheStore",
    "DelayedReadStream",
    "DiskStore",
    "Hold",
    "HoldExistsError",
    "InvalidCacheEntryError",
    "MemoryStore",
    "PendingRegistry",
    "create_cache",
    "create_disk_cache",
    "create_memory_cache",
    "get_cache_manager",
    "init_cache_manager",
    "reset_cache_manager",
    "shutdown_cache_manager",
]
