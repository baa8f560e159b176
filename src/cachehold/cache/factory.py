"""Cache factory and registry for creating caches from configuration."""

import asyncio
import logging
import re
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from cachehold.cache.base import CacheStore
from cachehold.cache.cache import Cache
from cachehold.cache.disk import DiskStore
from cachehold.cache.exceptions import CacheConfigError, CacheError
from cachehold.cache.memory import MemoryStore
from cachehold.config import CacheConfig, settings

logger = logging.getLogger(__name__)

# Process-wide manager, set up explicitly with init_cache_manager()
_manager: "CacheManager | None" = None


def _resolve_config(
    config: CacheConfig | dict[str, Any] | None,
    overrides: dict[str, Any],
) -> CacheConfig:
    try:
        if isinstance(config, CacheConfig):
            return CacheConfig.model_validate({**config.model_dump(), **overrides})
        return CacheConfig.model_validate({**(config or {}), **overrides})
    except ValidationError as e:
        raise CacheConfigError(f"Invalid cache configuration: {e}") from e


def create_store(config: CacheConfig) -> CacheStore:
    """
    Create the store described by a cache configuration.

    Raises:
        CacheConfigError: If the store type is unknown or a disk store has no dir
    """
    store_type = config.store or settings.default_store

    if store_type == "memory":
        return MemoryStore()

    if store_type == "disk":
        flush_delay = config.flush_delay
        if flush_delay is None:
            flush_delay = settings.flush_delay_seconds

        return DiskStore(
            dir=config.dir,
            single_file=config.single_file,
            encoding=config.encoding,
            flush_delay=flush_delay,
            serialize=config.serialize,
            deserialize=config.deserialize,
            name=config.name,
        )

    raise CacheConfigError(f"Unsupported store type: {store_type}")


def create_cache(
    config: CacheConfig | dict[str, Any] | None = None,
    **overrides: Any,
) -> Cache:
    """
    Create a cache and its store.

    Args:
        config: Cache configuration (model or dict)
        **overrides: Configuration fields overriding ``config``

    Returns:
        Cache instance

    Raises:
        CacheConfigError: If the configuration is invalid
    """
    config = _resolve_config(config, overrides)
    return Cache(
        create_store(config),
        name=config.name,
        time_to_live=config.time_to_live,
        time_to_idle=config.time_to_idle,
        free_delay=config.free_delay,
        read=config.read,
        write=config.write,
    )


def create_memory_cache(**kwargs: Any) -> Cache:
    """Create a cache backed by a MemoryStore."""
    return create_cache(store="memory", **kwargs)


def create_disk_cache(**kwargs: Any) -> Cache:
    """Create a cache backed by a DiskStore (``dir`` is required)."""
    return create_cache(store="disk", **kwargs)


def safe_filename(name: str) -> str:
    """Replace characters that are unsafe in a path segment."""
    return re.sub(r"[^A-Za-z0-9_\-.]", "-", name)


class CacheManager:
    """
    Registry of named caches.

    Disk caches without a ``dir`` are placed in a subdirectory of the
    manager's directory named after the cache.
    """

    def __init__(self, dir: str | Path | None = None) -> None:
        """
        Initialize cache manager.

        Args:
            dir: Base directory for disk caches (defaults to settings.cache_dir)
        """
        self._dir = Path(dir) if dir else settings.cache_dir
        self._caches: dict[str, Cache] = {}

    @property
    def dir(self) -> Path:
        return self._dir

    def get_cache(
        self,
        name: str,
        config: CacheConfig | dict[str, Any] | None = None,
    ) -> Cache:
        """
        Get a cache by name, creating it from ``config`` on first access.

        Args:
            name: Cache name
            config: Configuration used if the cache does not exist yet

        Returns:
            Cache instance
        """
        cache = self._caches.get(name)
        if cache is not None:
            return cache

        config = _resolve_config(config, {})
        updates: dict[str, Any] = {}
        if (config.store or settings.default_store) != "memory" and not config.dir:
            updates["dir"] = self._dir / safe_filename(name)
        if not config.name:
            updates["name"] = name

        cache = create_cache(config, **updates)
        self._caches[name] = cache
        logger.info(f"Created {cache.store.name} cache {name}")
        return cache

    def caches(self) -> list[Cache]:
        """Get all caches created by this manager."""
        return list(self._caches.values())

    async def flush_all(self) -> None:
        """Flush every cache."""
        await asyncio.gather(*(cache.flush() for cache in self._caches.values()))

    async def free_all(self) -> None:
        """Free every cache."""
        await asyncio.gather(*(cache.free() for cache in self._caches.values()))

    async def close(self) -> None:
        """Close every cache and forget them."""
        caches, self._caches = self._caches, {}
        for name, cache in caches.items():
            try:
                await cache.close()
            except Exception as e:
                logger.error(f"Error closing cache {name}: {e}")


def init_cache_manager(dir: str | Path | None = None) -> CacheManager:
    """
    Create the process-wide cache manager.

    Call this during application startup. Calling it again replaces the
    manager without closing the previous one.
    """
    global _manager

    _manager = CacheManager(dir)
    logger.info(f"Initialized cache manager at {_manager.dir}")
    return _manager


def get_cache_manager() -> CacheManager:
    """
    Get the process-wide cache manager.

    Raises:
        CacheError: If init_cache_manager() has not been called
    """
    if _manager is None:
        raise CacheError("Cache manager is not initialized. Call init_cache_manager() first.")
    return _manager


def reset_cache_manager() -> None:
    """
    Forget the process-wide cache manager.

    Useful for testing or when configuration changes.
    """
    global _manager
    _manager = None


async def shutdown_cache_manager() -> None:
    """Close all caches of the process-wide manager and forget it."""
    global _manager

    if _manager is not None:
        await _manager.close()
        _manager = None
        logger.info("Cache manager shutdown complete")
