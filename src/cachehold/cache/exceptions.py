"""Exceptions raised by the cache layer."""


class CacheError(Exception):
    """Base class for cache errors."""


class InvalidCacheEntryError(CacheError):
    """A cache entry cannot satisfy the requested access mode."""


class HoldExistsError(CacheError):
    """A hold was requested for a key that already has one."""

    def __init__(self, key: str) -> None:
        super().__init__(f'A hold already exists for key "{key}"')
        self.key = key


class CacheConfigError(CacheError, ValueError):
    """Missing or invalid cache configuration."""
