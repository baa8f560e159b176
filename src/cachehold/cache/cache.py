"""
Cache orchestrator.

Combines a CacheStore with single-flight holds and the expiration policy:
time-to-live, time-to-idle and caller-supplied last-modified versions.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Union

from cachehold.cache.base import CacheStore
from cachehold.cache.entry import CacheEntry
from cachehold.cache.exceptions import InvalidCacheEntryError
from cachehold.cache.hold import Hold, PendingRegistry
from cachehold.cache.streams import DelayedReadStream, StreamSource

logger = logging.getLogger(__name__)

Builder = Callable[..., Union[Any, Awaitable[Any]]]


@dataclass
class BuildContext:
    """
    Passed to builders that take an argument.

    A builder may set ``last_modified`` to record the version of the value
    it produced.
    """

    key: str
    last_modified: Any | None = None


def _accepts_context(builder: Builder) -> bool:
    try:
        parameters = inspect.signature(builder).parameters.values()
    except (TypeError, ValueError):
        return False
    return any(
        p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD, p.VAR_POSITIONAL)
        for p in parameters
    )


class Cache:
    """
    A named cache over a CacheStore.

    Lookups that miss can rebuild the value with a builder. Concurrent
    lookups for a key being built wait for the build instead of starting
    another one, then look the key up again.
    """

    def __init__(
        self,
        store: CacheStore,
        name: str | None = None,
        time_to_live: float = 0,
        time_to_idle: float = 0,
        free_delay: float = 0,
        read: bool = True,
        write: bool = True,
    ) -> None:
        """
        Initialize cache.

        Args:
            store: Backing store
            name: Name used in log messages
            time_to_live: Max seconds since creation (0 = unbounded)
            time_to_idle: Max seconds since last access (0 = unbounded)
            free_delay: Seconds of inactivity before the store is freed (0 = never)
            read: Serve lookups from the store
            write: Write to the store
        """
        self.store = store
        self.name = name
        self.time_to_live = max(time_to_live or 0, 0)
        self.time_to_idle = max(time_to_idle or 0, 0)
        self.free_delay = max(free_delay or 0, 0)
        self.read = read
        self.write = write

        self._pending = PendingRegistry()
        self._free_handle: asyncio.TimerHandle | None = None
        self._free_task: asyncio.Task | None = None
        self._stats = {
            "hits": 0,
            "misses": 0,
            "builds": 0,
            "build_failures": 0,
            "hold_waits": 0,
        }

    @property
    def _prefix(self) -> str:
        return f"{self.name or '(unnamed)'}:"

    # --- Public API ---

    async def get(
        self,
        key: str,
        builder: Builder | None = None,
        last_modified: Any | None = None,
        rebuild: bool = False,
    ) -> Any | None:
        """
        Get a value, building it if it is missing or stale.

        Args:
            key: Cache key
            builder: Called (sync or async) to produce the value on a miss
            last_modified: Known version; older entries are rebuilt
            rebuild: Build even if a fresh entry exists

        Returns:
            The cached or built value, or None if not found
        """
        if not self.read:
            return None

        logger.debug(f"{self._prefix} Get called. Key: {key}")
        self._schedule_free()

        entry = await self._get_entry(key, builder, last_modified, rebuild)
        if entry is None:
            return None
        return await entry.read_value()

    async def contains(self, key: str, last_modified: Any | None = None) -> bool:
        """Check for a fresh entry without building one."""
        if not self.read:
            return False

        self._schedule_free()
        return await self._get_entry(key, last_modified=last_modified) is not None

    def create_read_stream(
        self,
        key: str,
        builder: Builder | None = None,
        last_modified: Any | None = None,
    ) -> DelayedReadStream:
        """
        Open a stream over a cached value.

        The stream is returned before the lookup completes. If no valid
        entry is found, reading it raises InvalidCacheEntryError.
        """
        if not self.read:
            return DelayedReadStream.failed(_invalid_stream_error(key))

        self._schedule_free()
        return DelayedReadStream(self._open_stream(key, builder, last_modified))

    async def put(self, key: str, value: Any, last_modified: Any | None = None) -> None:
        """
        Store a value.

        A callable value is stored as a reader (a factory of chunk streams).
        A None value removes the key.
        """
        if not self.write:
            return

        logger.debug(f"{self._prefix} Put called. Key: {key}, Value: {value is not None}")
        self._schedule_free()

        entry = self._create_entry(key, value, last_modified)
        if entry is None:
            logger.debug(f"{self._prefix} Removing {key} because put called without a value")
            await self.remove(key)
            return

        await self.store.put(key, entry)

    async def remove(self, key: str) -> bool:
        """Remove a key. A build in progress for it will not store its value."""
        if not self.write:
            return False

        self._schedule_free()
        self._pending.discard(key)
        return await self.store.remove(key)

    async def clear(self) -> int:
        """Remove all entries."""
        if not self.write:
            return 0

        self._schedule_free()
        self._pending.clear()
        return await self.store.clear()

    def hold(self, key: str) -> Hold:
        """Mark a key as being built. Lookups for it wait until release."""
        self._schedule_free()
        return self._pending.hold(key)

    async def flush(self) -> None:
        """Persist buffered store state."""
        await self.store.flush()

    async def free(self) -> None:
        """Drop in-memory store state that can be reconstructed later."""
        await self.store.free()

    async def close(self) -> None:
        """Stop the free timer and close the store."""
        if self._free_handle is not None:
            self._free_handle.cancel()
            self._free_handle = None
        if self._free_task is not None and not self._free_task.done():
            await self._free_task
        await self.store.close()

    def is_entry_valid(self, entry: CacheEntry, last_modified: Any | None = None) -> bool:
        """
        Check entry freshness.

        Idle time is checked first, then age, then version. An entry is
        stale for a known ``last_modified`` if it has no version or an
        older one; equal versions are fresh.
        """
        now = time.time()
        meta = entry.meta

        if self.time_to_idle and meta.last_accessed is not None:
            if now - meta.last_accessed > self.time_to_idle:
                return False

        if self.time_to_live and meta.created is not None:
            if now - meta.created > self.time_to_live:
                return False

        if last_modified is not None:
            if meta.last_modified is None or last_modified > meta.last_modified:
                logger.debug(
                    f"{self._prefix} Cache entry expired for key: {entry.key}, "
                    f"entry last_modified: {meta.last_modified}, last_modified: {last_modified}"
                )
                return False

        return True

    def stats(self) -> dict[str, Any]:
        """Return lookup counters."""
        return {
            "name": self.name,
            "store": self.store.name,
            **self._stats,
            "pending": len(self._pending),
        }

    async def health_check(self) -> dict[str, Any]:
        """Return cache counters with store health."""
        return {
            **self.stats(),
            "read": self.read,
            "write": self.write,
            "store_health": await self.store.health_check(),
        }

    # --- Lookup ---

    async def _get_entry(
        self,
        key: str,
        builder: Builder | None = None,
        last_modified: Any | None = None,
        rebuild: bool = False,
    ) -> CacheEntry | None:
        built: CacheEntry | None = None

        while True:
            hold = self._pending.get(key)
            if hold is not None:
                self._stats["hold_waits"] += 1
                logger.debug(f"{self._prefix} Hold on key. Waiting before lookup. Key: {key}")
                await hold.wait()
                # Lookups without a builder just look again
                if hold.error is not None and builder is not None:
                    raise hold.error
                continue

            entry = await self.store.get(key)

            # A value we just built satisfies the version we asked for
            version = last_modified if built is None else None
            if entry is not None and not self.is_entry_valid(entry, version):
                logger.debug(f"{self._prefix} Cache entry invalid for key: {key}")
                if self.write:
                    await self.store.remove(key)
                entry = None

            if entry is not None and not (rebuild and builder is not None):
                if self.time_to_idle:
                    entry.meta.last_accessed = time.time()
                if built is None:
                    self._stats["hits"] += 1
                return entry

            if built is not None:
                # Removed again after our build was stored
                return built

            if builder is None:
                self._stats["misses"] += 1
                return None

            # The store lookup may have let another build start
            if key in self._pending:
                continue

            self._stats["misses"] += 1
            built, stored = await self._build(key, builder, last_modified)
            if not stored:
                return built
            rebuild = False

    async def _build(
        self,
        key: str,
        builder: Builder,
        last_modified: Any | None,
    ) -> tuple[CacheEntry | None, bool]:
        hold = self._pending.hold(key)
        context = BuildContext(key=key, last_modified=last_modified)
        self._stats["builds"] += 1
        logger.debug(f"{self._prefix} Hold created before invoking builder. Key: {key}")

        try:
            try:
                value = builder(context) if _accepts_context(builder) else builder()
                if inspect.isawaitable(value):
                    value = await value
            except Exception as e:
                self._stats["build_failures"] += 1
                logger.debug(f"{self._prefix} Builder for key {key} failed: {e}")
                hold.release(e)
                raise

            logger.debug(f"{self._prefix} Cache entry builder for key {key} finished.")
            entry = self._create_entry(key, value, context.last_modified)
            stored = entry is not None and self.write and self._pending.is_current(hold)
            if stored:
                await self.store.put(key, entry)
        finally:
            hold.release()

        return entry, stored

    async def _open_stream(
        self,
        key: str,
        builder: Builder | None,
        last_modified: Any | None,
    ) -> StreamSource:
        entry = await self._get_entry(key, builder, last_modified)
        if entry is None:
            raise _invalid_stream_error(key)
        return entry.create_read_stream()

    def _create_entry(self, key: str, value: Any, last_modified: Any | None) -> CacheEntry | None:
        reader = None
        if callable(value):
            reader, value = value, None
        if value is None and reader is None:
            return None

        entry = CacheEntry(key=key, value=value, reader=reader)
        now = time.time()
        if self.time_to_live:
            entry.meta.created = now
        if self.time_to_idle:
            entry.meta.last_accessed = now
        if last_modified is not None:
            entry.meta.last_modified = last_modified
        return entry

    # --- Free scheduling ---

    def _schedule_free(self) -> None:
        if not self.free_delay:
            return

        if self._free_handle is not None:
            self._free_handle.cancel()
        loop = asyncio.get_running_loop()
        self._free_handle = loop.call_later(self.free_delay, self._on_free_timer)

    def _on_free_timer(self) -> None:
        self._free_handle = None
        logger.info(f"{self._prefix} Freeing cache after {self.free_delay}s of inactivity.")
        self._free_task = asyncio.ensure_future(self.store.free())


def _invalid_stream_error(key: str) -> InvalidCacheEntryError:
    return InvalidCacheEntryError(f'Unable to create read stream for "{key}". Invalid cache entry')
