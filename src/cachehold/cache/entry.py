"""Cache entry: a materialized value or a lazily read stream, plus metadata."""

from __future__ import annotations

import inspect
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Union

from cachehold.cache.exceptions import InvalidCacheEntryError
from cachehold.cache.streams import Reader, StreamSource, drain, iterate, stream_from_value

Deserializer = Callable[[Reader], Union[Any, Awaitable[Any]]]


@dataclass
class CacheEntryMeta:
    """
    Metadata persisted with a cache entry.

    Attributes:
        created: Epoch seconds when the entry was stored (only tracked with a TTL)
        last_accessed: Epoch seconds of the last read (only tracked with a TTI)
        last_modified: Caller-supplied version stamp
    """

    created: float | None = None
    last_accessed: float | None = None
    last_modified: Any | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dict, omitting unset fields."""
        data = {
            "created": self.created,
            "lastAccessed": self.last_accessed,
            "lastModified": self.last_modified,
        }
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> CacheEntryMeta:
        data = data or {}
        return cls(
            created=data.get("created"),
            last_accessed=data.get("lastAccessed"),
            last_modified=data.get("lastModified"),
        )

    def idle_seconds(self, now: float | None = None) -> float | None:
        """Seconds since last access, or None if never recorded."""
        if self.last_accessed is None:
            return None
        return (now or time.time()) - self.last_accessed

    def age_seconds(self, now: float | None = None) -> float | None:
        """Seconds since creation, or None if never recorded."""
        if self.created is None:
            return None
        return (now or time.time()) - self.created


@dataclass
class CacheEntry:
    """
    A cached value with metadata.

    Exactly one of ``value`` and ``reader`` is used to produce a stream.
    When ``deserialize`` is set the entry can only be read as a value: the
    hook is applied once and its result replaces ``value``.

    Attributes:
        key: Cache key
        value: Materialized payload (str, bytes or any structured value)
        reader: Zero-argument factory returning a fresh chunk stream
        meta: Expiration and versioning metadata
        deserialize: Optional hook turning a stream factory into a value
        deserialized: False while ``value`` still holds the raw payload
        encoding: Text encoding applied when ``value`` is streamed to ``deserialize``
    """

    key: str
    value: Any = None
    reader: Reader | None = None
    meta: CacheEntryMeta = field(default_factory=CacheEntryMeta)
    deserialize: Deserializer | None = None
    deserialized: bool = True
    encoding: str | None = None

    @property
    def has_payload(self) -> bool:
        """Whether the entry has a value or a reader."""
        return self.value is not None or self.reader is not None

    def create_read_stream(self) -> StreamSource:
        """
        Open a stream over the entry payload.

        Raises:
            InvalidCacheEntryError: If the entry has a deserialize hook, or
                has neither value nor reader
        """
        if self.deserialize is not None:
            raise InvalidCacheEntryError(
                f'A read stream cannot be created for cache entry "{self.key}" with a deserialize hook'
            )

        if self.value is not None:
            return stream_from_value(self.value)
        if self.reader is not None:
            return iterate(self.reader())
        raise InvalidCacheEntryError(f'Cache entry "{self.key}" has neither a value nor a reader')

    async def read_value(self) -> Any:
        """
        Materialize the entry value.

        A reader without a deserialize hook is drained fully; the drained
        result is not kept on the entry.
        """
        if self.deserialize is not None:
            return await self._read_deserialized()

        if self.value is not None:
            return self.value
        return await drain(self.create_read_stream())

    async def _read_deserialized(self) -> Any:
        value = self.value
        if value is not None:
            if self.deserialized:
                return value

            def reader() -> StreamSource:
                return stream_from_value(value, self.encoding)

        elif self.reader is not None:
            reader = self.reader
        else:
            raise InvalidCacheEntryError(f'Cache entry "{self.key}" has neither a value nor a reader')

        result = self.deserialize(reader)
        if inspect.isawaitable(result):
            result = await result

        self.value = result
        self.deserialized = True
        return result
