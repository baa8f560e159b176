"""
Helpers for chunk streams.

A stream is an async iterator of ``str`` or ``bytes`` chunks. Values that
are neither (structured objects) travel as a single chunk, mirroring an
object-mode stream.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable, Iterable
from typing import Any, Union

logger = logging.getLogger(__name__)

StreamSource = Union[AsyncIterable[Any], Iterable[Any]]
Reader = Callable[[], StreamSource]


async def stream_from_value(value: Any, encoding: str | None = None) -> AsyncIterator[Any]:
    """
    Create a one-shot stream over a materialized value.

    Args:
        value: Value to emit as the only chunk
        encoding: Decode ``bytes`` values to text with this encoding
    """
    if encoding and isinstance(value, (bytes, bytearray)):
        value = bytes(value).decode(encoding)
    yield value


async def iterate(source: StreamSource) -> AsyncIterator[Any]:
    """Iterate a sync or async chunk source as an async iterator."""
    if isinstance(source, (str, bytes, bytearray)):
        yield source
    elif hasattr(source, "__aiter__"):
        async for chunk in source:
            yield chunk
    else:
        for chunk in source:
            yield chunk


async def drain(source: StreamSource) -> Any:
    """
    Read a stream to the end and join its chunks.

    Returns:
        Joined ``str`` or ``bytes``, the single object chunk for object
        streams, or None for an empty stream
    """
    chunks = [chunk async for chunk in iterate(source)]
    if not chunks:
        return None

    first = chunks[0]
    if isinstance(first, str):
        return "".join(chunks)
    if isinstance(first, (bytes, bytearray, memoryview)):
        return b"".join(chunks)
    if len(chunks) == 1:
        return first
    return chunks


async def _fail(error: BaseException) -> StreamSource:
    raise error


class DelayedReadStream:
    """
    A stream handed to the caller before its source is known.

    The source is an awaitable that resolves to a stream (or raises). It is
    scheduled immediately; errors surface when the stream is iterated.
    """

    def __init__(self, source: Awaitable[StreamSource]) -> None:
        self._source = asyncio.ensure_future(source)
        self._source.add_done_callback(self._on_resolved)
        self._iterator: AsyncIterator[Any] | None = None

    @classmethod
    def failed(cls, error: BaseException) -> DelayedReadStream:
        """Create a stream that raises ``error`` on first read."""
        return cls(_fail(error))

    @property
    def resolved(self) -> bool:
        """Whether the source has settled."""
        return self._source.done()

    def _on_resolved(self, future: asyncio.Future) -> None:
        if future.cancelled():
            return
        # Retrieve the error here so an unread stream does not warn;
        # iteration re-raises it.
        error = future.exception()
        if error is not None:
            logger.debug(f"Delayed stream source failed: {error}")

    def __aiter__(self) -> DelayedReadStream:
        return self

    async def __anext__(self) -> Any:
        if self._iterator is None:
            source = await self._source
            self._iterator = iterate(source)
        return await self._iterator.__anext__()

    async def read(self) -> Any:
        """Read the remaining stream and join its chunks."""
        return await drain(self)

    async def aclose(self) -> None:
        """Close the wrapped stream if it was opened."""
        if self._iterator is not None:
            await self._iterator.aclose()
