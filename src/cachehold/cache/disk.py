"""
Disk cache store implementation.

Entries are persisted in one of two layouts:

- sharded: one file per key at ``<dir>/<sha256[0]>/<sha256>.cache``
- aggregated (``single_file=True``): one JSON map at ``<dir>/cache.json``

Both layouts keep the entries they have seen in memory and write changes
back after ``flush_delay`` seconds without further mutations. Disk errors
never reach the caller: failed reads are misses and failed writes are
logged.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from functools import partial
from pathlib import Path
from typing import Any, Union

import aiofiles
import aiofiles.os

from cachehold.cache.base import CacheStore
from cachehold.cache.entry import CacheEntry, CacheEntryMeta, Deserializer
from cachehold.cache.exceptions import CacheConfigError
from cachehold.cache.streams import drain

logger = logging.getLogger(__name__)

Serializer = Callable[[Any], Union[str, bytes, Awaitable[Union[str, bytes]]]]

SINGLE_FILE_NAME = "cache.json"
ENTRY_FILE_SUFFIX = ".cache"


class DiskStore(CacheStore):
    """
    Disk-backed cache store.

    Best for:
    - Values that are expensive to rebuild after a restart
    - Large text or binary payloads produced by readers

    Entries read from disk stay in memory until free() drops them, so a
    long-lived store should be freed periodically (see Cache free_delay).

    Operations on one key are ordered: a read waits for a pending write of
    the key, a write waits for a pending read, concurrent reads share one
    file read, and writes run in arrival order.
    """

    def __init__(
        self,
        dir: str | Path | None,
        single_file: bool = False,
        encoding: str | None = "utf-8",
        flush_delay: float | None = 1.0,
        serialize: Serializer | None = None,
        deserialize: Deserializer | None = None,
        name: str | None = None,
    ) -> None:
        """
        Initialize disk store.

        Args:
            dir: Directory holding the cache files (required)
            single_file: Keep all entries in one ``cache.json`` file
            encoding: Text encoding for string payloads
            flush_delay: Seconds of quiet before changes are written
                (None or <= 0 = only on explicit flush)
            serialize: Hook turning a value into its on-disk ``str``/``bytes``
            deserialize: Hook turning a stream factory back into a value

        Raises:
            CacheConfigError: If ``dir`` is missing
        """
        if not dir:
            raise CacheConfigError('DiskStore requires a "dir"')

        self._dir = Path(dir)
        self._single_file = single_file
        self._encoding = encoding
        self._flush_delay = flush_delay
        self._serialize = serialize
        self._deserialize = deserialize
        self._label = name or str(self._dir)

        self._entries: dict[str, CacheEntry] = {}
        self._dirty: set[str] = set()
        self._removed: set[str] = set()
        self._reads: dict[str, asyncio.Task] = {}
        self._writes: dict[str, asyncio.Task] = {}
        self._flush_handle: asyncio.TimerHandle | None = None
        self._flush_task: asyncio.Task | None = None
        self._write_count = 0

        # Aggregated layout
        self._file = self._dir / SINGLE_FILE_NAME
        self._loaded = False
        self._load_task: asyncio.Task | None = None
        self._file_lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return "disk"

    @property
    def dir(self) -> Path:
        return self._dir

    @property
    def single_file(self) -> bool:
        return self._single_file

    @property
    def write_count(self) -> int:
        """Number of files written since the store was created."""
        return self._write_count

    def key_file(self, key: str) -> Path:
        """Get the sharded file path for a key."""
        checksum = hashlib.sha256(str(key).encode("utf-8")).hexdigest()
        return self._dir / checksum[0] / f"{checksum}{ENTRY_FILE_SUFFIX}"

    # --- Store operations ---

    async def get(self, key: str) -> CacheEntry | None:
        """Get an entry, reading it from disk if it is not in memory."""
        if self._single_file:
            await self._ensure_loaded()
            return self._entries.get(key)

        entry = self._entries.get(key)
        if entry is not None:
            return entry
        if key in self._removed:
            return None

        # Never read a file while it is being written
        while (write := self._writes.get(key)) is not None:
            await write
        entry = self._entries.get(key)
        if entry is not None:
            return entry

        read = self._reads.get(key)
        if read is None:
            read = asyncio.ensure_future(self._read_entry_file(key))
            self._reads[key] = read
            read.add_done_callback(partial(_forget_task, self._reads, key))

        entry = await asyncio.shield(read)
        if key in self._removed:
            return None
        return self._entries.get(key, entry)

    async def put(self, key: str, entry: CacheEntry) -> None:
        """Store an entry and schedule it to be written."""
        if self._single_file:
            await self._ensure_loaded()
        else:
            read = self._reads.get(key)
            if read is not None:
                await asyncio.shield(read)

        self._entries[key] = entry
        self._removed.discard(key)
        self._dirty.add(key)
        logger.debug(f"{self._label}: Added value for key {key}")
        self._schedule_flush()

    async def remove(self, key: str) -> bool:
        """Remove an entry and schedule its removal from disk."""
        existed = await self.get(key) is not None

        self._entries.pop(key, None)
        if self._single_file:
            self._dirty.add(key)
        else:
            self._dirty.discard(key)
            self._removed.add(key)
        self._schedule_flush()
        return existed

    async def clear(self) -> int:
        """Remove all entries."""
        keys = await self.keys()

        self._entries.clear()
        if self._single_file:
            self._dirty.update(keys)
        else:
            self._dirty.clear()
            self._removed.update(keys)
        self._schedule_flush()
        return len(keys)

    async def keys(self) -> list[str]:
        """List stored keys, including entries only present on disk."""
        if self._single_file:
            await self._ensure_loaded()
            return list(self._entries)

        keys = dict.fromkeys(self._entries)
        for path in await self._entry_files():
            key = await self._read_header_key(path)
            if key is not None and key not in self._removed:
                keys[key] = None
        return list(keys)

    async def flush(self) -> None:
        """Write all pending changes and wait for in-flight writes."""
        self._cancel_flush_timer()

        if self._single_file:
            await self._write_single_file()
            return

        dirty, self._dirty = self._dirty, set()
        removed, self._removed = self._removed, set()

        for key in dirty:
            entry = self._entries.get(key)
            if entry is not None:
                self._enqueue_write(key, partial(self._write_entry_file, key, entry))
        for key in removed:
            self._enqueue_write(key, partial(self._delete_entry_file, key))

        pending = list(self._writes.values())
        if pending:
            await asyncio.gather(*pending)

    async def free(self) -> None:
        """Flush, then drop the in-memory entries; they are re-read on demand."""
        await self.flush()

        if self._dirty:
            logger.debug(f"{self._label}: Changes arrived while flushing, skipping free")
            return

        count = len(self._entries)
        self._entries = {}
        if self._single_file:
            self._loaded = False
        logger.info(f"{self._label}: Freed {count} in-memory cache entries")

    async def close(self) -> None:
        """Write pending changes and stop the flush timer."""
        await self.flush()
        if self._flush_task is not None and not self._flush_task.done():
            await self._flush_task
        self._flush_task = None

    async def health_check(self) -> dict[str, Any]:
        """Return health status with store statistics."""
        return {
            "store": self.name,
            "layout": "single_file" if self._single_file else "sharded",
            "dir": str(self._dir),
            "total_entries": len(await self.keys()),
            "cached_entries": len(self._entries),
            "pending_changes": len(self._dirty) + len(self._removed),
            "writes": self._write_count,
        }

    # --- Flush scheduling ---

    def _schedule_flush(self) -> None:
        if not self._flush_delay or self._flush_delay <= 0:
            return

        self._cancel_flush_timer()
        loop = asyncio.get_running_loop()
        self._flush_handle = loop.call_later(self._flush_delay, self._on_flush_timer)

    def _cancel_flush_timer(self) -> None:
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None

    def _on_flush_timer(self) -> None:
        self._flush_handle = None
        self._flush_task = asyncio.ensure_future(self.flush())

    # --- Payload encoding ---

    async def _encode(self, entry: CacheEntry) -> tuple[str, bool, Any]:
        """
        Get the on-disk form of an entry.

        Returns:
            Tuple of payload type ('str', 'bytes' or 'json'), whether the
            payload is in serialized form, and the payload
        """
        if entry.value is None and entry.reader is not None:
            payload = await drain(entry.reader())
            serialized = self._deserialize is not None
        elif not entry.deserialized:
            # Loaded from disk and never read: still in serialized form
            payload = entry.value
            serialized = True
        elif self._serialize is not None:
            payload = self._serialize(entry.value)
            if inspect.isawaitable(payload):
                payload = await payload
            serialized = True
        else:
            payload = entry.value
            serialized = False

        if isinstance(payload, str):
            kind = "str"
        elif isinstance(payload, (bytes, bytearray, memoryview)):
            kind = "bytes"
            payload = bytes(payload)
        elif serialized:
            raise TypeError(f"Serialized payload for {entry.key} must be str or bytes")
        else:
            kind = "json"
        return kind, serialized, payload

    def _decode(self, key: str, meta: dict[str, Any] | None, serialized: bool, value: Any) -> CacheEntry | None:
        if value is None:
            return None

        entry = CacheEntry(key=key, value=value, meta=CacheEntryMeta.from_dict(meta))
        if serialized and self._deserialize is not None:
            # Text payloads are already decoded; bytes reach the hook as bytes
            entry.deserialize = self._deserialize
            entry.deserialized = False
        return entry

    def _text_encoding(self) -> str:
        return self._encoding or "utf-8"

    # --- Sharded layout ---

    def _enqueue_write(self, key: str, operation: Callable[[], Awaitable[None]]) -> asyncio.Task:
        previous = self._writes.get(key)
        read = self._reads.get(key)

        async def run() -> None:
            if previous is not None:
                await previous
            if read is not None:
                await read
            await operation()

        task = asyncio.ensure_future(run())
        self._writes[key] = task
        task.add_done_callback(partial(_forget_task, self._writes, key))
        return task

    async def _read_entry_file(self, key: str) -> CacheEntry | None:
        path = self.key_file(key)
        try:
            async with aiofiles.open(path, "rb") as f:
                data = await f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"{self._label}: Failed to read cache file {path}: {e}")
            return None

        try:
            header_line, payload = data.split(b"\n", 1)
            header = json.loads(header_line)
            if header.get("key") != key:
                return None
            kind = header.get("type")
            if kind == "str":
                value: Any = payload.decode(self._text_encoding())
            elif kind == "bytes":
                value = payload
            else:
                value = json.loads(payload)
            entry = self._decode(key, header.get("meta"), bool(header.get("serialized")), value)
        except (ValueError, AttributeError) as e:
            logger.warning(f"{self._label}: Ignoring corrupt cache file {path}: {e}")
            return None

        if entry is not None and key not in self._entries and key not in self._removed:
            self._entries[key] = entry
        logger.debug(f"{self._label}: Read {key} from {path}")
        return entry

    async def _entry_files(self) -> list[Path]:
        try:
            shards = sorted(await aiofiles.os.listdir(self._dir))
        except FileNotFoundError:
            return []
        except OSError as e:
            logger.warning(f"{self._label}: Failed to list cache directory {self._dir}: {e}")
            return []

        paths = []
        for shard in shards:
            shard_dir = self._dir / shard
            if not await aiofiles.os.path.isdir(shard_dir):
                continue
            for name in sorted(await aiofiles.os.listdir(shard_dir)):
                if name.endswith(ENTRY_FILE_SUFFIX):
                    paths.append(shard_dir / name)
        return paths

    async def _read_header_key(self, path: Path) -> str | None:
        try:
            async with aiofiles.open(path, "rb") as f:
                header = json.loads(await f.readline())
            return header.get("key")
        except (OSError, ValueError, AttributeError) as e:
            logger.debug(f"{self._label}: Skipping unreadable cache file {path}: {e}")
            return None

    async def _write_entry_file(self, key: str, entry: CacheEntry) -> None:
        path = self.key_file(key)
        try:
            kind, serialized, payload = await self._encode(entry)
            header = {
                "key": key,
                "meta": entry.meta.to_dict(),
                "type": kind,
                "serialized": serialized,
            }
            if kind == "str":
                body = payload.encode(self._text_encoding())
            elif kind == "bytes":
                body = payload
            else:
                body = json.dumps(payload).encode("utf-8")

            await aiofiles.os.makedirs(path.parent, exist_ok=True)
            tmp_path = path.with_suffix(".tmp")
            async with aiofiles.open(tmp_path, "wb") as f:
                await f.write(json.dumps(header).encode("utf-8") + b"\n" + body)
            await aiofiles.os.replace(tmp_path, path)
            self._write_count += 1
            logger.debug(f"{self._label}: Wrote {key} to {path}")
        except Exception as e:
            logger.error(f"{self._label}: Failed to write cache entry {key} to {path}: {e}")

    async def _delete_entry_file(self, key: str) -> None:
        path = self.key_file(key)
        try:
            await aiofiles.os.remove(path)
            logger.debug(f"{self._label}: Deleted {path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"{self._label}: Failed to delete cache file {path}: {e}")

    # --- Aggregated layout ---

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        if self._load_task is None:
            self._load_task = asyncio.ensure_future(self._load_single_file())
        await asyncio.shield(self._load_task)

    async def _load_single_file(self) -> None:
        entries: dict[str, CacheEntry] = {}
        try:
            async with self._file_lock:
                async with aiofiles.open(self._file, "r", encoding="utf-8") as f:
                    data = await f.read()
            for key, record in json.loads(data).items():
                value = record.get("value")
                if record.get("type") == "bytes" and value is not None:
                    value = base64.b64decode(value)
                entry = self._decode(key, record.get("meta"), bool(record.get("serialized")), value)
                if entry is not None:
                    entries[key] = entry
            logger.debug(f"{self._label}: Loaded {len(entries)} entries from {self._file}")
        except FileNotFoundError:
            pass
        except (OSError, ValueError, AttributeError) as e:
            logger.warning(f"{self._label}: Ignoring unreadable cache file {self._file}: {e}")

        self._entries = entries
        self._loaded = True
        self._load_task = None

    async def _write_single_file(self) -> None:
        async with self._file_lock:
            if not self._dirty:
                return
            touched, self._dirty = self._dirty, set()
            snapshot = dict(self._entries)

            logger.info(f"{self._label}: Persisting cache to file {self._file}...")
            records = []
            for key, entry in snapshot.items():
                try:
                    records.append(f"{json.dumps(key)}: {await self._encode_record(entry)}")
                except Exception as e:
                    # Skip the entry; the others are still written
                    logger.error(f"{self._label}: Failed to encode cache entry {key}: {e}")

            try:
                await aiofiles.os.makedirs(self._dir, exist_ok=True)
                tmp_path = self._file.with_suffix(".tmp")
                async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                    await f.write("{" + ", ".join(records) + "}")
                await aiofiles.os.replace(tmp_path, self._file)
                self._write_count += 1
                logger.info(f"{self._label}: Cache written to disk: {self._file}")
            except Exception as e:
                # Keep the changes pending for the next flush
                self._dirty |= touched
                logger.error(f"{self._label}: Error while persisting cache to file {self._file}: {e}")

    async def _encode_record(self, entry: CacheEntry) -> str:
        """Get the ``cache.json`` record of an entry as JSON text."""
        kind, serialized, payload = await self._encode(entry)
        if kind == "bytes":
            payload = base64.b64encode(payload).decode("ascii")
        return json.dumps({
            "meta": entry.meta.to_dict(),
            "type": kind,
            "serialized": serialized,
            "value": payload,
        })


def _forget_task(tasks: dict[str, asyncio.Task], key: str, task: asyncio.Task) -> None:
    if tasks.get(key) is task:
        del tasks[key]
