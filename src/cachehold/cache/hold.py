"""
Single-flight holds.

A hold marks that a value for a key is being built. Other lookups for the
key wait for the hold to be released and then look the key up again; the
hold itself carries no value.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from cachehold.cache.exceptions import HoldExistsError

logger = logging.getLogger(__name__)


class Hold:
    """A build in progress for one key."""

    def __init__(
        self,
        key: str,
        on_release: Callable[[Hold], None] | None = None,
    ) -> None:
        """
        Initialize a hold.

        Args:
            key: Key being built
            on_release: Called with the hold before waiters are notified
        """
        self.key = key
        self._on_release = on_release
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []
        self._error: BaseException | None = None

    @property
    def released(self) -> bool:
        return self._event.is_set()

    @property
    def error(self) -> BaseException | None:
        """The builder failure the hold was released with, if any."""
        return self._error

    def on_release(self, callback: Callable[[], None]) -> None:
        """
        Register a callback to run after release.

        Callbacks run in registration order. A callback registered after
        release runs immediately.
        """
        if self.released:
            callback()
        else:
            self._callbacks.append(callback)

    async def wait(self) -> None:
        """Wait until the hold is released."""
        await self._event.wait()

    def release(self, error: BaseException | None = None) -> None:
        """
        Release the hold. Calls after the first are no-ops.

        Args:
            error: Builder failure to report to lookups waiting on the hold
        """
        if self.released:
            return

        self._error = error
        if self._on_release is not None:
            self._on_release(self)
        self._event.set()

        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.error(f"Error in hold release callback for {self.key}: {e}")


class PendingRegistry:
    """Per-cache map of key to the hold for its in-progress build."""

    def __init__(self) -> None:
        self._holds: dict[str, Hold] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._holds

    def __len__(self) -> int:
        return len(self._holds)

    def get(self, key: str) -> Hold | None:
        return self._holds.get(key)

    def hold(self, key: str) -> Hold:
        """
        Create the hold for a key.

        Raises:
            HoldExistsError: If the key already has a hold
        """
        if key in self._holds:
            raise HoldExistsError(key)

        hold = Hold(key, on_release=self._release)
        self._holds[key] = hold
        return hold

    def discard(self, key: str) -> Hold | None:
        """
        Drop the marker for a key without releasing its hold.

        The build keeps running and its waiters are still notified when it
        finishes, but the hold is no longer current for the key.
        """
        return self._holds.pop(key, None)

    def clear(self) -> int:
        """Drop all markers without releasing their holds."""
        count = len(self._holds)
        self._holds.clear()
        return count

    def is_current(self, hold: Hold) -> bool:
        """Whether ``hold`` is still the registered hold for its key."""
        return self._holds.get(hold.key) is hold

    def _release(self, hold: Hold) -> None:
        # A newer hold for the same key may have replaced this one.
        if self.is_current(hold):
            del self._holds[hold.key]
