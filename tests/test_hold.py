"""Tests for single-flight holds."""

import asyncio

import pytest

from cachehold.cache.exceptions import HoldExistsError
from cachehold.cache.hold import Hold, PendingRegistry


class TestHold:
    """Tests for Hold."""

    @pytest.mark.asyncio
    async def test_callbacks_run_in_order(self) -> None:
        """Test release notifies callbacks in registration order."""
        hold = Hold("k")
        calls = []
        hold.on_release(lambda: calls.append(1))
        hold.on_release(lambda: calls.append(2))
        hold.on_release(lambda: calls.append(3))

        hold.release()

        assert calls == [1, 2, 3]
        assert hold.released is True

    @pytest.mark.asyncio
    async def test_release_is_idempotent(self) -> None:
        """Test releasing twice notifies once."""
        hold = Hold("k")
        calls = []
        hold.on_release(lambda: calls.append("done"))

        hold.release()
        hold.release()

        assert calls == ["done"]

    @pytest.mark.asyncio
    async def test_callback_after_release_runs_immediately(self) -> None:
        """Test late callbacks still run."""
        hold = Hold("k")
        hold.release()

        calls = []
        hold.on_release(lambda: calls.append("late"))
        assert calls == ["late"]

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_stop_others(self) -> None:
        """Test one failing callback does not block the rest."""
        hold = Hold("k")
        calls = []

        def fail():
            raise RuntimeError("callback failed")

        hold.on_release(fail)
        hold.on_release(lambda: calls.append("ok"))
        hold.release()

        assert calls == ["ok"]

    @pytest.mark.asyncio
    async def test_wait(self) -> None:
        """Test waiters resume after release."""
        hold = Hold("k")
        waiter = asyncio.ensure_future(hold.wait())
        await asyncio.sleep(0)
        assert not waiter.done()

        hold.release()
        await asyncio.wait_for(waiter, timeout=1)

    @pytest.mark.asyncio
    async def test_release_with_error(self) -> None:
        """Test a build failure is kept on the hold."""
        hold = Hold("k")
        error = ValueError("boom")
        hold.release(error)
        hold.release()

        assert hold.error is error


class TestPendingRegistry:
    """Tests for PendingRegistry."""

    @pytest.mark.asyncio
    async def test_hold_and_release(self) -> None:
        """Test release clears the pending marker."""
        registry = PendingRegistry()
        hold = registry.hold("k")

        assert "k" in registry
        assert registry.get("k") is hold
        assert len(registry) == 1

        hold.release()

        assert "k" not in registry
        assert registry.get("k") is None

    @pytest.mark.asyncio
    async def test_one_hold_per_key(self) -> None:
        """Test a second hold for a key is rejected."""
        registry = PendingRegistry()
        registry.hold("k")

        with pytest.raises(HoldExistsError):
            registry.hold("k")

        registry.hold("other")
        assert len(registry) == 2

    @pytest.mark.asyncio
    async def test_discarded_hold_does_not_remove_newer(self) -> None:
        """Test releasing a replaced hold keeps the newer one."""
        registry = PendingRegistry()
        old = registry.hold("k")

        assert registry.discard("k") is old
        assert registry.is_current(old) is False

        new = registry.hold("k")
        old.release()

        assert registry.get("k") is new
        assert old.released is True
        assert new.released is False

    @pytest.mark.asyncio
    async def test_clear(self) -> None:
        """Test clear drops all markers."""
        registry = PendingRegistry()
        registry.hold("a")
        registry.hold("b")

        assert registry.clear() == 2
        assert len(registry) == 0
