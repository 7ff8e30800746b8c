"""Per-ledger lock registry tests."""

import asyncio

import pytest

from app.middleware.exceptions import StockLockTimeoutError
from app.utils.locks import LedgerLockRegistry


@pytest.mark.unit
@pytest.mark.asyncio
class TestLedgerLocks:

    async def test_same_ledger_is_serialised(self):
        registry = LedgerLockRegistry()
        events: list[str] = []

        async def worker(name: str):
            async with registry.hold("t1", "p1", 1.0):
                events.append(f"{name}-in")
                await asyncio.sleep(0.01)
                events.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert events in (
            ["a-in", "a-out", "b-in", "b-out"],
            ["b-in", "b-out", "a-in", "a-out"],
        )

    async def test_timeout_raises_ledger_busy(self):
        registry = LedgerLockRegistry()
        async with registry.hold("t1", "p1", 1.0):
            with pytest.raises(StockLockTimeoutError) as exc_info:
                async with registry.hold("t1", "p1", 0.05):
                    pass
        assert exc_info.value.status_code == 409
        assert exc_info.value.details == {"theaterId": "t1", "productId": "p1"}

    async def test_lock_released_after_error(self):
        registry = LedgerLockRegistry()
        with pytest.raises(RuntimeError):
            async with registry.hold("t1", "p1", 1.0):
                raise RuntimeError("boom")
        assert not registry.is_locked("t1", "p1")

    async def test_ledgers_are_independent(self):
        registry = LedgerLockRegistry()
        async with registry.hold("t1", "p1", 1.0):
            async with registry.hold("t1", "p2", 0.05):
                assert registry.is_locked("t1", "p2")

    async def test_idle_ledger_lock_is_dropped(self):
        registry = LedgerLockRegistry()
        async with registry.hold("t1", "p1", 1.0):
            assert registry.active_count == 1
        assert registry.active_count == 0

    async def test_lock_kept_while_waiter_queued(self):
        registry = LedgerLockRegistry()
        entered = asyncio.Event()
        release = asyncio.Event()

        async def holder():
            async with registry.hold("t1", "p1", 1.0):
                entered.set()
                await release.wait()

        async def waiter():
            async with registry.hold("t1", "p1", 1.0):
                assert registry.active_count == 1

        first = asyncio.create_task(holder())
        await entered.wait()
        second = asyncio.create_task(waiter())
        await asyncio.sleep(0)
        release.set()
        await asyncio.gather(first, second)
        assert registry.active_count == 0

    async def test_timed_out_waiter_leaves_holder_lock(self):
        registry = LedgerLockRegistry()
        async with registry.hold("t1", "p1", 1.0):
            with pytest.raises(StockLockTimeoutError):
                async with registry.hold("t1", "p1", 0.05):
                    pass
            assert registry.is_locked("t1", "p1")
        assert registry.active_count == 0
