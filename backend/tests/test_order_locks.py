"""Tests for the per-order lock registry."""

import asyncio
import uuid

import pytest

from solar_tracker.core.errors import ConcurrentModificationError


class TestOrderLockRegistry:
    @pytest.mark.asyncio
    async def test_hold_and_release(self, lock_registry):
        order_id = uuid.uuid4()
        async with lock_registry.hold(order_id):
            assert lock_registry.is_locked(order_id)
        assert not lock_registry.is_locked(order_id)

    @pytest.mark.asyncio
    async def test_released_on_error(self, lock_registry):
        order_id = uuid.uuid4()
        with pytest.raises(ValueError):
            async with lock_registry.hold(order_id):
                raise ValueError("boom")
        assert not lock_registry.is_locked(order_id)

    @pytest.mark.asyncio
    async def test_timeout_raises_concurrent_modification(self, lock_registry):
        order_id = uuid.uuid4()
        async with lock_registry.hold(order_id):
            with pytest.raises(ConcurrentModificationError):
                async with lock_registry.hold(order_id, timeout=0.01):
                    pass

    @pytest.mark.asyncio
    async def test_orders_lock_independently(self, lock_registry):
        first, second = uuid.uuid4(), uuid.uuid4()
        async with lock_registry.hold(first):
            async with lock_registry.hold(second, timeout=0.01):
                assert lock_registry.is_locked(second)

    @pytest.mark.asyncio
    async def test_waiters_run_in_turn(self, lock_registry):
        order_id = uuid.uuid4()
        trace = []

        async def worker(name):
            async with lock_registry.hold(order_id):
                trace.append(f"{name}-in")
                await asyncio.sleep(0)
                trace.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert trace == ["a-in", "a-out", "b-in", "b-out"]

    @pytest.mark.asyncio
    async def test_registry_empty_after_release(self, lock_registry):
        for _ in range(100):
            async with lock_registry.hold(uuid.uuid4()):
                pass
        assert len(lock_registry) == 0

    @pytest.mark.asyncio
    async def test_entry_kept_while_waiting(self, lock_registry):
        order_id = uuid.uuid4()
        async with lock_registry.hold(order_id):
            waiter = asyncio.create_task(self._hold_briefly(lock_registry, order_id))
            await asyncio.sleep(0)
            assert len(lock_registry) == 1
        await waiter
        assert len(lock_registry) == 0

    @pytest.mark.asyncio
    async def test_entry_dropped_after_timeout(self, lock_registry):
        order_id = uuid.uuid4()
        async with lock_registry.hold(order_id):
            with pytest.raises(ConcurrentModificationError):
                async with lock_registry.hold(order_id, timeout=0.01):
                    pass
            assert len(lock_registry) == 1
        assert len(lock_registry) == 0

    @staticmethod
    async def _hold_briefly(registry, order_id):
        async with registry.hold(order_id):
            await asyncio.sleep(0)
