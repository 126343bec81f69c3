"""
Unit tests for services.supervisor.registry module.

Tests:
- MonitorHandle cancellation, task attachment and interruptible wait
- MonitorRegistry insert-if-absent, pop, pop_all and snapshot
- Concurrent add() from many threads registers exactly one handle
"""

import asyncio
import threading

import pytest

from keepalive_monitor.models.target import TargetID
from keepalive_monitor.services.supervisor.registry import MonitorHandle, MonitorRegistry


# ============================================================================
# MonitorHandle
# ============================================================================


class TestMonitorHandle:
    """MonitorHandle cancellation."""

    def test_initial_state(self, target_id):
        handle = MonitorHandle(target_id)
        assert handle.target_id == target_id
        assert handle.cancelled is False
        assert handle.task is None

    def test_cancel_once(self, target_id):
        handle = MonitorHandle(target_id)
        assert handle.cancel() is True
        assert handle.cancel() is False
        assert handle.cancelled is True

    def test_repr(self, target_id):
        assert repr(MonitorHandle(target_id)) == "MonitorHandle(target_id=shop/web, cancelled=False)"

    @pytest.mark.asyncio
    async def test_attach(self, target_id):
        handle = MonitorHandle(target_id)
        task = asyncio.create_task(asyncio.sleep(0))
        handle.attach(task)
        assert handle.task is task
        with pytest.raises(RuntimeError):
            handle.attach(task)
        await task

    @pytest.mark.asyncio
    async def test_wait_times_out(self, target_id):
        handle = MonitorHandle(target_id)
        assert await handle.wait(0.01) is False

    @pytest.mark.asyncio
    async def test_wait_interrupted_by_cancel(self, target_id):
        handle = MonitorHandle(target_id)
        loop = asyncio.get_running_loop()
        loop.call_later(0.05, handle.cancel)

        started = loop.time()
        assert await handle.wait(10.0) is True
        assert loop.time() - started < 5.0

    @pytest.mark.asyncio
    async def test_wait_zero(self, target_id):
        handle = MonitorHandle(target_id)
        assert await handle.wait(0) is False
        handle.cancel()
        assert await handle.wait(0) is True


# ============================================================================
# MonitorRegistry
# ============================================================================


class TestMonitorRegistry:
    """MonitorRegistry operations."""

    def test_empty(self, target_id):
        registry = MonitorRegistry()
        assert len(registry) == 0
        assert target_id not in registry
        assert registry.get(target_id) is None
        assert registry.pop(target_id) is None

    def test_add(self, target_id):
        registry = MonitorRegistry()
        handle = MonitorHandle(target_id)

        assert registry.add(target_id, handle) is True
        assert registry.contains(target_id)
        assert registry.get(target_id) is handle
        assert len(registry) == 1

    def test_add_keeps_existing(self, target_id):
        registry = MonitorRegistry()
        first = MonitorHandle(target_id)
        registry.add(target_id, first)

        assert registry.add(target_id, MonitorHandle(target_id)) is False
        assert registry.get(target_id) is first

    def test_pop(self, target_id):
        registry = MonitorRegistry()
        handle = MonitorHandle(target_id)
        registry.add(target_id, handle)

        assert registry.pop(target_id) is handle
        assert target_id not in registry
        assert registry.pop(target_id) is None

    def test_pop_all(self):
        registry = MonitorRegistry()
        ids = [TargetID("shop", f"web-{i}") for i in range(3)]
        for tid in ids:
            registry.add(tid, MonitorHandle(tid))

        handles = registry.pop_all()

        assert sorted(h.target_id for h in handles) == ids
        assert len(registry) == 0

    def test_snapshot_is_copy(self, target_id):
        registry = MonitorRegistry()
        registry.add(target_id, MonitorHandle(target_id))

        snapshot = registry.snapshot()
        registry.pop(target_id)

        assert target_id in snapshot
        assert target_id not in registry

    def test_concurrent_add_registers_one(self, target_id):
        registry = MonitorRegistry()
        barrier = threading.Barrier(16)
        wins = []

        def add():
            handle = MonitorHandle(target_id)
            barrier.wait()
            if registry.add(target_id, handle):
                wins.append(handle)

        threads = [threading.Thread(target=add) for _ in range(16)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(wins) == 1
        assert registry.get(target_id) is wins[0]
