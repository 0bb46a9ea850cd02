"""Tests for the in-flight registry and the deferred retry scheduler."""

import asyncio

import pytest

from workflow.scheduler import InFlightRegistry, RetryScheduler


@pytest.mark.unit
class TestInFlightRegistry:
    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            InFlightRegistry(0)

    @pytest.mark.asyncio
    async def test_acquire_up_to_capacity(self):
        registry = InFlightRegistry(2)
        assert await registry.try_acquire("a")
        assert await registry.try_acquire("b")
        assert not await registry.try_acquire("c")
        assert registry.snapshot() == ["a", "b"]

    @pytest.mark.asyncio
    async def test_reacquire_is_idempotent(self):
        registry = InFlightRegistry(1)
        assert await registry.try_acquire("a")
        assert await registry.try_acquire("a")
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_release_frees_slot(self):
        registry = InFlightRegistry(1)
        await registry.try_acquire("a")
        assert await registry.release("a") is True
        assert await registry.release("a") is False
        assert await registry.try_acquire("b")

    @pytest.mark.asyncio
    async def test_register_ignores_capacity(self):
        registry = InFlightRegistry(1)
        await registry.try_acquire("a")
        await registry.register("b")
        assert "b" in registry
        assert len(registry) == 2

    @pytest.mark.asyncio
    async def test_concurrent_acquires_respect_capacity(self):
        registry = InFlightRegistry(3)
        results = await asyncio.gather(*(registry.try_acquire(f"e{i}") for i in range(10)))
        assert sum(results) == 3


@pytest.mark.unit
class TestRetryScheduler:
    @pytest.mark.asyncio
    async def test_runs_callback_after_delay(self):
        scheduler = RetryScheduler()
        ran = []

        async def callback():
            ran.append("x")

        handle = scheduler.schedule("e1", "n1", 0, callback)
        assert scheduler.pending("e1") == [handle]

        await scheduler.join()

        assert ran == ["x"]
        assert handle.fired is True
        assert scheduler.pending() == []

    @pytest.mark.asyncio
    async def test_cancel_for_only_touches_one_execution(self):
        scheduler = RetryScheduler()
        ran = []

        async def callback():
            ran.append("x")

        slow = scheduler.schedule("e1", "n1", 30, callback)
        other = scheduler.schedule("e2", "n1", 0, callback)

        assert scheduler.cancel_for("e1") == 1
        await asyncio.gather(slow.task, other.task, return_exceptions=True)

        assert slow.task.cancelled()
        assert ran == ["x"]

    @pytest.mark.asyncio
    async def test_fired_retry_is_not_cancelled(self):
        scheduler = RetryScheduler()
        started = asyncio.Event()
        release = asyncio.Event()

        async def callback():
            started.set()
            await release.wait()

        handle = scheduler.schedule("e1", "n1", 0, callback)
        await asyncio.wait_for(started.wait(), 2)

        assert handle.cancel() is False
        assert scheduler.cancel_for("e1") == 0

        release.set()
        await scheduler.join()
        assert not handle.task.cancelled()

    @pytest.mark.asyncio
    async def test_callback_error_is_logged_not_raised(self):
        scheduler = RetryScheduler()

        async def callback():
            raise RuntimeError("boom")

        handle = scheduler.schedule("e1", "n1", 0, callback)
        await scheduler.join()
        assert handle.task.exception() is None

    @pytest.mark.asyncio
    async def test_join_waits_for_chained_retries(self):
        scheduler = RetryScheduler()
        ran = []

        async def second():
            ran.append(2)

        async def first():
            ran.append(1)
            scheduler.schedule("e1", "n1", 0, second)

        scheduler.schedule("e1", "n1", 0, first)
        await scheduler.join()
        assert ran == [1, 2]

    @pytest.mark.asyncio
    async def test_cancel_all(self):
        scheduler = RetryScheduler()

        async def callback():
            pass

        scheduler.schedule("e1", "n1", 30, callback)
        scheduler.schedule("e2", "n2", 30, callback)
        assert scheduler.cancel_all() == 2
