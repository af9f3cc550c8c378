"""Tests for the in-process retry scheduler."""

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest

from hookrelay.services.scheduler import RetryScheduler


class TestSchedule:
    @pytest.mark.asyncio
    async def test_past_time_fires_immediately(self, clock):
        scheduler = RetryScheduler(clock)
        fired = asyncio.Event()
        seen = []

        async def callback(delivery_id):
            seen.append(delivery_id)
            fired.set()

        delivery_id = uuid4()
        scheduler.schedule(delivery_id, clock.now() - timedelta(minutes=1), callback)
        await asyncio.wait_for(fired.wait(), timeout=1)

        assert seen == [delivery_id]
        assert scheduler.scheduled_ids == set()

    @pytest.mark.asyncio
    async def test_future_time_stays_armed(self, clock):
        scheduler = RetryScheduler(clock)
        delivery_id = uuid4()

        scheduler.schedule(delivery_id, clock.now() + timedelta(minutes=5), lambda _: None)
        await asyncio.sleep(0)

        assert scheduler.scheduled_ids == {delivery_id}
        await scheduler.shutdown()
        assert scheduler.scheduled_ids == set()

    @pytest.mark.asyncio
    async def test_reschedule_replaces_timer(self, clock):
        scheduler = RetryScheduler(clock)
        delivery_id = uuid4()
        calls = []

        scheduler.schedule(delivery_id, clock.now() + timedelta(hours=1), calls.append)
        scheduler.schedule(delivery_id, clock.now(), calls.append)
        await asyncio.sleep(0.01)
        await scheduler.drain()

        assert calls == [delivery_id]
        assert scheduler.scheduled_ids == set()

    @pytest.mark.asyncio
    async def test_cancel(self, clock):
        scheduler = RetryScheduler(clock)
        delivery_id = uuid4()
        scheduler.schedule(delivery_id, clock.now() + timedelta(minutes=1), lambda _: None)

        assert scheduler.cancel(delivery_id) is True
        assert scheduler.cancel(delivery_id) is False
        assert scheduler.scheduled_ids == set()


class TestSpawn:
    @pytest.mark.asyncio
    async def test_failures_are_logged_not_raised(self, clock, caplog):
        scheduler = RetryScheduler(clock)

        async def boom():
            raise RuntimeError("kaput")

        scheduler.spawn(boom(), name="boom-task")
        await scheduler.drain()

        assert scheduler.running_tasks == 0
        assert "Background task boom-task failed" in caplog.text

    @pytest.mark.asyncio
    async def test_drain_waits_for_nested_tasks(self, clock):
        scheduler = RetryScheduler(clock)
        done = []

        async def inner():
            await asyncio.sleep(0)
            done.append("inner")

        async def outer():
            scheduler.spawn(inner())
            done.append("outer")

        scheduler.spawn(outer())
        await scheduler.drain()

        assert done == ["outer", "inner"]

    @pytest.mark.asyncio
    async def test_shutdown_cancels_running_tasks(self, clock):
        scheduler = RetryScheduler(clock)
        task = scheduler.spawn(asyncio.sleep(60))

        await scheduler.shutdown()

        assert task.cancelled()
        assert scheduler.running_tasks == 0
