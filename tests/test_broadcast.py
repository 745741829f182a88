"""Tests for sensorpulse.broadcast -- fan-out channels."""

import asyncio

import pytest

from sensorpulse.broadcast import Broadcaster


class TestFanOut:
    @pytest.mark.asyncio
    async def test_every_subscriber_sees_every_item_in_order(self):
        channel = Broadcaster("test")
        a, b = channel.subscribe(), channel.subscribe()
        for i in range(3):
            await channel.publish(i)
        assert [await a.get() for _ in range(3)] == [0, 1, 2]
        assert [await b.get() for _ in range(3)] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_late_subscriber_misses_earlier_items(self):
        channel = Broadcaster("test")
        await channel.publish("early")
        sub = channel.subscribe()
        await channel.publish("late")
        assert sub.pending() == 1
        assert await sub.get() == "late"

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        channel = Broadcaster("test")
        sub = channel.subscribe()
        sub.unsubscribe()
        await channel.publish(1)
        assert channel.subscriber_count == 0
        assert sub.pending() == 0

    @pytest.mark.asyncio
    async def test_bounded_queue_drops_oldest(self):
        channel = Broadcaster("test", maxsize=2)
        sub = channel.subscribe()
        for i in range(3):
            await channel.publish(i)
        assert [await sub.get(), await sub.get()] == [1, 2]


class TestCallbacks:
    @pytest.mark.asyncio
    async def test_sync_and_async_callbacks(self):
        channel = Broadcaster("test")
        seen_sync, seen_async = [], []

        async def async_cb(item):
            seen_async.append(item)

        channel.add_callback(seen_sync.append)
        channel.add_callback(async_cb)
        await channel.publish("x")
        assert seen_sync == ["x"]
        assert seen_async == ["x"]

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_stop_delivery(self):
        channel = Broadcaster("test")
        seen = []

        def bad(item):
            raise RuntimeError("consumer bug")

        channel.add_callback(bad)
        channel.add_callback(seen.append)
        sub = channel.subscribe()
        await channel.publish(1)
        assert seen == [1]
        assert await sub.get() == 1

    @pytest.mark.asyncio
    async def test_remove_callback(self):
        channel = Broadcaster("test")
        seen = []
        channel.add_callback(seen.append)
        channel.remove_callback(seen.append)
        await channel.publish(1)
        assert seen == []


class TestClose:
    @pytest.mark.asyncio
    async def test_close_ends_iteration_after_pending_items(self):
        channel = Broadcaster("test")
        sub = channel.subscribe()
        await channel.publish(1)
        await channel.publish(2)
        channel.close()
        assert [item async for item in sub] == [1, 2]
        assert sub.closed

    @pytest.mark.asyncio
    async def test_close_wakes_a_waiting_consumer(self):
        channel = Broadcaster("test")
        sub = channel.subscribe()

        async def consume():
            return [item async for item in sub]

        task = asyncio.create_task(consume())
        await asyncio.sleep(0)
        channel.close()
        assert await asyncio.wait_for(task, timeout=1.0) == []

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        channel = Broadcaster("test")
        channel.subscribe()
        channel.close()
        channel.close()
        assert channel.closed
        assert channel.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_publish_after_close_is_dropped(self):
        channel = Broadcaster("test")
        seen = []
        channel.add_callback(seen.append)
        channel.close()
        await channel.publish(1)
        assert seen == []

    @pytest.mark.asyncio
    async def test_subscribe_after_close(self):
        channel = Broadcaster("test")
        channel.close()
        sub = channel.subscribe()
        with pytest.raises(StopAsyncIteration):
            await sub.get()
