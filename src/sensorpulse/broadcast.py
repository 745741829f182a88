"""Multi-consumer broadcast channel.

Every subscriber gets its own ``asyncio.Queue``; a published item is put on
all of them in publish order, then handed to any registered callbacks.
Closing the channel ends every subscription's iteration.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CLOSED = object()


class Subscription(Generic[T]):
    """Async-iterable view of one subscriber queue."""

    def __init__(self, channel: "Broadcaster[T]", maxsize: int = 0) -> None:
        self._channel = channel
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def _offer(self, item: Any) -> None:
        if self._queue.maxsize and self._queue.full():
            # Slow consumer: drop its oldest pending item
            self._queue.get_nowait()
            logger.warning("Subscriber on %s lagging, dropped oldest item", self._channel.name)
        self._queue.put_nowait(item)

    def pending(self) -> int:
        return self._queue.qsize()

    async def get(self) -> T:
        """Next item; raises ``StopAsyncIteration`` once the channel is closed."""
        if self.closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            self.closed = True
            raise StopAsyncIteration
        return item

    def __aiter__(self) -> "Subscription[T]":
        return self

    async def __anext__(self) -> T:
        return await self.get()

    def unsubscribe(self) -> None:
        self._channel._remove(self)
        self.closed = True


class Broadcaster(Generic[T]):
    """Fan-out of one item stream to any number of subscribers and callbacks."""

    def __init__(self, name: str, maxsize: int = 0) -> None:
        self.name = name
        self.maxsize = maxsize
        self._subscriptions: list[Subscription[T]] = []
        self._callbacks: list[Callable[[T], Any]] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self) -> Subscription[T]:
        sub: Subscription[T] = Subscription(self, self.maxsize)
        if self._closed:
            sub._queue.put_nowait(_CLOSED)
        else:
            self._subscriptions.append(sub)
            logger.debug("New subscriber on %s (%d total)", self.name, len(self._subscriptions))
        return sub

    def _remove(self, sub: Subscription[T]) -> None:
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)

    def add_callback(self, callback: Callable[[T], Any]) -> None:
        """Register a sync or async callable invoked for every item."""
        self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[T], Any]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    async def publish(self, item: T) -> None:
        if self._closed:
            logger.debug("Dropping item published on closed channel %s", self.name)
            return
        for sub in list(self._subscriptions):
            sub._offer(item)
        for callback in list(self._callbacks):
            try:
                result = callback(item)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("Error in %s callback: %s", self.name, e)

    def close(self) -> None:
        """End every subscription; idempotent."""
        if self._closed:
            return
        self._closed = True
        for sub in self._subscriptions:
            if sub._queue.maxsize and sub._queue.full():
                sub._queue.get_nowait()
            sub._queue.put_nowait(_CLOSED)
        self._subscriptions.clear()
        self._callbacks.clear()
        logger.debug("Closed channel %s", self.name)
