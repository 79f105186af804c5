"""
Bounded channels connecting a producer task to a consumer task.

A Channel is an asyncio.Queue with an explicit, non-blocking close. The
producer side is always closed exactly once, on completion or on the first
error, so the consumer never waits forever. If the consumer fails or
stops early, the producer is cancelled so it cannot block on a full queue.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from mbz_import.anomalies import Anomaly, Category

T = TypeVar("T")

_CLOSED = object()


class ChannelClosed(Exception):
    """Raised when putting onto a closed channel."""


class Channel(Generic[T]):
    """Fixed-capacity queue with close-once semantics."""

    def __init__(self, maxsize: int):
        if maxsize < 1:
            raise ValueError(f"Channel capacity must be >= 1, got {maxsize}")
        self._queue: asyncio.Queue = asyncio.Queue(maxsize)
        self._closed = False
        self._error: BaseException | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    async def put(self, item: T) -> None:
        """Put an item, waiting while the channel is full."""
        if self._closed:
            raise ChannelClosed("put on closed channel")
        await self._queue.put(item)

    def close(self, error: BaseException | None = None) -> None:
        """
        Close the channel. Safe to call more than once; never blocks.

        Closing with an error makes the consumer's iteration raise
        ChannelClosed once the queued items are drained.
        """
        if self._closed:
            return
        self._closed = True
        self._error = error
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # Consumer sees closed + empty after draining
            pass

    def _end(self) -> None:
        if self._error is not None:
            raise ChannelClosed(f"producer failed: {self._error}") from self._error

    async def __aiter__(self) -> AsyncIterator[T]:
        while True:
            if self._closed and self._queue.empty():
                self._end()
                return
            item = await self._queue.get()
            if item is _CLOSED:
                self._end()
                return
            yield item


@dataclass(frozen=True)
class StageResult:
    """Outcome of both sides of a stage pair."""

    producer_result: Any
    consumer_result: Any
    producer_cancelled: bool = False

    @property
    def failure(self) -> Anomaly | None:
        """
        First anomaly found, producer side first.

        A producer cancelled because the consumer stopped is reported
        through the consumer's failure instead.
        """
        producer = find_anomaly(self.producer_result)
        consumer = find_anomaly(self.consumer_result)
        if producer is not None and not (self.producer_cancelled and consumer is not None):
            return producer
        return consumer


def find_anomaly(result: Any) -> Anomaly | None:
    """Return the anomaly in a result: itself, or the first in a failures list."""
    if isinstance(result, Anomaly):
        return result
    failures = getattr(result, "failures", None)
    if failures:
        return failures[0]
    return None


async def _settle(task: asyncio.Task, entity_type: str | None) -> Any:
    """Await a task, converting its failure into an Anomaly."""
    try:
        return await task
    except asyncio.CancelledError:
        if not task.cancelled():
            raise
        return Anomaly(Category.INTERRUPTED, "cancelled after the other side failed", entity_type)
    except Exception as e:
        return Anomaly.from_exception(e, entity_type=entity_type)


async def run_stage_pair(
    producer: Callable[[Channel], Awaitable[Any]],
    consumer: Callable[[Channel], Awaitable[Any]],
    maxsize: int,
    entity_type: str | None = None,
) -> StageResult:
    """
    Run a producer and a consumer connected by a bounded channel.

    Args:
        producer: Coroutine function filling the channel
        consumer: Coroutine function draining the channel
        maxsize: Channel capacity (backpressure bound)
        entity_type: Reported on anomalies

    Returns:
        StageResult with each side's return value or Anomaly
    """
    channel: Channel = Channel(maxsize)

    async def produce() -> Any:
        try:
            return await producer(channel)
        except BaseException as e:
            channel.close(e)
            raise
        finally:
            channel.close()

    producer_task = asyncio.create_task(produce())
    consumer_task = asyncio.create_task(consumer(channel))

    consumer_result = await _settle(consumer_task, entity_type)
    # consumer stopped before the channel closed: nothing drains it any more
    cancelled = not producer_task.done()
    if cancelled:
        producer_task.cancel()
    producer_result = await _settle(producer_task, entity_type)
    return StageResult(
        producer_result=producer_result,
        consumer_result=consumer_result,
        producer_cancelled=cancelled,
    )
