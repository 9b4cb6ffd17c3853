"""Distribution hub: holds the current reading and fans it out to consumers."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Protocol

from .errors import LogWriteFailure, SubscriptionClosed
from .reading import Reading

logger = logging.getLogger(__name__)

_CLOSED = object()


class LogSink(Protocol):
    async def write(self, reading: Reading) -> None:
        """Store one reading; raises LogWriteFailure on failure."""

    async def close(self) -> None: ...


class Subscription:
    """Bounded delivery queue of one push consumer.

    When full, the oldest pending reading is dropped so the newest is kept.
    """

    def __init__(self, maxsize: int = 16):
        if maxsize < 1:
            raise ValueError("Subscription queue size must be at least 1")
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def _offer(self, item: object) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            if item is not _CLOSED:
                self.dropped += 1
                logger.debug("Consumer overflow, dropped oldest reading (%d total)", self.dropped)
        self._queue.put_nowait(item)

    def _close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._offer(_CLOSED)

    async def get(self) -> Reading:
        """Wait for the next reading.

        Raises:
            SubscriptionClosed: The subscription was removed from the hub
        """
        if self._closed and self._queue.empty():
            raise SubscriptionClosed
        item = await self._queue.get()
        if item is _CLOSED:
            raise SubscriptionClosed
        return item

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> Reading:
        try:
            return await self.get()
        except SubscriptionClosed:
            raise StopAsyncIteration from None


class Hub:
    """Single source of truth for the latest reading.

    ``publish``, ``subscribe``, ``unsubscribe`` and ``query`` never block
    and never raise; slow or failing consumers only affect themselves.
    """

    def __init__(
        self,
        log_sink: LogSink | None = None,
        queue_size: int = 16,
        log_flush_timeout: float = 1.0,
    ):
        self._snapshot = Reading.disconnected()
        self._subscriptions: set[Subscription] = set()
        self._queue_size = queue_size
        self._log_sink = log_sink
        self._log_queue: asyncio.Queue[Reading] = asyncio.Queue()
        self._log_flush_timeout = log_flush_timeout
        self._log_task: asyncio.Task | None = None

    def publish(self, reading: Reading) -> None:
        self._snapshot = reading
        for subscription in list(self._subscriptions):
            subscription._offer(reading)
        if self._log_sink is not None:
            self._log_queue.put_nowait(reading)

    def query(self) -> Reading:
        return self._snapshot

    def subscribe(self) -> tuple[Subscription, Reading]:
        """Register a push consumer; returns it together with the current snapshot."""
        subscription = Subscription(self._queue_size)
        self._subscriptions.add(subscription)
        logger.debug("Subscriber added (%d total)", len(self._subscriptions))
        return subscription, self._snapshot

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.discard(subscription)
            logger.debug("Subscriber removed (%d total)", len(self._subscriptions))
        subscription._close()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def _log_loop(self, sink: LogSink) -> None:
        while True:
            reading = await self._log_queue.get()
            try:
                await sink.write(reading)
            except LogWriteFailure as e:
                logger.error("Log write failed: %s", e)
            except Exception:
                logger.exception("Unexpected error in log sink")
            finally:
                self._log_queue.task_done()

    def start(self) -> None:
        """Start forwarding published readings to the log sink."""
        if self._log_sink is not None and self._log_task is None:
            self._log_task = asyncio.create_task(self._log_loop(self._log_sink))

    async def stop(self) -> None:
        """Flush pending log records (bounded), then close sink and subscriptions."""
        if self._log_task is not None:
            try:
                await asyncio.wait_for(self._log_queue.join(), timeout=self._log_flush_timeout)
            except TimeoutError:
                logger.warning("%d log record(s) not written before shutdown", self._log_queue.qsize())
            self._log_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._log_task
            self._log_task = None

        if self._log_sink is not None:
            await self._log_sink.close()

        for subscription in list(self._subscriptions):
            self.unsubscribe(subscription)
