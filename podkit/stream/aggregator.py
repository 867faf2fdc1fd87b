"""Log aggregator: batches queued entries and delivers them in time order.

Ordering holds within a batch only. An entry that arrives after its batch
was flushed is delivered in a later batch, even if its timestamp is older.
"""

from __future__ import annotations

import asyncio
from operator import attrgetter

from podkit.models.config import DEFAULT_FLUSH_INTERVAL
from podkit.models.logs import LogEntry
from podkit.observability.logging import Logger, get_logger
from podkit.observability.metrics import log_batches_flushed_total
from podkit.stream.consumers import LogEntryConsumers

_by_time = attrgetter("sort_key")


class LogAggregator:
    """Drains a shared queue and flushes sorted batches on a fixed interval.

    ``run`` returns after the stop event fires, once the queue has been
    drained and one final flush has been delivered.
    """

    def __init__(
        self,
        consumers: LogEntryConsumers,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
        logger: Logger | None = None,
    ) -> None:
        self._consumers = consumers
        self._flush_interval = flush_interval if flush_interval > 0 else DEFAULT_FLUSH_INTERVAL
        self._log = logger or get_logger("stream.aggregator")
        self._unsorted: list[LogEntry] = []

    @property
    def pending(self) -> int:
        return len(self._unsorted)

    def add(self, entry: LogEntry) -> None:
        self._unsorted.append(entry)

    async def flush(self) -> None:
        """Sort the pending entries and hand them to the consumer chain.

        An empty buffer is a no-op: consumers are not called.
        """
        if not self._unsorted:
            return
        # sorted() is stable, so identical timestamps keep arrival order.
        batch = sorted(self._unsorted, key=_by_time)
        self._unsorted = []
        await self._consumers.on_logs(batch)
        log_batches_flushed_total.inc()

    async def run(self, queue: asyncio.Queue[LogEntry], stop: asyncio.Event) -> None:
        loop = asyncio.get_running_loop()
        next_flush = loop.time() + self._flush_interval
        stopped = asyncio.ensure_future(stop.wait())
        try:
            while not stop.is_set():
                timeout = next_flush - loop.time()
                if timeout <= 0:
                    await self.flush()
                    next_flush = loop.time() + self._flush_interval
                    continue
                getter = asyncio.ensure_future(queue.get())
                await asyncio.wait({getter, stopped}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
                if getter.done():
                    self.add(getter.result())
                else:
                    # A cancelled get leaves any queued item in place.
                    getter.cancel()
            self._drain(queue)
        finally:
            stopped.cancel()
            await self.flush()
            self._log.info("consume_worker_stopped")

    def _drain(self, queue: asyncio.Queue[LogEntry]) -> None:
        while True:
            try:
                self.add(queue.get_nowait())
            except asyncio.QueueEmpty:
                return
