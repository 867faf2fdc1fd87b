"""Log aggregation run: discovery, per-pod readers and the aggregator.

Run lifecycle::

    listing -> tracking -> [following] -> draining -> stopped

Non-follow runs end once every reader spawned from the initial listing has
finished. Follow runs end when the caller's stop event fires. Either way
the run-scoped stop event is set, readers and the watch are torn down and
the aggregator performs its final flush before ``run`` returns.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence

from podkit.cluster.base import PodAPI
from podkit.errors import ApiError
from podkit.models.config import StreamConfig
from podkit.models.logs import LogEntry, PodDescriptor
from podkit.observability.logging import Logger, get_logger
from podkit.stream.aggregator import LogAggregator
from podkit.stream.consumers import LogEntryConsumers, LogFilter, as_filter, regex_filter
from podkit.stream.discovery import PodDiscovery
from podkit.stream.reader import PodLogReader


class PodStreamer:
    """Aggregates the logs of every pod matching a selector.

    The config is validated on construction; ConfigError is raised before
    any API call is made.
    """

    def __init__(self, api: PodAPI, config: StreamConfig, logger: Logger | None = None) -> None:
        config.validate()
        self._api = api
        self._config = config
        self._log = logger or get_logger("stream")
        self._log_filter = self._build_filter(config)
        self._consumers = LogEntryConsumers(config.consumers)
        self._readers: set[asyncio.Task[None]] = set()

    @staticmethod
    def _build_filter(config: StreamConfig) -> LogFilter | None:
        if config.log_filter is not None:
            return as_filter(config.log_filter)
        if config.log_filter_pattern:
            return regex_filter(config.log_filter_pattern)
        return None

    async def run(self, stop: asyncio.Event | None = None) -> None:
        """Run until done (non-follow) or until *stop* is set (follow).

        Raises ApiError if the initial pod listing fails; nothing has been
        spawned at that point.
        """
        stop = stop or asyncio.Event()
        run_stop = asyncio.Event()
        queue: asyncio.Queue[LogEntry] = asyncio.Queue(maxsize=self._config.buffer_size)
        discovery = PodDiscovery(
            self._api,
            self._config.namespace,
            self._config.label_selector,
            run_stop,
            logger=self._log,
        )

        try:
            pods = await discovery.snapshot()
        except ApiError as exc:
            self._log.error("list_pods_failed", error=str(exc))
            raise

        for pod in pods:
            self._spawn_reader(pod, queue, run_stop)

        aggregator = LogAggregator(self._consumers, self._config.flush_interval, logger=self._log)
        aggregator_task = asyncio.create_task(aggregator.run(queue, run_stop), name="log-aggregator")
        watch_task: asyncio.Task[None] | None = None
        if self._config.follow:
            watch_task = asyncio.create_task(
                self._follow(discovery, lambda pod: self._spawn_reader(pod, queue, run_stop)),
                name="pod-watch",
            )

        try:
            if self._config.follow:
                await stop.wait()
                self._log.info("caller has cancelled the stream")
            else:
                await self._wait_readers(stop)
                self._log.info("pod workers have stopped")
        finally:
            run_stop.set()
            await self._teardown(watch_task)
            await aggregator_task

    def _spawn_reader(self, pod: PodDescriptor, queue: asyncio.Queue[LogEntry], stop: asyncio.Event) -> None:
        reader = PodLogReader(
            self._api,
            pod,
            queue,
            stop,
            follow=self._config.follow,
            container=self._config.container,
            log_filter=self._log_filter,
            logger=self._log,
        )
        task = asyncio.create_task(reader.run(), name=f"pod-log-{pod.name}")
        self._readers.add(task)
        task.add_done_callback(self._readers.discard)

    async def _follow(self, discovery: PodDiscovery, spawn: Callable[[PodDescriptor], None]) -> None:
        try:
            async for pod in discovery.watch():
                self._log.info("pod_discovered", pod=pod.name, uid=pod.uid)
                spawn(pod)
        except ApiError as exc:
            # Readers already running are unaffected.
            self._log.error("failed to watch pods", error=str(exc))

    async def _wait_readers(self, stop: asyncio.Event) -> None:
        if not self._readers:
            return
        readers = asyncio.gather(*self._readers, return_exceptions=True)
        stopped = asyncio.ensure_future(stop.wait())
        try:
            await asyncio.wait({readers, stopped}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopped.cancel()

    async def _teardown(self, watch_task: asyncio.Task[None] | None) -> None:
        tasks: Sequence[asyncio.Task[None]] = [*self._readers, *([watch_task] if watch_task else [])]
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


async def stream(
    api: PodAPI,
    config: StreamConfig,
    stop: asyncio.Event | None = None,
    logger: Logger | None = None,
) -> None:
    """Build a PodStreamer and run it to completion."""
    await PodStreamer(api, config, logger=logger).run(stop)
