"""Pod discovery: initial snapshot plus an optional resuming watch.

Pods are tracked by UID and never untracked within a run, even after they
are deleted, so a long follow-mode run keeps every UID it has seen.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from datetime import UTC, datetime

from podkit.cluster.base import PodAPI
from podkit.models.logs import PodDescriptor, PodEventType
from podkit.observability.logging import Logger, get_logger

_EPOCH = datetime.min.replace(tzinfo=UTC)


def _start_time_key(pod: PodDescriptor) -> tuple[bool, datetime]:
    # Pods that have not started sort first, in listing order.
    return (pod.start_time is not None, pod.start_time or _EPOCH)


class PodDiscovery:
    """Yields every newly observed, schedulable pod matching a selector.

    ``snapshot`` lists current matches; listing failures raise ApiError and
    are fatal to the run. ``watch`` then yields pods added later, resuming
    from the last seen resource version whenever the watch stream ends.
    A watch error ends ``watch`` by raising ApiError.
    """

    def __init__(
        self,
        api: PodAPI,
        namespace: str,
        label_selector: str,
        stop: asyncio.Event,
        logger: Logger | None = None,
    ) -> None:
        self._api = api
        self._namespace = namespace
        self._label_selector = label_selector
        self._stop = stop
        self._log = logger or get_logger("stream.discovery")
        self._tracked: set[str] = set()
        self._tracked_lock = asyncio.Lock()
        self.resource_version = ""

    @property
    def tracked_count(self) -> int:
        return len(self._tracked)

    async def track(self, pod: PodDescriptor) -> bool:
        """Record *pod*; return True only the first time a schedulable UID is seen."""
        if pod.pending:
            return False
        async with self._tracked_lock:
            if pod.uid in self._tracked:
                return False
            self._tracked.add(pod.uid)
        return True

    async def snapshot(self) -> list[PodDescriptor]:
        """List matches sorted by start time and return the newly tracked ones."""
        self._log.info("listing_pods", namespace=self._namespace, selector=self._label_selector)
        pods = await self._api.list_pods(self._namespace, self._label_selector)
        self.resource_version = pods.resource_version
        tracked = []
        for pod in sorted(pods.items, key=_start_time_key):
            if await self.track(pod):
                tracked.append(pod)
        self._log.info("pods_listed", matched=len(pods.items), tracked=len(tracked))
        return tracked

    async def watch(self) -> AsyncIterator[PodDescriptor]:
        self._log.info("watching_pods", resource_version=self.resource_version)
        try:
            while not self._stop.is_set():
                async for event in self._api.watch_pods(self._namespace, self._label_selector, self.resource_version):
                    if self._stop.is_set():
                        return
                    if event.type == PodEventType.EXPIRED:
                        self._log.info("watch_resource_version_expired", resource_version=self.resource_version)
                        self.resource_version = ""
                        break
                    if event.resource_version:
                        self.resource_version = event.resource_version
                    if event.is_upsert and event.pod is not None and await self.track(event.pod):
                        yield event.pod
                else:
                    self._log.debug("reconnecting_pods_watcher", resource_version=self.resource_version)
                # Yield to the loop before resuming.
                await asyncio.sleep(0)
        finally:
            self._log.info("watch_worker_stopped")
