"""Cluster capabilities consumed by the stream and forward packages.

PodAPI -- list/watch pods, open log streams and port-forward tunnels.
Tunnel -- one live port-forward; reports readiness once and termination once.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator, AsyncIterator

from podkit.errors import ApiError
from podkit.models.forward import ForwardedPort, PortPair
from podkit.models.logs import PodEvent, PodList


class Tunnel(ABC):
    """A single port-forward tunnel to one pod.

    Subclasses call ``_mark_ready`` once their listeners are bound and
    ``_finish`` when the tunnel dies. ``stop`` is idempotent and resolves
    ``wait_closed`` with None unless the tunnel already terminated.
    """

    def __init__(self) -> None:
        loop = asyncio.get_running_loop()
        self._ready: asyncio.Future[list[ForwardedPort]] = loop.create_future()
        self._closed: asyncio.Future[BaseException | None] = loop.create_future()
        self._stopping = False

    async def wait_ready(self) -> list[ForwardedPort]:
        """Block until the tunnel is listening and return the bound ports.

        Raises the terminal error if the tunnel dies before it is ready.
        """
        closed = asyncio.shield(self._closed)
        try:
            await asyncio.wait({self._ready, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closed.cancel()
        if self._ready.done():
            return self._ready.result()
        err = self._closed.result()
        if err is not None:
            raise err
        raise ApiError("port forward", "tunnel closed before it became ready")

    async def wait_closed(self) -> BaseException | None:
        """Resolve once: None after ``stop``, the cause after a failure."""
        return await asyncio.shield(self._closed)

    def closed(self) -> bool:
        return self._closed.done()

    async def stop(self) -> None:
        if self._stopping or self._closed.done():
            return
        self._stopping = True
        await self._shutdown()
        self._finish(None)

    def _mark_ready(self, ports: list[ForwardedPort]) -> None:
        if not self._ready.done():
            self._ready.set_result(ports)

    def _finish(self, err: BaseException | None) -> None:
        if not self._closed.done():
            self._closed.set_result(err)

    @abstractmethod
    async def _shutdown(self) -> None:
        """Release listeners and in-flight connections."""


class PodAPI(ABC):
    """Abstract pod capability. Every method is namespace-scoped."""

    @abstractmethod
    async def list_pods(self, namespace: str, label_selector: str) -> PodList:
        """List pods matching *label_selector*. Raises ApiError."""

    @abstractmethod
    def watch_pods(self, namespace: str, label_selector: str, resource_version: str = "") -> AsyncIterator[PodEvent]:
        """Stream pod events starting after *resource_version*.

        The iterator may end without error; callers resume from the last
        resource version they observed. Raises ApiError.
        """

    @abstractmethod
    async def open_log_stream(
        self,
        namespace: str,
        pod_name: str,
        *,
        follow: bool,
        container: str | None = None,
        timestamps: bool = True,
    ) -> AsyncGenerator[str, None]:
        """Open a pod log stream and return an iterator over its lines.

        Opening failures raise ApiError immediately; read failures raise
        ApiError from the iterator.
        """

    @abstractmethod
    async def open_tunnel(self, namespace: str, pod_name: str, ports: list[PortPair]) -> Tunnel:
        """Start a port-forward tunnel. Readiness is reported by the tunnel."""

    @abstractmethod
    async def service_selector(self, namespace: str, service: str) -> str:
        """Return the label selector of a service's pods. Raises ApiError."""

    async def close(self) -> None:  # noqa: B027
        """Release client resources."""
