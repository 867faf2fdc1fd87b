"""Shared fixtures for podkit tests.

Provides an in-memory PodAPI with scripted pods, log lines, watch batches
and tunnels, so the stream and forward packages can be exercised without
touching a real Kubernetes cluster.
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import AsyncGenerator, AsyncIterator, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
import structlog

from podkit.cluster.base import PodAPI, Tunnel
from podkit.errors import ApiError
from podkit.models.forward import PORT_UNSPECIFIED, ForwardedPort, PortPair
from podkit.models.logs import LogEntry, PodDescriptor, PodEvent, PodEventType, PodList, PodPhase

# ---------------------------------------------------------------------------
# Timestamp helpers
# ---------------------------------------------------------------------------

T0 = datetime(2024, 1, 15, 10, 30, 0, tzinfo=UTC)


def ts(seconds: float) -> datetime:
    """T0 shifted by *seconds*."""
    return T0 + timedelta(seconds=seconds)


def log_line(seconds: float, text: str) -> str:
    """A timestamped log line as the API server returns it."""
    return f"{ts(seconds).strftime('%Y-%m-%dT%H:%M:%S.%f')}000Z {text}"


# ---------------------------------------------------------------------------
# Pod factory helpers
# ---------------------------------------------------------------------------


def make_pod(
    name: str = "web-0",
    uid: str | None = None,
    namespace: str = "default",
    phase: str = PodPhase.RUNNING,
    start_time: datetime | None = T0,
    labels: dict[str, str] | None = None,
) -> PodDescriptor:
    """Create a PodDescriptor with sensible defaults for testing."""
    return PodDescriptor(
        uid=uid or f"uid-{name}",
        name=name,
        namespace=namespace,
        phase=phase,
        start_time=start_time,
        labels=labels or {"app": "web"},
    )


def added(pod: PodDescriptor, resource_version: str = "") -> PodEvent:
    return PodEvent(type=PodEventType.ADDED, pod=pod, resource_version=resource_version)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeTunnel(Tunnel):
    """Tunnel whose readiness and failure are driven by the test."""

    _ephemeral = itertools.count(40000)

    def __init__(self, pod_name: str, ports: list[PortPair], *, ready: bool = True) -> None:
        super().__init__()
        self.pod_name = pod_name
        self.requested = list(ports)
        self.shutdown_calls = 0
        if ready:
            self.make_ready()

    def make_ready(self) -> None:
        self._mark_ready(
            [
                ForwardedPort(
                    local=p.local if p.local != PORT_UNSPECIFIED else next(self._ephemeral),
                    remote=p.remote,
                )
                for p in self.requested
            ]
        )

    def fail(self, err: BaseException) -> None:
        """Terminate the tunnel abnormally, as a dropped websocket would."""
        self._finish(err)

    async def _shutdown(self) -> None:
        self.shutdown_calls += 1


class FakePodAPI(PodAPI):
    """Scripted, in-memory PodAPI.

    Attributes set by tests:
        pods:            returned by every ``list_pods`` call.
        logs:            pod name -> lines served by ``open_log_stream``.
        log_delays:      pod name -> seconds to sleep before each line.
        watch_batches:   one list of events per ``watch_pods`` call; once they
                         run out, the watch blocks until cancelled.
        list_error:      raised by ``list_pods`` when set.
        watch_error:     raised by ``watch_pods`` when set.
        log_open_errors: pod name -> error raised when opening its log.
        tunnel_results:  consumed per ``open_tunnel`` call; an exception is
                         raised, a bool decides whether the tunnel is ready.
    """

    def __init__(self, pods: Sequence[PodDescriptor] = ()) -> None:
        self.pods = list(pods)
        self.resource_version = "100"
        self.logs: dict[str, list[str]] = {}
        self.log_delays: dict[str, float] = {}
        self.watch_batches: list[list[PodEvent]] = []
        self.list_error: ApiError | None = None
        self.watch_error: ApiError | None = None
        self.log_open_errors: dict[str, ApiError] = {}
        self.tunnel_results: list[BaseException | bool] = []
        self.services: dict[str, str] = {}

        self.list_calls = 0
        self.watch_calls: list[str] = []
        self.log_requests: list[dict[str, Any]] = []
        self.tunnels: list[FakeTunnel] = []
        self.closed = False

    async def list_pods(self, namespace: str, label_selector: str) -> PodList:
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        return PodList(items=list(self.pods), resource_version=self.resource_version)

    async def watch_pods(
        self,
        namespace: str,
        label_selector: str,
        resource_version: str = "",
    ) -> AsyncIterator[PodEvent]:
        self.watch_calls.append(resource_version)
        if self.watch_error is not None:
            raise self.watch_error
        if not self.watch_batches:
            await asyncio.Event().wait()
            return
        for event in self.watch_batches.pop(0):
            yield event

    async def open_log_stream(
        self,
        namespace: str,
        pod_name: str,
        *,
        follow: bool,
        container: str | None = None,
        timestamps: bool = True,
    ) -> AsyncGenerator[str, None]:
        self.log_requests.append(
            {"pod": pod_name, "follow": follow, "container": container, "timestamps": timestamps}
        )
        if pod_name in self.log_open_errors:
            raise self.log_open_errors[pod_name]
        return self._lines(pod_name, follow)

    async def _lines(self, pod_name: str, follow: bool) -> AsyncGenerator[str, None]:
        delay = self.log_delays.get(pod_name, 0.0)
        for line in self.logs.get(pod_name, []):
            if delay:
                await asyncio.sleep(delay)
            yield line
        if follow:
            await asyncio.Event().wait()

    async def open_tunnel(self, namespace: str, pod_name: str, ports: list[PortPair]) -> Tunnel:
        result: BaseException | bool = self.tunnel_results.pop(0) if self.tunnel_results else True
        if isinstance(result, BaseException):
            raise result
        tunnel = FakeTunnel(pod_name, ports, ready=result)
        self.tunnels.append(tunnel)
        return tunnel

    async def service_selector(self, namespace: str, service: str) -> str:
        try:
            return self.services[service]
        except KeyError:
            raise ApiError(f"read service {namespace}/{service}", "not found", status=404) from None

    async def close(self) -> None:
        self.closed = True


class RecordingConsumer:
    """Collects every delivered batch."""

    def __init__(self) -> None:
        self.batches: list[list[LogEntry]] = []

    def __call__(self, entries: Sequence[LogEntry]) -> None:
        self.batches.append(list(entries))

    @property
    def entries(self) -> list[LogEntry]:
        return [entry for batch in self.batches for entry in batch]


class ManualTicker:
    """Backoff signal that ticks only when the test says so."""

    def __init__(self) -> None:
        self._ticks: asyncio.Queue[float | None] = asyncio.Queue()

    def tick(self, n: int = 1) -> None:
        for _ in range(n):
            self._ticks.put_nowait(0.0)

    def close(self) -> None:
        self._ticks.put_nowait(None)

    def __aiter__(self) -> ManualTicker:
        return self

    async def __anext__(self) -> float:
        value = await self._ticks.get()
        if value is None:
            raise StopAsyncIteration
        return value


async def wait_until(predicate: Any, timeout: float = 2.0) -> None:
    """Poll *predicate* until it is truthy or *timeout* elapses."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True, scope="session")
def _quiet_structlog() -> None:
    """Render log events to nowhere; tests assert on them with capture_logs."""
    structlog.configure(
        processors=[structlog.processors.add_log_level, structlog.processors.KeyValueRenderer()],
        logger_factory=structlog.ReturnLoggerFactory(),
        cache_logger_on_first_use=False,
    )


@pytest.fixture
def fake_api() -> FakePodAPI:
    return FakePodAPI()


@pytest.fixture
def recorder() -> RecordingConsumer:
    return RecordingConsumer()
