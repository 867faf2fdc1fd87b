"""Per-pod log reader.

Each line of a timestamped pod log looks like::

    2024-01-15T10:30:00.123456789Z GET /healthz 200

Lines that do not start with an RFC3339 timestamp are still delivered:
the raw line becomes the entry text and the read time becomes its sort
key, so ordering degrades but nothing is dropped.
"""

from __future__ import annotations

import asyncio
import contextlib
import re
from collections.abc import AsyncGenerator
from datetime import UTC, datetime

from podkit.cluster.base import PodAPI
from podkit.errors import ApiError, LogParseError
from podkit.models.logs import LogEntry, PodDescriptor
from podkit.observability.logging import Logger, get_logger
from podkit.observability.metrics import log_entries_total, pod_readers_active
from podkit.stream.consumers import LogFilter

# datetime.fromisoformat takes at most microseconds; digits 7-9 of the
# fraction are kept separately as nanoseconds.
_RFC3339 = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}[Tt]\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<frac>\d+))?"
    r"(?P<tz>[Zz]|[+-]\d{2}:\d{2})$"
)


def parse_timestamp_nanos(value: str) -> tuple[datetime, int]:
    """Parse an RFC3339Nano timestamp.

    Returns the aware datetime (microsecond precision) and the remaining
    sub-microsecond nanoseconds. Digits past the ninth are ignored.
    Raises ValueError.
    """
    match = _RFC3339.match(value)
    if match is None:
        raise ValueError(f"not an RFC3339 timestamp: {value[:40]!r}")
    tz = match["tz"]
    normalized = match["base"].upper()
    frac = (match["frac"] or "")[:9].ljust(9, "0")
    if match["frac"]:
        normalized += "." + frac[:6]
    normalized += "+00:00" if tz in ("Z", "z") else tz
    return datetime.fromisoformat(normalized), int(frac[6:])


def parse_timestamp(value: str) -> datetime:
    """Parse an RFC3339 timestamp into an aware datetime. Raises ValueError."""
    return parse_timestamp_nanos(value)[0]


def parse_log_line(line: str, pod: str = "") -> LogEntry:
    """Split ``"<timestamp> <content>"`` into a LogEntry. Raises LogParseError."""
    timestamp, _, content = line.partition(" ")
    try:
        time, nanos = parse_timestamp_nanos(timestamp)
    except ValueError as exc:
        raise LogParseError(line, str(exc)) from exc
    return LogEntry(time=time, text=content, pod=pod, nanos=nanos)


class PodLogReader:
    """Streams one pod's log into the shared aggregation queue.

    Stream failures end this reader only; they are logged and never
    propagate to the run.
    """

    def __init__(
        self,
        api: PodAPI,
        pod: PodDescriptor,
        out: asyncio.Queue[LogEntry],
        stop: asyncio.Event,
        *,
        follow: bool = False,
        container: str | None = None,
        log_filter: LogFilter | None = None,
        logger: Logger | None = None,
    ) -> None:
        self._api = api
        self._pod = pod
        self._out = out
        self._stop = stop
        self._follow = follow
        self._container = container
        self._log_filter = log_filter
        self._log = logger or get_logger("stream.reader")

    async def run(self) -> None:
        pod_name = self._pod.name
        self._log.info("pod_stream_started", pod=pod_name)
        pod_readers_active.inc()
        try:
            try:
                lines = await self._api.open_log_stream(
                    self._pod.namespace,
                    pod_name,
                    follow=self._follow,
                    container=self._container,
                    timestamps=True,
                )
            except ApiError as exc:
                self._log.warning("pod_stream_open_failed", pod=pod_name, error=str(exc))
                return
            try:
                await self._consume(lines)
            except ApiError as exc:
                self._log.warning("pod_stream_read_failed", pod=pod_name, error=str(exc))
        except Exception as exc:
            self._log.error("pod_stream_failed", pod=pod_name, error=str(exc), error_type=type(exc).__name__)
        finally:
            pod_readers_active.dec()
            self._log.info("pod_stream_stopped", pod=pod_name)

    async def _consume(self, lines: AsyncGenerator[str, None]) -> None:
        async with contextlib.aclosing(lines):
            async for line in lines:
                # Cancellation is checked per line; the put below may still
                # block while the aggregator is behind.
                if self._stop.is_set():
                    return
                entry = self._to_entry(line)
                if self._log_filter is not None and not self._log_filter.filter_log(entry.text):
                    log_entries_total.labels(result="filtered").inc()
                    continue
                await self._out.put(entry)

    def _to_entry(self, line: str) -> LogEntry:
        try:
            entry = parse_log_line(line, pod=self._pod.name)
        except LogParseError as exc:
            self._log.debug("log_timestamp_unparsable", pod=self._pod.name, error=str(exc))
            log_entries_total.labels(result="fallback").inc()
            return LogEntry(time=datetime.now(tz=UTC), text=line, pod=self._pod.name)
        log_entries_total.labels(result="parsed").inc()
        return entry
