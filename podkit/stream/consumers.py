"""Log consumers and log filters.

LogEntryConsumer  -- receives each sorted batch of log entries.
LogEntryConsumers -- ordered consumer chain; one failing consumer never
                     prevents the rest from receiving the batch.
LogFilter         -- decides whether a log line is delivered at all.
"""

from __future__ import annotations

import inspect
import re
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable, Sequence

import structlog

from podkit.models.logs import LogEntry

_log = structlog.get_logger(component="stream.consumers")

ConsumerFn = Callable[[Sequence[LogEntry]], "Awaitable[None] | None"]


class LogEntryConsumer(ABC):
    """Receives sorted log batches.

    ``on_logs`` may be a plain method or a coroutine; the aggregator awaits
    it before the next flush either way.
    """

    @abstractmethod
    def on_logs(self, entries: Sequence[LogEntry]) -> Awaitable[None] | None:
        """Handle one batch, ordered by time."""


class LogEntryConsumerFunc(LogEntryConsumer):
    """Adapts a plain function or coroutine function to LogEntryConsumer."""

    def __init__(self, fn: ConsumerFn) -> None:
        self._fn = fn

    def on_logs(self, entries: Sequence[LogEntry]) -> Awaitable[None] | None:
        return self._fn(entries)

    def __repr__(self) -> str:
        return f"LogEntryConsumerFunc({getattr(self._fn, '__qualname__', self._fn)!r})"


def as_consumer(consumer: LogEntryConsumer | ConsumerFn) -> LogEntryConsumer:
    if isinstance(consumer, LogEntryConsumer):
        return consumer
    return LogEntryConsumerFunc(consumer)


class LogEntryConsumers(LogEntryConsumer):
    """Calls every consumer, one by one, in registration order."""

    def __init__(self, consumers: Iterable[LogEntryConsumer | ConsumerFn] = ()) -> None:
        self._consumers = [as_consumer(c) for c in consumers]

    def __len__(self) -> int:
        return len(self._consumers)

    def append(self, consumer: LogEntryConsumer | ConsumerFn) -> None:
        self._consumers.append(as_consumer(consumer))

    async def on_logs(self, entries: Sequence[LogEntry]) -> None:
        for consumer in self._consumers:
            try:
                result = consumer.on_logs(entries)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:  # noqa: BLE001
                _log.error(
                    "log_consumer_failed",
                    consumer=repr(consumer),
                    batch_size=len(entries),
                    error=str(exc),
                )


class LogFilter(ABC):
    """Selects which log lines are delivered."""

    @abstractmethod
    def filter_log(self, text: str) -> bool:
        """Return True if the line should be consumed."""


class LogFilterFunc(LogFilter):
    """Adapts a ``str -> bool`` predicate to LogFilter."""

    def __init__(self, fn: Callable[[str], bool]) -> None:
        self._fn = fn

    def filter_log(self, text: str) -> bool:
        return self._fn(text)


def as_filter(log_filter: LogFilter | Callable[[str], bool]) -> LogFilter:
    if isinstance(log_filter, LogFilter):
        return log_filter
    return LogFilterFunc(log_filter)


def regex_filter(pattern: str) -> LogFilter:
    """Keep lines in which *pattern* matches anywhere.

    Raises re.error for an invalid pattern; ``StreamConfig.validate``
    reports it as ConfigError before a run starts.
    """
    compiled = re.compile(pattern)
    return LogFilterFunc(lambda text: compiled.search(text) is not None)
