"""Structured logging configuration using structlog."""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from typing import Any, Protocol

import structlog


class Logger(Protocol):
    """Diagnostic sink accepted by every podkit component.

    A structlog bound logger satisfies it; ``LogFunc`` adapts plain callables.
    """

    def debug(self, event: str, **fields: Any) -> Any: ...

    def info(self, event: str, **fields: Any) -> Any: ...

    def warning(self, event: str, **fields: Any) -> Any: ...

    def error(self, event: str, **fields: Any) -> Any: ...


class LogFunc:
    """Adapts ``fn(event, **fields)`` to the ``Logger`` interface.

    Every level is routed to the same callable. Exceptions raised by the
    callable are suppressed; logging never fails the caller.
    """

    def __init__(self, fn: Callable[..., Any]) -> None:
        self._fn = fn

    def _log(self, event: str, **fields: Any) -> None:
        try:
            self._fn(event, **fields)
        except Exception:  # noqa: BLE001
            pass

    debug = _log
    info = _log
    warning = _log
    error = _log


def setup_logging(level: str = "info") -> None:
    """Configure structlog for JSON output to stderr."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(component: str) -> structlog.stdlib.BoundLogger:
    """Get a logger bound with a component name."""
    return structlog.get_logger(component=component)  # type: ignore[no-any-return]
