"""Logging and metrics helpers."""

from podkit.observability.logging import LogFunc, Logger, get_logger, setup_logging

__all__ = ["LogFunc", "Logger", "get_logger", "setup_logging"]
