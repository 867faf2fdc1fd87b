"""Configuration data structures."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from podkit.errors import ConfigError
from podkit.models.forward import PortPair

if TYPE_CHECKING:
    from collections.abc import Callable

    from podkit.stream.consumers import ConsumerFn, LogEntryConsumer, LogFilter

DEFAULT_FLUSH_INTERVAL = 1.0
DEFAULT_BUFFER_SIZE = 128
DEFAULT_FORWARD_TIMEOUT = 30.0
DEFAULT_BACKOFF_INTERVAL = 5.0


@dataclass
class StreamConfig:
    """Log aggregation run configuration.

    ``log_filter`` takes precedence over ``log_filter_pattern``; the pattern
    is searched anywhere in the log content.
    """

    label_selector: str = ""
    namespace: str = "default"
    follow: bool = False
    container: str | None = None
    log_filter_pattern: str = ""
    log_filter: LogFilter | Callable[[str], bool] | None = None
    consumers: list[LogEntryConsumer | ConsumerFn] = field(default_factory=list)
    flush_interval: float = DEFAULT_FLUSH_INTERVAL
    buffer_size: int = DEFAULT_BUFFER_SIZE

    def validate(self) -> None:
        if not self.label_selector:
            raise ConfigError("label selector is required")
        if not self.namespace:
            raise ConfigError("namespace is required")
        if self.flush_interval <= 0:
            raise ConfigError(f"flush interval must be positive, got {self.flush_interval}")
        if self.buffer_size < 1:
            raise ConfigError(f"buffer size must be positive, got {self.buffer_size}")
        if self.log_filter is None and self.log_filter_pattern:
            try:
                re.compile(self.log_filter_pattern)
            except re.error as exc:
                raise ConfigError(f"invalid log filter pattern {self.log_filter_pattern!r}: {exc}") from exc


@dataclass
class ForwardConfig:
    """Port-forward establishment configuration."""

    label_selector: str = ""
    namespace: str = "default"
    ports: list[PortPair] = field(default_factory=list)
    timeout: float = DEFAULT_FORWARD_TIMEOUT
    backoff_interval: float = DEFAULT_BACKOFF_INTERVAL
    reconnect: bool = True

    def validate(self) -> None:
        if not self.label_selector:
            raise ConfigError("label selector is required")
        if not self.namespace:
            raise ConfigError("namespace is required")
        if not self.ports:
            raise ConfigError("no ports specified")
        for pair in self.ports:
            pair.validate()
        if self.timeout <= 0:
            raise ConfigError(f"forward timeout must be positive, got {self.timeout}")
        if self.backoff_interval <= 0:
            raise ConfigError(f"backoff interval must be positive, got {self.backoff_interval}")


@dataclass
class KubeConfig:
    """Cluster client configuration."""

    kubeconfig_path: str = ""
    context: str = ""


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"


@dataclass
class PodkitConfig:
    """Top-level podkit configuration."""

    stream: StreamConfig = field(default_factory=StreamConfig)
    forward: ForwardConfig = field(default_factory=ForwardConfig)
    kube: KubeConfig = field(default_factory=KubeConfig)
    log: LogConfig = field(default_factory=LogConfig)
