"""Configuration loading from environment variables."""

from __future__ import annotations

import os

from podkit.errors import ConfigError
from podkit.models.config import (
    DEFAULT_BACKOFF_INTERVAL,
    DEFAULT_BUFFER_SIZE,
    DEFAULT_FLUSH_INTERVAL,
    DEFAULT_FORWARD_TIMEOUT,
    ForwardConfig,
    KubeConfig,
    LogConfig,
    PodkitConfig,
    StreamConfig,
)


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"PODKIT_{key}", default)


def _env_bool(key: str, default: bool = False) -> bool:
    val = _env(key, str(default).lower())
    return val.lower() in ("true", "1", "yes")


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    raw = _env(key, str(default))
    try:
        val = int(raw)
    except ValueError:
        raise ConfigError(f"PODKIT_{key} must be an integer, got {raw!r}") from None
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_float(key: str, default: float, min_val: float | None = None) -> float:
    raw = _env(key, str(default))
    try:
        val = float(raw)
    except ValueError:
        raise ConfigError(f"PODKIT_{key} must be a number, got {raw!r}") from None
    if min_val is not None:
        val = max(val, min_val)
    return val


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ConfigError(f"Invalid log level: {value}. Must be one of {sorted(valid)}")
    return value.lower()


def load_config() -> PodkitConfig:
    """Load configuration from PODKIT_* environment variables.

    Selectors and ports are not validated here; ``StreamConfig.validate`` and
    ``ForwardConfig.validate`` run when a streamer or forwarder is built.
    """
    namespace = _env("NAMESPACE", "default")
    label_selector = _env("LABEL_SELECTOR", "")
    return PodkitConfig(
        stream=StreamConfig(
            namespace=namespace,
            label_selector=label_selector,
            follow=_env_bool("FOLLOW", False),
            container=_env("CONTAINER", "") or None,
            log_filter_pattern=_env("LOG_FILTER", ""),
            flush_interval=_env_float("FLUSH_INTERVAL", DEFAULT_FLUSH_INTERVAL, min_val=0.05),
            buffer_size=_env_int("BUFFER_SIZE", DEFAULT_BUFFER_SIZE, min_val=1, max_val=65536),
        ),
        forward=ForwardConfig(
            namespace=namespace,
            label_selector=label_selector,
            timeout=_env_float("FORWARD_TIMEOUT", DEFAULT_FORWARD_TIMEOUT, min_val=1.0),
            backoff_interval=_env_float("BACKOFF_INTERVAL", DEFAULT_BACKOFF_INTERVAL, min_val=0.1),
        ),
        kube=KubeConfig(
            kubeconfig_path=_env("KUBECONFIG", ""),
            context=_env("CONTEXT", ""),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
        ),
    )
