"""Core data structures for podkit."""

from podkit.models.config import ForwardConfig, KubeConfig, LogConfig, PodkitConfig, StreamConfig
from podkit.models.forward import PORT_UNSPECIFIED, ForwardedPort, PortPair
from podkit.models.logs import (
    LogEntry,
    PodDescriptor,
    PodEvent,
    PodEventType,
    PodList,
    PodPhase,
)

__all__ = [
    "PORT_UNSPECIFIED",
    "ForwardConfig",
    "ForwardedPort",
    "KubeConfig",
    "LogConfig",
    "LogEntry",
    "PodDescriptor",
    "PodEvent",
    "PodEventType",
    "PodList",
    "PodPhase",
    "PodkitConfig",
    "PortPair",
    "StreamConfig",
]
