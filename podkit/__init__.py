"""podkit -- supervised log streaming and port-forwarding for Kubernetes pods.

Exposes:
    stream                 -- aggregate logs of every pod matching a selector.
    forward                -- open a single port-forward session to one pod.
    forward_with_reconnect -- port-forward handle that survives tunnel failures.
"""

from podkit.forward import ForwardHandle, backoff_ticker, forward, forward_with_reconnect
from podkit.models import ForwardConfig, LogEntry, PortPair, StreamConfig
from podkit.stream import PodStreamer, stream

__version__ = "0.1.0"

__all__ = [
    "ForwardConfig",
    "ForwardHandle",
    "LogEntry",
    "PodStreamer",
    "PortPair",
    "StreamConfig",
    "__version__",
    "backoff_ticker",
    "forward",
    "forward_with_reconnect",
    "stream",
]
