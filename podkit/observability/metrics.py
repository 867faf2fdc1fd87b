"""Prometheus counters for log streaming and port-forwarding.

Registered on the default process registry; exposing them is left to the
embedding application.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge

log_entries_total = Counter(
    "podkit_log_entries_total",
    "Log lines read from pods, by parse outcome",
    ["result"],
)

log_batches_flushed_total = Counter(
    "podkit_log_batches_flushed_total",
    "Sorted log batches delivered to consumers",
)

pod_readers_active = Gauge(
    "podkit_pod_readers_active",
    "Pod log readers currently streaming",
)

forward_reconnects_total = Counter(
    "podkit_forward_reconnects_total",
    "Port-forward reconnect attempts, by outcome",
    ["outcome"],
)
