"""Pod log aggregation.

Submodules
----------
consumers  -- LogEntryConsumer / LogFilter capabilities and function adapters.
reader     -- log line parsing and PodLogReader (one task per pod).
discovery  -- PodDiscovery: snapshot, UID de-duplication, resuming watch.
aggregator -- LogAggregator: interval flush of time-sorted batches.
streamer   -- PodStreamer / stream(): ties the above into one run.
"""

from podkit.stream.aggregator import LogAggregator
from podkit.stream.consumers import (
    LogEntryConsumer,
    LogEntryConsumerFunc,
    LogEntryConsumers,
    LogFilter,
    LogFilterFunc,
    regex_filter,
)
from podkit.stream.discovery import PodDiscovery
from podkit.stream.reader import PodLogReader, parse_log_line
from podkit.stream.streamer import PodStreamer, stream

__all__ = [
    "LogAggregator",
    "LogEntryConsumer",
    "LogEntryConsumerFunc",
    "LogEntryConsumers",
    "LogFilter",
    "LogFilterFunc",
    "PodDiscovery",
    "PodLogReader",
    "PodStreamer",
    "parse_log_line",
    "regex_filter",
    "stream",
]
