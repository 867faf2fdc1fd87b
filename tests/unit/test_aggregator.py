"""Tests for the batching, time-ordering log aggregator."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

from hypothesis import given, settings
from hypothesis import strategies as st
from prometheus_client import REGISTRY

from podkit.models.logs import LogEntry
from podkit.stream.aggregator import LogAggregator
from podkit.stream.consumers import LogEntryConsumers
from podkit.stream.reader import parse_log_line
from tests.conftest import RecordingConsumer, ts


def _aggregator(recorder: RecordingConsumer, flush_interval: float = 1.0) -> LogAggregator:
    return LogAggregator(LogEntryConsumers([recorder]), flush_interval=flush_interval)


def _flushed() -> float:
    return REGISTRY.get_sample_value("podkit_log_batches_flushed_total") or 0.0


# ---------------------------------------------------------------------------
# flush
# ---------------------------------------------------------------------------


class TestFlush:
    async def test_batch_is_sorted_by_time(self, recorder: RecordingConsumer) -> None:
        aggregator = _aggregator(recorder)
        for second in (2, 0, 1):
            aggregator.add(LogEntry(time=ts(second), text=str(second)))

        await aggregator.flush()

        assert [e.text for e in recorder.entries] == ["0", "1", "2"]
        assert aggregator.pending == 0

    async def test_equal_times_keep_arrival_order(self, recorder: RecordingConsumer) -> None:
        aggregator = _aggregator(recorder)
        for text in ("first", "second", "third"):
            aggregator.add(LogEntry(time=ts(5), text=text))
        aggregator.add(LogEntry(time=ts(1), text="early"))

        await aggregator.flush()

        assert [e.text for e in recorder.entries] == ["early", "first", "second", "third"]

    async def test_same_microsecond_lines_sort_by_nanoseconds(self, recorder: RecordingConsumer) -> None:
        aggregator = _aggregator(recorder)
        aggregator.add(parse_log_line("2024-01-15T10:30:00.000000900Z later", pod="web-1"))
        aggregator.add(parse_log_line("2024-01-15T10:30:00.000000100Z earlier", pod="web-0"))

        await aggregator.flush()

        assert [e.text for e in recorder.entries] == ["earlier", "later"]

    async def test_empty_flush_does_not_call_consumers(self, recorder: RecordingConsumer) -> None:
        before = _flushed()
        await _aggregator(recorder).flush()
        assert recorder.batches == []
        assert _flushed() == before

    async def test_flush_counts_batches(self, recorder: RecordingConsumer) -> None:
        aggregator = _aggregator(recorder)
        before = _flushed()
        aggregator.add(LogEntry(time=ts(0), text="x"))
        await aggregator.flush()
        assert _flushed() == before + 1

    @given(
        seconds=st.lists(st.integers(min_value=0, max_value=20), max_size=50),
    )
    @settings(max_examples=50, deadline=None)
    def test_any_batch_is_non_decreasing_and_stable(self, seconds: list[int]) -> None:
        recorder = RecordingConsumer()
        aggregator = _aggregator(recorder)
        entries = [LogEntry(time=ts(s), text=f"{i}") for i, s in enumerate(seconds)]
        for entry in entries:
            aggregator.add(entry)

        asyncio.run(aggregator.flush())

        delivered = recorder.entries
        assert delivered == sorted(entries, key=lambda e: (e.time, int(e.text)))
        assert len(recorder.batches) == (1 if entries else 0)


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


class TestRun:
    async def test_final_flush_after_stop(self, recorder: RecordingConsumer) -> None:
        queue: asyncio.Queue[LogEntry] = asyncio.Queue()
        stop = asyncio.Event()
        aggregator = _aggregator(recorder, flush_interval=60)
        task = asyncio.create_task(aggregator.run(queue, stop))

        await queue.put(LogEntry(time=ts(1), text="b"))
        await queue.put(LogEntry(time=ts(0), text="a"))
        stop.set()
        await asyncio.wait_for(task, timeout=2)

        assert [[e.text for e in batch] for batch in recorder.batches] == [["a", "b"]]

    async def test_entries_left_in_queue_are_drained_on_stop(self, recorder: RecordingConsumer) -> None:
        queue: asyncio.Queue[LogEntry] = asyncio.Queue()
        for second in (3, 1, 2):
            queue.put_nowait(LogEntry(time=ts(second), text=str(second)))
        stop = asyncio.Event()
        stop.set()

        await asyncio.wait_for(_aggregator(recorder).run(queue, stop), timeout=2)

        assert [e.text for e in recorder.entries] == ["1", "2", "3"]

    async def test_flushes_on_interval(self, recorder: RecordingConsumer) -> None:
        queue: asyncio.Queue[LogEntry] = asyncio.Queue()
        stop = asyncio.Event()
        task = asyncio.create_task(_aggregator(recorder, flush_interval=0.05).run(queue, stop))
        try:
            await queue.put(LogEntry(time=ts(0), text="tick"))
            async with asyncio.timeout(2):
                while not recorder.batches:
                    await asyncio.sleep(0.01)
            assert [e.text for e in recorder.entries] == ["tick"]
        finally:
            stop.set()
            await task

    async def test_idle_run_never_calls_consumers(self, recorder: RecordingConsumer) -> None:
        queue: asyncio.Queue[LogEntry] = asyncio.Queue()
        stop = asyncio.Event()
        task = asyncio.create_task(_aggregator(recorder, flush_interval=0.01).run(queue, stop))
        await asyncio.sleep(0.1)
        stop.set()
        await task
        assert recorder.batches == []

    async def test_late_entry_is_not_reordered_into_a_flushed_batch(self, recorder: RecordingConsumer) -> None:
        """Ordering holds within a batch only; earlier batches are never revisited."""
        queue: asyncio.Queue[LogEntry] = asyncio.Queue()
        stop = asyncio.Event()
        task = asyncio.create_task(_aggregator(recorder, flush_interval=0.05).run(queue, stop))
        try:
            await queue.put(LogEntry(time=ts(10), text="newer"))
            async with asyncio.timeout(2):
                while not recorder.batches:
                    await asyncio.sleep(0.01)
            await queue.put(LogEntry(time=ts(0), text="older"))
        finally:
            stop.set()
            await task

        assert [[e.text for e in batch] for batch in recorder.batches] == [["newer"], ["older"]]


class TestConsumerFailure:
    async def test_failing_consumer_does_not_stop_the_aggregator(self, recorder: RecordingConsumer) -> None:
        def broken(entries: Sequence[LogEntry]) -> None:
            raise RuntimeError("boom")

        aggregator = LogAggregator(LogEntryConsumers([broken, recorder]))
        aggregator.add(LogEntry(time=ts(0), text="x"))
        await aggregator.flush()
        assert len(recorder.entries) == 1
