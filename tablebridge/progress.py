# ==============================================
# Progress Reporting
# ==============================================
#
# PURPOSE:
#   Outbound stream of progress events for an import session.
#   The orchestrator only calls ProgressSink.publish(event); how the
#   event travels (in-process queue, log line, websocket bridge) is
#   the sink's business.
#
# CLASSES:
# --------
# - ProgressEvent (dataclass)
#     session_id, table, records_processed, total_records, status,
#     records_per_second, eta_seconds, message
#
# - ProgressSink              → Interface: publish(event) -> None
# - ChannelProgressSink       → Bounded queue; consumers iterate events()
# - LogProgressSink           → One log line per event
# - FanOutProgressSink        → Publish to several sinks
#
# - ProgressTracker
#     Per-table throughput (records/second) and ETA.
#
# CONTRACT:
#   publish() must not block the import. A full channel drops the
#   oldest event rather than waiting.
#
# ==============================================

import queue
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional

from loguru import logger


@dataclass
class ProgressEvent:
    session_id: str
    table: Optional[str]
    records_processed: int
    total_records: int
    status: str
    records_per_second: float = 0.0
    eta_seconds: Optional[float] = None
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "table": self.table,
            "records_processed": self.records_processed,
            "total_records": self.total_records,
            "status": self.status,
            "records_per_second": round(self.records_per_second, 2),
            "eta_seconds": None if self.eta_seconds is None else round(self.eta_seconds, 1),
            "message": self.message,
        }


class ProgressSink:
    """Interface for progress event consumers."""

    def publish(self, event: ProgressEvent) -> None:
        raise NotImplementedError


class ChannelProgressSink(ProgressSink):
    """
    In-process message channel.

    publish() never blocks: when the channel is full the oldest event is
    discarded to make room.
    """

    def __init__(self, maxsize: int = 1000):
        self._queue: "queue.Queue[ProgressEvent]" = queue.Queue(maxsize=maxsize)

    def publish(self, event: ProgressEvent) -> None:
        while True:
            try:
                self._queue.put_nowait(event)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    pass

    def events(self, timeout: Optional[float] = None) -> Iterator[ProgressEvent]:
        """
        Yield events as they arrive.

        Args:
            timeout: Stop after this many seconds without an event; None waits forever
        """
        while True:
            try:
                yield self._queue.get(timeout=timeout)
            except queue.Empty:
                return

    def drain(self) -> List[ProgressEvent]:
        """Return every queued event without waiting."""
        drained = []
        while True:
            try:
                drained.append(self._queue.get_nowait())
            except queue.Empty:
                return drained


class LogProgressSink(ProgressSink):
    def publish(self, event: ProgressEvent) -> None:
        eta = f" | ETA {event.eta_seconds:.0f}s" if event.eta_seconds is not None else ""
        logger.info(
            f"[{event.session_id[:8]}] {event.table or '-'}: {event.records_processed}"
            f"/{event.total_records} records | {event.records_per_second:.1f} rec/s{eta} | {event.status}"
        )


class FanOutProgressSink(ProgressSink):
    """Publishes every event to each wrapped sink; one failing sink does not stop the others."""

    def __init__(self, sinks: List[ProgressSink]):
        self._sinks = list(sinks)

    def publish(self, event: ProgressEvent) -> None:
        for sink in self._sinks:
            try:
                sink.publish(event)
            except Exception as e:
                logger.warning(f"Progress sink {type(sink).__name__} failed: {e}")


class ProgressTracker:
    """Throughput and ETA for one table's import."""

    def __init__(self, expected_total: Optional[int] = None, clock=time.monotonic):
        self._clock = clock
        self._started = clock()
        self.expected_total = expected_total
        self.processed = 0

    def advance(self, count: int) -> None:
        self.processed += count

    @property
    def records_per_second(self) -> float:
        elapsed = self._clock() - self._started
        if elapsed <= 0:
            return 0.0
        return self.processed / elapsed

    @property
    def eta_seconds(self) -> Optional[float]:
        """Seconds left at the current rate; None while the total or the rate is unknown."""
        rate = self.records_per_second
        if not self.expected_total or rate <= 0:
            return None
        return max(0.0, (self.expected_total - self.processed) / rate)
