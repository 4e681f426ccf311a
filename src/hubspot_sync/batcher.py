"""
Event buffering with background flushes.

Pushes never block on the sink: once the buffer reaches the threshold it
is snapshotted, cleared, and written on a small thread pool. Every flush
is tracked, and `flush()` is the completion barrier that joins them all.
"""

import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Any

import structlog

from hubspot_sync.models import Event
from hubspot_sync.store import EventSink

logger = structlog.get_logger(__name__)

DEFAULT_FLUSH_THRESHOLD = 2000


class EventBatcher:
    """
    Buffers events and hands full batches to the event sink.

    At most `max_in_flight` flushes run at once; a push that would start
    another waits for one to finish first. Sink failures are logged and
    counted but not retried.

    Example:
        batcher = EventBatcher(sink)
        for event in events:
            batcher.push(event)
        persisted = batcher.flush()
        batcher.close()
    """

    def __init__(
        self,
        sink: EventSink,
        threshold: int = DEFAULT_FLUSH_THRESHOLD,
        max_in_flight: int = 4,
        tenant_key: str | None = None,
    ):
        if threshold <= 0:
            raise ValueError("threshold must be positive")

        self.sink = sink
        self.threshold = threshold
        self.max_in_flight = max_in_flight

        self._buffer: list[Event] = []
        self._buffer_lock = threading.Lock()
        self._in_flight: set[Future] = set()
        self._pool = ThreadPoolExecutor(max_workers=max_in_flight, thread_name_prefix="event-flush")

        self._stats_lock = threading.Lock()
        self.flushes_started = 0
        self.persisted_count = 0
        self.failed_count = 0

        self._log = logger.bind(api_key=tenant_key)

    @property
    def pending(self) -> int:
        """Events buffered but not yet handed to a flush."""
        with self._buffer_lock:
            return len(self._buffer)

    def push(self, event: Event) -> None:
        snapshot: list[Event] | None = None
        with self._buffer_lock:
            self._buffer.append(event)
            if len(self._buffer) >= self.threshold:
                snapshot = self._buffer
                self._buffer = []

        if snapshot:
            self._submit(snapshot)

    def _submit(self, snapshot: list[Event]) -> None:
        self._reap()
        while len(self._in_flight) >= self.max_in_flight:
            wait(self._in_flight, return_when=FIRST_COMPLETED)
            self._reap()

        self.flushes_started += 1
        self._log.info("Inserting events into sink", count=len(snapshot))
        self._in_flight.add(self._pool.submit(self._persist, snapshot))

    def _reap(self) -> None:
        self._in_flight = {future for future in self._in_flight if not future.done()}

    def _persist(self, events: list[Event]) -> int:
        try:
            count = self.sink.persist(events)
        except Exception as e:
            with self._stats_lock:
                self.failed_count += len(events)
            self._log.error("Failed to persist events", count=len(events), error=str(e))
            return 0

        with self._stats_lock:
            self.persisted_count += count
        return count

    def flush(self) -> int:
        """
        Hand off the remaining buffer and wait for every flush to finish.

        Returns:
            Total events persisted by this batcher so far
        """
        with self._buffer_lock:
            snapshot = self._buffer
            self._buffer = []

        if snapshot:
            self._submit(snapshot)

        if self._in_flight:
            wait(self._in_flight)
        self._reap()

        return self.persisted_count

    def close(self) -> int:
        persisted = self.flush()
        self._pool.shutdown(wait=True)
        return persisted

    def __enter__(self) -> "EventBatcher":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def get_stats(self) -> dict[str, int]:
        return {
            "pending": self.pending,
            "in_flight": len(self._in_flight),
            "flushes_started": self.flushes_started,
            "persisted": self.persisted_count,
            "failed": self.failed_count,
        }
