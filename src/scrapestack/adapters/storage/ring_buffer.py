"""Ring buffer storage adapters for logs and metrics.

Provides bounded in-memory storage that automatically evicts oldest
entries when the buffer is full. The collector keeps its own log records
in a RingBufferLogStorage so memory use stays predictable.
"""

from collections import deque
from collections.abc import AsyncIterable, Iterable

from scrapestack.core.models import LogEntry, MetricSample


class RingBufferLogStorage:
    """Ring buffer implementation of LogStoragePort.

    Args:
        max_size: Maximum number of entries to store.
    """

    def __init__(self, max_size: int) -> None:
        self._buffer: deque[LogEntry] = deque(maxlen=max_size)

    async def write(self, entry: LogEntry) -> None:
        """Write a log entry to storage."""
        self._buffer.append(entry)

    def write_sync(self, entry: LogEntry) -> None:
        """Synchronous write for logging handlers."""
        self._buffer.append(entry)

    async def read(
        self, since: float = 0, level: str | None = None
    ) -> AsyncIterable[LogEntry]:
        """Read log entries since the given timestamp.

        Returns entries with timestamp > since, ordered by timestamp ascending.
        """
        wanted = level.upper() if level else None
        filtered = [
            e
            for e in self._buffer
            if e.timestamp > since and (wanted is None or e.level.upper() == wanted)
        ]
        for entry in sorted(filtered, key=lambda e: e.timestamp):
            yield entry


class RingBufferMetricsStorage:
    """Ring buffer implementation of MetricsStoragePort.

    When the buffer is full the oldest sample is evicted to make room.

    Args:
        max_size: Maximum number of samples to store.
    """

    def __init__(self, max_size: int) -> None:
        self._buffer: deque[MetricSample] = deque(maxlen=max_size)

    async def write(self, sample: MetricSample) -> None:
        """Write a metric sample to storage."""
        self._buffer.append(sample)

    async def write_batch(self, samples: Iterable[MetricSample]) -> None:
        """Write a batch of samples."""
        self._buffer.extend(list(samples))

    async def read(self, since: float = 0) -> AsyncIterable[MetricSample]:
        """Read metric samples since the given timestamp."""
        filtered = [s for s in self._buffer if s.timestamp > since]
        for sample in sorted(filtered, key=lambda s: s.timestamp):
            yield sample

    async def select(
        self, name: str | None, start: float, end: float
    ) -> AsyncIterable[MetricSample]:
        """Read samples of one metric within [start, end]."""
        filtered = [
            s
            for s in self._buffer
            if (name is None or s.name == name) and start <= s.timestamp <= end
        ]
        for sample in sorted(filtered, key=lambda s: s.timestamp):
            yield sample

    async def names(self) -> list[str]:
        return sorted({s.name for s in self._buffer})

    async def count(self) -> int:
        """Return number of samples currently buffered."""
        return len(self._buffer)

    async def delete_before(self, timestamp: float) -> int:
        """Delete metric samples with timestamp < given value."""
        kept = [s for s in self._buffer if s.timestamp >= timestamp]
        deleted = len(self._buffer) - len(kept)
        self._buffer = deque(kept, maxlen=self._buffer.maxlen)
        return deleted
