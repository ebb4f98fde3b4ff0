"""In-memory storage adapters for logs and metrics."""

from collections.abc import AsyncIterable, Iterable

from scrapestack.core.models import LogEntry, MetricSample


class InMemoryLogStorage:
    """In-memory implementation of LogStoragePort.

    Stores log entries in a list. Suitable for testing and
    low-volume applications where persistence is not required.
    """

    def __init__(self) -> None:
        self._entries: list[LogEntry] = []

    async def write(self, entry: LogEntry) -> None:
        """Write a log entry to storage."""
        self._entries.append(entry)

    def write_sync(self, entry: LogEntry) -> None:
        """Synchronous write for logging handlers."""
        self._entries.append(entry)

    async def read(
        self, since: float = 0, level: str | None = None
    ) -> AsyncIterable[LogEntry]:
        """Read log entries since the given timestamp.

        Returns entries with timestamp > since, ordered by timestamp ascending.
        """
        wanted = level.upper() if level else None
        filtered = [
            e
            for e in self._entries
            if e.timestamp > since and (wanted is None or e.level.upper() == wanted)
        ]
        for entry in sorted(filtered, key=lambda e: e.timestamp):
            yield entry


class InMemoryMetricsStorage:
    """In-memory implementation of MetricsStoragePort.

    Stores metric samples in a list with a per-name index for range
    selects. Suitable for testing and short-lived collectors.
    """

    def __init__(self) -> None:
        self._samples: list[MetricSample] = []
        self._by_name: dict[str, list[MetricSample]] = {}

    def _append(self, sample: MetricSample) -> None:
        self._samples.append(sample)
        self._by_name.setdefault(sample.name, []).append(sample)

    async def write(self, sample: MetricSample) -> None:
        """Write a metric sample to storage."""
        self._append(sample)

    async def write_batch(self, samples: Iterable[MetricSample]) -> None:
        """Write a batch of samples."""
        # Materialize first so a failing iterator leaves storage untouched
        batch = list(samples)
        for sample in batch:
            self._append(sample)

    async def read(self, since: float = 0) -> AsyncIterable[MetricSample]:
        """Read metric samples since the given timestamp."""
        filtered = [s for s in self._samples if s.timestamp > since]
        for sample in sorted(filtered, key=lambda s: s.timestamp):
            yield sample

    async def select(
        self, name: str | None, start: float, end: float
    ) -> AsyncIterable[MetricSample]:
        """Read samples of one metric within [start, end]."""
        source = self._samples if name is None else self._by_name.get(name, [])
        filtered = [s for s in source if start <= s.timestamp <= end]
        for sample in sorted(filtered, key=lambda s: s.timestamp):
            yield sample

    async def names(self) -> list[str]:
        return sorted(self._by_name)

    async def count(self) -> int:
        """Return total number of metric samples in storage."""
        return len(self._samples)

    async def delete_before(self, timestamp: float) -> int:
        """Delete metric samples with timestamp < given value."""
        kept = [s for s in self._samples if s.timestamp >= timestamp]
        deleted = len(self._samples) - len(kept)
        self._samples = []
        self._by_name = {}
        for sample in kept:
            self._append(sample)
        return deleted

    async def clear(self) -> None:
        """Clear all samples from storage."""
        self._samples = []
        self._by_name = {}
