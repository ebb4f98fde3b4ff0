"""Port interfaces for storage adapters.

These protocols define the contracts that storage adapters must implement.
The core domain depends only on these interfaces, not concrete implementations.
"""

from collections.abc import AsyncIterable, Iterable
from typing import Any, Protocol, runtime_checkable

from scrapestack.core.models import LogEntry, MetricSample


@runtime_checkable
class LogStoragePort(Protocol):
    """Port for log storage operations.

    Adapters implementing this protocol can store and retrieve log entries.
    Examples: InMemoryLogStorage, RingBufferLogStorage.
    """

    async def write(self, entry: LogEntry) -> None:
        """Write a log entry to storage."""
        ...

    def write_sync(self, entry: LogEntry) -> None:
        """Write a log entry from synchronous code (logging handlers)."""
        ...

    def read(
        self, since: float = 0, level: str | None = None
    ) -> AsyncIterable[LogEntry]:
        """Read log entries since the given timestamp.

        Args:
            since: Unix timestamp. Returns entries with timestamp > since.
                   Default 0 returns all entries.
            level: Optional level filter (case-insensitive).

        Returns:
            Async iterable of LogEntry objects, ordered by timestamp ascending.
        """
        ...


@runtime_checkable
class MetricsStoragePort(Protocol):
    """Port for the collector's sample store.

    The store is append-only per (series, timestamp). Adapters implementing
    this protocol: InMemoryMetricsStorage, RingBufferMetricsStorage,
    SQLiteMetricsStorage.
    """

    async def write(self, sample: MetricSample) -> None:
        """Write a metric sample to storage."""
        ...

    async def write_batch(self, samples: Iterable[MetricSample]) -> None:
        """Write all samples of one scrape; either all land or none do."""
        ...

    def read(self, since: float = 0) -> AsyncIterable[MetricSample]:
        """Read samples with timestamp > since, ordered by timestamp."""
        ...

    def select(
        self, name: str | None, start: float, end: float
    ) -> AsyncIterable[MetricSample]:
        """Read samples of one metric (all metrics when name is None).

        Returns samples with start <= timestamp <= end, ascending.
        """
        ...

    async def names(self) -> list[str]:
        """Return the sorted distinct metric names in storage."""
        ...

    async def count(self) -> int:
        """Return total number of samples in storage."""
        ...

    async def delete_before(self, timestamp: float) -> int:
        """Delete samples with timestamp < given value, returning the count."""
        ...


@runtime_checkable
class StateStoragePort(Protocol):
    """Port for small JSON documents keyed by (kind, key).

    Used by the visualization service for data sources, dashboards and users.
    """

    async def put(self, kind: str, key: str, document: dict[str, Any]) -> None:
        """Insert or replace a document."""
        ...

    async def get(self, kind: str, key: str) -> dict[str, Any] | None:
        """Return a document or None."""
        ...

    async def list(self, kind: str) -> list[dict[str, Any]]:
        """Return all documents of a kind ordered by key."""
        ...

    async def delete(self, kind: str, key: str) -> bool:
        """Delete a document, returning whether it existed."""
        ...
