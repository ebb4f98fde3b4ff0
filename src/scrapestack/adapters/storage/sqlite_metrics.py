"""SQLite storage adapter for the collector's samples."""

import json
import math
from collections.abc import AsyncIterable, Iterable
from typing import Any

from scrapestack.adapters.storage.sqlite_base import SQLiteStorageBase, _safe_json_loads
from scrapestack.core.models import MetricSample

_METRICS_SCHEMA = """
CREATE TABLE IF NOT EXISTS metrics (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    timestamp REAL NOT NULL,
    value REAL,
    labels TEXT NOT NULL DEFAULT '{}'
);
CREATE INDEX IF NOT EXISTS idx_metrics_timestamp ON metrics(timestamp);
CREATE INDEX IF NOT EXISTS idx_metrics_name_timestamp ON metrics(name, timestamp);
"""

_INSERT_METRIC = """
INSERT INTO metrics (name, timestamp, value, labels) VALUES (?, ?, ?, ?)
"""

_SELECT_METRICS_SINCE = """
SELECT name, timestamp, value, labels FROM metrics
WHERE timestamp > ?
ORDER BY timestamp ASC, id ASC
"""

_SELECT_METRIC_RANGE = """
SELECT name, timestamp, value, labels FROM metrics
WHERE name = ? AND timestamp >= ? AND timestamp <= ?
ORDER BY timestamp ASC, id ASC
"""

_SELECT_ALL_RANGE = """
SELECT name, timestamp, value, labels FROM metrics
WHERE timestamp >= ? AND timestamp <= ?
ORDER BY timestamp ASC, id ASC
"""

_SELECT_NAMES = "SELECT DISTINCT name FROM metrics ORDER BY name"

_COUNT_METRICS = "SELECT COUNT(*) FROM metrics"

_DELETE_METRICS_BEFORE = "DELETE FROM metrics WHERE timestamp < ?"

_CLEAR_METRICS = "DELETE FROM metrics"


def _to_row(sample: MetricSample) -> tuple[Any, ...]:
    # SQLite has no NaN; it is stored as NULL and mapped back on read
    value = None if math.isnan(sample.value) else sample.value
    return (sample.name, sample.timestamp, value, json.dumps(sample.labels))


def _from_row(row: Any) -> MetricSample:
    return MetricSample(
        name=row[0],
        timestamp=row[1],
        value=float("nan") if row[2] is None else row[2],
        labels=_safe_json_loads(row[3]),
    )


class SQLiteMetricsStorage(SQLiteStorageBase):
    """SQLite implementation of MetricsStoragePort.

    Stores metric samples using aiosqlite for non-blocking async
    operations, in WAL mode for concurrent access. ``write_batch`` commits
    a whole scrape in one transaction.

    Sync methods (write_sync, read_sync, clear_sync) use the standard
    sqlite3 module for non-async contexts like CLI tools or testing.
    """

    def __init__(self, db_path: str) -> None:
        super().__init__(db_path, _METRICS_SCHEMA)

    async def write(self, sample: MetricSample) -> None:
        """Write a metric sample to storage."""
        async with self.async_connection() as db:
            await db.execute(_INSERT_METRIC, _to_row(sample))
            await db.commit()

    async def write_batch(self, samples: Iterable[MetricSample]) -> None:
        """Write samples in a single transaction."""
        rows = [_to_row(s) for s in samples]
        if not rows:
            return
        async with self.async_connection() as db:
            try:
                await db.executemany(_INSERT_METRIC, rows)
                await db.commit()
            except Exception:
                await db.rollback()
                raise

    async def read(self, since: float = 0) -> AsyncIterable[MetricSample]:
        """Read metric samples with timestamp > since, ascending."""
        async with self.async_connection() as db:
            async with db.execute(_SELECT_METRICS_SINCE, (since,)) as cursor:
                async for row in cursor:
                    yield _from_row(row)

    async def select(
        self, name: str | None, start: float, end: float
    ) -> AsyncIterable[MetricSample]:
        """Read samples of one metric within [start, end]."""
        if name is None:
            query, params = _SELECT_ALL_RANGE, (start, end)
        else:
            query, params = _SELECT_METRIC_RANGE, (name, start, end)
        async with self.async_connection() as db:
            async with db.execute(query, params) as cursor:
                async for row in cursor:
                    yield _from_row(row)

    async def names(self) -> list[str]:
        async with self.async_connection() as db:
            async with db.execute(_SELECT_NAMES) as cursor:
                return [row[0] async for row in cursor]

    async def count(self) -> int:
        """Return total number of metric samples in storage."""
        async with self.async_connection() as db:
            async with db.execute(_COUNT_METRICS) as cursor:
                row = await cursor.fetchone()
                return row[0] if row else 0

    async def delete_before(self, timestamp: float) -> int:
        """Delete metric samples with timestamp < given value."""
        async with self.async_connection() as db:
            cursor = await db.execute(_DELETE_METRICS_BEFORE, (timestamp,))
            deleted = cursor.rowcount
            await db.commit()
            return deleted

    async def clear(self) -> None:
        """Clear all samples from storage."""
        async with self.async_connection() as db:
            await db.execute(_CLEAR_METRICS)
            await db.commit()

    # --- Sync methods using standard sqlite3 module ---

    def write_sync(self, sample: MetricSample) -> None:
        """Synchronous write for non-async contexts."""
        with self.sync_connection() as conn:
            conn.execute(_INSERT_METRIC, _to_row(sample))
            conn.commit()

    def read_sync(self, since: float = 0) -> list[MetricSample]:
        """Synchronous read for non-async contexts."""
        with self.sync_connection() as conn:
            cursor = conn.execute(_SELECT_METRICS_SINCE, (since,))
            return [_from_row(row) for row in cursor]

    def clear_sync(self) -> None:
        """Synchronous clear for non-async contexts."""
        with self.sync_connection() as conn:
            conn.execute(_CLEAR_METRICS)
            conn.commit()
