"""Storage adapters implementing core ports."""

from scrapestack.adapters.storage.in_memory import (
    InMemoryLogStorage,
    InMemoryMetricsStorage,
)
from scrapestack.adapters.storage.ring_buffer import (
    RingBufferLogStorage,
    RingBufferMetricsStorage,
)
from scrapestack.adapters.storage.sqlite_metrics import SQLiteMetricsStorage
from scrapestack.adapters.storage.sqlite_state import (
    InMemoryStateStorage,
    SQLiteStateStorage,
)

__all__ = [
    "InMemoryLogStorage",
    "InMemoryMetricsStorage",
    "InMemoryStateStorage",
    "RingBufferLogStorage",
    "RingBufferMetricsStorage",
    "SQLiteMetricsStorage",
    "SQLiteStateStorage",
]
