"""Connection handling shared by the SQLite storage adapters.

File databases run in WAL mode so the collector's API can read while
scrape loops write. A ``:memory:`` database lives only as long as its
connection, so one connection is opened and reused instead.
"""

import asyncio
import json
import sqlite3
import threading
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from typing import Any

import aiosqlite

MEMORY = ":memory:"

# Scrape loops of several targets commit concurrently
_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA busy_timeout=5000",
)


def _safe_json_loads(data: str) -> dict[str, Any]:
    """Parse a JSON object column; corrupt rows read as empty."""
    try:
        result = json.loads(data)
    except json.JSONDecodeError:
        return {}
    return result if isinstance(result, dict) else {}


class SQLiteStorageBase:
    """Base class for SQLite storage adapters.

    Subclasses pass their schema and use ``async_connection()`` or
    ``sync_connection()``. The schema is applied on first use.

    With ``:memory:`` the sync and async sides each own a separate
    database; only file databases are shared between them.

    Args:
        db_path: Database file, or ``:memory:``.
        schema: SQL script creating tables and indexes idempotently.
    """

    def __init__(self, db_path: str, schema: str) -> None:
        self._db_path = db_path
        self._schema = schema
        self._async_ready = False
        self._async_lock: asyncio.Lock | None = None
        self._async_memory: aiosqlite.Connection | None = None
        self._sync_ready = False
        self._sync_lock = threading.Lock()
        self._sync_memory: sqlite3.Connection | None = None

    @property
    def in_memory(self) -> bool:
        return self._db_path == MEMORY

    async def _open_async(self) -> aiosqlite.Connection:
        db = await aiosqlite.connect(self._db_path)
        if not self.in_memory:
            for pragma in _PRAGMAS:
                await db.execute(pragma)
        return db

    async def _prepare_async(self) -> None:
        if self._async_ready:
            return
        # Created lazily: the storage may be built before the event loop
        if self._async_lock is None:
            self._async_lock = asyncio.Lock()
        async with self._async_lock:
            if self._async_ready:
                return
            db = await self._open_async()
            await db.executescript(self._schema)
            if self.in_memory:
                self._async_memory = db
            else:
                await db.close()
            self._async_ready = True

    @asynccontextmanager
    async def async_connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Yield an aiosqlite connection, closed afterwards unless in memory."""
        await self._prepare_async()
        if self._async_memory is not None:
            yield self._async_memory
            return
        db = await self._open_async()
        try:
            yield db
        finally:
            await db.close()

    def _open_sync(self) -> sqlite3.Connection:
        if self.in_memory:
            return sqlite3.connect(MEMORY, check_same_thread=False)
        conn = sqlite3.connect(self._db_path)
        for pragma in _PRAGMAS:
            conn.execute(pragma)
        return conn

    def _prepare_sync(self) -> None:
        if self._sync_ready:
            return
        with self._sync_lock:
            if self._sync_ready:
                return
            conn = self._open_sync()
            conn.executescript(self._schema)
            if self.in_memory:
                self._sync_memory = conn
            else:
                conn.close()
            self._sync_ready = True

    @contextmanager
    def sync_connection(self) -> Iterator[sqlite3.Connection]:
        """Yield a sqlite3 connection for code outside the event loop."""
        self._prepare_sync()
        if self._sync_memory is not None:
            yield self._sync_memory
            return
        conn = self._open_sync()
        try:
            yield conn
        finally:
            conn.close()

    async def close(self) -> None:
        """Release the persistent ``:memory:`` connections."""
        if self._async_memory is not None:
            await self._async_memory.close()
            self._async_memory = None
            self._async_ready = False
        if self._sync_memory is not None:
            self._sync_memory.close()
            self._sync_memory = None
            self._sync_ready = False
