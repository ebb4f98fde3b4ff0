"""SQLite storage adapter for small JSON documents.

The visualization service keeps data sources, dashboards and users here,
so a file on a named volume retains them across restarts.
"""

import json
from typing import Any

from scrapestack.adapters.storage.sqlite_base import SQLiteStorageBase, _safe_json_loads

_STATE_SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    kind TEXT NOT NULL,
    key TEXT NOT NULL,
    body TEXT NOT NULL,
    PRIMARY KEY (kind, key)
);
"""

_UPSERT = """
INSERT INTO documents (kind, key, body) VALUES (?, ?, ?)
ON CONFLICT(kind, key) DO UPDATE SET body = excluded.body
"""

_SELECT_ONE = "SELECT body FROM documents WHERE kind = ? AND key = ?"

_SELECT_KIND = "SELECT body FROM documents WHERE kind = ? ORDER BY key"

_DELETE_ONE = "DELETE FROM documents WHERE kind = ? AND key = ?"


class SQLiteStateStorage(SQLiteStorageBase):
    """SQLite implementation of StateStoragePort."""

    def __init__(self, db_path: str) -> None:
        super().__init__(db_path, _STATE_SCHEMA)

    async def put(self, kind: str, key: str, document: dict[str, Any]) -> None:
        async with self.async_connection() as db:
            await db.execute(_UPSERT, (kind, key, json.dumps(document)))
            await db.commit()

    async def get(self, kind: str, key: str) -> dict[str, Any] | None:
        async with self.async_connection() as db:
            async with db.execute(_SELECT_ONE, (kind, key)) as cursor:
                row = await cursor.fetchone()
        return _safe_json_loads(row[0]) if row else None

    async def list(self, kind: str) -> list[dict[str, Any]]:
        async with self.async_connection() as db:
            async with db.execute(_SELECT_KIND, (kind,)) as cursor:
                return [_safe_json_loads(row[0]) async for row in cursor]

    async def delete(self, kind: str, key: str) -> bool:
        async with self.async_connection() as db:
            cursor = await db.execute(_DELETE_ONE, (kind, key))
            deleted = cursor.rowcount > 0
            await db.commit()
        return deleted


class InMemoryStateStorage:
    """Dict-backed StateStoragePort for tests and throwaway instances."""

    def __init__(self) -> None:
        self._documents: dict[tuple[str, str], dict[str, Any]] = {}

    async def put(self, kind: str, key: str, document: dict[str, Any]) -> None:
        self._documents[(kind, key)] = json.loads(json.dumps(document))

    async def get(self, kind: str, key: str) -> dict[str, Any] | None:
        doc = self._documents.get((kind, key))
        return json.loads(json.dumps(doc)) if doc is not None else None

    async def list(self, kind: str) -> list[dict[str, Any]]:
        return [
            json.loads(json.dumps(doc))
            for (k, _), doc in sorted(self._documents.items())
            if k == kind
        ]

    async def delete(self, kind: str, key: str) -> bool:
        return self._documents.pop((kind, key), None) is not None
