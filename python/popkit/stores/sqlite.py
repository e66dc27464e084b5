"""SQLite store backed by aiosqlite."""

from __future__ import annotations

import datetime
import logging
import uuid
from collections.abc import Sequence
from typing import Any

import aiosqlite

from popkit.stores import QueryResult

logger = logging.getLogger(__name__)


class SQLiteStore:
    """A single aiosqlite connection in autocommit mode.

    Example:
        >>> store = await SQLiteStore.open(":memory:")
        >>> await store.execute_statement("CREATE TABLE t (id INTEGER PRIMARY KEY)")
        0
    """

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    @classmethod
    async def open(cls, database: str, **kwargs: Any) -> SQLiteStore:
        """Open ``database`` (a path or ``:memory:``)."""
        db = await aiosqlite.connect(database, isolation_level=None, **kwargs)
        db.row_factory = aiosqlite.Row
        await db.execute("PRAGMA foreign_keys = ON")
        logger.debug("opened sqlite database %s", database)
        return cls(db)

    @property
    def connection(self) -> aiosqlite.Connection:
        return self._db

    async def execute(self, sql: str, params: Sequence[Any] | None = None) -> QueryResult:
        async with self._db.execute(sql, tuple(_adapt(p) for p in params or ())) as cursor:
            rows = await cursor.fetchall()
            columns = [d[0] for d in cursor.description or ()]
        return QueryResult(columns, [dict(zip(columns, tuple(row))) for row in rows])

    async def execute_statement(self, sql: str, params: Sequence[Any] | None = None) -> int:
        async with self._db.execute(sql, tuple(_adapt(p) for p in params or ())) as cursor:
            return max(cursor.rowcount, 0)

    async def executescript(self, script: str) -> None:
        """Run several statements at once, e.g. a schema fixture."""
        await self._db.executescript(script)

    async def close(self) -> None:
        await self._db.close()


def _adapt(value: Any) -> Any:
    """Convert values sqlite3 cannot bind natively."""
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime.datetime, datetime.date)):
        return value.isoformat()
    return value
