"""PostgreSQL (and CockroachDB) store backed by an asyncpg pool."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import asyncpg

from popkit.stores import QueryResult

logger = logging.getLogger(__name__)


class PostgresStore:
    """An asyncpg connection pool.

    Statements must already use ``$n`` placeholders; the PostgreSQL and
    CockroachDB dialects translate them before execution.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    @classmethod
    async def open(
        cls, url: str, *, min_size: int = 1, max_size: int = 10, **kwargs: Any
    ) -> PostgresStore:
        pool = await asyncpg.create_pool(url, min_size=min_size, max_size=max_size, **kwargs)
        logger.debug("opened postgres pool (min=%d, max=%d)", min_size, max_size)
        return cls(pool)

    @property
    def pool(self) -> asyncpg.Pool:
        return self._pool

    async def execute(self, sql: str, params: Sequence[Any] | None = None) -> QueryResult:
        async with self._pool.acquire() as conn:
            stmt = await conn.prepare(sql)
            records = await stmt.fetch(*(params or ()))
            columns = [attr.name for attr in stmt.get_attributes()]
        return QueryResult(columns, [dict(record.items()) for record in records])

    async def execute_statement(self, sql: str, params: Sequence[Any] | None = None) -> int:
        async with self._pool.acquire() as conn:
            status = await conn.execute(sql, *(params or ()))
        return _affected_rows(status)

    async def close(self) -> None:
        await self._pool.close()


def _affected_rows(status: str) -> int:
    """Parse the row count out of a command tag such as ``UPDATE 3``."""
    last = status.rsplit(" ", 1)[-1] if status else ""
    return int(last) if last.isdigit() else 0
