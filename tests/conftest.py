"""Pytest configuration and fixtures."""

import os
from typing import Any

import pytest
import pytest_asyncio

from popkit import Connection, QueryResult, Settings, connect, dialect_for
from popkit.stores.sqlite import SQLiteStore


class RecordingStore:
    """Store wrapper that remembers every statement it is asked to run."""

    def __init__(self, inner: Any) -> None:
        self.inner = inner
        self.statements: list[tuple[str, list[Any]]] = []
        self.fail_on: str | None = None

    async def execute(self, sql: str, params: Any = None) -> QueryResult:
        self._record(sql, params)
        return await self.inner.execute(sql, params)

    async def execute_statement(self, sql: str, params: Any = None) -> int:
        self._record(sql, params)
        return await self.inner.execute_statement(sql, params)

    async def close(self) -> None:
        await self.inner.close()

    def _record(self, sql: str, params: Any) -> None:
        if self.fail_on is not None and self.fail_on in sql:
            raise RuntimeError(f"store failure on {self.fail_on}")
        self.statements.append((sql, list(params or [])))

    def reset(self) -> None:
        self.statements.clear()

    @property
    def selects(self) -> list[str]:
        return [sql for sql, _ in self.statements if sql.lstrip().upper().startswith("SELECT")]


class NullStore:
    """Store for tests that only render SQL."""

    async def execute(self, sql: str, params: Any = None) -> QueryResult:
        raise AssertionError(f"unexpected execute: {sql}")

    async def execute_statement(self, sql: str, params: Any = None) -> int:
        raise AssertionError(f"unexpected execute_statement: {sql}")

    async def close(self) -> None:
        pass


@pytest.fixture
def sqlite_conn() -> Connection:
    """A connection that renders SQLite SQL and never executes."""
    return Connection(NullStore(), dialect_for("sqlite:///:memory:"))


@pytest.fixture
def pg_conn() -> Connection:
    """A connection that renders PostgreSQL SQL and never executes."""
    return Connection(NullStore(), dialect_for("postgres://app@localhost/app"))


async def open_sqlite(schema: str, settings: Settings | None = None) -> tuple[Connection, RecordingStore]:
    """Open an in-memory SQLite database with ``schema`` applied."""
    inner = await SQLiteStore.open(":memory:")
    await inner.executescript(schema)
    store = RecordingStore(inner)
    conn = await connect("sqlite:///:memory:", store=store, settings=settings)
    return conn, store


@pytest_asyncio.fixture
async def postgres_conn():
    """Create a PostgreSQL connection.

    Set DATABASE_URL environment variable to use a real PostgreSQL database.
    Otherwise, this fixture is skipped.
    """
    url = os.environ.get("DATABASE_URL")
    if not url:
        pytest.skip("DATABASE_URL not set")

    conn = await connect(url)
    yield conn
    await conn.close()
