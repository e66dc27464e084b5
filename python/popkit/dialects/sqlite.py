"""SQLite dialect."""

from __future__ import annotations

import asyncio
import weakref
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypeVar

from popkit.dialects.base import Capabilities, Dialect

if TYPE_CHECKING:
    from popkit.metadata import ModelMetadata
    from popkit.stores import Store

T = TypeVar("T")

# SQLite allows one writer per database file. asyncio locks belong to one
# event loop, so each running loop gets its own.
_write_locks: weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Lock] = (
    weakref.WeakKeyDictionary()
)


def _write_lock() -> asyncio.Lock:
    loop = asyncio.get_running_loop()
    lock = _write_locks.get(loop)
    if lock is None:
        lock = _write_locks[loop] = asyncio.Lock()
    return lock


class SQLite(Dialect):
    """SQLite: ``?`` placeholders, RETURNING (3.35+), no row locks."""

    name = "sqlite"
    capabilities = Capabilities(supports_returning=True, supports_for_update=False)

    def url(self) -> str:
        d = self.details
        if d.url:
            return d.url
        return f"sqlite:///{d.database}"

    async def open_store(self) -> Store:
        from popkit.stores.sqlite import SQLiteStore

        return await SQLiteStore.open(self.details.database or ":memory:")

    async def lock(self, fn: Callable[[], Awaitable[T]]) -> T:
        async with _write_lock():
            return await fn()

    def _target(self, meta: ModelMetadata) -> str:
        # WHERE clauses qualify columns with the alias, which SQLite only
        # accepts when it names the table itself
        if meta.alias == meta.table_name:
            return self.quote(meta.table_name)
        return f"{self.quote(meta.table_name)} AS {meta.alias}"

    async def _list_tables(self, store: Store) -> list[str]:
        result = await store.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%'", []
        )
        return [row["name"] for row in result]

    def _truncate_statements(self, tables: list[str]) -> list[str]:
        return [f"DELETE FROM {self.quote(t)}" for t in tables]
