"""PostgreSQL dialect."""

from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import quote as urlquote

from popkit.dialects.base import Capabilities, Dialect

if TYPE_CHECKING:
    from popkit.stores import Store


class PostgreSQL(Dialect):
    """PostgreSQL: ``$n`` placeholders, double-quoted identifiers, RETURNING."""

    name = "postgresql"
    capabilities = Capabilities(supports_returning=True, numbered_placeholders=True)
    default_port = 5432

    def url(self) -> str:
        d = self.details
        if d.url:
            return d.url
        auth = urlquote(d.user, safe="")
        if d.password:
            auth += ":" + urlquote(d.password, safe="")
        sslmode = d.option("sslmode", "disable")
        return f"postgres://{auth}@{d.host}:{d.port}/{d.database}?sslmode={sslmode}"

    async def open_store(self) -> Store:
        from popkit.stores.postgres import PostgresStore

        return await PostgresStore.open(
            self.url(), min_size=self.details.pool_min, max_size=self.details.pool_max
        )

    async def _list_tables(self, store: Store) -> list[str]:
        result = await store.execute(
            "SELECT tablename FROM pg_catalog.pg_tables WHERE schemaname = current_schema()", []
        )
        return [row["tablename"] for row in result]
