"""CockroachDB dialect: the PostgreSQL wire protocol on another default port."""

from __future__ import annotations

from typing import TYPE_CHECKING

from popkit.dialects.base import Capabilities
from popkit.dialects.postgresql import PostgreSQL

if TYPE_CHECKING:
    from popkit.stores import Store


class Cockroach(PostgreSQL):
    name = "cockroach"
    capabilities = Capabilities(supports_returning=True, numbered_placeholders=True)
    default_port = 26257

    async def _list_tables(self, store: Store) -> list[str]:
        result = await store.execute(
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = current_schema() AND table_type = 'BASE TABLE'",
            [],
        )
        return [row["table_name"] for row in result]

    def _truncate_statements(self, tables: list[str]) -> list[str]:
        # One table per statement keeps schema-change jobs small
        return [f"TRUNCATE TABLE {self.quote(t)} CASCADE" for t in tables]
