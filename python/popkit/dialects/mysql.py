"""MySQL dialect."""

from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import quote as urlquote

from popkit.dialects.base import Capabilities, Dialect

if TYPE_CHECKING:
    from popkit.metadata import ModelMetadata
    from popkit.stores import Store


class MySQL(Dialect):
    """MySQL: ``?`` placeholders, backtick identifiers, no RETURNING.

    There is no built-in store; pass one to ``connect(..., store=...)``.
    """

    name = "mysql"
    capabilities = Capabilities(supports_returning=False, quote_char="`")
    default_port = 3306

    def url(self) -> str:
        d = self.details
        if d.url:
            return d.url
        auth = urlquote(d.user, safe="")
        if d.password:
            auth += ":" + urlquote(d.password, safe="")
        return f"mysql://{auth}@{d.host}:{d.port}/{d.database}"

    def _target(self, meta: ModelMetadata) -> str:
        if meta.alias == meta.table_name:
            return self.quote(meta.table_name)
        return f"{self.quote(meta.table_name)} AS {meta.alias}"

    def _insert_defaults(self, table: str) -> str:
        return f"INSERT INTO {table} () VALUES ()"

    def _last_insert_id_sql(self) -> str:
        return "SELECT LAST_INSERT_ID()"

    async def _list_tables(self, store: Store) -> list[str]:
        result = await store.execute(
            "SELECT table_name AS table_name FROM information_schema.tables "
            "WHERE table_schema = DATABASE() AND table_type = 'BASE TABLE'",
            [],
        )
        return [row["table_name"] for row in result]

    def _truncate_statements(self, tables: list[str]) -> list[str]:
        statements = ["SET FOREIGN_KEY_CHECKS = 0"]
        statements += [f"TRUNCATE TABLE {self.quote(t)}" for t in tables]
        statements.append("SET FOREIGN_KEY_CHECKS = 1")
        return statements
