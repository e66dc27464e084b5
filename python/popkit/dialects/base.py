"""Dialect base class: SQL generation shared by every backend."""

from __future__ import annotations

import datetime
import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar, TypeVar

from popkit._cache import KeyedCache
from popkit.errors import MissingPrimaryKeyError, UnsupportedByDialectError

if TYPE_CHECKING:
    from popkit.base import Base
    from popkit.details import ConnectionDetails
    from popkit.fields import ColumnInfo
    from popkit.metadata import ModelMetadata
    from popkit.query import Query
    from popkit.stores import Store

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Tables never emptied by truncate_all()
PROTECTED_TABLES = frozenset({"schema_migration"})


@dataclass(frozen=True)
class Capabilities:
    """Feature flags a dialect exposes to the query builder."""

    supports_returning: bool = True
    supports_for_update: bool = True
    numbered_placeholders: bool = False
    quote_char: str = '"'


class Dialect(ABC):
    """SQL flavor of one database family.

    Subclasses set ``name`` and ``capabilities``; the statement builders here
    cover every backend and consult the capabilities where they differ.
    """

    name: ClassVar[str]
    capabilities: ClassVar[Capabilities] = Capabilities()
    default_port: ClassVar[int | None] = None

    def __init__(self, details: ConnectionDetails) -> None:
        self.details = details
        self._translations: KeyedCache[str, str] = KeyedCache()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} database={self.details.database!r}>"

    # ========== SQL text ==========

    def translate_sql(self, sql: str) -> str:
        """Rewrite ``?`` placeholders into the dialect's native style.

        Results are cached per source string. Placeholders inside quoted
        literals are rewritten too.
        """
        if not self.capabilities.numbered_placeholders:
            return sql
        return self._translations.get_or_compute(sql, lambda: _number_placeholders(sql))

    def quote(self, identifier: str) -> str:
        """Quote an identifier, one dotted part at a time.

        Example:
            >>> PostgreSQL(details).quote("family.members")
            '"family"."members"'
        """
        q = self.capabilities.quote_char
        parts = []
        for part in identifier.split("."):
            if part == "*":
                parts.append(part)
            else:
                parts.append(q + part.replace(q, q + q) + q)
        return ".".join(parts)

    @abstractmethod
    def url(self) -> str:
        """Connection URL built from the details."""

    async def open_store(self) -> Store:
        """Open the built-in store for this dialect."""
        raise UnsupportedByDialectError(self.name, "built-in store")

    async def lock(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` under the dialect's global write lock, if it has one."""
        return await fn()

    # ========== CRUD ==========

    async def create(
        self,
        store: Store,
        meta: ModelMetadata,
        record: Base,
        columns: Sequence[ColumnInfo] | None = None,
    ) -> None:
        """INSERT ``record``, filling in a database-generated primary key."""
        pk = meta.primary_key
        pk_attr = pk.name or "id"
        if getattr(record, pk_attr) is None:
            if pk.generates_uuid:
                setattr(record, pk_attr, uuid.uuid4())
            elif not pk.autoincrement:
                raise MissingPrimaryKeyError(meta.model_name, pk_attr)

        _touch_timestamps(meta, record, creating=True)

        cols = list(columns) if columns is not None else meta.writeable_columns(for_insert=True)
        cols.sort(key=lambda c: meta.column_name(c.name))  # type: ignore[arg-type]
        names = [self.quote(meta.column_name(c.name)) for c in cols]  # type: ignore[arg-type]
        values = [getattr(record, c.name) for c in cols]  # type: ignore[arg-type]

        table = self.quote(meta.table_name)
        if names:
            sql = f"INSERT INTO {table} ({', '.join(names)}) VALUES ({', '.join('?' * len(names))})"
        else:
            sql = self._insert_defaults(table)

        returns_key = pk.autoincrement and getattr(record, pk_attr) is None
        if returns_key and self.capabilities.supports_returning:
            sql += f" RETURNING {self.quote(meta.primary_key_column)}"
            result = await store.execute(self.translate_sql(sql), values)
            setattr(record, pk_attr, result.scalar())
        elif returns_key:
            await store.execute_statement(self.translate_sql(sql), values)
            result = await store.execute(self._last_insert_id_sql(), [])
            setattr(record, pk_attr, result.scalar())
        else:
            await store.execute_statement(self.translate_sql(sql), values)

    async def update(
        self,
        store: Store,
        meta: ModelMetadata,
        record: Base,
        columns: Sequence[ColumnInfo] | None = None,
    ) -> int:
        """UPDATE every writeable column of ``record`` by primary key."""
        pk_value = meta.primary_key_value(record)
        _touch_timestamps(meta, record, creating=False)

        cols = list(columns) if columns is not None else meta.writeable_columns()
        cols.sort(key=lambda c: meta.column_name(c.name))  # type: ignore[arg-type]
        if not cols:
            return 0
        assignments = ", ".join(f"{self.quote(meta.column_name(c.name))} = ?" for c in cols)  # type: ignore[arg-type]
        values = [getattr(record, c.name) for c in cols]  # type: ignore[arg-type]

        sql = (
            f"UPDATE {self.quote(meta.table_name)} SET {assignments} "
            f"WHERE {self.quote(meta.primary_key_column)} = ?"
        )
        return await store.execute_statement(self.translate_sql(sql), [*values, pk_value])

    async def update_query(
        self,
        store: Store,
        meta: ModelMetadata,
        query: Query,
        values: Mapping[str, Any],
    ) -> int:
        """UPDATE every row matching ``query``'s WHERE clauses; returns the row count."""
        values = dict(values)
        if "updated_at" in meta.model.__columns__ and "updated_at" not in values:
            values["updated_at"] = _now()

        cols = {attr: meta.column(attr) for attr in values}
        assignments = []
        args: list[Any] = []
        for attr in sorted(cols, key=meta.column_name):
            if cols[attr].primary_key:
                continue
            assignments.append(f"{self.quote(meta.column_name(attr))} = ?")
            args.append(values[attr])
        if not assignments:
            return 0

        where_sql, where_args = query.where_sql()
        sql = f"UPDATE {self._target(meta)} SET {', '.join(assignments)}{where_sql}"
        return await store.execute_statement(self.translate_sql(sql), [*args, *where_args])

    async def destroy(self, store: Store, meta: ModelMetadata, record: Base) -> int:
        """DELETE ``record`` by primary key."""
        pk_value = meta.primary_key_value(record)
        sql = (
            f"DELETE FROM {self.quote(meta.table_name)} "
            f"WHERE {self.quote(meta.primary_key_column)} = ?"
        )
        return await store.execute_statement(self.translate_sql(sql), [pk_value])

    async def delete(self, store: Store, meta: ModelMetadata, query: Query) -> int:
        """DELETE every row matching ``query``'s WHERE clauses."""
        where_sql, where_args = query.where_sql()
        sql = f"DELETE FROM {self._target(meta)}{where_sql}"
        return await store.execute_statement(self.translate_sql(sql), where_args)

    async def select_one(
        self, store: Store, meta: ModelMetadata, query: Query
    ) -> dict[str, Any] | None:
        sql, args = query.to_sql(meta)
        return (await store.execute(sql, args)).first()

    async def select_many(
        self, store: Store, meta: ModelMetadata, query: Query
    ) -> list[dict[str, Any]]:
        sql, args = query.to_sql(meta)
        return (await store.execute(sql, args)).all()

    # ========== Maintenance ==========

    async def truncate_all(self, store: Store) -> None:
        """Empty every table except the protected bookkeeping tables."""
        tables = [t for t in await self._list_tables(store) if t not in PROTECTED_TABLES]
        if not tables:
            return
        for sql in self._truncate_statements(tables):
            await store.execute_statement(sql, [])

    async def _list_tables(self, store: Store) -> list[str]:
        raise UnsupportedByDialectError(self.name, "truncate_all")

    def _truncate_statements(self, tables: list[str]) -> list[str]:
        return [f"TRUNCATE TABLE {', '.join(self.quote(t) for t in tables)} CASCADE"]

    # ========== Hooks ==========

    def _target(self, meta: ModelMetadata) -> str:
        """Table reference for statements whose clauses may use the alias."""
        return f"{self.quote(meta.table_name)} AS {meta.alias}"

    def _insert_defaults(self, table: str) -> str:
        return f"INSERT INTO {table} DEFAULT VALUES"

    def _last_insert_id_sql(self) -> str:
        raise UnsupportedByDialectError(self.name, "last insert id")


def _number_placeholders(sql: str) -> str:
    out = []
    n = 0
    for ch in sql:
        if ch == "?":
            n += 1
            out.append(f"${n}")
        else:
            out.append(ch)
    return "".join(out)


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _touch_timestamps(meta: ModelMetadata, record: Base, *, creating: bool) -> None:
    columns = meta.model.__columns__
    now = _now()
    if creating and "created_at" in columns and getattr(record, "created_at") is None:
        record.created_at = now  # type: ignore[attr-defined]
    if "updated_at" in columns and (not creating or getattr(record, "updated_at") is None):
        record.updated_at = now  # type: ignore[attr-defined]
