"""Query builder for constructing SQL statements."""

from __future__ import annotations

import copy
import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

from popkit.columns import Columns
from popkit.config import EagerMode
from popkit.errors import EmptyQueryError, UnsupportedByDialectError
from popkit.metadata import ModelMetadata, describe
from popkit.paginator import Paginator
from popkit.preload import PathNode, build_forest, load_forest

if TYPE_CHECKING:
    from popkit.base import Base
    from popkit.connection import Connection

logger = logging.getLogger(__name__)

T = TypeVar("T", bound="Base")

_IN_PLACEHOLDER = re.compile(r"(\bin\s*)\(\s*\?\s*\)", re.IGNORECASE)
# Trailing LIMIT clauses stripped before counting raw queries
_TRAILING_LIMIT = re.compile(
    r"\s+limit\s+\d+(?:\s*,\s*\d+|\s+offset\s+\d+)?\s*;?\s*$", re.IGNORECASE
)
# Raw queries that already page themselves are left alone by paginate()
_TRAILING_PAGING = re.compile(
    r"(?:\blimit\s+\d+(?:\s*,\s*\d+|\s+offset\s+\d+)?"
    r"|\bfetch\s+(?:first|next)\s+\d+\s+rows?\s+only)\s*;?\s*$",
    re.IGNORECASE,
)

RAW_SQL_WARNING = "Query is setup to use raw SQL"


@dataclass
class WhereClause:
    fragment: str
    arguments: list[Any] = field(default_factory=list)


@dataclass
class OrderClause:
    fragment: str
    arguments: list[Any] = field(default_factory=list)


@dataclass
class GroupClause:
    field: str


@dataclass
class HavingClause:
    condition: str
    arguments: list[Any] = field(default_factory=list)


@dataclass
class JoinClause:
    join_type: str
    table: str
    on: str
    arguments: list[Any] = field(default_factory=list)


@dataclass
class RawSQL:
    fragment: str = ""
    arguments: list[Any] = field(default_factory=list)


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset))


def expand_placeholders(
    fragment: str, args: Sequence[Any], *, collapse_in: bool = True
) -> tuple[str, list[Any]]:
    """Expand ``?`` placeholders bound to several values.

    ``in (?)`` followed by two or more plain arguments gets one placeholder
    per argument. A ``?`` bound to a list, tuple or set gets one placeholder
    per element and the arguments are flattened; an empty sequence renders
    ``NULL``.

    Example:
        >>> expand_placeholders("id in (?)", (1, 2, 3))
        ('id in (?, ?, ?)', [1, 2, 3])
        >>> expand_placeholders("id in (?) and name = ?", ([1, 2], "x"))
        ('id in (?, ?) and name = ?', [1, 2, 'x'])
    """
    args = list(args)
    if not any(_is_sequence(a) for a in args):
        if collapse_in and len(args) > 1 and _IN_PLACEHOLDER.search(fragment):
            marks = ", ".join("?" * len(args))
            fragment = _IN_PLACEHOLDER.sub(lambda m: f"{m.group(1)}({marks})", fragment, count=1)
        return fragment, args

    pieces = fragment.split("?")
    out: list[str] = []
    flat: list[Any] = []
    for i, piece in enumerate(pieces[:-1]):
        out.append(piece)
        if i < len(args) and _is_sequence(args[i]):
            values = list(args[i])
            out.append(", ".join("?" * len(values)) if values else "NULL")
            flat.extend(values)
        else:
            out.append("?")
            if i < len(args):
                flat.append(args[i])
    out.append(pieces[-1])
    flat.extend(args[len(pieces) - 1 :])
    return "".join(out), flat


class Query:
    """A mutable, chainable SQL query bound to a connection handle.

    Clause methods append to the query and return it. Terminal coroutines
    (``all``, ``first``, ``count``...) render and execute it.

    Example:
        >>> users = await conn.where("name = ?", "Mark").order("id desc").all(User)
        >>> page = conn.paginate(2, 20)
        >>> rows = await page.all(User)
        >>> page.paginator.total_pages
        4
    """

    def __init__(self, connection: Connection) -> None:
        self.connection = connection
        self.raw_sql = RawSQL()
        self.where_clauses: list[WhereClause] = []
        self.order_clauses: list[OrderClause] = []
        self.group_clauses: list[GroupClause] = []
        self.having_clauses: list[HavingClause] = []
        self.join_clauses: list[JoinClause] = []
        self.limit_results: int | None = None
        self.offset_results: int | None = None
        self.paginator: Paginator | None = None
        self.add_columns: list[str] = []
        self.eager_paths: list[str] = []
        self.eager_mode: EagerMode | None = None
        self.lock_rows = False

    def __repr__(self) -> str:
        if self.raw_sql.fragment:
            return f"<Query raw={self.raw_sql.fragment!r}>"
        return f"<Query where={len(self.where_clauses)} order={len(self.order_clauses)}>"

    def clone(self) -> Query:
        """Copy the query; clause lists are copied, the connection is shared."""
        new = copy.copy(self)
        new.raw_sql = RawSQL(self.raw_sql.fragment, list(self.raw_sql.arguments))
        new.where_clauses = list(self.where_clauses)
        new.order_clauses = list(self.order_clauses)
        new.group_clauses = list(self.group_clauses)
        new.having_clauses = list(self.having_clauses)
        new.join_clauses = list(self.join_clauses)
        new.paginator = copy.copy(self.paginator)
        new.add_columns = list(self.add_columns)
        new.eager_paths = list(self.eager_paths)
        return new

    def _uses_raw_sql(self) -> bool:
        if self.raw_sql.fragment:
            logger.warning(RAW_SQL_WARNING)
            return True
        return False

    # ========== Clauses ==========

    def raw_query(self, sql: str, *args: Any) -> Query:
        """Use ``sql`` verbatim instead of the clause lists.

        Sequence arguments are still expanded into one placeholder each.
        """
        fragment, flat = expand_placeholders(sql, args, collapse_in=False)
        self.raw_sql = RawSQL(fragment, flat)
        return self

    def where(self, fragment: str, *args: Any) -> Query:
        """Add a WHERE condition; conditions are joined with AND."""
        if self._uses_raw_sql():
            return self
        fragment, flat = expand_placeholders(fragment, args)
        self.where_clauses.append(WhereClause(fragment, flat))
        return self

    def order(self, fragment: str, *args: Any) -> Query:
        """Add an ORDER BY expression, e.g. ``order("title > ? DESC", "A")``."""
        if self._uses_raw_sql():
            return self
        self.order_clauses.append(OrderClause(fragment, list(args)))
        return self

    def group_by(self, field: str, *fields: str) -> Query:
        if self._uses_raw_sql():
            return self
        self.group_clauses.append(GroupClause(field))
        self.group_clauses.extend(GroupClause(f) for f in fields)
        return self

    def having(self, condition: str, *args: Any) -> Query:
        if self._uses_raw_sql():
            return self
        self.having_clauses.append(HavingClause(condition, list(args)))
        return self

    def join(self, table: str, on: str, *args: Any, join_type: str = "JOIN") -> Query:
        """Add a join; join arguments come before every other argument."""
        if self._uses_raw_sql():
            return self
        self.join_clauses.append(JoinClause(join_type, table, on, list(args)))
        return self

    def left_join(self, table: str, on: str, *args: Any) -> Query:
        return self.join(table, on, *args, join_type="LEFT JOIN")

    def right_join(self, table: str, on: str, *args: Any) -> Query:
        return self.join(table, on, *args, join_type="RIGHT JOIN")

    def left_outer_join(self, table: str, on: str, *args: Any) -> Query:
        return self.join(table, on, *args, join_type="LEFT OUTER JOIN")

    def right_outer_join(self, table: str, on: str, *args: Any) -> Query:
        return self.join(table, on, *args, join_type="RIGHT OUTER JOIN")

    def inner_join(self, table: str, on: str, *args: Any) -> Query:
        return self.join(table, on, *args, join_type="INNER JOIN")

    def limit(self, n: int) -> Query:
        if self._uses_raw_sql():
            return self
        self.limit_results = n
        return self

    def offset(self, n: int) -> Query:
        if self._uses_raw_sql():
            return self
        self.offset_results = n
        return self

    def select(self, *columns: str) -> Query:
        """Select explicit columns instead of the model's readable columns.

        Entries may carry ``,r`` (read) or ``,w`` (write only, not selected)
        markers and a result name (``"users.name as english_name"``).
        """
        if self._uses_raw_sql():
            return self
        self.add_columns.extend(columns)
        return self

    def paginate(self, page: int, per_page: int) -> Query:
        """Fetch one page; ``all()`` fills in :attr:`paginator`.

        Non-positive values fall back to page 1 and the configured page size.
        Raw queries are paginated too unless they end in their own LIMIT.
        """
        self.paginator = Paginator.new(page, per_page, self.connection.settings.per_page)
        return self

    def paginate_from_params(self, params: Mapping[str, Any]) -> Query:
        """Paginate using ``page`` and ``per_page`` from request parameters."""
        self.paginator = Paginator.from_params(params, self.connection.settings.per_page)
        return self

    def for_update(self) -> Query:
        """Lock the selected rows (SELECT ... FOR UPDATE)."""
        self.lock_rows = True
        return self

    def eager(self, *paths: str) -> Query:
        """Load associations with the connection's eager mode.

        With no paths, every association of the model is loaded one level
        deep. Paths are dot-separated: ``eager("books.writers")``.
        """
        self.eager_mode = self.connection.eager_mode
        self.eager_paths.extend(paths)
        return self

    def eager_preload(self, *paths: str) -> Query:
        """Load associations with one batched query per association edge."""
        self.eager_mode = EagerMode.PRELOAD
        self.eager_paths.extend(paths)
        return self

    # ========== Rendering ==========

    def _meta(self, model: Any) -> ModelMetadata:
        if isinstance(model, ModelMetadata):
            return model
        return describe(model, self.connection.ctx)

    def where_sql(self) -> tuple[str, list[Any]]:
        """The WHERE clause (with leading space) and its arguments, untranslated."""
        if not self.where_clauses:
            return "", []
        args: list[Any] = []
        for clause in self.where_clauses:
            args.extend(clause.arguments)
        return " WHERE " + " AND ".join(c.fragment for c in self.where_clauses), args

    def _render(self, meta: ModelMetadata | None, *extra_selects: str) -> tuple[str, list[Any]]:
        if self.raw_sql.fragment:
            sql = self.raw_sql.fragment
            if self.paginator is not None and not _TRAILING_PAGING.search(sql):
                sql += self.paginator.limit_sql()
            return sql, list(self.raw_sql.arguments)

        if meta is None:
            raise EmptyQueryError()

        cols = None
        selects = [*self.add_columns, *extra_selects]
        if selects:
            cols = Columns.parse(selects)
        if cols is None or not cols.readable():
            cols = Columns.for_model(meta)

        sql = f"SELECT {cols.readable_string()} FROM {meta.table_name} AS {meta.alias}"
        args: list[Any] = []

        for join in self.join_clauses:
            sql += f" {join.join_type} {join.table} ON {join.on}"
            args.extend(join.arguments)

        where_sql, where_args = self.where_sql()
        sql += where_sql
        args.extend(where_args)

        if self.group_clauses:
            sql += " GROUP BY " + ", ".join(g.field for g in self.group_clauses)

        if self.having_clauses:
            sql += " HAVING " + " AND ".join(h.condition for h in self.having_clauses)
            for having in self.having_clauses:
                args.extend(having.arguments)

        if self.order_clauses:
            sql += " ORDER BY " + ", ".join(o.fragment for o in self.order_clauses)
            for order in self.order_clauses:
                args.extend(order.arguments)

        if self.paginator is not None:
            sql += self.paginator.limit_sql()
        else:
            if self.limit_results is not None and self.limit_results > 0:
                sql += f" LIMIT {self.limit_results}"
            if self.offset_results is not None and self.offset_results > 0:
                sql += f" OFFSET {self.offset_results}"

        if self.lock_rows:
            dialect = self.connection.dialect
            if not dialect.capabilities.supports_for_update:
                raise UnsupportedByDialectError(dialect.name, "FOR UPDATE")
            sql += " FOR UPDATE"

        return sql, args

    def to_sql(self, model: Any = None, *extra_selects: str) -> tuple[str, list[Any]]:
        """Render the query into dialect SQL and its arguments.

        Example:
            >>> conn.where("id = ?", 1).to_sql(User)
            ('SELECT users.id, users.name FROM users AS users WHERE id = $1', [1])
        """
        meta = self._meta(model) if model is not None else None
        sql, args = self._render(meta, *extra_selects)
        return self.connection.dialect.translate_sql(sql), args

    # ========== Terminal calls ==========

    async def all(self, model: type[T]) -> list[T]:
        """Fetch every matching record."""
        meta = self._meta(model)
        forest = self._eager_forest(meta)

        conn = self.connection
        rows = await conn.dialect.select_many(conn.store, meta, self)
        records = [meta.model._from_row(row) for row in rows]

        if self.paginator is not None:
            total = await self.count(model)
            self.paginator.fill(total, len(records))

        if forest is not None:
            await self._load_eager(records, forest)
        return records  # type: ignore[return-value]

    async def first(self, model: type[T]) -> T | None:
        """Fetch the first record, ordered by primary key unless ordered already."""
        meta = self._meta(model)
        q = self.clone()
        if not q.order_clauses and not q.raw_sql.fragment:
            q.order(f"{meta.alias}.{meta.primary_key_column} ASC")
        return await q._one(meta)

    async def last(self, model: type[T]) -> T | None:
        """Fetch the last record, ordered by primary key descending unless ordered."""
        meta = self._meta(model)
        q = self.clone()
        if not q.order_clauses and not q.raw_sql.fragment:
            q.order(f"{meta.alias}.{meta.primary_key_column} DESC")
        return await q._one(meta)

    async def find(self, model: type[T], id: Any) -> T | None:
        """Fetch the record whose primary key is ``id``, or None."""
        meta = self._meta(model)
        q = self.clone().where(meta.where_id(), id)
        return await q._one(meta)

    async def _one(self, meta: ModelMetadata) -> Any:
        forest = self._eager_forest(meta)
        if not self.raw_sql.fragment:
            self.limit_results = 1
        conn = self.connection
        row = await conn.dialect.select_one(conn.store, meta, self)
        if row is None:
            return None
        record = meta.model._from_row(row)
        if forest is not None:
            await self._load_eager([record], forest)
        return record

    async def exists(self, model: Any) -> bool:
        """Whether at least one record matches."""
        meta = self._meta(model)
        q = self.clone()
        q.paginator = None
        q.order_clauses = []
        sql, args = q._render(meta)
        result = await self.connection.store.execute(
            self.connection.dialect.translate_sql(f"SELECT EXISTS ({sql}) AS row_exists"), args
        )
        return bool(result.scalar())

    async def count(self, model: Any) -> int:
        """Count matching records, ignoring ordering, limits and pagination."""
        return await self.count_by_field(model, "*")

    async def count_by_field(self, model: Any, field: str) -> int:
        """Count matching records by ``COUNT(field)``."""
        if self.raw_sql.fragment:
            inner = _TRAILING_LIMIT.sub("", self.raw_sql.fragment.rstrip())
            args = list(self.raw_sql.arguments)
        else:
            q = self.clone()
            q.paginator = None
            q.order_clauses = []
            q.limit_results = None
            q.offset_results = None
            q.lock_rows = False
            inner, args = q._render(self._meta(model))

        sql = f"SELECT COUNT({field}) AS row_count FROM ({inner}) a"
        result = await self.connection.store.execute(
            self.connection.dialect.translate_sql(sql), args
        )
        return int(result.scalar() or 0)

    async def exec(self) -> None:
        """Execute a raw statement that returns no rows."""
        await self.exec_with_count()

    async def exec_with_count(self) -> int:
        """Execute a raw statement and return the number of affected rows."""
        if not self.raw_sql.fragment.strip():
            raise EmptyQueryError()
        sql, args = self.to_sql()
        return await self.connection.store.execute_statement(sql, args)

    async def delete(self, model: Any) -> int:
        """Delete every record matching the WHERE clauses."""
        conn = self.connection
        return await conn.dialect.delete(conn.store, self._meta(model), self)

    async def update_query(self, model: Any, **values: Any) -> int:
        """Update the given attributes on every record matching the WHERE clauses."""
        conn = self.connection
        return await conn.dialect.update_query(conn.store, self._meta(model), self, values)

    # ========== Eager loading ==========

    def _eager_forest(self, meta: ModelMetadata) -> dict[str, PathNode] | None:
        """Validate eager paths before anything is fetched."""
        if self.eager_mode is None:
            return None
        return build_forest(meta.model, self.eager_paths, self.connection.ctx)

    async def _load_eager(self, records: list[Any], forest: dict[str, PathNode]) -> None:
        await load_forest(self.connection, records, forest, self.eager_mode or EagerMode.DEFAULT)
