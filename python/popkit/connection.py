"""Connection façade: query entry points and record CRUD."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, TypeVar

from popkit.config import EagerMode, Settings
from popkit.details import ConnectionDetails
from popkit.dialects import Dialect, dialect_for
from popkit.metadata import describe
from popkit.preload import load as load_associations
from popkit.query import Query
from popkit.relationships import AssociationKind
from popkit.stores import QueryResult, Store

if TYPE_CHECKING:
    from popkit.base import Base

logger = logging.getLogger(__name__)

T = TypeVar("T", bound="Base")


class LoggingStore:
    """Store wrapper that logs every statement at DEBUG level."""

    def __init__(self, store: Store) -> None:
        self.inner = store

    async def execute(self, sql: str, params: Sequence[Any] | None = None) -> QueryResult:
        logger.debug("sql=%s args=%s", sql, list(params or ()))
        return await self.inner.execute(sql, params)

    async def execute_statement(self, sql: str, params: Sequence[Any] | None = None) -> int:
        logger.debug("sql=%s args=%s", sql, list(params or ()))
        return await self.inner.execute_statement(sql, params)

    async def close(self) -> None:
        await self.inner.close()


class Connection:
    """A handle on one database: its store, dialect, settings and context.

    Queries built from a connection keep a reference to this handle, not to
    an open driver connection; the store decides how statements are pooled.
    The context mapping is passed unchanged to every ``Model.table_name()``
    call.

    Example:
        >>> conn = await popkit.connect("sqlite:///:memory:")
        >>> user = User(name="Mark")
        >>> await conn.create(user)
        >>> await conn.find(User, user.id)
        <User id=1>
    """

    def __init__(
        self,
        store: Store,
        dialect: Dialect,
        settings: Settings | None = None,
        ctx: Mapping[str, Any] | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.raw_store = store
        self.store: Store = LoggingStore(store) if self.settings.log_sql else store
        self.dialect = dialect
        self.ctx: Mapping[str, Any] = MappingProxyType(dict(ctx or {}))

    def __repr__(self) -> str:
        return f"<Connection dialect={self.dialect.name}>"

    async def __aenter__(self) -> Connection:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    @property
    def details(self) -> ConnectionDetails:
        return self.dialect.details

    @property
    def eager_mode(self) -> EagerMode:
        return self.settings.eager_mode

    def with_context(self, ctx: Mapping[str, Any]) -> Connection:
        """Return a connection sharing this store but bound to ``ctx``."""
        return Connection(self.raw_store, self.dialect, self.settings, ctx)

    # ========== Query entry points ==========

    def q(self) -> Query:
        """Start an empty query."""
        return Query(self)

    def where(self, fragment: str, *args: Any) -> Query:
        return self.q().where(fragment, *args)

    def order(self, fragment: str, *args: Any) -> Query:
        return self.q().order(fragment, *args)

    def join(self, table: str, on: str, *args: Any) -> Query:
        return self.q().join(table, on, *args)

    def limit(self, n: int) -> Query:
        return self.q().limit(n)

    def paginate(self, page: int, per_page: int) -> Query:
        return self.q().paginate(page, per_page)

    def paginate_from_params(self, params: Mapping[str, Any]) -> Query:
        return self.q().paginate_from_params(params)

    def select(self, *columns: str) -> Query:
        return self.q().select(*columns)

    def raw_query(self, sql: str, *args: Any) -> Query:
        return self.q().raw_query(sql, *args)

    def eager(self, *paths: str) -> Query:
        return self.q().eager(*paths)

    def eager_preload(self, *paths: str) -> Query:
        return self.q().eager_preload(*paths)

    # ========== Finders ==========

    async def find(self, model: type[T], id: Any) -> T | None:
        return await self.q().find(model, id)

    async def first(self, model: type[T]) -> T | None:
        return await self.q().first(model)

    async def last(self, model: type[T]) -> T | None:
        return await self.q().last(model)

    async def all(self, model: type[T]) -> list[T]:
        return await self.q().all(model)

    async def count(self, model: Any) -> int:
        return await self.q().count(model)

    async def exists(self, model: Any) -> bool:
        return await self.q().exists(model)

    async def load(self, records: Base | Sequence[Base], *paths: str) -> None:
        """Load associations onto records that were already fetched.

        With no paths every association of the model is loaded one level deep.
        """
        if not isinstance(records, Sequence):
            records = [records]
        await load_associations(self, list(records), paths, self.eager_mode)

    # ========== Writes ==========

    async def create(self, record: Base, *, eager: bool = False) -> None:
        """INSERT ``record``.

        With ``eager=True`` assigned associations are saved too: unsaved
        belongs-to targets first, then the record, then has-one and has-many
        children, then many-to-many join rows.
        """
        meta = describe(record, self.ctx)
        if not eager:
            await self.dialect.create(self.store, meta, record)
            return

        for name, assoc in meta.associations.items():
            if assoc.kind is not AssociationKind.BELONGS_TO or not record.is_loaded(name):
                continue
            target = getattr(record, name)
            if target is None:
                continue
            if getattr(target, assoc.target_key_attr) is None:
                await self.create(target, eager=True)
            setattr(record, assoc.owner_key_attr, getattr(target, assoc.target_key_attr))

        await self.dialect.create(self.store, meta, record)

        for name, assoc in meta.associations.items():
            if assoc.kind is AssociationKind.BELONGS_TO or not record.is_loaded(name):
                continue
            value = getattr(record, name)
            children = value if isinstance(value, list) else [value] if value is not None else []
            owner_key = getattr(record, assoc.owner_key_attr)

            if assoc.kind is AssociationKind.MANY_TO_MANY:
                for target in children:
                    target_meta = describe(target, self.ctx)
                    if getattr(target, assoc.target_key_attr) is None:
                        await self.create(target, eager=True)
                    await self._insert_join_row(
                        assoc.through_table,  # type: ignore[arg-type]
                        assoc.through_owner_column,  # type: ignore[arg-type]
                        assoc.through_target_column,  # type: ignore[arg-type]
                        owner_key,
                        target_meta.primary_key_value(target),
                    )
                continue

            for child in children:
                setattr(child, assoc.target_key_attr, owner_key)
                child_meta = describe(child, self.ctx)
                if getattr(child, child_meta.primary_key.name) is None:  # type: ignore[arg-type]
                    await self.create(child, eager=True)
                else:
                    await self.dialect.update(self.store, child_meta, child)

    async def _insert_join_row(
        self, table: str, owner_column: str, target_column: str, owner_key: Any, target_key: Any
    ) -> None:
        q = self.dialect.quote
        sql = f"INSERT INTO {q(table)} ({q(owner_column)}, {q(target_column)}) VALUES (?, ?)"
        await self.store.execute_statement(self.dialect.translate_sql(sql), [owner_key, target_key])

    async def update(self, record: Base) -> int:
        """UPDATE ``record`` by primary key; returns the affected row count."""
        return await self.dialect.update(self.store, describe(record, self.ctx), record)

    async def destroy(self, record: Base) -> int:
        """DELETE ``record`` by primary key; returns the affected row count."""
        return await self.dialect.destroy(self.store, describe(record, self.ctx), record)

    async def truncate_all(self) -> None:
        """Empty every table (test helper)."""
        await self.dialect.truncate_all(self.store)

    async def close(self) -> None:
        await self.store.close()


async def connect(
    url_or_details: str | ConnectionDetails | None = None,
    *,
    store: Store | None = None,
    settings: Settings | None = None,
    ctx: Mapping[str, Any] | None = None,
) -> Connection:
    """Open a connection.

    The dialect comes from the URL or details; the store is opened by the
    dialect unless one is given. MySQL has no built-in store, so a store must
    be passed for it.

    Example:
        >>> conn = await connect("postgres://app@localhost/app")
        >>> conn = await connect("sqlite:///:memory:", settings=Settings(eager_mode="preload"))

    Raises:
        UnsupportedDialectError: If the dialect is unknown
        UnsupportedByDialectError: If no store is given and the dialect has none
        ValueError: If neither a URL nor ``settings.database_url`` is given
    """
    settings = settings or Settings()
    target = url_or_details if url_or_details is not None else settings.database_url
    if not target:
        raise ValueError("No database URL configured")

    dialect = dialect_for(target)
    if store is None:
        store = await dialect.open_store()
    logger.debug("connected to %s database %s", dialect.name, dialect.details.database)
    return Connection(store, dialect, settings, ctx)
