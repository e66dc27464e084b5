"""Association loading.

Two strategies share path validation and assignment:

* ``EagerMode.PRELOAD`` runs one query per association edge for all records
  at once, then recurses into the distinct loaded targets. The number of
  queries is bounded by the number of edges in the path forest, not by the
  number of records.
* ``EagerMode.DEFAULT`` walks the records one by one and issues the same
  edge queries for each record individually.

Both build the same object graph.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from popkit.columns import Columns
from popkit.config import EagerMode
from popkit.errors import MalformedAssociationPathError
from popkit.metadata import describe
from popkit.relationships import AssociationDescriptor, AssociationKind

if TYPE_CHECKING:
    from popkit.base import Base
    from popkit.connection import Connection

logger = logging.getLogger(__name__)

OWNER_KEY_COLUMN = "popkit_owner_key"
THROUGH_ALIAS = "popkit_through"


@dataclass
class PathNode:
    """One association edge in a path forest, with the edges below it."""

    name: str
    association: AssociationDescriptor
    children: dict[str, PathNode] = field(default_factory=dict)


def validate_path(path: str) -> list[str]:
    """Split an association path, rejecting malformed ones.

    Raises:
        MalformedAssociationPathError: For empty segments, stray dots or ``*``
    """
    segments = path.split(".")
    if any(not s.strip() or "*" in s for s in segments):
        raise MalformedAssociationPathError(path)
    return [s.strip() for s in segments]


def build_forest(
    model: type[Base], paths: Iterable[str], ctx: Mapping[str, Any] | None = None
) -> dict[str, PathNode]:
    """Resolve association paths into a forest keyed by first segment.

    With no paths, every association of ``model`` is loaded one level deep.
    Every segment is checked against the model reached so far, so an unknown
    field fails before any query runs.

    Raises:
        MalformedAssociationPathError: If a path is malformed
        UnknownAssociationError: If a segment names no association
    """
    paths = list(paths)
    if not paths:
        paths = list(describe(model, ctx).associations)

    forest: dict[str, PathNode] = {}
    for path in paths:
        level = forest
        current = model
        for segment in validate_path(path):
            assoc = describe(current, ctx).association(segment)
            node = level.get(segment)
            if node is None:
                node = level[segment] = PathNode(segment, assoc)
            level = node.children
            current = assoc.target_type
    return forest


async def load_forest(
    conn: Connection,
    records: Sequence[Base],
    forest: Mapping[str, PathNode],
    mode: EagerMode,
) -> None:
    """Load ``forest`` onto ``records`` with the given strategy."""
    if not records or not forest:
        return
    if mode is EagerMode.PRELOAD:
        await _preload_level(conn, list(records), forest)
    else:
        for record in records:
            await _load_record(conn, record, forest)


async def load(
    conn: Connection,
    records: Sequence[Base],
    paths: Iterable[str],
    mode: EagerMode,
) -> None:
    """Validate ``paths`` against the records' model and load them."""
    if not records:
        return
    forest = build_forest(type(records[0]), paths, conn.ctx)
    await load_forest(conn, records, forest, mode)


async def _preload_level(
    conn: Connection, owners: list[Base], level: Mapping[str, PathNode]
) -> None:
    for node in level.values():
        targets = await load_edge(conn, owners, node.association)
        if node.children and targets:
            await _preload_level(conn, targets, node.children)


async def _load_record(conn: Connection, record: Base, level: Mapping[str, PathNode]) -> None:
    for node in level.values():
        targets = await load_edge(conn, [record], node.association)
        if node.children:
            for target in targets:
                await _load_record(conn, target, node.children)


async def load_edge(
    conn: Connection, owners: Sequence[Base], assoc: AssociationDescriptor
) -> list[Base]:
    """Run one query for ``assoc`` across ``owners`` and assign the results.

    Returns the distinct target records that were loaded.
    """
    if assoc.kind is AssociationKind.BELONGS_TO:
        return await _load_belongs_to(conn, owners, assoc)
    if assoc.kind is AssociationKind.MANY_TO_MANY:
        return await _load_many_to_many(conn, owners, assoc)
    return await _load_has(conn, owners, assoc)


def _distinct(values: Iterable[Any]) -> list[Any]:
    seen: dict[Any, None] = {}
    for value in values:
        if value is not None:
            seen.setdefault(value, None)
    return list(seen)


async def _load_belongs_to(
    conn: Connection, owners: Sequence[Base], assoc: AssociationDescriptor
) -> list[Base]:
    keys = _distinct(getattr(o, assoc.owner_key_attr) for o in owners)
    by_key: dict[Any, Base] = {}
    if keys:
        meta = describe(assoc.target_type, conn.ctx)
        targets = await (
            conn.q()
            .where(f"{meta.alias}.{assoc.target_key_column} in (?)", keys)
            .all(assoc.target_type)
        )
        by_key = {getattr(t, assoc.target_key_attr): t for t in targets}

    for owner in owners:
        key = getattr(owner, assoc.owner_key_attr)
        owner._set_relationship(assoc.owner_field, by_key.get(key) if key is not None else None)

    logger.debug(
        "loaded %s.%s: %d targets for %d owners",
        assoc.owner_type.__name__,
        assoc.owner_field,
        len(by_key),
        len(owners),
    )
    return list(by_key.values())


async def _load_has(
    conn: Connection, owners: Sequence[Base], assoc: AssociationDescriptor
) -> list[Base]:
    keys = _distinct(getattr(o, assoc.owner_key_attr) for o in owners)
    targets: list[Base] = []
    if keys:
        meta = describe(assoc.target_type, conn.ctx)
        q = conn.q().where(f"{meta.alias}.{assoc.target_key_column} in (?)", keys)
        if assoc.order_by:
            q.order(assoc.order_by)
        targets = await q.all(assoc.target_type)

    grouped: dict[Any, list[Base]] = defaultdict(list)
    for target in targets:
        grouped[getattr(target, assoc.target_key_attr)].append(target)

    for owner in owners:
        matches = grouped.get(getattr(owner, assoc.owner_key_attr), [])
        if assoc.kind is AssociationKind.HAS_ONE:
            owner._set_relationship(assoc.owner_field, matches[0] if matches else None)
        else:
            owner._set_relationship(assoc.owner_field, list(matches))

    logger.debug(
        "loaded %s.%s: %d targets for %d owners",
        assoc.owner_type.__name__,
        assoc.owner_field,
        len(targets),
        len(owners),
    )
    return targets


async def _load_many_to_many(
    conn: Connection, owners: Sequence[Base], assoc: AssociationDescriptor
) -> list[Base]:
    keys = _distinct(getattr(o, assoc.owner_key_attr) for o in owners)
    grouped: dict[Any, list[Base]] = defaultdict(list)
    instances: dict[Any, Base] = {}

    if keys:
        meta = describe(assoc.target_type, conn.ctx)
        selects = [c.select for c in Columns.for_model(meta)]
        selects.append(f"{THROUGH_ALIAS}.{assoc.through_owner_column} AS {OWNER_KEY_COLUMN}")

        q = (
            conn.q()
            .join(
                f"{assoc.through_table} {THROUGH_ALIAS}",
                f"{THROUGH_ALIAS}.{assoc.through_target_column} = "
                f"{meta.alias}.{assoc.target_key_column}",
            )
            .where(f"{THROUGH_ALIAS}.{assoc.through_owner_column} in (?)", keys)
        )
        if assoc.order_by:
            q.order(assoc.order_by)

        sql, args = q.to_sql(meta, *selects)
        result = await conn.store.execute(sql, args)
        for row in result:
            target_key = row.get(assoc.target_key_column)
            target = instances.get(target_key)
            if target is None:
                target = instances[target_key] = assoc.target_type._from_row(row)
            grouped[row[OWNER_KEY_COLUMN]].append(target)

    for owner in owners:
        owner._set_relationship(
            assoc.owner_field, list(grouped.get(getattr(owner, assoc.owner_key_attr), []))
        )

    logger.debug(
        "loaded %s.%s: %d targets for %d owners",
        assoc.owner_type.__name__,
        assoc.owner_field,
        len(instances),
        len(owners),
    )
    return list(instances.values())
