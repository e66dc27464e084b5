"""Reflection of model classes into immutable table metadata."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from popkit._cache import KeyedCache
from popkit.base import Base
from popkit.errors import MetadataError, MissingPrimaryKeyError, UnknownAssociationError
from popkit.fields import ColumnInfo
from popkit.naming import foreign_key_for, table_alias
from popkit.relationships import (
    AssociationDescriptor,
    AssociationKind,
    RelationshipInfo,
    extract_target_from_hint,
    get_model,
    is_list_hint,
)

logger = logging.getLogger(__name__)

_EMPTY_CONTEXT: Mapping[str, Any] = MappingProxyType({})


@dataclass(frozen=True)
class _Shape:
    """The part of a model's metadata that does not depend on context."""

    columns: tuple[ColumnInfo, ...]
    primary_keys: tuple[str, ...]
    associations: Mapping[str, AssociationDescriptor]


@dataclass(frozen=True)
class ModelMetadata:
    """Table-level description of a model class for one resolved table name.

    Attributes:
        model: The model class
        table_name: Table name as resolved for the active context
        alias: Table alias used in FROM clauses (dots folded to underscores)
        columns: Column declarations in declaration order
        primary_keys: Attribute names of the primary key columns
        associations: Association descriptors keyed by attribute name
    """

    model: type[Base]
    table_name: str
    alias: str
    columns: tuple[ColumnInfo, ...]
    primary_keys: tuple[str, ...]
    associations: Mapping[str, AssociationDescriptor] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @property
    def model_name(self) -> str:
        return self.model.__name__

    @property
    def primary_key(self) -> ColumnInfo:
        """The (first) primary key column.

        Raises:
            MissingPrimaryKeyError: If the model declares no primary key
        """
        if not self.primary_keys:
            raise MissingPrimaryKeyError(self.model_name)
        return self.column(self.primary_keys[0])

    @property
    def primary_key_column(self) -> str:
        return self.column_name(self.primary_key.name)  # type: ignore[arg-type]

    def column(self, attr: str) -> ColumnInfo:
        for col in self.columns:
            if col.name == attr:
                return col
        raise MetadataError(f"model {self.model_name} has no column {attr}")

    def column_name(self, attr: str) -> str:
        """Database column name for a model attribute."""
        return self.model.__column_names__[attr]

    def readable_columns(self) -> list[ColumnInfo]:
        return [col for col in self.columns if col.readable]

    def writeable_columns(self, *, for_insert: bool = False) -> list[ColumnInfo]:
        """Columns written by INSERT or UPDATE statements.

        Primary keys are never part of an UPDATE SET list; on insert they are
        written unless the database generates them.
        """
        result = []
        for col in self.columns:
            if not col.writeable:
                continue
            if col.primary_key and (not for_insert or col.autoincrement):
                continue
            result.append(col)
        return result

    def association(self, name: str) -> AssociationDescriptor:
        """Look up an association by attribute name.

        Raises:
            UnknownAssociationError: If the model has no such association
        """
        try:
            return self.associations[name]
        except KeyError:
            raise UnknownAssociationError(name, self.model_name) from None

    def primary_key_value(self, record: Base) -> Any:
        """Read the primary key value, failing when it has not been set."""
        pk = self.primary_key
        value = getattr(record, pk.name)  # type: ignore[arg-type]
        if value is None:
            raise MissingPrimaryKeyError(self.model_name, pk.name or "id")
        return value

    def where_id(self) -> str:
        """Fragment matching a record by primary key."""
        return f"{self.alias}.{self.primary_key_column} = ?"


_shapes: KeyedCache[type, _Shape] = KeyedCache()
_metadata: KeyedCache[tuple[type, str], ModelMetadata] = KeyedCache()


def describe(obj: Any, ctx: Mapping[str, Any] | None = None) -> ModelMetadata:
    """Derive metadata for a model class, instance, or list of instances.

    The table name is resolved through ``Model.table_name(ctx)`` on every
    call, and any error it raises propagates. Metadata is then cached per
    class and resolved name, so two contexts naming different tables get
    different metadata.

    Example:
        >>> meta = describe(User)
        >>> meta.table_name, meta.alias
        ('users', 'users')
    """
    model = model_type(obj)
    table_name = model.table_name(_EMPTY_CONTEXT if ctx is None else ctx)

    def build() -> ModelMetadata:
        shape = _shapes.get_or_compute(model, lambda: _build_shape(model))
        return ModelMetadata(
            model=model,
            table_name=table_name,
            alias=table_alias(table_name),
            columns=shape.columns,
            primary_keys=shape.primary_keys,
            associations=shape.associations,
        )

    return _metadata.get_or_compute((model, table_name), build)


def model_type(obj: Any) -> type[Base]:
    """The model class behind a class, an instance, or a non-empty list."""
    if isinstance(obj, type) and issubclass(obj, Base):
        return obj
    if isinstance(obj, Base):
        return type(obj)
    if isinstance(obj, (list, tuple)):
        if not obj:
            raise MetadataError("cannot derive a model from an empty collection")
        return model_type(obj[0])
    raise MetadataError(f"{obj!r} is not a model, model instance, or list of instances")


def _build_shape(model: type[Base]) -> _Shape:
    columns = tuple(model.__columns__.values())
    primary_keys = tuple(col.name for col in columns if col.primary_key and col.name)
    associations = {
        name: resolve_association(model, rel) for name, rel in model.__relationships__.items()
    }
    logger.debug(
        "described model %s: %d columns, %d associations",
        model.__name__,
        len(columns),
        len(associations),
    )
    return _Shape(
        columns=columns,
        primary_keys=primary_keys,
        associations=MappingProxyType(associations),
    )


def resolve_association(owner: type[Base], rel: RelationshipInfo) -> AssociationDescriptor:
    """Resolve a declared association into a frozen descriptor.

    Raises:
        MetadataError: If the target model or a key column cannot be found
    """
    name = rel.name or ""
    hint = owner.__hints__.get(name)
    target = _resolve_target(owner, name, rel, hint)
    kind = _resolve_kind(owner, name, rel, hint, target)

    if kind is AssociationKind.BELONGS_TO:
        fk_attr = _belongs_to_key(owner, name, rel, target)
        fk_col = owner.__columns__[fk_attr]
        target_attr = _target_key_attr(target, fk_col)
        return AssociationDescriptor(
            kind=kind,
            owner_type=owner,
            owner_field=name,
            target_type=target,
            foreign_key_column=owner.__column_names__[fk_attr],
            owner_key_attr=fk_attr,
            owner_key_column=owner.__column_names__[fk_attr],
            target_key_attr=target_attr,
            target_key_column=target.__column_names__[target_attr],
            order_by=rel.order_by,
        )

    owner_pk = _primary_key_attr(owner)

    if kind is AssociationKind.MANY_TO_MANY:
        target_pk = _primary_key_attr(target)
        owner_column = rel.foreign_key or foreign_key_for(owner.__name__)
        target_column = rel.association_foreign_key or foreign_key_for(target.__name__)
        return AssociationDescriptor(
            kind=kind,
            owner_type=owner,
            owner_field=name,
            target_type=target,
            foreign_key_column=owner_column,
            owner_key_attr=owner_pk,
            owner_key_column=owner.__column_names__[owner_pk],
            target_key_attr=target_pk,
            target_key_column=target.__column_names__[target_pk],
            through_table=rel.through,
            through_owner_column=owner_column,
            through_target_column=target_column,
            order_by=rel.order_by,
        )

    fk_attr = _has_key(owner, name, rel, target)
    return AssociationDescriptor(
        kind=kind,
        owner_type=owner,
        owner_field=name,
        target_type=target,
        foreign_key_column=target.__column_names__[fk_attr],
        owner_key_attr=owner_pk,
        owner_key_column=owner.__column_names__[owner_pk],
        target_key_attr=fk_attr,
        target_key_column=target.__column_names__[fk_attr],
        order_by=rel.order_by,
    )


def _resolve_target(
    owner: type[Base], name: str, rel: RelationshipInfo, hint: Any
) -> type[Base]:
    target = rel.target
    if target is None:
        target = extract_target_from_hint(hint) if hint is not None else None
    if isinstance(target, str):
        resolved = get_model(target)
        if resolved is None:
            raise MetadataError(
                f"association {owner.__name__}.{name}: unknown target model {target!r}"
            )
        return resolved
    if target is None:
        raise MetadataError(
            f"association {owner.__name__}.{name}: cannot determine the target model"
        )
    return target


def _resolve_kind(
    owner: type[Base], name: str, rel: RelationshipInfo, hint: Any, target: type[Base]
) -> AssociationKind:
    if rel.kind is not None:
        return rel.kind
    if rel.through is not None:
        return AssociationKind.MANY_TO_MANY
    if rel.uselist or (rel.uselist is None and hint is not None and is_list_hint(hint)):
        return AssociationKind.HAS_MANY
    if _find_owner_key(owner, name, rel, target) is not None:
        return AssociationKind.BELONGS_TO
    return AssociationKind.HAS_ONE


def _attr_for(model: type[Base], column: str) -> str | None:
    """Map a column or attribute name to the attribute that holds it."""
    if column in model.__columns__:
        return column
    return model.__attributes_by_column__.get(column)


def _find_owner_key(
    owner: type[Base], name: str, rel: RelationshipInfo, target: type[Base]
) -> str | None:
    if rel.foreign_key:
        return _attr_for(owner, rel.foreign_key)
    for attr, col in owner.__columns__.items():
        if col.foreign_key is not None and col.foreign_key.table == target.__tablename__:
            return attr
    for candidate in (foreign_key_for(name), foreign_key_for(target.__name__)):
        attr = _attr_for(owner, candidate)
        if attr is not None:
            return attr
    return None


def _belongs_to_key(
    owner: type[Base], name: str, rel: RelationshipInfo, target: type[Base]
) -> str:
    attr = _find_owner_key(owner, name, rel, target)
    if attr is None:
        expected = rel.foreign_key or foreign_key_for(target.__name__)
        raise MetadataError(
            f"association {owner.__name__}.{name}: foreign key column {expected} "
            f"does not exist in model {owner.__name__}"
        )
    return attr


def _has_key(owner: type[Base], name: str, rel: RelationshipInfo, target: type[Base]) -> str:
    if rel.foreign_key:
        attr = _attr_for(target, rel.foreign_key)
    else:
        attr = None
        for candidate, col in target.__columns__.items():
            if col.foreign_key is not None and col.foreign_key.table == owner.__tablename__:
                attr = candidate
                break
        if attr is None:
            attr = _attr_for(target, foreign_key_for(owner.__name__))
    if attr is None:
        expected = rel.foreign_key or foreign_key_for(owner.__name__)
        raise MetadataError(
            f"association {owner.__name__}.{name}: foreign key column {expected} "
            f"does not exist in model {target.__name__}"
        )
    return attr


def _target_key_attr(target: type[Base], fk_col: ColumnInfo) -> str:
    if fk_col.foreign_key is not None:
        attr = _attr_for(target, fk_col.foreign_key.column)
        if attr is not None:
            return attr
    return _primary_key_attr(target)


def _primary_key_attr(model: type[Base]) -> str:
    if model.__primary_key__ is None:
        raise MissingPrimaryKeyError(model.__name__)
    return model.__primary_key__
