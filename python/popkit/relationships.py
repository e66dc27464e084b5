"""Association declarations between models."""

from __future__ import annotations

import enum
import re
import typing
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from popkit.base import Base


_MAPPED_STRING = re.compile(r"^\s*(?:\w+\.)?Mapped\[(?P<inner>.*)\]\s*$", re.DOTALL)

# Global model registry - maps table names and class names to model classes
_model_registry: dict[str, type[Base]] = {}


def register_model(model_cls: type[Base]) -> None:
    """Register a model class for association resolution."""
    if model_cls.__tablename__:
        _model_registry[model_cls.__tablename__] = model_cls
    _model_registry[model_cls.__name__] = model_cls


def get_model(name: str) -> type[Base] | None:
    """Get a model class by table name or class name."""
    return _model_registry.get(name)


class AssociationKind(enum.Enum):
    BELONGS_TO = "belongs_to"
    HAS_ONE = "has_one"
    HAS_MANY = "has_many"
    MANY_TO_MANY = "many_to_many"


@dataclass
class RelationshipInfo:
    """An association as declared on a model class.

    Declarations are mutable and incomplete: the target model may not exist
    yet when the owner class body runs. ``popkit.metadata`` turns them into
    frozen AssociationDescriptor values on first use.
    """

    name: str | None = None
    kind: AssociationKind | None = None  # Inferred from the type hint when None
    target: str | type[Base] | None = None  # Inferred from the type hint when None
    foreign_key: str | None = None
    through: str | None = None  # Junction table for many-to-many
    association_foreign_key: str | None = None  # Target column in the junction table
    order_by: str | None = None
    uselist: bool | None = None


@dataclass(frozen=True)
class AssociationDescriptor:
    """Resolved, immutable description of one association edge.

    ``owner_key_*`` names the value read from owner records and
    ``target_key_*`` the column it is matched against on target rows. For
    many-to-many edges the target key is the target primary key and the owner
    key is matched against ``through_owner_column``.
    """

    kind: AssociationKind
    owner_type: type[Base]
    owner_field: str
    target_type: type[Base]
    foreign_key_column: str
    owner_key_attr: str
    owner_key_column: str
    target_key_attr: str
    target_key_column: str
    through_table: str | None = None
    through_owner_column: str | None = None
    through_target_column: str | None = None
    order_by: str | None = None

    def __post_init__(self) -> None:
        if (self.through_table is not None) != (self.kind is AssociationKind.MANY_TO_MANY):
            raise ValueError(
                f"association {self.owner_type.__name__}.{self.owner_field}: "
                "through table must be set exactly for many-to-many"
            )


def relationship(
    *,
    kind: AssociationKind | str | None = None,
    target: str | type[Base] | None = None,
    foreign_key: str | None = None,
    through: str | None = None,
    association_foreign_key: str | None = None,
    order_by: str | None = None,
    uselist: bool | None = None,
) -> Any:
    """Define an association between models.

    The kind is inferred when omitted: a ``through`` table makes it
    many-to-many, a list annotation has-many, a foreign key column on the
    owner belongs-to, and anything else has-one.

    Args:
        kind: Association kind, or its string value
        target: Target model class or name (defaults to the annotation)
        foreign_key: Foreign key column (on the owner for belongs-to, on the
            target for has-one/has-many, in the junction table for many-to-many)
        through: Junction table name for many-to-many associations
        association_foreign_key: Junction table column referencing the target
        order_by: ORDER BY fragment applied when loading collections
        uselist: Whether the attribute holds a list

    Example:
        >>> class User(Base):
        ...     books: Mapped[list["Book"]] = relationship(order_by="title asc")
        ...
        >>> class Book(Base):
        ...     user: Mapped[User | None] = relationship()
    """
    if isinstance(kind, str):
        kind = AssociationKind(kind)
    return RelationshipInfo(
        kind=kind,
        target=target,
        foreign_key=foreign_key,
        through=through,
        association_foreign_key=association_foreign_key,
        order_by=order_by,
        uselist=uselist,
    )


def belongs_to(target: str | type[Base] | None = None, *, foreign_key: str | None = None) -> Any:
    """Declare that the owner holds a foreign key to ``target``.

    Example:
        >>> class Taxi(Base):
        ...     driver: Mapped["User | None"] = belongs_to("User", foreign_key="user_id")
    """
    return relationship(kind=AssociationKind.BELONGS_TO, target=target, foreign_key=foreign_key)


def has_one(
    target: str | type[Base] | None = None,
    *,
    foreign_key: str | None = None,
    order_by: str | None = None,
) -> Any:
    """Declare that one ``target`` row references the owner."""
    return relationship(
        kind=AssociationKind.HAS_ONE, target=target, foreign_key=foreign_key, order_by=order_by
    )


def has_many(
    target: str | type[Base] | None = None,
    *,
    foreign_key: str | None = None,
    order_by: str | None = None,
) -> Any:
    """Declare that many ``target`` rows reference the owner.

    Example:
        >>> class User(Base):
        ...     books: Mapped[list["Book"]] = has_many(order_by="title asc")
    """
    return relationship(
        kind=AssociationKind.HAS_MANY, target=target, foreign_key=foreign_key, order_by=order_by
    )


def many_to_many(
    through: str,
    target: str | type[Base] | None = None,
    *,
    foreign_key: str | None = None,
    association_foreign_key: str | None = None,
    order_by: str | None = None,
) -> Any:
    """Declare a many-to-many association via the ``through`` junction table.

    Junction columns default to ``{owner}_id`` and ``{target}_id`` using the
    snake_case class names.

    Example:
        >>> class User(Base):
        ...     houses: Mapped[list["Address"]] = many_to_many("users_addresses")
    """
    return relationship(
        kind=AssociationKind.MANY_TO_MANY,
        target=target,
        through=through,
        foreign_key=foreign_key,
        association_foreign_key=association_foreign_key,
        order_by=order_by,
    )


def extract_target_from_hint(hint: Any) -> str | None:
    """Extract target model name from type hint.

    Handles ``Mapped[T]``, ``Mapped[list[T]]``, ``Mapped[T | None]`` and
    string forward references such as ``Mapped["User | None"]``. Hints that
    could not be evaluated when the class was created arrive as plain strings.
    """
    if isinstance(hint, str):
        inner_str = _mapped_inner(hint)
        return _strip_optional(inner_str) if inner_str is not None else None

    args = typing.get_args(hint)
    if not args:
        return None

    inner = args[0]

    # Handle list[T]
    if typing.get_origin(inner) is list:
        inner_args = typing.get_args(inner)
        if inner_args:
            inner = inner_args[0]

    # Handle Optional[T] / T | None
    union_args = typing.get_args(inner)
    if union_args and type(None) in union_args:
        non_none = [a for a in union_args if a is not type(None)]
        if len(non_none) == 1:
            inner = non_none[0]

    # Get the model name
    if isinstance(inner, str):
        return _strip_optional(inner)
    elif isinstance(inner, type):
        return inner.__name__
    elif hasattr(inner, "__forward_arg__"):
        return _strip_optional(inner.__forward_arg__)

    return None


def is_list_hint(hint: Any) -> bool:
    """Check if the type hint indicates a collection."""
    if isinstance(hint, str):
        inner_str = _mapped_inner(hint)
        return inner_str is not None and inner_str.strip().startswith(("list[", "List["))

    args = typing.get_args(hint)
    if not args:
        return False

    inner = args[0]
    if isinstance(inner, str):
        return inner.strip().startswith("list[")
    return typing.get_origin(inner) is list


def _mapped_inner(hint: str) -> str | None:
    match = _MAPPED_STRING.match(hint)
    return match.group("inner") if match else None


def _strip_optional(name: str) -> str:
    name = name.strip().strip("'\"")
    if name.startswith(("list[", "List[")) and name.endswith("]"):
        name = name[5:-1]
    if name.startswith("Optional[") and name.endswith("]"):
        name = name[9:-1]
    parts = [p.strip().strip("'\"") for p in name.split("|")]
    parts = [p for p in parts if p != "None"]
    return parts[0] if parts else name
