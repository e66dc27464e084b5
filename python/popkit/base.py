"""Declarative base for ORM models."""

from __future__ import annotations

import inspect
import sys
import typing
from collections.abc import Mapping
from typing import Any, ClassVar

from popkit.fields import ColumnInfo, Mapped
from popkit.naming import table_name_for, to_snake
from popkit.relationships import _MAPPED_STRING, RelationshipInfo, register_model


class ModelMeta(type):
    """Metaclass for ORM models that processes field definitions."""

    def __new__(
        mcs,
        name: str,
        bases: tuple[type, ...],
        namespace: dict[str, Any],
        **kwargs: Any,
    ) -> ModelMeta:
        cls = super().__new__(mcs, name, bases, namespace, **kwargs)

        # Skip processing for the Base class itself
        if name == "Base" and not any(isinstance(b, ModelMeta) for b in bases):
            return cls

        # Get table name
        tablename = namespace.get("__tablename__")
        if tablename is None:
            tablename = table_name_for(name)
        cls.__tablename__ = tablename  # type: ignore[attr-defined]

        columns: dict[str, ColumnInfo] = {}
        relationships: dict[str, RelationshipInfo] = {}

        # Inherited declarations first, cloned so subclasses do not share them
        for base in reversed(cls.__mro__[1:]):
            for attr_name, col in getattr(base, "__columns__", {}).items():
                columns[attr_name] = col.copy()
            for attr_name, rel in getattr(base, "__relationships__", {}).items():
                relationships[attr_name] = rel

        hints = _own_hints(cls)

        for attr_name, attr_value in namespace.items():
            if attr_name.startswith("_"):
                continue

            if isinstance(attr_value, ColumnInfo):
                attr_value.name = attr_name
                if attr_name in hints:
                    python_type, nullable = _column_type(hints[attr_name])
                    attr_value.python_type = python_type
                    attr_value.nullable = attr_value.nullable or nullable
                columns[attr_name] = attr_value
            elif isinstance(attr_value, RelationshipInfo):
                attr_value.name = attr_name
                relationships[attr_name] = attr_value
                # Remove from the class so __getattr__ handles access
                delattr(cls, attr_name)

        # Bare Mapped[...] annotations become columns with default settings
        for attr_name, hint in hints.items():
            if attr_name.startswith("_") or attr_name in namespace:
                continue
            if not _is_mapped(hint):
                continue
            python_type, nullable = _column_type(hint)
            columns[attr_name] = ColumnInfo(
                name=attr_name,
                python_type=python_type,
                nullable=nullable,
            )

        for col in columns.values():
            if col.primary_key and col.autoincrement is None:
                col.autoincrement = col.python_type is int

        cls.__columns__ = columns  # type: ignore[attr-defined]
        cls.__relationships__ = relationships  # type: ignore[attr-defined]
        cls.__hints__ = hints  # type: ignore[attr-defined]
        cls.__column_names__ = {  # type: ignore[attr-defined]
            attr: col.column_name or to_snake(attr) for attr, col in columns.items()
        }
        cls.__attributes_by_column__ = {  # type: ignore[attr-defined]
            column: attr for attr, column in cls.__column_names__.items()  # type: ignore[attr-defined]
        }
        cls.__primary_key__ = next(  # type: ignore[attr-defined]
            (col_name for col_name, col_info in columns.items() if col_info.primary_key),
            None,
        )

        # Register model for association resolution
        register_model(cls)  # type: ignore[arg-type]

        return cls


def _own_hints(cls: type) -> dict[str, Any]:
    """Annotations declared directly on ``cls``, evaluated where possible.

    Forward references to models that do not exist yet stay strings; they are
    resolved against the model registry when metadata is first derived.
    """
    try:
        raw = inspect.get_annotations(cls)
    except NameError:
        raw = {}

    module = sys.modules.get(cls.__module__)
    globalns = dict(getattr(module, "__dict__", {})) if module else {}
    globalns.setdefault("Mapped", Mapped)
    globalns.setdefault("ClassVar", ClassVar)
    globalns.setdefault("Any", Any)

    hints: dict[str, Any] = {}
    for attr_name, annotation in raw.items():
        if isinstance(annotation, str):
            try:
                annotation = eval(annotation, globalns, dict(vars(cls)))  # noqa: S307
            except (NameError, TypeError, SyntaxError):
                pass
        hints[attr_name] = annotation
    return hints


def _is_mapped(hint: Any) -> bool:
    if isinstance(hint, str):
        return _MAPPED_STRING.match(hint) is not None
    return typing.get_origin(hint) is Mapped


def _column_type(hint: Any) -> tuple[type | None, bool]:
    """Extract the inner type from Mapped[T] and whether it admits None."""
    if isinstance(hint, str):
        match = _MAPPED_STRING.match(hint)
        inner = match.group("inner") if match else hint
        parts = [p.strip() for p in inner.split("|")]
        nullable = "None" in parts or inner.startswith("Optional[")
        return None, nullable

    args = typing.get_args(hint)
    if typing.get_origin(hint) is not Mapped or not args:
        return (hint if isinstance(hint, type) else None), False

    inner = args[0]
    inner_args = typing.get_args(inner)
    if inner_args and type(None) in inner_args:
        non_none = [a for a in inner_args if a is not type(None)]
        python_type = non_none[0] if len(non_none) == 1 and isinstance(non_none[0], type) else None
        return python_type, True
    return (inner if isinstance(inner, type) else None), False


class Base(metaclass=ModelMeta):
    """Base class for all ORM models.

    Example:
        >>> class User(Base):
        ...     __tablename__ = "users"
        ...     id: Mapped[int] = mapped_column(primary_key=True)
        ...     name: Mapped[str]
        ...     books: Mapped[list["Book"]] = has_many()

    Models whose table depends on request-scoped values override
    :meth:`table_name`; the context mapping given to the connection is passed
    through unchanged.
    """

    __tablename__: ClassVar[str]
    __columns__: ClassVar[dict[str, ColumnInfo]]
    __relationships__: ClassVar[dict[str, RelationshipInfo]]
    __primary_key__: ClassVar[str | None]
    __hints__: ClassVar[dict[str, Any]]
    __column_names__: ClassVar[dict[str, str]]
    __attributes_by_column__: ClassVar[dict[str, str]]

    # Instance attributes for association state
    _loaded_relationships: dict[str, Any]

    def __init__(self, **kwargs: Any) -> None:
        """Initialize a model instance with the given column values."""
        object.__setattr__(self, "_loaded_relationships", {})

        provided_keys = set(kwargs)
        for key, value in kwargs.items():
            if key in self.__columns__ or key in self.__relationships__:
                setattr(self, key, value)
            else:
                raise TypeError(f"Unknown column or relationship: {key}")

        # Set defaults only for columns that were not provided.
        for col_name, col_info in self.__columns__.items():
            if col_name in provided_keys:
                continue
            if col_info.default is not None:
                default = col_info.default() if callable(col_info.default) else col_info.default
                setattr(self, col_name, default)
            else:
                # Unset values stay None until the database or create() fills them
                setattr(self, col_name, None)

    @classmethod
    def table_name(cls, ctx: Mapping[str, Any]) -> str:
        """Resolve the table name for the given context.

        The default ignores the context and returns ``__tablename__``.
        """
        return cls.__tablename__

    def __repr__(self) -> str:
        pk = self.__primary_key__
        if pk and pk in self.__dict__:
            return f"<{self.__class__.__name__} {pk}={self.__dict__[pk]!r}>"
        return f"<{self.__class__.__name__}>"

    def __setattr__(self, name: str, value: Any) -> None:
        if name in type(self).__relationships__:
            self._set_relationship(name, value)
            return
        object.__setattr__(self, name, value)

    def __getattr__(self, name: str) -> Any:
        """Handle access to association attributes."""
        if name.startswith("_"):
            # Lazy-init _loaded_relationships if accessed before set
            if name == "_loaded_relationships":
                d: dict[str, Any] = {}
                object.__setattr__(self, "_loaded_relationships", d)
                return d
            raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")

        if name in type(self).__relationships__:
            loaded = self._loaded_relationships
            if name in loaded:
                return loaded[name]
            raise AttributeError(
                f"Association '{name}' is not loaded. "
                "Use eager() or eager_preload() on the query, or Connection.load()."
            )

        raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")

    def _set_relationship(self, name: str, value: Any) -> None:
        """Set a loaded association value."""
        self._loaded_relationships[name] = value

    def is_loaded(self, name: str) -> bool:
        """Whether the association ``name`` has been loaded or assigned."""
        return name in self._loaded_relationships

    def to_dict(self, include_relationships: bool = False) -> dict[str, Any]:
        """Convert model instance to a dictionary."""
        result = {}
        for col_name in self.__columns__:
            if col_name in self.__dict__:
                result[col_name] = self.__dict__[col_name]

        if include_relationships:
            for rel_name in self.__relationships__:
                if rel_name in self._loaded_relationships:
                    rel_value = self._loaded_relationships[rel_name]
                    if isinstance(rel_value, list):
                        result[rel_name] = [item.to_dict(True) for item in rel_value]
                    elif rel_value is not None:
                        result[rel_name] = rel_value.to_dict(True)
                    else:
                        result[rel_name] = None

        return result

    @classmethod
    def _from_row(cls, row: Mapping[str, Any]) -> Base:
        """Build an instance from a result row keyed by column name.

        Skips ``__init__`` validation and defaults: attributes not present in
        the row stay None. Unknown result columns are ignored.
        """
        instance = object.__new__(cls)
        object.__setattr__(instance, "_loaded_relationships", {})

        by_column = cls.__attributes_by_column__
        columns = cls.__columns__
        for attr in columns:
            object.__setattr__(instance, attr, None)
        for key, value in row.items():
            attr = by_column.get(key)
            if attr is not None:
                object.__setattr__(instance, attr, columns[attr].coerce(value))

        return instance
