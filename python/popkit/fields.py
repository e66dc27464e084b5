"""Column and field definitions for ORM models."""

from __future__ import annotations

import datetime
import uuid
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")


# Type alias for Mapped - indicates a database column
class Mapped(Generic[T]):
    """Type annotation wrapper indicating a database-mapped column.

    Example:
        >>> class User(Base):
        ...     id: Mapped[int] = mapped_column(primary_key=True)
        ...     name: Mapped[str]
        ...     age: Mapped[int | None] = mapped_column(nullable=True)
    """

    pass


@dataclass
class ForeignKey:
    """Defines a foreign key reference to another table.

    Args:
        target: The target column in format "table.column"

    Example:
        >>> class Book(Base):
        ...     user_id: Mapped[int] = mapped_column(ForeignKey("users.id"))
    """

    target: str

    @property
    def table(self) -> str:
        """Get the target table name."""
        return self.target.rsplit(".", 1)[0] if "." in self.target else self.target

    @property
    def column(self) -> str:
        """Get the target column name."""
        parts = self.target.rsplit(".", 1)
        return parts[1] if len(parts) > 1 else "id"


@dataclass
class ColumnInfo:
    """Stores the declaration of a database column on a model attribute."""

    name: str | None = None  # Attribute name, filled in by ModelMeta
    column_name: str | None = None  # Explicit column name, overrides snake_case folding
    python_type: type | None = None
    primary_key: bool = False
    nullable: bool = False
    readable: bool = True
    writeable: bool = True
    select: str | None = None  # Custom select expression, e.g. "name as full_name"
    default: Any = None
    foreign_key: ForeignKey | None = None
    autoincrement: bool | None = None

    @property
    def generates_uuid(self) -> bool:
        """Whether a missing value is filled with uuid4() before insert."""
        return self.primary_key and self.python_type is uuid.UUID

    def coerce(self, value: Any) -> Any:
        """Convert a value read from the database to the declared type.

        Drivers without native UUID, timestamp or boolean columns (SQLite)
        hand back text and integers; other values pass through unchanged.
        """
        if value is None or self.python_type is None or isinstance(value, self.python_type):
            return value
        if self.python_type is uuid.UUID and isinstance(value, (str, bytes)):
            return uuid.UUID(value) if isinstance(value, str) else uuid.UUID(bytes=value)
        if self.python_type is datetime.datetime and isinstance(value, str):
            return datetime.datetime.fromisoformat(value)
        if self.python_type is datetime.date and isinstance(value, str):
            return datetime.date.fromisoformat(value)
        if self.python_type is bool and isinstance(value, int):
            return bool(value)
        return value

    def copy(self) -> ColumnInfo:
        """Clone the declaration so subclasses do not share state."""
        return ColumnInfo(
            name=self.name,
            column_name=self.column_name,
            python_type=self.python_type,
            primary_key=self.primary_key,
            nullable=self.nullable,
            readable=self.readable,
            writeable=self.writeable,
            select=self.select,
            default=self.default,
            foreign_key=self.foreign_key,
            autoincrement=self.autoincrement,
        )


def mapped_column(
    foreign_key: ForeignKey | None = None,
    /,
    *,
    name: str | None = None,
    primary_key: bool = False,
    nullable: bool = False,
    readable: bool = True,
    writeable: bool = True,
    select: str | None = None,
    default: Any = None,
    autoincrement: bool | None = None,
) -> Any:
    """Define a database column.

    Args:
        foreign_key: Optional ForeignKey for this column
        name: Column name in the database; defaults to the snake_case attribute name
        primary_key: Whether this is a primary key column
        nullable: Whether NULL values are allowed
        readable: Whether the column appears in SELECT lists
        writeable: Whether the column appears in INSERT and UPDATE lists
        select: Expression selected in place of the bare column
        default: Default value (can be callable)
        autoincrement: Whether the database generates the value (integer PKs)

    Returns:
        A ColumnInfo descriptor

    Example:
        >>> id: Mapped[int] = mapped_column(primary_key=True)
        >>> full_name: Mapped[str] = mapped_column(select="name as full_name", writeable=False)
        >>> user_id: Mapped[int] = mapped_column(ForeignKey("users.id"))
    """
    # Primary keys are not nullable by default
    if primary_key:
        nullable = False

    return ColumnInfo(
        column_name=name,
        primary_key=primary_key,
        nullable=nullable,
        readable=readable,
        writeable=writeable,
        select=select,
        default=default,
        foreign_key=foreign_key,
        autoincrement=autoincrement,
    )
