"""popkit - an async data-mapping layer with batched association loading."""

from __future__ import annotations

from popkit.base import Base
from popkit.config import EagerMode, Settings
from popkit.connection import Connection, connect
from popkit.details import ConnectionDetails
from popkit.dialects import Dialect, dialect_for
from popkit.errors import (
    DialectError,
    EmptyQueryError,
    MalformedAssociationPathError,
    MetadataError,
    MissingPrimaryKeyError,
    PopkitError,
    QueryConstructionError,
    UnknownAssociationError,
    UnsupportedByDialectError,
    UnsupportedDialectError,
)
from popkit.fields import ForeignKey, Mapped, mapped_column
from popkit.metadata import ModelMetadata, describe
from popkit.paginator import Paginator
from popkit.query import Query
from popkit.relationships import (
    AssociationDescriptor,
    AssociationKind,
    belongs_to,
    has_many,
    has_one,
    many_to_many,
    relationship,
)
from popkit.stores import QueryResult, Store

__version__ = "0.1.0"

__all__ = [
    # Core
    "connect",
    "Connection",
    "ConnectionDetails",
    "Settings",
    "EagerMode",
    "Query",
    "Paginator",
    "QueryResult",
    "Store",
    # Model definition
    "Base",
    "Mapped",
    "mapped_column",
    "ForeignKey",
    "relationship",
    "belongs_to",
    "has_one",
    "has_many",
    "many_to_many",
    # Metadata
    "describe",
    "ModelMetadata",
    "AssociationDescriptor",
    "AssociationKind",
    # Dialects
    "Dialect",
    "dialect_for",
    # Errors
    "PopkitError",
    "MetadataError",
    "MissingPrimaryKeyError",
    "UnknownAssociationError",
    "MalformedAssociationPathError",
    "DialectError",
    "UnsupportedByDialectError",
    "UnsupportedDialectError",
    "QueryConstructionError",
    "EmptyQueryError",
]
