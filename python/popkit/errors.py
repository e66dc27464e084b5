"""Exception types raised by popkit.

Store and driver exceptions are never wrapped: they reach the caller as the
driver raised them, so messages such as ``relation "x" does not exist`` stay
intact.
"""

from __future__ import annotations


class PopkitError(Exception):
    """Base class for all popkit errors."""


# ========== Metadata Errors ==========


class MetadataError(PopkitError, ValueError):
    """A model or association path could not be described."""


class MissingPrimaryKeyError(MetadataError):
    """A model has no primary key, or a write needs a key value that is unset."""

    def __init__(self, model_name: str, field_name: str = "id") -> None:
        self.model_name = model_name
        self.field_name = field_name
        super().__init__(f"model {model_name} is missing required field {field_name}")


class UnknownAssociationError(MetadataError):
    """An association path names a field the owning model does not declare."""

    def __init__(self, field_name: str, model_name: str) -> None:
        self.field_name = field_name
        self.model_name = model_name
        super().__init__(
            f"could not retrieve associations: field {field_name} "
            f"does not exist in model {model_name}"
        )


class MalformedAssociationPathError(MetadataError):
    """An association path has an empty segment or a wildcard."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"association path {path!r} is not valid")


# ========== Dialect Errors ==========


class DialectError(PopkitError):
    """Base class for dialect failures."""


class UnsupportedByDialectError(DialectError, NotImplementedError):
    """The active dialect cannot perform the requested operation."""

    def __init__(self, dialect: str, feature: str) -> None:
        self.dialect = dialect
        self.feature = feature
        super().__init__(f"{feature} is unsupported by dialect {dialect}")


class UnsupportedDialectError(DialectError, ValueError):
    """No dialect is registered under the given name."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"unsupported dialect {name!r}")


# ========== Query Construction Errors ==========


class QueryConstructionError(PopkitError, ValueError):
    """A query cannot be rendered into executable SQL."""


class EmptyQueryError(QueryConstructionError):
    """The query has no SQL to execute."""

    def __init__(self) -> None:
        super().__init__("empty query: nothing to execute")
