"""SQL dialects and the lookup from connection details to a dialect."""

from __future__ import annotations

from popkit.details import ConnectionDetails, details_from
from popkit.dialects.base import Capabilities, Dialect
from popkit.dialects.cockroach import Cockroach
from popkit.dialects.mysql import MySQL
from popkit.dialects.postgresql import PostgreSQL
from popkit.dialects.sqlite import SQLite
from popkit.errors import UnsupportedDialectError

DIALECTS: dict[str, type[Dialect]] = {
    PostgreSQL.name: PostgreSQL,
    Cockroach.name: Cockroach,
    MySQL.name: MySQL,
    SQLite.name: SQLite,
}


def dialect_for(details: ConnectionDetails | str) -> Dialect:
    """Build the dialect named by ``details`` (or a URL).

    Example:
        >>> dialect_for("postgres://localhost/app").name
        'postgresql'

    Raises:
        UnsupportedDialectError: If the dialect name is unknown
    """
    details = details_from(details)
    try:
        cls = DIALECTS[details.dialect]
    except KeyError:
        raise UnsupportedDialectError(details.dialect) from None
    return cls(details)


__all__ = [
    "Capabilities",
    "Cockroach",
    "DIALECTS",
    "Dialect",
    "MySQL",
    "PostgreSQL",
    "SQLite",
    "dialect_for",
]
