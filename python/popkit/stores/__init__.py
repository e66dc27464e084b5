"""Store collaborators: the thing that actually talks to a database.

A store executes already-translated SQL with positional parameters and
returns rows as dictionaries keyed by column name. Connection pooling,
transport, and transactions all live behind this interface.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from typing import Any, Protocol, runtime_checkable


class QueryResult:
    """Rows returned by a statement, as dictionaries keyed by column name."""

    def __init__(self, columns: Sequence[str], rows: list[dict[str, Any]]) -> None:
        self._columns = list(columns)
        self._rows = rows

    @property
    def columns(self) -> list[str]:
        """Get column names."""
        return list(self._columns)

    @property
    def rowcount(self) -> int:
        """Get the number of rows returned."""
        return len(self._rows)

    def all(self) -> list[dict[str, Any]]:
        """Get all rows as a list of dictionaries."""
        return list(self._rows)

    def first(self) -> dict[str, Any] | None:
        """Get the first row, or None if empty."""
        return self._rows[0] if self._rows else None

    def one(self) -> dict[str, Any]:
        """Get a single row, raising error if not exactly one row."""
        if len(self._rows) != 1:
            raise ValueError(f"Expected exactly one row, got {len(self._rows)}")
        return self._rows[0]

    def one_or_none(self) -> dict[str, Any] | None:
        """Get a single row or None."""
        if len(self._rows) > 1:
            raise ValueError(f"Expected at most one row, got {len(self._rows)}")
        return self._rows[0] if self._rows else None

    def is_empty(self) -> bool:
        """Check if result is empty."""
        return not self._rows

    def scalar(self) -> Any:
        """First column of the first row, or None if empty."""
        row = self.first()
        if row is None:
            return None
        return next(iter(row.values()), None)

    def __len__(self) -> int:
        return len(self._rows)

    def __iter__(self) -> Iterator[dict[str, Any]]:
        return iter(self._rows)

    def __repr__(self) -> str:
        return f"<QueryResult columns={self._columns!r} rows={len(self._rows)}>"


@runtime_checkable
class Store(Protocol):
    """Executes SQL against a database."""

    async def execute(self, sql: str, params: Sequence[Any] | None = None) -> QueryResult:
        """Execute a SQL query and return results."""
        ...

    async def execute_statement(self, sql: str, params: Sequence[Any] | None = None) -> int:
        """Execute a statement that doesn't return rows. Returns rows affected."""
        ...

    async def close(self) -> None:
        """Release the underlying connection or pool."""
        ...


__all__ = ["QueryResult", "Store"]
