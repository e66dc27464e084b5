"""Select-list construction for queries."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from popkit.errors import MetadataError
from popkit.metadata import ModelMetadata

# "expr,r" / "expr,w" markers on explicit selections
_MARKER = re.compile(r",\s*(?P<mode>[rw])\s*$", re.IGNORECASE)
# "expr AS name" or "expr name"
_RESULT_NAME = re.compile(r"(?:\s+as)?\s+(?P<name>[A-Za-z_][A-Za-z0-9_]*)\s*$", re.IGNORECASE)


@dataclass(frozen=True)
class Column:
    """One entry of a SELECT list.

    Attributes:
        select: Text rendered into the SELECT list
        name: Name of the result column
        readable: Whether the column is selected
        writeable: Whether the column is written
    """

    select: str
    name: str
    readable: bool = True
    writeable: bool = True


class Columns:
    """An ordered, de-duplicated set of SELECT list entries.

    Rendering sorts entries alphabetically so the same model always produces
    the same SQL text.

    Example:
        >>> cols = Columns.parse(["id,r", "users.bio,r", "users.email,w"])
        >>> cols.readable_string()
        'id, users.bio'
    """

    def __init__(self) -> None:
        self._cols: dict[str, Column] = {}

    @classmethod
    def for_model(cls, meta: ModelMetadata) -> Columns:
        """Default selection: every readable column, qualified by the alias."""
        cols = cls()
        for col in meta.readable_columns():
            if col.name is None:
                raise MetadataError(f"model {meta.model_name} has an unnamed column")
            column_name = meta.column_name(col.name)
            if col.select:
                cols.add(Column(select=col.select, name=_result_name(col.select, column_name)))
            else:
                cols.add(Column(select=f"{meta.alias}.{column_name}", name=column_name))
        return cols

    @classmethod
    def parse(cls, selects: Iterable[str]) -> Columns:
        """Parse explicit selections, honoring ``,r`` and ``,w`` markers."""
        cols = cls()
        for raw in selects:
            column = parse_column(raw)
            if column is not None:
                cols.add(column)
        return cols

    def add(self, column: Column) -> None:
        self._cols.setdefault(column.select, column)

    def __len__(self) -> int:
        return len(self._cols)

    def __iter__(self):
        return iter(sorted(self._cols.values(), key=lambda c: c.select))

    def readable(self) -> list[Column]:
        return [c for c in self if c.readable]

    def readable_string(self) -> str:
        return ", ".join(c.select for c in self.readable())


def parse_column(raw: str) -> Column | None:
    """Parse a single explicit selection; blank entries yield None."""
    text = raw.strip()
    if not text:
        return None

    readable = writeable = True
    marker = _MARKER.search(text)
    if marker is not None:
        mode = marker.group("mode").lower()
        readable = mode == "r"
        writeable = mode == "w"
        text = text[: marker.start()].rstrip()

    return Column(
        select=text,
        name=_result_name(text, text.rsplit(".", 1)[-1]),
        readable=readable,
        writeable=writeable,
    )


def _result_name(expression: str, fallback: str) -> str:
    """Name of the result column an expression produces."""
    if "(" in expression and expression.rstrip().endswith(")"):
        return fallback
    match = _RESULT_NAME.search(expression)
    if match is not None and match.start() > 0:
        return match.group("name")
    return fallback
