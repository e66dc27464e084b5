"""Page arithmetic for paginated queries."""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from popkit.config import DEFAULT_PER_PAGE


@dataclass
class Paginator:
    """Pagination state for a query.

    ``page`` and ``per_page`` are set when the query is built; the entry
    counts are filled in once ``all()`` has run.

    Example:
        >>> p = Paginator.new(3, 10)
        >>> p.offset
        20
    """

    page: int = 1
    per_page: int = DEFAULT_PER_PAGE
    offset: int = 0
    total_entries_size: int = 0
    current_entries_size: int = 0
    total_pages: int = 0

    @classmethod
    def new(cls, page: int, per_page: int, default_per_page: int = DEFAULT_PER_PAGE) -> Paginator:
        """Normalize ``page`` and ``per_page`` and compute the offset."""
        if page < 1:
            page = 1
        if per_page < 1:
            per_page = default_per_page
        return cls(page=page, per_page=per_page, offset=(page - 1) * per_page)

    @classmethod
    def from_params(
        cls, params: Mapping[str, Any], default_per_page: int = DEFAULT_PER_PAGE
    ) -> Paginator:
        """Build a paginator from request-style parameters.

        Missing or malformed values fall back to page 1 and the default size.
        """
        return cls.new(
            _int_param(params, "page", 1),
            _int_param(params, "per_page", default_per_page),
            default_per_page,
        )

    def fill(self, total: int, current: int) -> None:
        """Record the result sizes after the page has been fetched."""
        self.total_entries_size = total
        self.current_entries_size = current
        self.total_pages = math.ceil(total / self.per_page) if self.per_page else 0

    def limit_sql(self) -> str:
        return f" LIMIT {self.per_page} OFFSET {self.offset}"


def _int_param(params: Mapping[str, Any], key: str, default: int) -> int:
    value = params.get(key)
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    try:
        return int(value) if value is not None else default
    except (TypeError, ValueError):
        return default
