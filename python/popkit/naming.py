"""Name folding helpers for tables, columns and foreign keys."""

from __future__ import annotations

import re

_CAMEL_BOUNDARY = re.compile(r"((?<=[a-z0-9])[A-Z]|(?!^)[A-Z](?=[a-z]))")

_IRREGULAR = {
    "person": "people",
    "child": "children",
    "man": "men",
    "woman": "women",
}


def to_snake(name: str) -> str:
    """Fold CamelCase into snake_case.

    Example:
        >>> to_snake("UsersAddress")
        'users_address'
        >>> to_snake("HTTPHeader")
        'http_header'
        >>> to_snake("already_snake")
        'already_snake'
    """
    return _CAMEL_BOUNDARY.sub(r"_\1", name).lower()


def pluralize(word: str) -> str:
    """Pluralize the last word of a snake_case name."""
    head, _, last = word.rpartition("_")
    prefix = f"{head}_" if head else ""

    if last in _IRREGULAR:
        return prefix + _IRREGULAR[last]
    if last.endswith("y") and len(last) > 1 and last[-2] not in "aeiou":
        return prefix + last[:-1] + "ies"
    if last.endswith(("s", "x", "z", "ch", "sh")):
        return prefix + last + "es"
    return prefix + last + "s"


def table_name_for(class_name: str) -> str:
    """Default table name for a model class: pluralized snake_case."""
    return pluralize(to_snake(class_name))


def table_alias(table_name: str) -> str:
    """Alias used in FROM clauses; schema-qualified names keep their parts."""
    return table_name.replace(".", "_")


def foreign_key_for(name: str) -> str:
    """Conventional foreign key column for a model or field name."""
    return f"{to_snake(name)}_id"
