"""Connection details: which database to talk to, and how."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qsl, unquote, urlparse

from popkit.errors import UnsupportedDialectError

DIALECT_ALIASES = {
    "postgres": "postgresql",
    "postgresql": "postgresql",
    "pg": "postgresql",
    "cockroach": "cockroach",
    "cockroachdb": "cockroach",
    "crdb": "cockroach",
    "mysql": "mysql",
    "sqlite": "sqlite",
    "sqlite3": "sqlite",
}

DEFAULT_PORTS = {
    "postgresql": 5432,
    "cockroach": 26257,
    "mysql": 3306,
}


@dataclass
class ConnectionDetails:
    """Everything needed to reach a database.

    Either fill in the parts or give a ``url``; :meth:`finalize` parses the
    URL into the parts and fills in the dialect's default port.

    Example:
        >>> details = ConnectionDetails(url="postgres://app:secret@db:5432/app").finalize()
        >>> details.dialect, details.host, details.database
        ('postgresql', 'db', 'app')
    """

    dialect: str = ""
    database: str = ""
    host: str = "localhost"
    port: int | None = None
    user: str = ""
    password: str = ""
    url: str = ""
    options: dict[str, str] = field(default_factory=dict)
    pool_min: int = 1
    pool_max: int = 10

    def finalize(self) -> ConnectionDetails:
        """Parse the URL, normalize the dialect name and fill defaults.

        Raises:
            UnsupportedDialectError: If the dialect is unknown
        """
        if self.url:
            self._parse_url()

        name = self.dialect.strip().lower()
        if name not in DIALECT_ALIASES:
            raise UnsupportedDialectError(self.dialect or "<empty>")
        self.dialect = DIALECT_ALIASES[name]

        if self.port is None and self.dialect in DEFAULT_PORTS:
            self.port = DEFAULT_PORTS[self.dialect]

        if "pool_min" in self.options:
            self.pool_min = int(self.options.pop("pool_min"))
        if "pool_max" in self.options:
            self.pool_max = int(self.options.pop("pool_max"))

        return self

    def _parse_url(self) -> None:
        parsed = urlparse(self.url)
        scheme = parsed.scheme.split("+", 1)[0]
        if not self.dialect:
            self.dialect = scheme

        if DIALECT_ALIASES.get(scheme.lower()) == "sqlite":
            # sqlite:///relative.db, sqlite:////abs/path.db, sqlite://:memory:
            path = parsed.netloc + parsed.path
            if path.startswith("/") and not parsed.netloc:
                path = path[1:]
            self.database = unquote(path) or ":memory:"
        else:
            if parsed.hostname:
                self.host = parsed.hostname
            if parsed.port:
                self.port = parsed.port
            if parsed.username:
                self.user = unquote(parsed.username)
            if parsed.password:
                self.password = unquote(parsed.password)
            if parsed.path.strip("/"):
                self.database = unquote(parsed.path.lstrip("/"))

        for key, value in parse_qsl(parsed.query):
            self.options.setdefault(key, value)

    def option(self, key: str, default: Any = None) -> Any:
        return self.options.get(key, default)


def details_from(value: str | ConnectionDetails) -> ConnectionDetails:
    """Accept either a URL or a details object and return finalized details."""
    if isinstance(value, ConnectionDetails):
        return value.finalize()
    return ConnectionDetails(url=value).finalize()
