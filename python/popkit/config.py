"""Library settings, loaded from an ini file or the environment."""

from __future__ import annotations

import configparser
import enum
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

DEFAULT_PER_PAGE = 20


class EagerMode(enum.Enum):
    """How eager associations are loaded.

    DEFAULT issues association queries record by record while fetching.
    PRELOAD batches one query per association edge.
    """

    DEFAULT = "default"
    PRELOAD = "preload"

    @classmethod
    def parse(cls, value: str | EagerMode) -> EagerMode:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(
                f"Unknown eager mode {value!r}; expected one of "
                + ", ".join(m.value for m in cls)
            ) from None


@dataclass
class Settings:
    """Connection-wide defaults.

    Example popkit.ini:
        [popkit]
        eager_mode = preload
        per_page = 50
        log_sql = true
        database_url = sqlite:///app.db
    """

    eager_mode: EagerMode = EagerMode.DEFAULT
    """Strategy used by eager() when none is given explicitly."""

    per_page: int = DEFAULT_PER_PAGE
    """Page size used when paginate() receives a non-positive value."""

    log_sql: bool = True
    """Whether executed statements are logged at DEBUG level."""

    database_url: str | None = None
    """Default database URL for connect()."""

    def __post_init__(self) -> None:
        self.eager_mode = EagerMode.parse(self.eager_mode)
        if self.per_page < 1:
            self.per_page = DEFAULT_PER_PAGE

    @classmethod
    def from_ini(cls, path: Path | str, section: str = "popkit") -> Settings:
        """Load settings from the ``[popkit]`` section of an ini file.

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If the section is missing or a value is invalid
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        config = configparser.ConfigParser()
        config.read(path)

        if section not in config:
            raise ValueError(f"No [{section}] section in {path}")

        values = config[section]
        return cls(
            eager_mode=EagerMode.parse(values.get("eager_mode", EagerMode.DEFAULT.value)),
            per_page=values.getint("per_page", DEFAULT_PER_PAGE),
            log_sql=values.getboolean("log_sql", True),
            database_url=values.get("database_url"),
        )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Load settings from ``POPKIT_*`` variables and ``DATABASE_URL``."""
        env = os.environ if environ is None else environ
        per_page = env.get("POPKIT_PER_PAGE")
        log_sql = env.get("POPKIT_LOG_SQL")
        return cls(
            eager_mode=EagerMode.parse(env.get("POPKIT_EAGER_MODE", EagerMode.DEFAULT.value)),
            per_page=int(per_page) if per_page else DEFAULT_PER_PAGE,
            log_sql=_truthy(log_sql) if log_sql is not None else True,
            database_url=env.get("DATABASE_URL"),
        )


def _truthy(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")
