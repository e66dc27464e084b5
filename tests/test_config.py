"""Tests for settings loading."""

from __future__ import annotations

import pytest

from popkit import EagerMode, Settings
from popkit.config import DEFAULT_PER_PAGE


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("default", EagerMode.DEFAULT),
        ("preload", EagerMode.PRELOAD),
        (" PRELOAD ", EagerMode.PRELOAD),
        (EagerMode.PRELOAD, EagerMode.PRELOAD),
    ],
)
def test_eager_mode_parse(value, expected):
    """Test parsing eager mode names."""
    assert EagerMode.parse(value) is expected


def test_eager_mode_parse_unknown():
    """Test that unknown eager modes are rejected."""
    with pytest.raises(ValueError, match="Unknown eager mode 'lazy'"):
        EagerMode.parse("lazy")


def test_settings_defaults():
    """Test default settings."""
    settings = Settings()
    assert settings.eager_mode is EagerMode.DEFAULT
    assert settings.per_page == DEFAULT_PER_PAGE == 20
    assert settings.log_sql is True
    assert settings.database_url is None


def test_settings_normalize():
    """Test that string modes and bad page sizes are normalized."""
    settings = Settings(eager_mode="preload", per_page=0)
    assert settings.eager_mode is EagerMode.PRELOAD
    assert settings.per_page == DEFAULT_PER_PAGE


def test_settings_from_ini(tmp_path):
    """Test loading settings from an ini file."""
    path = tmp_path / "popkit.ini"
    path.write_text(
        "[popkit]\n"
        "eager_mode = preload\n"
        "per_page = 50\n"
        "log_sql = false\n"
        "database_url = sqlite:///app.db\n"
    )
    settings = Settings.from_ini(path)
    assert settings.eager_mode is EagerMode.PRELOAD
    assert settings.per_page == 50
    assert settings.log_sql is False
    assert settings.database_url == "sqlite:///app.db"


def test_settings_from_ini_partial(tmp_path):
    """Test that missing keys fall back to defaults."""
    path = tmp_path / "setup.cfg"
    path.write_text("[tool:popkit]\nper_page = 5\n")
    settings = Settings.from_ini(path, section="tool:popkit")
    assert settings.per_page == 5
    assert settings.eager_mode is EagerMode.DEFAULT
    assert settings.log_sql is True


def test_settings_from_ini_errors(tmp_path):
    """Test missing files and sections."""
    with pytest.raises(FileNotFoundError):
        Settings.from_ini(tmp_path / "missing.ini")

    path = tmp_path / "other.ini"
    path.write_text("[other]\nkey = value\n")
    with pytest.raises(ValueError, match=r"No \[popkit\] section"):
        Settings.from_ini(path)

    path.write_text("[popkit]\neager_mode = sometimes\n")
    with pytest.raises(ValueError, match="Unknown eager mode"):
        Settings.from_ini(path)


def test_settings_from_env():
    """Test loading settings from environment variables."""
    settings = Settings.from_env(
        {
            "POPKIT_EAGER_MODE": "preload",
            "POPKIT_PER_PAGE": "15",
            "POPKIT_LOG_SQL": "off",
            "DATABASE_URL": "postgres://app@localhost/app",
        }
    )
    assert settings.eager_mode is EagerMode.PRELOAD
    assert settings.per_page == 15
    assert settings.log_sql is False
    assert settings.database_url == "postgres://app@localhost/app"


def test_settings_from_empty_env():
    """Test defaults when no variables are set."""
    settings = Settings.from_env({})
    assert settings == Settings()


def test_settings_from_process_env(monkeypatch):
    """Test reading os.environ when no mapping is given."""
    monkeypatch.setenv("POPKIT_EAGER_MODE", "preload")
    monkeypatch.delenv("DATABASE_URL", raising=False)
    assert Settings.from_env().eager_mode is EagerMode.PRELOAD
