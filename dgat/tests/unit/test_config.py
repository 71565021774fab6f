from __future__ import annotations

import pytest
from pydantic import ValidationError

from dgat.core.config import Settings, get_settings
from dgat.persistence.db import engine_kwargs


@pytest.mark.parametrize(
    "url",
    [
        "postgres://dgat:secret@db:5432/dgat",
        "postgresql://dgat:secret@db:5432/dgat",
        "postgresql+asyncpg://dgat:secret@db:5432/dgat",
    ],
)
def test_database_url_is_normalized_to_asyncpg(url: str) -> None:
    settings = Settings(database_url=url, _env_file=None)

    assert settings.database_url == "postgresql+asyncpg://dgat:secret@db:5432/dgat"


def test_defaults(monkeypatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/dgat")
    for name in ("SERVER_HOST", "SERVER_PORT", "SYNC_MAX_ATTEMPTS"):
        monkeypatch.delenv(name, raising=False)
    settings = Settings(_env_file=None)

    assert settings.server_host == "0.0.0.0"
    assert settings.server_port == 3001
    assert settings.sync_max_attempts == 5
    assert settings.keycloak_url is None


def test_environment_overrides(monkeypatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/dgat")
    monkeypatch.setenv("SERVER_PORT", "8080")
    monkeypatch.setenv("SYNC_STALE_CLAIM_AFTER_S", "42")

    settings = get_settings()
    assert settings.server_port == 8080
    assert settings.sync_stale_claim_after_s == 42
    assert get_settings() is settings


def test_database_url_is_required(monkeypatch) -> None:
    monkeypatch.delenv("DATABASE_URL", raising=False)

    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_engine_kwargs_bound_pool_and_statement_timeout() -> None:
    settings = Settings(
        database_url="postgresql://localhost/dgat",
        db_pool_size=4,
        db_max_overflow=2,
        db_statement_timeout_ms=1500,
        _env_file=None,
    )
    kwargs = engine_kwargs(settings)

    assert kwargs["pool_pre_ping"] is True
    assert kwargs["pool_size"] == 4
    assert kwargs["max_overflow"] == 2
    assert kwargs["connect_args"] == {"server_settings": {"statement_timeout": "1500"}}
