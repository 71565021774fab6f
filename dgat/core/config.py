from __future__ import annotations

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_ASYNC_DRIVER_PREFIX = "postgresql+asyncpg://"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "dgat"
    log_level: str = "INFO"

    # Required: a missing DATABASE_URL fails settings construction.
    database_url: str

    # Bind address for the service stub.
    server_host: str = "0.0.0.0"
    server_port: int = 3001

    # Bounded asyncpg pool so many workers can share one handle predictably.
    db_pool_size: int = 10
    db_max_overflow: int = 5
    db_pool_timeout_s: int = 30
    # Server-side statement timeout; 0 disables it.
    db_statement_timeout_ms: int = 0
    # Transient failures (deadlock, serialization, connection reset) are retried a few times.
    db_retry_max_attempts: int = 3
    db_retry_backoff_ms: int = 50

    # Upper bound a migrator waits on the advisory lock held by another process.
    migration_lock_timeout_ms: int = 60000

    # Processing claims older than this are returned to Pending by the janitor.
    sync_stale_claim_after_s: int = 300
    # Retryable apply failures give up after this many claims.
    sync_max_attempts: int = 5
    sync_janitor_interval_s: int = 30

    # Identity provider collaborator; only the Keycloak client requires these.
    keycloak_url: str | None = None
    keycloak_realm: str | None = None
    keycloak_client_id: str | None = None
    keycloak_client_secret: str | None = None
    ext_call_timeout_ms: int = 8000

    @field_validator("database_url")
    @classmethod
    def _use_asyncpg_driver(cls, value: str) -> str:
        # Accept the plain libpq forms operators usually export and pin the async driver.
        for prefix in ("postgres://", "postgresql://"):
            if value.startswith(prefix):
                return _ASYNC_DRIVER_PREFIX + value[len(prefix):]
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()
