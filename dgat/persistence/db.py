from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from dgat.core.config import Settings, get_settings
from dgat.core.errors import DatabaseClosedError


def engine_kwargs(settings: Settings) -> dict[str, Any]:
    kwargs: dict[str, Any] = {"pool_pre_ping": True}
    # Bounded asyncpg pool for predictable latency under load.
    if not settings.database_url.startswith("sqlite"):
        kwargs["pool_size"] = max(1, int(settings.db_pool_size))
        kwargs["max_overflow"] = max(0, int(settings.db_max_overflow))
        kwargs["pool_timeout"] = settings.db_pool_timeout_s
        kwargs["pool_recycle"] = 1800
        if settings.db_statement_timeout_ms > 0:
            kwargs["connect_args"] = {
                "server_settings": {"statement_timeout": str(int(settings.db_statement_timeout_ms))}
            }
    return kwargs


class Database:
    """Shared handle over one pooled engine.

    Services receive the handle at construction; many services and tasks can
    share it. `close()` stops new work, waits for in-flight sessions and then
    disposes the pool.
    """

    def __init__(self, engine: AsyncEngine, settings: Settings | None = None) -> None:
        self.engine = engine
        self.settings = settings
        self._sessions = async_sessionmaker(engine, expire_on_commit=False)
        self._in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._closing = False
        self._closed = False

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "Database":
        settings = settings or get_settings()
        engine = create_async_engine(settings.database_url, **engine_kwargs(settings))
        return cls(engine, settings)

    @property
    def is_closing(self) -> bool:
        return self._closing

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @asynccontextmanager
    async def session(self, *, isolation_level: str | None = None) -> AsyncIterator[AsyncSession]:
        if self._closing:
            raise DatabaseClosedError("database handle is shutting down")
        self._in_flight += 1
        self._idle.clear()
        try:
            if isolation_level is None:
                async with self._sessions() as session:
                    yield session
            else:
                bind = self.engine.execution_options(isolation_level=isolation_level)
                async with AsyncSession(bind=bind, expire_on_commit=False) as session:
                    yield session
        finally:
            self._in_flight -= 1
            if self._in_flight == 0:
                self._idle.set()

    @asynccontextmanager
    async def transaction(self, *, isolation_level: str | None = None) -> AsyncIterator[AsyncSession]:
        # Commit on clean exit, roll back on any exception including cancellation.
        async with self.session(isolation_level=isolation_level) as session:
            async with session.begin():
                yield session

    async def ping(self) -> bool:
        async with self.session() as session:
            return (await session.execute(text("SELECT 1"))).scalar_one() == 1

    async def close(self, *, timeout: float | None = None) -> None:
        if self._closed:
            return
        self._closing = True
        if timeout is None:
            await self._idle.wait()
        else:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
        await self.engine.dispose()
        self._closed = True

    def pool_stats(self) -> dict[str, int | None]:
        # Expose pool counters for health/ops visibility without querying Postgres internals.
        pool = self.engine.sync_engine.pool
        checked_out_fn = getattr(pool, "checkedout", None)
        checked_in_fn = getattr(pool, "checkedin", None)
        overflow_fn = getattr(pool, "overflow", None)
        size_fn = getattr(pool, "size", None)
        return {
            "size": int(size_fn()) if callable(size_fn) else None,
            "checked_out": int(checked_out_fn()) if callable(checked_out_fn) else None,
            "checked_in": int(checked_in_fn()) if callable(checked_in_fn) else None,
            "overflow": int(overflow_fn()) if callable(overflow_fn) else None,
        }
