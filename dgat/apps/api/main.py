from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import AsyncIterator

from fastapi import FastAPI

from dgat.apps.api.routes.health import router as health_router
from dgat.core.config import get_settings
from dgat.core.logging import configure_logging
from dgat.persistence.db import Database
from dgat.persistence.migrations.engine import Migrator


logger = logging.getLogger(__name__)

# Bound on how long shutdown waits for in-flight transactions.
_SHUTDOWN_TIMEOUT_S = 30.0


def create_app(db: Database | None = None) -> FastAPI:
    configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        handle = db or Database.from_settings(get_settings())
        app.state.db = handle
        app.state.migrator = Migrator(handle.engine)
        logger.info("service_started")
        try:
            yield
        finally:
            await handle.close(timeout=_SHUTDOWN_TIMEOUT_S)
            logger.info("service_stopped")

    app = FastAPI(title="DGAT API", lifespan=lifespan)
    app.include_router(health_router)
    return app
