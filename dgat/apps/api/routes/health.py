from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from dgat.persistence.db import Database
from dgat.persistence.migrations.engine import Migrator


logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    database: str
    pending_migrations: list[str]
    pool: dict[str, int | None]


@router.get("/health", response_model=HealthResponse)
async def health(request: Request) -> JSONResponse:
    # Degraded when the database is unreachable or the schema is behind the code.
    db: Database = request.app.state.db
    migrator: Migrator = request.app.state.migrator
    database = "ok"
    pending: list[str] = []
    try:
        await db.ping()
        pending = await migrator.pending()
    except Exception as exc:  # noqa: BLE001 - reported in the health body, not raised
        logger.warning("health_database_unavailable error=%s", exc)
        database = "unavailable"
    healthy = database == "ok" and not pending
    payload = HealthResponse(
        status="ok" if healthy else "degraded",
        database=database,
        pending_migrations=pending,
        pool=db.pool_stats(),
    )
    return JSONResponse(status_code=200 if healthy else 503, content=payload.model_dump())
