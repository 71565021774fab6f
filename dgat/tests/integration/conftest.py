from __future__ import annotations

from typing import AsyncIterator

import pytest
from sqlalchemy import text

from dgat.core.config import get_settings
from dgat.persistence.db import Database
from dgat.persistence.migrations.engine import Migrator


_APP_TABLES = (
    "sync_queue",
    "assessments_response",
    "questions_revisions",
    "reports",
    "assessment_categories",
    "assessments",
    "users",
    "organizations",
    "questions",
    "category_catalog",
    "categories",
)


@pytest.fixture
async def db() -> AsyncIterator[Database]:
    # Integration tests run against DATABASE_URL and are skipped when it is unreachable.
    database = Database.from_settings(get_settings())
    try:
        await database.ping()
    except Exception as exc:  # noqa: BLE001 - any connect failure means no database for this run
        await database.close()
        pytest.skip(f"PostgreSQL unavailable: {exc}")
    yield database
    await database.close()


@pytest.fixture
async def migrated_db(db: Database) -> AsyncIterator[Database]:
    # Bring the schema to head and start every test from empty tables.
    await Migrator(db.engine).up()
    async with db.transaction() as session:
        await session.execute(text(f"TRUNCATE {', '.join(_APP_TABLES)} CASCADE"))
    yield db


@pytest.fixture
async def empty_db(db: Database) -> AsyncIterator[Database]:
    # Migration tests start from a schema with no tables and leave it at head.
    await reset_schema(db)
    yield db
    await Migrator(db.engine).up()


async def reset_schema(db: Database) -> None:
    async with db.engine.begin() as conn:
        await conn.execute(text("DROP SCHEMA public CASCADE"))
        await conn.execute(text("CREATE SCHEMA public"))
