from __future__ import annotations

import asyncio
from uuid import uuid4

from alembic import op
import pytest
import sqlalchemy as sa
from sqlalchemy import text

from dgat.core.errors import MigrationConfigError, MigrationError
from dgat.persistence.db import Database
from dgat.persistence.migrations.engine import Migration, Migrator, load_migrations


CATALOG_STEP = "m20250124_000016_create_category_catalog_table"
COPY_STEP = "m20250124_000018_migrate_categories_to_catalog"
ASSESSMENT_NAME_STEP = "m20250731_000001_add_assessment_name"


async def _schema_snapshot(db: Database) -> dict[str, set]:
    # Structural fingerprint of the public schema without the ledger table.
    queries = {
        "columns": """
            SELECT table_name, column_name, data_type, is_nullable, coalesce(column_default, '')
            FROM information_schema.columns
            WHERE table_schema = 'public' AND table_name <> 'schema_migrations'
        """,
        "indexes": """
            SELECT tablename, indexname, indexdef
            FROM pg_indexes
            WHERE schemaname = 'public' AND tablename <> 'schema_migrations'
        """,
        "constraints": """
            SELECT table_name, constraint_name, constraint_type
            FROM information_schema.table_constraints
            WHERE table_schema = 'public' AND table_name <> 'schema_migrations'
              AND constraint_type <> 'CHECK'
        """,
    }
    snapshot = {}
    async with db.engine.connect() as conn:
        for key, sql in queries.items():
            snapshot[key] = {tuple(row) for row in (await conn.execute(text(sql))).all()}
    return snapshot


async def _ledger(db: Database) -> list[str]:
    async with db.engine.connect() as conn:
        rows = await conn.execute(text("SELECT migration_name FROM schema_migrations ORDER BY migration_name"))
        return [row[0] for row in rows.all()]


async def _count(db: Database, table: str) -> int:
    async with db.engine.connect() as conn:
        return (await conn.execute(text(f"SELECT count(*) FROM {table}"))).scalar_one()


@pytest.mark.asyncio
async def test_data_migration_round_trip(empty_db: Database) -> None:
    migrator = Migrator(empty_db.engine)
    await migrator.up(CATALOG_STEP)
    async with empty_db.transaction() as session:
        await session.execute(
            text("INSERT INTO categories (category_id, name, template_id) VALUES (:id, :name, 'tpl-env')"),
            [{"id": uuid4(), "name": "Energy"}, {"id": uuid4(), "name": "Water"}],
        )

    report = await migrator.up(COPY_STEP)

    assert report.applied == [COPY_STEP]
    names = [migration.name for migration in migrator.migrations]
    assert await _ledger(empty_db) == names[: names.index(COPY_STEP) + 1]
    assert await _count(empty_db, "category_catalog") == 2

    down = await migrator.down(1)

    assert down.reverted == [COPY_STEP]
    assert len(down.warnings) == 1 and COPY_STEP in down.warnings[0]
    assert await _count(empty_db, "category_catalog") == 2
    assert await _count(empty_db, "categories") == 2

    # Re-applying skips rows that already exist under the same id.
    await migrator.up(COPY_STEP)
    assert await _count(empty_db, "category_catalog") == 2


@pytest.mark.asyncio
async def test_down_restores_the_earlier_schema(empty_db: Database) -> None:
    migrator = Migrator(empty_db.engine)
    await migrator.up(ASSESSMENT_NAME_STEP)
    expected = await _schema_snapshot(empty_db)
    await migrator.up()

    report = await migrator.down(5)

    assert len(report.reverted) == 5
    assert report.warnings == []
    assert await _schema_snapshot(empty_db) == expected
    assert (await _ledger(empty_db))[-1] == ASSESSMENT_NAME_STEP


@pytest.mark.asyncio
async def test_up_is_idempotent(empty_db: Database) -> None:
    migrator = Migrator(empty_db.engine)
    first = await migrator.up()
    snapshot = await _schema_snapshot(empty_db)

    second = await migrator.up()

    assert first.applied == [migration.name for migration in load_migrations()]
    assert second.applied == [] and second.skipped == []
    assert await _schema_snapshot(empty_db) == snapshot
    assert await migrator.pending() == []


@pytest.mark.asyncio
async def test_concurrent_migrators_apply_each_migration_once(empty_db: Database) -> None:
    left, right = Migrator(empty_db.engine), Migrator(empty_db.engine)

    reports = await asyncio.gather(left.up(), right.up())

    applied = reports[0].applied + reports[1].applied
    names = [migration.name for migration in load_migrations()]
    assert sorted(applied) == names
    assert await _ledger(empty_db) == names


@pytest.mark.asyncio
async def test_failing_migration_rolls_back_and_aborts_the_run(empty_db: Database) -> None:
    def broken_upgrade() -> None:
        op.create_table("half_done", sa.Column("id", sa.Integer(), primary_key=True))
        op.execute("SELECT 1 / 0")

    def later_upgrade() -> None:
        op.create_table("never_reached", sa.Column("id", sa.Integer(), primary_key=True))

    migrations = load_migrations() + [
        Migration("m20991231_000001_broken", "schema", broken_upgrade),
        Migration("m20991231_000002_later", "schema", later_upgrade),
    ]
    migrator = Migrator(empty_db.engine, migrations=migrations)

    with pytest.raises(MigrationError) as excinfo:
        await migrator.up()

    assert excinfo.value.migration_name == "m20991231_000001_broken"
    ledger = await _ledger(empty_db)
    assert "m20991231_000001_broken" not in ledger
    assert "m20991231_000002_later" not in ledger
    async with empty_db.engine.connect() as conn:
        leftovers = await conn.execute(
            text("SELECT to_regclass('half_done'), to_regclass('never_reached')")
        )
        assert leftovers.one() == (None, None)
    assert await migrator.pending() == ["m20991231_000001_broken", "m20991231_000002_later"]


@pytest.mark.asyncio
async def test_unknown_target_touches_nothing(empty_db: Database) -> None:
    migrator = Migrator(empty_db.engine)

    with pytest.raises(MigrationConfigError):
        await migrator.up("m20990101_000001_does_not_exist")

    assert all(not state.applied for state in await migrator.status())


@pytest.mark.asyncio
async def test_status_marks_irreversible_migrations(empty_db: Database) -> None:
    migrator = Migrator(empty_db.engine)
    await migrator.up(COPY_STEP)

    states = {state.name: state for state in await migrator.status()}

    assert states[COPY_STEP].applied and not states[COPY_STEP].reversible
    assert states[CATALOG_STEP].reversible
    assert not states[ASSESSMENT_NAME_STEP].applied
