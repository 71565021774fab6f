"""Ordered schema migrations with a ledger table and a cross-process advisory lock.

Migration modules live in `dgat.persistence.migrations.versions`. Each one
declares `revision` (equal to its module name), `kind` ("schema" or "data"),
`upgrade()` and optionally `downgrade()`; bodies use Alembic's `op` proxy.
A module without `downgrade()` is irreversible and carries `downgrade_note`.

Every migration runs in its own transaction together with its ledger row, so
a crash never leaves a half-applied migration recorded as applied.
"""

from __future__ import annotations

import asyncio
import importlib
import logging
import pkgutil
import re
from dataclasses import dataclass, field
from datetime import datetime
from types import ModuleType
from typing import Any, Awaitable, Callable, Iterable, Sequence

from alembic.operations import Operations
from alembic.runtime.migration import MigrationContext
from sqlalchemy import Column, DateTime, MetaData, String, Table, delete, insert, select, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from dgat.core.errors import (
    MigrationConfigError,
    MigrationError,
    MigrationLockTimeoutError,
    sqlstate_of,
)
from dgat.domain.models import utc_now


logger = logging.getLogger(__name__)

VERSIONS_PACKAGE = "dgat.persistence.migrations.versions"
NAME_PATTERN = re.compile(r"^m\d{8}_\d{6}_[a-z0-9_]+$")
MIGRATION_KINDS = frozenset({"schema", "data"})

# pg_advisory_xact_lock key reserved for the migrator ("DGATMIGR").
MIGRATOR_LOCK_KEY = 0x444741544D494752

_LOCK_NOT_AVAILABLE = "55P03"

ledger_metadata = MetaData()
schema_migrations = Table(
    "schema_migrations",
    ledger_metadata,
    Column("migration_name", String(255), primary_key=True),
    Column("applied_at", DateTime(timezone=True), nullable=False),
)


@dataclass(frozen=True)
class Migration:
    name: str
    kind: str
    upgrade: Callable[[], None]
    downgrade: Callable[[], None] | None = None
    downgrade_note: str | None = None

    @property
    def reversible(self) -> bool:
        return self.downgrade is not None


@dataclass(frozen=True)
class MigrationState:
    name: str
    kind: str
    reversible: bool
    applied_at: datetime | None

    @property
    def applied(self) -> bool:
        return self.applied_at is not None


@dataclass
class MigrationReport:
    applied: list[str] = field(default_factory=list)
    reverted: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def migration_from_module(module: ModuleType) -> Migration:
    module_name = module.__name__.rsplit(".", 1)[-1]
    revision = getattr(module, "revision", None)
    if not isinstance(revision, str) or not NAME_PATTERN.match(revision):
        raise MigrationConfigError(f"{module_name}: revision {revision!r} is not mYYYYMMDD_HHMMSS_<slug>")
    if revision != module_name:
        raise MigrationConfigError(f"{module_name}: revision {revision!r} does not match module name")
    kind = getattr(module, "kind", "schema")
    if kind not in MIGRATION_KINDS:
        raise MigrationConfigError(f"{revision}: unknown kind {kind!r}")
    upgrade = getattr(module, "upgrade", None)
    if not callable(upgrade):
        raise MigrationConfigError(f"{revision}: missing upgrade()")
    downgrade = getattr(module, "downgrade", None)
    note = getattr(module, "downgrade_note", None)
    if downgrade is None and not note:
        raise MigrationConfigError(f"{revision}: irreversible migrations must declare downgrade_note")
    return Migration(
        name=revision,
        kind=kind,
        upgrade=upgrade,
        downgrade=downgrade if callable(downgrade) else None,
        downgrade_note=note,
    )


def discover_modules(package: str = VERSIONS_PACKAGE) -> list[ModuleType]:
    pkg = importlib.import_module(package)
    modules = []
    for info in pkgutil.iter_modules(pkg.__path__):
        if info.name.startswith("_"):
            continue
        modules.append(importlib.import_module(f"{package}.{info.name}"))
    return modules


def load_migrations(modules: Iterable[ModuleType] | None = None) -> list[Migration]:
    """Validate migration modules and return them in execution order."""
    if modules is None:
        modules = discover_modules()
    by_name: dict[str, Migration] = {}
    for module in modules:
        migration = migration_from_module(module)
        if migration.name in by_name:
            raise MigrationConfigError(f"duplicate migration name {migration.name}")
        by_name[migration.name] = migration
    return [by_name[name] for name in sorted(by_name)]


def plan_up(known: Sequence[str], applied: Iterable[str], target: str | None = None) -> list[str]:
    ordered = sorted(known)
    if target is not None:
        if target not in ordered:
            raise MigrationConfigError(f"unknown target migration {target}")
        ordered = ordered[: ordered.index(target) + 1]
    done = set(applied)
    return [name for name in ordered if name not in done]


def plan_down(ledger: Iterable[tuple[str, datetime]], n: int = 1) -> list[str]:
    if n < 0:
        raise MigrationConfigError("down count must be >= 0")
    # Most recent first; the name breaks ties between rows applied in the same instant.
    rows = sorted(ledger, key=lambda row: (row[1], row[0]), reverse=True)
    return [name for name, _ in rows[:n]]


async def _shielded(work: Awaitable[Any]) -> Any:
    # A migration transaction always finishes (commit or rollback) before cancellation lands.
    task = asyncio.ensure_future(work)
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        await asyncio.wait({task})
        if not task.cancelled() and task.exception() is not None:
            logger.error("migration_failed_during_cancel error=%s", task.exception())
        raise


class Migrator:
    def __init__(
        self,
        engine: AsyncEngine,
        *,
        migrations: Sequence[Migration] | None = None,
        lock_timeout_ms: int = 60000,
    ) -> None:
        self.engine = engine
        self.migrations = list(migrations) if migrations is not None else load_migrations()
        self.lock_timeout_ms = lock_timeout_ms
        self._by_name = {migration.name: migration for migration in self.migrations}

    async def up(self, target: str | None = None) -> MigrationReport:
        report = MigrationReport()
        names = [migration.name for migration in self.migrations]
        # Validate the target before touching the database.
        plan_up(names, (), target)
        ledger = await self._read_ledger()
        for name in plan_up(names, ledger, target):
            migration = self._by_name[name]
            applied = await _shielded(self._apply(migration))
            if applied:
                report.applied.append(name)
                logger.info("migration_applied name=%s kind=%s", name, migration.kind)
            else:
                report.skipped.append(name)
                logger.info("migration_skipped name=%s reason=already_applied", name)
        return report

    async def down(self, n: int = 1) -> MigrationReport:
        report = MigrationReport()
        ledger = await self._read_ledger()
        for name in plan_down(ledger.items(), n):
            migration = self._by_name.get(name)
            if migration is None:
                raise MigrationConfigError(f"ledger names unknown migration {name}")
            reverted = await _shielded(self._revert(migration))
            if not reverted:
                report.skipped.append(name)
                continue
            report.reverted.append(name)
            if migration.reversible:
                logger.info("migration_reverted name=%s", name)
            else:
                warning = f"{name}: {migration.downgrade_note}"
                report.warnings.append(warning)
                logger.warning("migration_irreversible name=%s note=%s", name, migration.downgrade_note)
        return report

    async def status(self) -> list[MigrationState]:
        ledger = await self._read_ledger()
        return [
            MigrationState(
                name=migration.name,
                kind=migration.kind,
                reversible=migration.reversible,
                applied_at=ledger.get(migration.name),
            )
            for migration in self.migrations
        ]

    async def pending(self) -> list[str]:
        ledger = await self._read_ledger()
        return plan_up([migration.name for migration in self.migrations], ledger)

    async def _read_ledger(self) -> dict[str, datetime]:
        async with self.engine.connect() as conn:
            exists = (await conn.execute(text("SELECT to_regclass('schema_migrations')"))).scalar()
            if exists is None:
                return {}
            rows = await conn.execute(
                select(schema_migrations.c.migration_name, schema_migrations.c.applied_at)
            )
            return {name: applied_at for name, applied_at in rows.all()}

    async def _lock(self, conn: AsyncConnection) -> None:
        await conn.execute(text(f"SET LOCAL lock_timeout = {int(self.lock_timeout_ms)}"))
        try:
            await conn.execute(
                text("SELECT pg_advisory_xact_lock(:key)"), {"key": MIGRATOR_LOCK_KEY}
            )
        except DBAPIError as exc:
            if sqlstate_of(exc) == _LOCK_NOT_AVAILABLE:
                raise MigrationLockTimeoutError(
                    f"migrator lock not acquired within {self.lock_timeout_ms}ms"
                ) from exc
            raise
        await conn.run_sync(ledger_metadata.create_all, checkfirst=True)

    async def _is_recorded(self, conn: AsyncConnection, name: str) -> bool:
        result = await conn.execute(
            select(schema_migrations.c.migration_name).where(schema_migrations.c.migration_name == name)
        )
        return result.first() is not None

    async def _apply(self, migration: Migration) -> bool:
        try:
            async with self.engine.connect() as conn:
                async with conn.begin():
                    await self._lock(conn)
                    # Another migrator may have applied it while we waited for the lock.
                    if await self._is_recorded(conn, migration.name):
                        return False
                    await conn.run_sync(_run_body, migration.upgrade)
                    await conn.execute(
                        insert(schema_migrations).values(
                            migration_name=migration.name, applied_at=utc_now()
                        )
                    )
            return True
        except MigrationLockTimeoutError:
            raise
        except Exception as exc:
            logger.error("migration_failed name=%s error=%s", migration.name, exc)
            raise MigrationError(migration.name, str(exc)) from exc

    async def _revert(self, migration: Migration) -> bool:
        try:
            async with self.engine.connect() as conn:
                async with conn.begin():
                    await self._lock(conn)
                    if not await self._is_recorded(conn, migration.name):
                        return False
                    if migration.downgrade is not None:
                        await conn.run_sync(_run_body, migration.downgrade)
                    await conn.execute(
                        delete(schema_migrations).where(
                            schema_migrations.c.migration_name == migration.name
                        )
                    )
            return True
        except MigrationLockTimeoutError:
            raise
        except Exception as exc:
            logger.error("migration_revert_failed name=%s error=%s", migration.name, exc)
            raise MigrationError(migration.name, str(exc)) from exc


def _run_body(sync_conn: Any, body: Callable[[], None]) -> None:
    # Bind Alembic's `op` proxy to the migrator's open transaction.
    context = MigrationContext.configure(connection=sync_conn)
    with Operations.context(context):
        body()
