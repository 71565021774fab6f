"""dgat-migrate: apply, revert or list schema migrations against DATABASE_URL.

Exit codes: 0 success, 1 migration failure, 2 connection or configuration
failure. Progress goes to stdout, errors to stderr.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Sequence

from sqlalchemy.exc import DBAPIError

from dgat.core.config import Settings, get_settings
from dgat.core.errors import MigrationConfigError, MigrationError, MigrationLockTimeoutError
from dgat.core.logging import configure_logging
from dgat.persistence.db import Database
from dgat.persistence.migrations.engine import MigrationReport, Migrator


EXIT_OK = 0
EXIT_MIGRATION_FAILED = 1
EXIT_UNAVAILABLE = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dgat-migrate", description="Run DGAT schema migrations")
    commands = parser.add_subparsers(dest="command")
    up = commands.add_parser("up", help="Apply pending migrations (default)")
    up.add_argument("--target", default=None, help="Stop after this migration name")
    down = commands.add_parser("down", help="Revert the most recent migrations")
    down.add_argument("-n", type=int, default=1, help="Number of migrations to revert")
    commands.add_parser("status", help="List migrations and when they were applied")
    return parser


def _print_report(report: MigrationReport) -> None:
    for name in report.applied:
        print(f"applied  {name}")
    for name in report.reverted:
        print(f"reverted {name}")
    for name in report.skipped:
        print(f"skipped  {name}")
    for warning in report.warnings:
        print(f"warning  {warning}")
    if not (report.applied or report.reverted or report.skipped):
        print("nothing to do")


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    db = Database.from_settings(settings)
    try:
        migrator = Migrator(db.engine, lock_timeout_ms=settings.migration_lock_timeout_ms)
        command = args.command or "up"
        if command == "status":
            for state in await migrator.status():
                applied = state.applied_at.isoformat() if state.applied_at else "pending"
                flag = "" if state.reversible else " (irreversible)"
                print(f"{state.name}  {applied}{flag}")
            return EXIT_OK
        if command == "down":
            report = await migrator.down(args.n)
        else:
            report = await migrator.up(getattr(args, "target", None))
        _print_report(report)
        return EXIT_OK
    finally:
        await db.close()


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    configure_logging()
    try:
        settings = get_settings()
    except ValueError as exc:
        print(f"dgat-migrate: invalid configuration: {exc}", file=sys.stderr)
        return EXIT_UNAVAILABLE
    try:
        return asyncio.run(_run(args, settings))
    except MigrationConfigError as exc:
        print(f"dgat-migrate: {exc}", file=sys.stderr)
        return EXIT_UNAVAILABLE
    except (MigrationError, MigrationLockTimeoutError) as exc:
        print(f"dgat-migrate: migration failed: {exc}", file=sys.stderr)
        return EXIT_MIGRATION_FAILED
    except (DBAPIError, OSError) as exc:
        print(f"dgat-migrate: database unavailable: {exc}", file=sys.stderr)
        return EXIT_UNAVAILABLE


if __name__ == "__main__":
    raise SystemExit(main())
