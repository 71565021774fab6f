from __future__ import annotations

from datetime import datetime, timezone

import pytest

from dgat.apps import migrator as cli
from dgat.core.config import Settings
from dgat.core.errors import MigrationConfigError, MigrationError, MigrationLockTimeoutError
from dgat.persistence.migrations.engine import MigrationReport, MigrationState


class FakeDatabase:
    closed = 0

    def __init__(self) -> None:
        self.engine = object()

    @classmethod
    def from_settings(cls, settings):
        return cls()

    async def close(self, timeout=None) -> None:
        FakeDatabase.closed += 1


def _install(monkeypatch, *, up=None, down=None, status=None, calls=None):
    calls = calls if calls is not None else {}

    class FakeMigrator:
        def __init__(self, engine, *, lock_timeout_ms):
            calls["lock_timeout_ms"] = lock_timeout_ms

        async def up(self, target=None):
            calls["up"] = target
            if isinstance(up, Exception):
                raise up
            return up or MigrationReport()

        async def down(self, n=1):
            calls["down"] = n
            if isinstance(down, Exception):
                raise down
            return down or MigrationReport()

        async def status(self):
            return status or []

    FakeDatabase.closed = 0
    monkeypatch.setattr(cli, "Database", FakeDatabase)
    monkeypatch.setattr(cli, "Migrator", FakeMigrator)
    monkeypatch.setattr(
        cli,
        "get_settings",
        lambda: Settings(_env_file=None, database_url="postgresql://localhost/dgat", migration_lock_timeout_ms=1500),
    )
    return calls


def test_up_is_the_default_command(monkeypatch, capsys) -> None:
    calls = _install(monkeypatch, up=MigrationReport(applied=["m20250706_000001_create_organizations_table"]))

    assert cli.main([]) == cli.EXIT_OK

    assert calls == {"lock_timeout_ms": 1500, "up": None}
    assert "applied  m20250706_000001_create_organizations_table" in capsys.readouterr().out
    assert FakeDatabase.closed == 1


def test_up_passes_target(monkeypatch, capsys) -> None:
    calls = _install(monkeypatch)

    assert cli.main(["up", "--target", "m20250706_000003_create_questions_table"]) == cli.EXIT_OK
    assert calls["up"] == "m20250706_000003_create_questions_table"
    assert "nothing to do" in capsys.readouterr().out


def test_down_reports_irreversible_warning(monkeypatch, capsys) -> None:
    report = MigrationReport(
        reverted=["m20250124_000018_migrate_categories_to_catalog"],
        warnings=["m20250124_000018_migrate_categories_to_catalog is irreversible; ledger row removed only"],
    )
    calls = _install(monkeypatch, down=report)

    assert cli.main(["down", "-n", "2"]) == cli.EXIT_OK

    out = capsys.readouterr().out
    assert calls["down"] == 2
    assert "reverted m20250124_000018_migrate_categories_to_catalog" in out
    assert "warning  " in out


def test_status_lists_every_migration(monkeypatch, capsys) -> None:
    applied_at = datetime(2025, 8, 1, tzinfo=timezone.utc)
    _install(
        monkeypatch,
        status=[
            MigrationState("m20250706_000001_create_organizations_table", "schema", True, applied_at),
            MigrationState("m20250124_000018_migrate_categories_to_catalog", "data", False, None),
        ],
    )

    assert cli.main(["status"]) == cli.EXIT_OK

    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == f"m20250706_000001_create_organizations_table  {applied_at.isoformat()}"
    assert lines[1] == "m20250124_000018_migrate_categories_to_catalog  pending (irreversible)"


def test_failed_migration_exits_one(monkeypatch, capsys) -> None:
    _install(monkeypatch, up=MigrationError("m20250706_000002_create_users_table", "boom"))

    assert cli.main(["up"]) == cli.EXIT_MIGRATION_FAILED
    assert "migration failed" in capsys.readouterr().err
    assert FakeDatabase.closed == 1


def test_lock_timeout_exits_one(monkeypatch) -> None:
    _install(monkeypatch, up=MigrationLockTimeoutError("lock held"))

    assert cli.main(["up"]) == cli.EXIT_MIGRATION_FAILED


@pytest.mark.parametrize(
    "error",
    [MigrationConfigError("unknown target"), ConnectionRefusedError("connection refused")],
)
def test_configuration_and_connection_errors_exit_two(monkeypatch, capsys, error) -> None:
    _install(monkeypatch, up=error)

    assert cli.main(["up"]) == cli.EXIT_UNAVAILABLE
    assert capsys.readouterr().err.startswith("dgat-migrate:")


def test_missing_database_url_exits_two(monkeypatch, capsys) -> None:
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.chdir("/")

    assert cli.main(["status"]) == cli.EXIT_UNAVAILABLE
    assert "invalid configuration" in capsys.readouterr().err
