from __future__ import annotations

from datetime import datetime, timezone
from types import ModuleType

import pytest

from dgat.core.errors import MigrationConfigError
from dgat.persistence.migrations.engine import load_migrations, plan_down, plan_up


SHIPPED = [
    "m20250123_000014_create_categories_table",
    "m20250124_000016_create_category_catalog_table",
    "m20250124_000018_migrate_categories_to_catalog",
    "m20250706_000001_create_organizations_table",
    "m20250706_000002_create_users_table",
    "m20250706_000003_create_questions_table",
    "m20250706_000004_create_assessments_table",
    "m20250706_000005_create_reports_table",
    "m20250706_000006_create_sync_queue_table",
    "m20250731_000001_add_assessment_name",
    "m20250916_000016_add_categories_to_assessments",
    "m20250917_000017_create_assessment_categories_join_table",
    "m20251021_000001_add_sync_queue_claims",
    "m20251104_000001_create_questions_revisions_table",
    "m20251104_000002_create_assessments_response_table",
]


def _module(name: str, *, revision: str | None = None, reversible: bool = True, note: str | None = None) -> ModuleType:
    module = ModuleType(f"dgat.persistence.migrations.versions.{name}")
    module.revision = revision or name
    module.kind = "schema"
    module.upgrade = lambda: None
    if reversible:
        module.downgrade = lambda: None
    if note is not None:
        module.downgrade_note = note
    return module


def test_shipped_migrations_load_in_lexicographic_order() -> None:
    migrations = load_migrations()

    assert [migration.name for migration in migrations] == SHIPPED


def test_data_migration_is_irreversible_with_note() -> None:
    by_name = {migration.name: migration for migration in load_migrations()}
    data_migration = by_name["m20250124_000018_migrate_categories_to_catalog"]

    assert data_migration.kind == "data"
    assert not data_migration.reversible
    assert data_migration.downgrade_note
    assert by_name["m20250917_000017_create_assessment_categories_join_table"].reversible


def test_same_timestamp_prefix_orders_by_full_name() -> None:
    migrations = load_migrations(
        [_module("m20250101_000000_zeta"), _module("m20250101_000000_alpha")]
    )

    assert [migration.name for migration in migrations] == [
        "m20250101_000000_alpha",
        "m20250101_000000_zeta",
    ]


def test_duplicate_names_are_rejected() -> None:
    with pytest.raises(MigrationConfigError, match="duplicate"):
        load_migrations([_module("m20250101_000000_same"), _module("m20250101_000000_same")])


@pytest.mark.parametrize("name", ["20250101_000000_x", "m2025_000000_x", "m20250101_000000_Bad", "m20250101_000000_"])
def test_malformed_names_are_rejected(name: str) -> None:
    with pytest.raises(MigrationConfigError):
        load_migrations([_module(name)])


def test_revision_must_match_module_name() -> None:
    with pytest.raises(MigrationConfigError, match="does not match"):
        load_migrations([_module("m20250101_000000_one", revision="m20250101_000000_two")])


def test_irreversible_migration_requires_note() -> None:
    with pytest.raises(MigrationConfigError, match="downgrade_note"):
        load_migrations([_module("m20250101_000000_one", reversible=False)])

    [migration] = load_migrations([_module("m20250101_000000_one", reversible=False, note="kept")])
    assert not migration.reversible


def test_plan_up_skips_applied_and_truncates_at_target() -> None:
    known = ["m1_a", "m2_b", "m3_c", "m4_d"]

    assert plan_up(known, {"m1_a"}) == ["m2_b", "m3_c", "m4_d"]
    assert plan_up(known, {"m1_a"}, target="m3_c") == ["m2_b", "m3_c"]
    assert plan_up(known, set(known)) == []


def test_plan_up_rejects_unknown_target() -> None:
    with pytest.raises(MigrationConfigError, match="unknown target"):
        plan_up(["m1_a"], set(), target="m9_z")


def test_plan_down_orders_by_applied_at_then_name() -> None:
    early = datetime(2025, 1, 1, tzinfo=timezone.utc)
    late = datetime(2025, 1, 2, tzinfo=timezone.utc)
    ledger = [("m1_a", early), ("m2_b", late), ("m3_c", late)]

    assert plan_down(ledger, 2) == ["m3_c", "m2_b"]
    assert plan_down(ledger, 10) == ["m3_c", "m2_b", "m1_a"]
    assert plan_down(ledger, 0) == []
