"""copy legacy categories into the category catalog

Revision ID: m20250124_000018_migrate_categories_to_catalog
Create Date: 2025-01-24
"""

from __future__ import annotations

from alembic import op


revision = "m20250124_000018_migrate_categories_to_catalog"
kind = "data"
downgrade_note = (
    "catalog rows copied from categories are kept; they may already be linked "
    "or edited, and re-applying skips existing ids"
)


def upgrade() -> None:
    # Idempotent: rows already present under the same id are left untouched.
    op.execute(
        """
        INSERT INTO category_catalog
            (category_catalog_id, name, description, template_id, is_active, created_at, updated_at)
        SELECT category_id, name, NULL, template_id, true, created_at, updated_at
        FROM categories
        ON CONFLICT (category_catalog_id) DO NOTHING
        """
    )
