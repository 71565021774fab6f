"""create category catalog table

Revision ID: m20250124_000016_create_category_catalog_table
Create Date: 2025-01-24
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "m20250124_000016_create_category_catalog_table"
kind = "schema"


def upgrade() -> None:
    # Curated category library; inactive entries stay for existing links.
    op.create_table(
        "category_catalog",
        sa.Column("category_catalog_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("template_id", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "ix_category_catalog_template_id", "category_catalog", ["template_id"], unique=False
    )


def downgrade() -> None:
    op.drop_index("ix_category_catalog_template_id", table_name="category_catalog")
    op.drop_table("category_catalog")
