"""add categories array to assessments

Revision ID: m20250916_000016_add_categories_to_assessments
Create Date: 2025-09-16
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "m20250916_000016_add_categories_to_assessments"
kind = "schema"


def upgrade() -> None:
    # JSON array of category_catalog ids; superseded by the assessment_categories join table.
    op.add_column(
        "assessments",
        sa.Column(
            "categories",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
    )


def downgrade() -> None:
    op.drop_column("assessments", "categories")
