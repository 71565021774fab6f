"""add assessment name

Revision ID: m20250731_000001_add_assessment_name
Create Date: 2025-07-31
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "m20250731_000001_add_assessment_name"
kind = "schema"


def upgrade() -> None:
    op.add_column("assessments", sa.Column("name", sa.String(), nullable=True))


def downgrade() -> None:
    op.drop_column("assessments", "name")
