"""create questions table

Revision ID: m20250706_000003_create_questions_table
Create Date: 2025-07-06
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "m20250706_000003_create_questions_table"
kind = "schema"


def upgrade() -> None:
    op.create_table(
        "questions",
        sa.Column("question_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("text", postgresql.JSONB(), nullable=False),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("weight", sa.Float(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("weight >= 0 AND weight <= 1", name="ck_questions_weight_range"),
    )
    op.create_index("ix_questions_category", "questions", ["category"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_questions_category", table_name="questions")
    op.drop_table("questions")
