"""create questions_revisions table

Revision ID: m20251104_000001_create_questions_revisions_table
Create Date: 2025-11-04
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "m20251104_000001_create_questions_revisions_table"
kind = "schema"


def upgrade() -> None:
    op.create_table(
        "questions_revisions",
        sa.Column("question_revision_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "question_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("questions.question_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("text", postgresql.JSONB(), nullable=False),
        sa.Column("weight", sa.Float(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("weight >= 0 AND weight <= 1", name="ck_questions_revisions_weight_range"),
    )
    op.create_index(
        "ix_questions_revisions_question_id", "questions_revisions", ["question_id"], unique=False
    )


def downgrade() -> None:
    op.drop_index("ix_questions_revisions_question_id", table_name="questions_revisions")
    op.drop_table("questions_revisions")
