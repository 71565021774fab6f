"""create assessments_response table

Revision ID: m20251104_000002_create_assessments_response_table
Create Date: 2025-11-04
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "m20251104_000002_create_assessments_response_table"
kind = "schema"


def upgrade() -> None:
    op.create_table(
        "assessments_response",
        sa.Column("response_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "assessment_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("assessments.assessment_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "question_revision_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("questions_revisions.question_revision_id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("response", sa.Text(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    # One row per version of an answer; concurrent edits of the same answer collide here.
    op.create_index(
        "uq_assessments_response_assessment_revision_version",
        "assessments_response",
        ["assessment_id", "question_revision_id", "version"],
        unique=True,
    )
    op.create_index(
        "ix_assessments_response_question_revision_id",
        "assessments_response",
        ["question_revision_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_assessments_response_question_revision_id", table_name="assessments_response")
    op.drop_index("uq_assessments_response_assessment_revision_version", table_name="assessments_response")
    op.drop_table("assessments_response")
