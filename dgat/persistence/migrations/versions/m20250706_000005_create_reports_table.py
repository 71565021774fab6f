"""create reports table

Revision ID: m20250706_000005_create_reports_table
Create Date: 2025-07-06
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "m20250706_000005_create_reports_table"
kind = "schema"


def upgrade() -> None:
    op.create_table(
        "reports",
        sa.Column("report_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "assessment_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("assessments.assessment_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column(
            "data",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_reports_assessment_id", "reports", ["assessment_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_reports_assessment_id", table_name="reports")
    op.drop_table("reports")
