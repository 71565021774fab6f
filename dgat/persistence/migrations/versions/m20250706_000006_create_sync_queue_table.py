"""create sync queue table

Revision ID: m20250706_000006_create_sync_queue_table
Create Date: 2025-07-06
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "m20250706_000006_create_sync_queue_table"
kind = "schema"


def upgrade() -> None:
    op.create_table(
        "sync_queue",
        sa.Column("sync_id", postgresql.UUID(as_uuid=True), primary_key=True),
        # Server acceptance order; uuids carry no ordering.
        sa.Column("seq", sa.BigInteger(), sa.Identity(always=False), nullable=False, unique=True),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.user_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "assessment_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("assessments.assessment_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("data", postgresql.JSONB(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="Pending"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_sync_queue_assessment_id", "sync_queue", ["assessment_id"], unique=False)
    op.create_index(
        "ix_sync_queue_pair_status_seq",
        "sync_queue",
        ["user_id", "assessment_id", "status", "seq"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_sync_queue_pair_status_seq", table_name="sync_queue")
    op.drop_index("ix_sync_queue_assessment_id", table_name="sync_queue")
    op.drop_table("sync_queue")
