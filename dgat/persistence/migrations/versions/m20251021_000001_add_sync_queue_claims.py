"""add claim bookkeeping to the sync queue

Revision ID: m20251021_000001_add_sync_queue_claims
Create Date: 2025-10-21
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "m20251021_000001_add_sync_queue_claims"
kind = "schema"


def upgrade() -> None:
    op.add_column(
        "sync_queue",
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
    )
    op.add_column("sync_queue", sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True))
    op.add_column("sync_queue", sa.Column("applied_at", sa.DateTime(timezone=True), nullable=True))
    op.add_column("sync_queue", sa.Column("error_message", sa.Text(), nullable=True))
    # At most one Processing entry per (user, assessment), even if two claimers race.
    op.create_index(
        "uq_sync_queue_one_processing",
        "sync_queue",
        ["user_id", "assessment_id"],
        unique=True,
        postgresql_where=sa.text("status = 'Processing'"),
    )


def downgrade() -> None:
    op.drop_index("uq_sync_queue_one_processing", table_name="sync_queue")
    op.drop_column("sync_queue", "error_message")
    op.drop_column("sync_queue", "applied_at")
    op.drop_column("sync_queue", "claimed_at")
    op.drop_column("sync_queue", "attempts")
