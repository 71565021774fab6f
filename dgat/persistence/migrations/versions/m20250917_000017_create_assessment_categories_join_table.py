"""move assessment categories into a join table

Revision ID: m20250917_000017_create_assessment_categories_join_table
Create Date: 2025-09-17
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "m20250917_000017_create_assessment_categories_join_table"
kind = "data"


def upgrade() -> None:
    op.create_table(
        "assessment_categories",
        sa.Column(
            "assessment_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("assessments.assessment_id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "category_catalog_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("category_catalog.category_catalog_id", ondelete="RESTRICT"),
            primary_key=True,
        ),
    )
    # Only ids that resolve to catalog rows are carried over; duplicates collapse.
    op.execute(
        """
        INSERT INTO assessment_categories (assessment_id, category_catalog_id)
        SELECT a.assessment_id, c.category_catalog_id
        FROM assessments a
        CROSS JOIN LATERAL jsonb_array_elements_text(a.categories) AS item(value)
        JOIN category_catalog c ON c.category_catalog_id::text = item.value
        WHERE jsonb_typeof(a.categories) = 'array'
        ON CONFLICT DO NOTHING
        """
    )
    op.drop_column("assessments", "categories")


def downgrade() -> None:
    op.add_column(
        "assessments",
        sa.Column(
            "categories",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
    )
    op.execute(
        """
        UPDATE assessments
        SET categories = (
            SELECT jsonb_agg(ac.category_catalog_id)
            FROM assessment_categories ac
            WHERE ac.assessment_id = assessments.assessment_id
        )
        WHERE EXISTS (
            SELECT 1 FROM assessment_categories ac
            WHERE ac.assessment_id = assessments.assessment_id
        )
        """
    )
    op.drop_table("assessment_categories")
