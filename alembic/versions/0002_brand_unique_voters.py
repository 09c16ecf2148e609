"""Add brands.unique_voters_count

Distinct users that placed the brand in any podium slot.  Existing rows
are filled from the votes table.

Revision ID: 0002_brand_unique_voters
Revises: 0001_projection_schema
Create Date: 2026-10-19 18:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = "0002_brand_unique_voters"
down_revision = "0001_projection_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("brands") as batch:
        batch.add_column(
            sa.Column("unique_voters_count", sa.Integer(), nullable=False, server_default="0")
        )

    op.execute(
        """
        UPDATE brands SET unique_voters_count = (
            SELECT COUNT(DISTINCT votes.user_id) FROM votes
            WHERE votes.brand1_id = brands.id
               OR votes.brand2_id = brands.id
               OR votes.brand3_id = brands.id
        )
        """
    )


def downgrade() -> None:
    with op.batch_alter_table("brands") as batch:
        batch.drop_column("unique_voters_count")
