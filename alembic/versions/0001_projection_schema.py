"""Projection schema: users, brands, votes, job_state

Revision ID: 0001_projection_schema
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_projection_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("fid", sa.BigInteger(), nullable=False, unique=True),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("address", sa.String(42), nullable=True),
        sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("daily_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_daily_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("power_level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_votes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_vote_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "brands",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("on_ledger_id", sa.Integer(), nullable=True, unique=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("handle", sa.String(100), nullable=True),
        sa.Column("fid", sa.BigInteger(), nullable=True),
        sa.Column("wallet_address", sa.String(42), nullable=True),
        sa.Column("metadata_hash", sa.String(100), nullable=True),
        sa.Column("score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("score_day", sa.Float(), nullable=False, server_default="0"),
        sa.Column("score_week", sa.Float(), nullable=False, server_default="0"),
        sa.Column("score_month", sa.Float(), nullable=False, server_default="0"),
        sa.Column("ranking", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ranking_day", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ranking_week", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ranking_month", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("banned", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "votes",
        sa.Column("tx_hash", sa.String(66), primary_key=True),
        sa.Column("event_id", sa.String(100), nullable=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("brand1_id", sa.Integer(), sa.ForeignKey("brands.id"), nullable=True),
        sa.Column("brand2_id", sa.Integer(), sa.ForeignKey("brands.id"), nullable=True),
        sa.Column("brand3_id", sa.Integer(), sa.ForeignKey("brands.id"), nullable=True),
        sa.Column("date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("day_bucket", sa.Integer(), nullable=True),
        sa.Column("cost_paid", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("reward_amount", sa.String(78), nullable=True),
        sa.Column("shared", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("share_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("claim_tx_hash", sa.String(66), nullable=True),
        sa.Column("points_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("season", sa.Integer(), nullable=True),
    )
    op.create_index("ix_votes_user_date", "votes", ["user_id", "date"])
    op.create_index("ix_votes_date", "votes", ["date"])

    op.create_table(
        "job_state",
        sa.Column("key", sa.String(100), primary_key=True),
        sa.Column("value_json", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("job_state")
    op.drop_index("ix_votes_date", table_name="votes")
    op.drop_index("ix_votes_user_date", table_name="votes")
    op.drop_table("votes")
    op.drop_table("brands")
    op.drop_table("users")
