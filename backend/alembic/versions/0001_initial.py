"""live scoring tables

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "match",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tournament_id", sa.String(), nullable=True),
        sa.Column("round", sa.String(), nullable=True),
        sa.Column("court_number", sa.Integer(), nullable=True),
        sa.Column("referee_id", sa.String(), nullable=True),
        sa.Column("points_to_win", sa.Integer(), nullable=False, server_default="11"),
        sa.Column("sets", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("golden_point", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(), nullable=False, server_default="SCHEDULED"),
        sa.Column("current_set", sa.Integer(), nullable=True),
        sa.Column("score_a", sa.Integer(), nullable=True),
        sa.Column("score_b", sa.Integer(), nullable=True),
        sa.Column("completed_sets", sa.JSON(), nullable=True),
        sa.Column("winner_side", sa.String(), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(), nullable=True),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("ended_at", sa.DateTime(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_match_status", "match", ["status"])
    op.create_index("ix_match_tournament_id", "match", ["tournament_id"])

    op.create_table(
        "match_participant",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("match_id", sa.String(), sa.ForeignKey("match.id"), nullable=False),
        sa.Column("side", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("player_ids", sa.JSON(), nullable=False),
        sa.UniqueConstraint("match_id", "side", name="uq_match_participant_side"),
    )

    op.create_table(
        "score_event",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("match_id", sa.String(), sa.ForeignKey("match.id"), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.UniqueConstraint("match_id", "seq", name="uq_score_event_match_seq"),
    )


def downgrade():
    op.drop_table("score_event")
    op.drop_table("match_participant")
    op.drop_index("ix_match_tournament_id", table_name="match")
    op.drop_index("ix_match_status", table_name="match")
    op.drop_table("match")
