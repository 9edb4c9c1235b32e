"""Initial schema: ladder, staff, events, sign-ups, ledger, audit, settings

Revision ID: 3c91d0e7a5b2
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "3c91d0e7a5b2"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "levels",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("min_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rank", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("min_points >= 0", name="ck_levels_min_points_nonneg"),
        sa.CheckConstraint("rank >= 0", name="ck_levels_rank_nonneg"),
    )
    op.create_index("ix_levels_rank", "levels", ["rank"])

    op.create_table(
        "staff_members",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(320), nullable=False, unique=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("chat_id", sa.String(64), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "level_id", sa.Integer(),
            sa.ForeignKey("levels.id", ondelete="RESTRICT"), nullable=True,
        ),
        *_timestamps(),
        sa.CheckConstraint("points >= 0", name="ck_staff_points_nonneg"),
    )
    op.create_index("ix_staff_points_desc", "staff_members", ["points"])

    op.create_table(
        "staff_preferences",
        sa.Column(
            "staff_id", sa.Integer(),
            sa.ForeignKey("staff_members.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("notify_new_events", sa.Boolean(), server_default="true"),
        sa.Column("notify_points", sa.Boolean(), server_default="true"),
        sa.Column("notify_level_up", sa.Boolean(), server_default="true"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("time", sa.String(20), nullable=False),
        sa.Column("duration", sa.String(100), nullable=True),
        sa.Column("location", sa.String(300), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "required_level_id", sa.Integer(),
            sa.ForeignKey("levels.id", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column("signup_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("created_by", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("points >= 0", name="ck_events_points_nonneg"),
    )
    op.create_index("ix_events_status_date", "events", ["status", "start_date"])

    op.create_table(
        "event_signups",
        sa.Column(
            "event_id", sa.Integer(),
            sa.ForeignKey("events.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column(
            "staff_id", sa.Integer(),
            sa.ForeignKey("staff_members.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("signed_up_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_confirmed", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("points_awarded", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("added_by_admin", sa.Integer(), nullable=True),
        sa.CheckConstraint(
            "NOT points_awarded OR is_confirmed",
            name="ck_signups_awarded_implies_confirmed",
        ),
    )
    op.create_index(
        "ix_event_signups_confirmed", "event_signups", ["event_id", "is_confirmed"]
    )

    op.create_table(
        "point_adjustments",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column(
            "staff_id", sa.Integer(),
            sa.ForeignKey("staff_members.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("delta", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("kind", sa.String(30), nullable=False, server_default="MANUAL"),
        sa.Column("actor_id", sa.Integer(), nullable=False),
        sa.Column(
            "event_id", sa.Integer(),
            sa.ForeignKey("events.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("length(trim(reason)) > 0", name="ck_adjustments_reason"),
    )
    op.create_index(
        "ix_adjustments_participation_once",
        "point_adjustments",
        ["staff_id", "event_id", "kind"],
        unique=True,
        postgresql_where=sa.text("event_id IS NOT NULL"),
    )
    op.create_index(
        "ix_adjustments_staff_time", "point_adjustments", ["staff_id", "timestamp"]
    )

    op.create_table(
        "admin_log",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("actor_id", sa.Integer(), nullable=False),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("target_table", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(100), nullable=True),
        sa.Column("before_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("after_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_admin_log_actor_time", "admin_log", ["actor_id", "timestamp"])
    op.create_index(
        "ix_admin_log_target", "admin_log", ["target_table", "target_id", "timestamp"]
    )

    op.create_table(
        "settings",
        sa.Column("key", sa.String(100), primary_key=True),
        sa.Column("value_json", sa.Text(), nullable=False),
        sa.Column("category", sa.String(50), nullable=False, server_default="general"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_settings_category", "settings", ["category"])


def downgrade() -> None:
    op.drop_table("settings")
    op.drop_table("admin_log")
    op.drop_table("point_adjustments")
    op.drop_table("event_signups")
    op.drop_table("events")
    op.drop_table("staff_preferences")
    op.drop_table("staff_members")
    op.drop_table("levels")
