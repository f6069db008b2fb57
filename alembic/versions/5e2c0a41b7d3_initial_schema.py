"""Initial schema: organizations, users, memberships, activities, sessions, participations

Revision ID: 5e2c0a41b7d3
Revises:
Create Date: 2026-10-17 09:12:04.118342

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '5e2c0a41b7d3'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

ACTIVE_PARTICIPATION = "status IN ('joined', 'waitlisted')"


def upgrade() -> None:
    """Create all tables and the one-active-participation partial unique index."""

    # --- organizations ---
    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    # --- users ---
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(320), nullable=True, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    # --- memberships ---
    op.create_table(
        "memberships",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "organization_id", sa.Integer,
            sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "user_id", sa.Integer,
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("role", sa.String(20), nullable=False, server_default="member"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("organization_id", "user_id", name="uq_memberships_org_user"),
    )

    # --- activities ---
    op.create_table(
        "activities",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "organization_id", sa.Integer,
            sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_activities_org", "activities", ["organization_id"])

    # --- event_sessions ---
    op.create_table(
        "event_sessions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "organization_id", sa.Integer,
            sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "activity_id", sa.Integer,
            sa.ForeignKey("activities.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("location", sa.String(500), nullable=True),
        sa.Column("date_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("max_capacity", sa.Integer, nullable=False),
        sa.Column("max_waitlist", sa.Integer, nullable=False, server_default="0"),
        sa.Column("join_mode", sa.String(30), nullable=False, server_default="open"),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column(
            "created_by", sa.Integer,
            sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("max_capacity > 0", name="ck_event_sessions_capacity_positive"),
        sa.CheckConstraint("max_waitlist >= 0", name="ck_event_sessions_waitlist_non_negative"),
    )
    op.create_index("ix_event_sessions_org", "event_sessions", ["organization_id"])
    op.create_index("ix_event_sessions_date", "event_sessions", ["date_time"])
    op.create_index("ix_event_sessions_org_status", "event_sessions", ["organization_id", "status"])

    # --- participations ---
    op.create_table(
        "participations",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "session_id", sa.Integer,
            sa.ForeignKey("event_sessions.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "user_id", sa.Integer,
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("status", sa.String(20), nullable=False, server_default="joined"),
        sa.Column("attendance", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("payment", sa.String(20), nullable=False, server_default="unpaid"),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_participations_session", "participations", ["session_id"])
    op.create_index("ix_participations_user", "participations", ["user_id"])
    op.create_index(
        "ix_participations_session_status_created",
        "participations",
        ["session_id", "status", "created_at"],
    )
    op.create_index(
        "uq_participations_active",
        "participations",
        ["session_id", "user_id"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_PARTICIPATION),
        sqlite_where=sa.text(ACTIVE_PARTICIPATION),
    )


def downgrade() -> None:
    """Drop everything in reverse dependency order."""
    op.drop_index("uq_participations_active", table_name="participations")
    op.drop_index("ix_participations_session_status_created", table_name="participations")
    op.drop_index("ix_participations_user", table_name="participations")
    op.drop_index("ix_participations_session", table_name="participations")
    op.drop_table("participations")

    op.drop_index("ix_event_sessions_org_status", table_name="event_sessions")
    op.drop_index("ix_event_sessions_date", table_name="event_sessions")
    op.drop_index("ix_event_sessions_org", table_name="event_sessions")
    op.drop_table("event_sessions")

    op.drop_index("ix_activities_org", table_name="activities")
    op.drop_table("activities")
    op.drop_table("memberships")
    op.drop_table("users")
    op.drop_table("organizations")
