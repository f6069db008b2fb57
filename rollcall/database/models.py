"""
rollcall.database.models — SQLAlchemy 2.0 Data Models
======================================================

Tables:
- organizations     — Tenants; every session belongs to exactly one
- users             — People who can join sessions (display name + email)
- memberships       — (organization, user) → role (owner / admin / member)
- activities        — Optional sub-scope for sessions inside an organization
- event_sessions    — Scheduled, capacity-bounded activity instances
- participations    — A user's enrollment against one session (never deleted)

Status-like columns are stored as plain strings; the allowed values and the
transitions between them live in :mod:`rollcall.engine.status`.
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from rollcall.engine.status import (
    AttendanceStatus,
    JoinMode,
    ParticipationStatus,
    PaymentStatus,
    SessionStatus,
)


def utcnow() -> datetime:
    """Python-side timestamp default with microsecond resolution.

    Participation ``created_at`` is the waitlist FIFO key, so it cannot rely
    on a server clock that may only resolve to whole seconds (SQLite).
    """
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Rollcall ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class MemberRole(enum.StrEnum):
    """Organization roles; owner and admin may mutate sessions."""
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


# ---------------------------------------------------------------------------
# Organizations — tenants
# ---------------------------------------------------------------------------
class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<Organization id={self.id} slug={self.slug!r}>"


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), default=None, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    participations: Mapped[list[Participation]] = relationship(back_populates="user")

    def __repr__(self) -> str:
        return f"<User id={self.id} name={self.name!r}>"


# ---------------------------------------------------------------------------
# Memberships — who belongs to which organization, and with what role
# ---------------------------------------------------------------------------
class Membership(Base):
    __tablename__ = "memberships"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=MemberRole.MEMBER.value)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_memberships_org_user"),
    )

    def __repr__(self) -> str:
        return f"<Membership org={self.organization_id} user={self.user_id} role={self.role}>"


# ---------------------------------------------------------------------------
# Activities — optional segmentation of sessions within an organization
# ---------------------------------------------------------------------------
class Activity(Base):
    __tablename__ = "activities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_activities_org", "organization_id"),
    )

    def __repr__(self) -> str:
        return f"<Activity id={self.id} name={self.name!r}>"


# ---------------------------------------------------------------------------
# EventSession — one scheduled instance with capacity and waitlist bounds
# ---------------------------------------------------------------------------
class EventSession(Base):
    """A scheduled session.  ``deleted_at`` is the soft-delete marker."""

    __tablename__ = "event_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    activity_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("activities.id", ondelete="SET NULL"), default=None
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    location: Mapped[str | None] = mapped_column(String(500), default=None)
    date_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    max_capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    max_waitlist: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    join_mode: Mapped[str] = mapped_column(
        String(30), nullable=False, default=JoinMode.OPEN.value
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SessionStatus.DRAFT.value
    )
    created_by: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), default=None
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    participations: Mapped[list[Participation]] = relationship(back_populates="session")

    __table_args__ = (
        Index("ix_event_sessions_org", "organization_id"),
        Index("ix_event_sessions_date", "date_time"),
        Index("ix_event_sessions_org_status", "organization_id", "status"),
        CheckConstraint("max_capacity > 0", name="ck_event_sessions_capacity_positive"),
        CheckConstraint("max_waitlist >= 0", name="ck_event_sessions_waitlist_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<EventSession id={self.id} title={self.title!r} status={self.status}>"


# ---------------------------------------------------------------------------
# Participation — enrollment history; cancellation is a status, not a delete
# ---------------------------------------------------------------------------
class Participation(Base):
    __tablename__ = "participations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("event_sessions.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ParticipationStatus.JOINED.value
    )
    attendance: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AttendanceStatus.PENDING.value
    )
    payment: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.UNPAID.value
    )
    notes: Mapped[str | None] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    session: Mapped[EventSession] = relationship(back_populates="participations")
    user: Mapped[User] = relationship(back_populates="participations")

    __table_args__ = (
        Index("ix_participations_session", "session_id"),
        Index("ix_participations_user", "user_id"),
        Index("ix_participations_session_status_created", "session_id", "status", "created_at"),
        # One active enrollment per (session, user); cancelled rows are history.
        Index(
            "uq_participations_active",
            "session_id",
            "user_id",
            unique=True,
            postgresql_where=text("status IN ('joined', 'waitlisted')"),
            sqlite_where=text("status IN ('joined', 'waitlisted')"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Participation id={self.id} session={self.session_id} "
            f"user={self.user_id} status={self.status}>"
        )
