"""
rollcall.engine.records — Engine-owned data contracts
======================================================

Plain frozen dataclasses the engine reasons about.  Services translate ORM
rows into these (see ``from_row``) so nothing in :mod:`rollcall.engine`
depends on how a row is stored.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from rollcall.engine.status import (
    AttendanceStatus,
    JoinMode,
    ParticipationStatus,
    PaymentStatus,
    SessionStatus,
)

__all__ = ["Occupancy", "SessionRecord", "ParticipationRecord", "as_utc"]


def as_utc(value: datetime | None) -> datetime | None:
    """Normalize *value* to an aware UTC datetime.

    Naive values are taken to already be UTC (SQLite drops tzinfo on the way
    back out).
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


@dataclass(frozen=True, slots=True)
class Occupancy:
    """Live row counts for one session, read inside the deciding transaction."""

    joined: int = 0
    waitlisted: int = 0


@dataclass(frozen=True, slots=True)
class SessionRecord:
    id: int
    organization_id: int
    activity_id: int | None
    title: str
    description: str | None
    location: str | None
    date_time: datetime
    max_capacity: int
    max_waitlist: int
    join_mode: JoinMode
    status: SessionStatus
    created_by: int | None
    deleted_at: datetime | None
    created_at: datetime | None
    updated_at: datetime | None

    @classmethod
    def from_row(cls, row: Any) -> SessionRecord:
        return cls(
            id=row.id,
            organization_id=row.organization_id,
            activity_id=row.activity_id,
            title=row.title,
            description=row.description,
            location=row.location,
            date_time=as_utc(row.date_time),
            max_capacity=row.max_capacity,
            max_waitlist=row.max_waitlist,
            join_mode=JoinMode(row.join_mode),
            status=SessionStatus(row.status),
            created_by=row.created_by,
            deleted_at=as_utc(row.deleted_at),
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


@dataclass(frozen=True, slots=True)
class ParticipationRecord:
    id: int
    session_id: int
    user_id: int
    status: ParticipationStatus
    attendance: AttendanceStatus
    payment: PaymentStatus
    notes: str | None
    created_at: datetime
    cancelled_at: datetime | None
    updated_at: datetime | None

    @classmethod
    def from_row(cls, row: Any) -> ParticipationRecord:
        return cls(
            id=row.id,
            session_id=row.session_id,
            user_id=row.user_id,
            status=ParticipationStatus(row.status),
            attendance=AttendanceStatus(row.attendance),
            payment=PaymentStatus(row.payment),
            notes=row.notes,
            created_at=as_utc(row.created_at),
            cancelled_at=as_utc(row.cancelled_at),
            updated_at=as_utc(row.updated_at),
        )

    @property
    def is_active(self) -> bool:
        return self.status != ParticipationStatus.CANCELLED

    @property
    def fifo_key(self) -> tuple[datetime, int]:
        """Waitlist ordering: creation instant, ties broken by id."""
        return (self.created_at, self.id)
