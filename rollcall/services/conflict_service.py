"""
rollcall.services.conflict_service — Double-Booking Queries
============================================================

Two read-only gates built on the same rule (exact-instant collision of
active participations across *all* organizations):

* :func:`check_reschedule` — before a session's ``date_time`` changes, every
  joined / waitlisted participant must be free at the new instant.
* :func:`assert_user_available` — before a user is admitted to a session,
  they must be free at that session's instant.

Sessions that are soft-deleted or cancelled do not hold anybody's time.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session, aliased

from rollcall.database.models import EventSession, Participation, User
from rollcall.engine.conflicts import ConflictingParticipant, assert_no_conflicts
from rollcall.engine.records import as_utc
from rollcall.engine.status import SessionStatus
from rollcall.errors import ConflictError, ConflictingParticipantsError
from rollcall.services.waitlist_service import ACTIVE_STATUSES

logger = logging.getLogger(__name__)


def find_reschedule_conflicts(
    session: Session, session_id: int, new_date_time: datetime
) -> list[ConflictingParticipant]:
    """List participants of *session_id* already booked at *new_date_time*."""
    other = aliased(Participation)
    other_session = aliased(EventSession)
    rows = session.execute(
        select(Participation.user_id, User.name, other.session_id)
        .join(User, User.id == Participation.user_id)
        .join(
            other,
            (other.user_id == Participation.user_id)
            & (other.session_id != session_id)
            & other.status.in_(ACTIVE_STATUSES),
        )
        .join(other_session, other_session.id == other.session_id)
        .where(
            Participation.session_id == session_id,
            Participation.status.in_(ACTIVE_STATUSES),
            other_session.date_time == as_utc(new_date_time),
            other_session.deleted_at.is_(None),
            other_session.status != SessionStatus.CANCELLED.value,
        )
        .order_by(User.name, Participation.user_id)
    ).all()
    return [
        ConflictingParticipant(user_id=user_id, display_name=name, other_session_id=other_id)
        for user_id, name, other_id in rows
    ]


def check_reschedule(session: Session, session_id: int, new_date_time: datetime) -> None:
    """Raise :class:`ConflictingParticipantsError` if the move would double-book."""
    conflicts = find_reschedule_conflicts(session, session_id, new_date_time)
    try:
        assert_no_conflicts(conflicts)
    except ConflictingParticipantsError as exc:
        logger.info(
            "Reschedule of session %d to %s blocked by %d participant(s)",
            session_id, as_utc(new_date_time).isoformat(), exc.count,
        )
        raise


def find_user_conflict(
    session: Session,
    user_id: int,
    date_time: datetime,
    exclude_session_id: int,
) -> EventSession | None:
    """Return another live session where *user_id* is active at *date_time*."""
    return session.scalar(
        select(EventSession)
        .join(Participation, Participation.session_id == EventSession.id)
        .where(
            Participation.user_id == user_id,
            Participation.status.in_(ACTIVE_STATUSES),
            EventSession.id != exclude_session_id,
            EventSession.date_time == as_utc(date_time),
            EventSession.deleted_at.is_(None),
            EventSession.status != SessionStatus.CANCELLED.value,
        )
        .limit(1)
    )


def assert_user_available(
    session: Session,
    user_id: int,
    date_time: datetime,
    exclude_session_id: int,
) -> None:
    """Raise :class:`ConflictError` if the user is already booked at *date_time*."""
    if find_user_conflict(session, user_id, date_time, exclude_session_id) is not None:
        raise ConflictError("User is already registered for another session at this time")
