"""
rollcall.services.waitlist_service — Transactional Capacity & Waitlist Engine
==============================================================================

The DB half of the enrollment engine.  Every function here takes the open
``Session`` of the caller's transaction and assumes the caller already holds
the row lock on the event session (see :meth:`OrgScope.require_session` with
``lock=True``).  Counts are therefore read and acted on under the same lock:

    lock session row → count → decide (engine.capacity) → write → commit

Nothing is cached; every decision re-counts.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from rollcall.database.models import EventSession, Participation
from rollcall.engine.capacity import (
    capacity_warnings,
    decide_join,
    pick_promotion,
    should_promote,
)
from rollcall.engine.records import Occupancy, ParticipationRecord
from rollcall.engine.status import ParticipationStatus, TransitionKind, assert_transition

logger = logging.getLogger(__name__)

ACTIVE_STATUSES: tuple[str, ...] = (
    ParticipationStatus.JOINED.value,
    ParticipationStatus.WAITLISTED.value,
)


def count_occupancy(session: Session, session_id: int) -> Occupancy:
    """Count joined and waitlisted rows for *session_id* right now."""
    rows = session.execute(
        select(Participation.status, func.count())
        .where(
            Participation.session_id == session_id,
            Participation.status.in_(ACTIVE_STATUSES),
        )
        .group_by(Participation.status)
    ).all()
    counts = {status: n for status, n in rows}
    return Occupancy(
        joined=counts.get(ParticipationStatus.JOINED.value, 0),
        waitlisted=counts.get(ParticipationStatus.WAITLISTED.value, 0),
    )


def count_occupancy_many(session: Session, session_ids: list[int]) -> dict[int, Occupancy]:
    """One grouped count for several sessions; sessions with no rows get zeros."""
    if not session_ids:
        return {}
    rows = session.execute(
        select(Participation.session_id, Participation.status, func.count())
        .where(
            Participation.session_id.in_(session_ids),
            Participation.status.in_(ACTIVE_STATUSES),
        )
        .group_by(Participation.session_id, Participation.status)
    ).all()
    counts: dict[int, dict[str, int]] = {sid: {} for sid in session_ids}
    for sid, status, n in rows:
        counts[sid][status] = n
    return {
        sid: Occupancy(
            joined=c.get(ParticipationStatus.JOINED.value, 0),
            waitlisted=c.get(ParticipationStatus.WAITLISTED.value, 0),
        )
        for sid, c in counts.items()
    }


def find_active_participation(
    session: Session, session_id: int, user_id: int
) -> Participation | None:
    return session.scalar(
        select(Participation).where(
            Participation.session_id == session_id,
            Participation.user_id == user_id,
            Participation.status.in_(ACTIVE_STATUSES),
        )
    )


def admit(session: Session, event_session: EventSession, user_id: int) -> Participation:
    """Run the join decision and insert the new participation.

    Raises :class:`~rollcall.errors.CapacityExceededError` when both the
    joined slots and the waitlist are full.
    """
    occupancy = count_occupancy(session, event_session.id)
    status = decide_join(event_session.max_capacity, event_session.max_waitlist, occupancy)

    row = Participation(
        session_id=event_session.id,
        user_id=user_id,
        status=status.value,
        created_at=datetime.now(UTC),
    )
    session.add(row)
    session.flush()
    logger.info(
        "Participation %d: user %d %s session %d (%d/%d joined, %d/%d waitlisted before)",
        row.id, user_id, status.value, event_session.id,
        occupancy.joined, event_session.max_capacity,
        occupancy.waitlisted, event_session.max_waitlist,
    )
    return row


def promote_next(session: Session, event_session: EventSession) -> Participation | None:
    """Move the single oldest waitlisted row of *event_session* to joined.

    Returns the promoted row, or ``None`` if the waitlist is empty.
    """
    waitlisted = session.scalars(
        select(Participation)
        .where(
            Participation.session_id == event_session.id,
            Participation.status == ParticipationStatus.WAITLISTED.value,
        )
        .order_by(Participation.created_at.asc(), Participation.id.asc())
        .with_for_update()
    ).all()
    chosen = pick_promotion(ParticipationRecord.from_row(p) for p in waitlisted)
    if chosen is None:
        return None

    row = next(p for p in waitlisted if p.id == chosen.id)
    assert_transition(TransitionKind.PARTICIPATION, row.status, ParticipationStatus.JOINED)
    row.status = ParticipationStatus.JOINED.value
    session.flush()
    logger.info(
        "Participation %d: user %d promoted from waitlist in session %d",
        row.id, row.user_id, event_session.id,
    )
    return row


def cancel_and_promote(
    session: Session,
    event_session: EventSession,
    participation: Participation,
) -> Participation | None:
    """Cancel *participation* and, if it held a slot, promote one waitlisted row.

    Each call promotes at most one participation, so a batch of
    cancellations triggers one promotion check per cancellation.  Returns the
    promoted row (or ``None``).
    """
    previous = participation.status
    assert_transition(TransitionKind.PARTICIPATION, previous, ParticipationStatus.CANCELLED)
    participation.status = ParticipationStatus.CANCELLED.value
    participation.cancelled_at = datetime.now(UTC)
    session.flush()
    logger.info(
        "Participation %d: user %d cancelled (%s) in session %d",
        participation.id, participation.user_id, previous, event_session.id,
    )

    if not should_promote(previous, event_session.status):
        return None
    return promote_next(session, event_session)


def check_capacity_change(
    session: Session,
    event_session: EventSession,
    max_capacity: int,
    max_waitlist: int,
) -> list[str]:
    """Return warnings when the new bounds sit below current occupancy.

    The change is never refused and nobody is cancelled.
    """
    occupancy = count_occupancy(session, event_session.id)
    warnings = capacity_warnings(max_capacity, max_waitlist, occupancy)
    for warning in warnings:
        logger.warning("Session %d capacity change: %s", event_session.id, warning)
    return warnings
