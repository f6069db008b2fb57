"""
rollcall.services.participation_service — Participation Lifecycle Controller
=============================================================================

Self-service and admin operations on enrollments.

Mutations (each one transaction, session row locked before any count)::

    join_session            member joins a published, open session (idempotent)
    cancel_participation    self or admin cancel → at most one promotion
    add_participant         admin enrolls a named member (join mode bypassed)
    update_participation    admin patch of attendance / payment / notes
    bulk_update_attendance  admin batch, best-effort per row (SAVEPOINT each)
    move_participant        cancel-with-promotion in source, join decision in target

Reads::

    get_my_participation    caller's active row + 1-based waitlist position
    get_roster              FIFO roster with display name and email (admin)
    my_history / user_history
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Engine, and_, func, or_, select
from sqlalchemy.orm import Session

from rollcall.constants import (
    DEFAULT_BULK_ATTENDANCE_LIMIT,
    DEFAULT_HISTORY_PAGE_LIMIT,
    DEFAULT_PAGE_SIZE,
    DEFAULT_ROSTER_PAGE_LIMIT,
    DEFAULT_ROSTER_PAGE_SIZE,
    NOTES_MAX_LENGTH,
)
from rollcall.database.engine import transaction
from rollcall.database.models import EventSession, Membership, Participation, User
from rollcall.engine.records import ParticipationRecord, SessionRecord
from rollcall.engine.status import (
    AttendanceStatus,
    JoinMode,
    ParticipationStatus,
    PaymentStatus,
    SessionStatus,
    TransitionKind,
    is_attendance_status,
    is_participation_status,
    is_payment_status,
    is_terminal,
)
from rollcall.errors import (
    BadRequestError,
    ConflictError,
    NotFoundError,
    RollcallError,
    ValidationError,
)
from rollcall.services.conflict_service import assert_user_available
from rollcall.services.scope import CallerContext, OrgScope, assert_admin
from rollcall.services.waitlist_service import (
    admit,
    cancel_and_promote,
    find_active_participation,
)

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS: frozenset[str] = frozenset({"attendance", "payment", "notes"})


# ---------------------------------------------------------------------------
# Inputs & results
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class AttendanceUpdate:
    participation_id: int
    attendance: str


@dataclass(frozen=True, slots=True)
class BulkRowError:
    """Why one row of a bulk attendance batch was skipped."""

    participation_id: int
    kind: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "participation_id": self.participation_id,
            "kind": self.kind,
            "message": self.message,
        }


@dataclass(frozen=True, slots=True)
class BulkAttendanceResult:
    updated: list[ParticipationRecord] = field(default_factory=list)
    errors: list[BulkRowError] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class CancelResult:
    cancelled: ParticipationRecord
    promoted: ParticipationRecord | None = None


@dataclass(frozen=True, slots=True)
class MoveResult:
    cancelled: ParticipationRecord
    created: ParticipationRecord
    promoted: ParticipationRecord | None = None


@dataclass(frozen=True, slots=True)
class MyParticipation:
    participation: ParticipationRecord
    waitlist_position: int | None = None


@dataclass(frozen=True, slots=True)
class RosterEntry:
    participation: ParticipationRecord
    user_name: str
    user_email: str | None


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    participation: ParticipationRecord
    session: SessionRecord


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _to_record(row: Participation | None) -> ParticipationRecord | None:
    return ParticipationRecord.from_row(row) if row is not None else None


def _reject_closed_session(event_session: EventSession, action: str) -> None:
    if is_terminal(TransitionKind.SESSION, event_session.status):
        raise BadRequestError(f"Cannot {action} a {event_session.status} session")


def _check_page(limit: int, offset: int, max_limit: int) -> None:
    if not (1 <= limit <= max_limit) or offset < 0:
        raise ValidationError(
            f"limit must be 1..{max_limit} and offset >= 0",
            details={"limit": f"1..{max_limit}", "offset": ">= 0"},
        )


def _waitlist_position(session: Session, participation: Participation) -> int:
    """1-based FIFO position among the session's waitlisted rows."""
    ahead = session.scalar(
        select(func.count())
        .select_from(Participation)
        .where(
            Participation.session_id == participation.session_id,
            Participation.status == ParticipationStatus.WAITLISTED.value,
            or_(
                Participation.created_at < participation.created_at,
                and_(
                    Participation.created_at == participation.created_at,
                    Participation.id < participation.id,
                ),
            ),
        )
    )
    return (ahead or 0) + 1


# ---------------------------------------------------------------------------
# Join / add
# ---------------------------------------------------------------------------
def join_session(engine: Engine, ctx: CallerContext, session_id: int) -> ParticipationRecord:
    """Enroll the caller in *session_id*.

    Idempotent: if the caller already holds a joined or waitlisted row, that
    row is returned unchanged.  A previously cancelled row does not count;
    re-joining creates a new participation.

    Raises
    ------
    NotFoundError
        Session absent, deleted, or outside the caller's organization.
    BadRequestError
        Session not published, or join mode is not ``open``.
    ConflictError
        Caller is already booked in another session at the same instant.
    CapacityExceededError
        Capacity and waitlist are both full.
    """
    with transaction(engine) as session:
        scope = OrgScope.for_caller(session, ctx)
        event_session = scope.require_session(session_id, lock=True)

        if event_session.status != SessionStatus.PUBLISHED.value:
            raise BadRequestError(
                f"Session is not open for joining (status '{event_session.status}')"
            )
        if event_session.join_mode != JoinMode.OPEN.value:
            raise BadRequestError(
                f"Session requires '{event_session.join_mode}'; self-service join is not allowed"
            )

        existing = find_active_participation(session, event_session.id, ctx.user_id)
        if existing is not None:
            logger.debug(
                "User %d already %s in session %d", ctx.user_id, existing.status, session_id
            )
            return ParticipationRecord.from_row(existing)

        assert_user_available(session, ctx.user_id, event_session.date_time, event_session.id)
        return ParticipationRecord.from_row(admit(session, event_session, ctx.user_id))


def add_participant(
    engine: Engine,
    ctx: CallerContext,
    session_id: int,
    user_id: int,
) -> ParticipationRecord:
    """Admin enrollment of *user_id*; join mode is bypassed, drafts are allowed."""
    assert_admin(ctx)
    with transaction(engine) as session:
        scope = OrgScope.for_caller(session, ctx)
        event_session = scope.require_session_for_mutation(session_id, lock=True)
        _reject_closed_session(event_session, "add participants to")

        is_member = session.scalar(
            select(Membership.id).where(
                Membership.organization_id == ctx.organization_id,
                Membership.user_id == user_id,
            )
        )
        if is_member is None:
            raise NotFoundError("User is not a member of this organization")

        if find_active_participation(session, event_session.id, user_id) is not None:
            raise ConflictError("Participant is already in this session")

        assert_user_available(session, user_id, event_session.date_time, event_session.id)
        row = admit(session, event_session, user_id)
        record = ParticipationRecord.from_row(row)

    logger.info(
        "User %d added to session %d by admin %d (%s)",
        user_id, session_id, ctx.user_id, record.status,
    )
    return record


# ---------------------------------------------------------------------------
# Cancel / move
# ---------------------------------------------------------------------------
def cancel_participation(
    engine: Engine,
    ctx: CallerContext,
    participation_id: int,
) -> CancelResult:
    """Cancel a participation and promote the next waitlisted member if a slot freed.

    Members may only cancel their own rows (anything else is reported as not
    found).  Owners and admins may cancel any row in their organization.
    """
    with transaction(engine) as session:
        scope = OrgScope.for_caller(session, ctx)
        if ctx.is_admin:
            participation = scope.require_participation_for_mutation(participation_id, lock=True)
        else:
            participation = scope.require_user_participation(
                participation_id, ctx.user_id, lock=True
            )
        event_session = session.get(EventSession, participation.session_id)
        _reject_closed_session(event_session, "cancel participation in")

        promoted = cancel_and_promote(session, event_session, participation)
        return CancelResult(
            cancelled=ParticipationRecord.from_row(participation),
            promoted=_to_record(promoted),
        )


def move_participant(
    engine: Engine,
    ctx: CallerContext,
    participation_id: int,
    target_session_id: int,
) -> MoveResult:
    """Move a participant from their current session to *target_session_id*.

    Equivalent to an admin cancel (with promotion) in the source followed by
    an admin add in the target, but atomic: if the target rejects the user
    (full, double-booked, closed) the source cancellation is rolled back too.
    Both session rows are locked in id order.
    """
    assert_admin(ctx)
    with transaction(engine) as session:
        scope = OrgScope.for_caller(session, ctx)
        participation = scope.require_participation_for_mutation(participation_id)
        source_id = participation.session_id
        if source_id == target_session_id:
            raise BadRequestError("Cannot move participant to the same session")

        locked = {
            sid: scope.require_session_for_mutation(sid, lock=True)
            for sid in sorted((source_id, target_session_id))
        }
        source, target = locked[source_id], locked[target_session_id]
        session.refresh(participation)

        _reject_closed_session(source, "move participants out of")
        _reject_closed_session(target, "move participants into")

        if find_active_participation(session, target.id, participation.user_id) is not None:
            raise ConflictError("User already has an active participation in the target session")

        promoted = cancel_and_promote(session, source, participation)
        assert_user_available(session, participation.user_id, target.date_time, target.id)
        created = admit(session, target, participation.user_id)
        result = MoveResult(
            cancelled=ParticipationRecord.from_row(participation),
            created=ParticipationRecord.from_row(created),
            promoted=_to_record(promoted),
        )

    logger.info(
        "Participation %d moved: user %d session %d → %d (new participation %d, %s)",
        participation_id, result.created.user_id, source_id, target_session_id,
        result.created.id, result.created.status,
    )
    return result


# ---------------------------------------------------------------------------
# Admin field updates
# ---------------------------------------------------------------------------
def _validate_updates(changes: dict[str, Any]) -> None:
    errors: dict[str, str] = {}
    unknown = set(changes) - UPDATABLE_FIELDS
    for name in unknown:
        errors[name] = "not updatable"
    if "attendance" in changes and not is_attendance_status(changes["attendance"]):
        errors["attendance"] = f"must be one of {', '.join(a.value for a in AttendanceStatus)}"
    if "payment" in changes and not is_payment_status(changes["payment"]):
        errors["payment"] = f"must be one of {', '.join(p.value for p in PaymentStatus)}"
    if "notes" in changes and changes["notes"] is not None:
        if not isinstance(changes["notes"], str):
            errors["notes"] = "must be a string"
        elif len(changes["notes"]) > NOTES_MAX_LENGTH:
            errors["notes"] = f"must be at most {NOTES_MAX_LENGTH} characters"
    if errors:
        raise ValidationError(
            "Invalid participation fields: " + ", ".join(sorted(errors)), details=errors
        )


def update_participation(
    engine: Engine,
    ctx: CallerContext,
    participation_id: int,
    **changes: Any,
) -> ParticipationRecord:
    """Set attendance, payment and/or notes.  No status-machine involvement."""
    assert_admin(ctx)
    _validate_updates(changes)

    with transaction(engine) as session:
        scope = OrgScope.for_caller(session, ctx)
        participation = scope.require_participation_for_mutation(participation_id)
        for key, value in changes.items():
            setattr(participation, key, value)
        session.flush()
        record = ParticipationRecord.from_row(participation)

    logger.info(
        "Participation %d updated by admin %d (fields: %s)",
        participation_id, ctx.user_id, ", ".join(sorted(changes)) or "none",
    )
    return record


def bulk_update_attendance(
    engine: Engine,
    ctx: CallerContext,
    session_id: int,
    updates: Sequence[AttendanceUpdate],
    *,
    max_batch: int = DEFAULT_BULK_ATTENDANCE_LIMIT,
) -> BulkAttendanceResult:
    """Apply a batch of attendance marks to participations of one session.

    Best-effort per row: each row runs inside its own SAVEPOINT, so an unknown
    participation or a bad attendance value is reported in
    :attr:`BulkAttendanceResult.errors` and its siblings still commit.  An
    empty or oversized batch is rejected before any row runs.
    """
    assert_admin(ctx)
    if not updates:
        raise ValidationError("updates must not be empty", details={"updates": "empty"})
    if len(updates) > max_batch:
        raise ValidationError(
            f"At most {max_batch} attendance updates per request",
            details={"updates": f"max {max_batch}"},
        )

    updated: list[ParticipationRecord] = []
    errors: list[BulkRowError] = []
    with transaction(engine) as session:
        scope = OrgScope.for_caller(session, ctx)
        event_session = scope.require_session_for_mutation(session_id, lock=True)

        for update in updates:
            try:
                with session.begin_nested():
                    if not is_attendance_status(update.attendance):
                        raise ValidationError(f"Invalid attendance '{update.attendance}'")
                    participation = session.scalar(
                        select(Participation).where(
                            Participation.id == update.participation_id,
                            Participation.session_id == event_session.id,
                        )
                    )
                    if participation is None:
                        raise NotFoundError(
                            f"Participation {update.participation_id} not found in session"
                        )
                    participation.attendance = update.attendance
                    session.flush()
                    updated.append(ParticipationRecord.from_row(participation))
            except RollcallError as exc:
                errors.append(BulkRowError(update.participation_id, exc.kind, exc.message))

    logger.info(
        "Bulk attendance on session %d by admin %d: %d updated, %d rejected",
        session_id, ctx.user_id, len(updated), len(errors),
    )
    return BulkAttendanceResult(updated=updated, errors=errors)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_my_participation(
    engine: Engine, ctx: CallerContext, session_id: int
) -> MyParticipation | None:
    """The caller's active participation in *session_id*, or ``None``."""
    with transaction(engine) as session:
        event_session = OrgScope.for_caller(session, ctx).require_session(session_id)
        row = find_active_participation(session, event_session.id, ctx.user_id)
        if row is None:
            return None
        position = None
        if row.status == ParticipationStatus.WAITLISTED.value:
            position = _waitlist_position(session, row)
        return MyParticipation(ParticipationRecord.from_row(row), position)


def get_roster(
    engine: Engine,
    ctx: CallerContext,
    session_id: int,
    *,
    status: str | None = None,
    limit: int = DEFAULT_ROSTER_PAGE_SIZE,
    offset: int = 0,
    max_limit: int = DEFAULT_ROSTER_PAGE_LIMIT,
) -> list[RosterEntry]:
    """Participants of a session in FIFO order, optionally filtered by status."""
    assert_admin(ctx)
    if status is not None and not is_participation_status(status):
        raise ValidationError(f"Unknown participation status '{status}'", details={"status": "unknown value"})
    _check_page(limit, offset, max_limit)

    with transaction(engine) as session:
        event_session = OrgScope.for_caller(session, ctx).require_session(session_id)
        stmt = (
            select(Participation, User.name, User.email)
            .join(User, User.id == Participation.user_id)
            .where(Participation.session_id == event_session.id)
        )
        if status is not None:
            stmt = stmt.where(Participation.status == status)
        rows = session.execute(
            stmt.order_by(Participation.created_at.asc(), Participation.id.asc())
            .limit(limit)
            .offset(offset)
        ).all()
        return [
            RosterEntry(ParticipationRecord.from_row(p), name, email)
            for p, name, email in rows
        ]


def _history(
    engine: Engine,
    ctx: CallerContext,
    user_id: int,
    limit: int,
    offset: int,
) -> list[HistoryEntry]:
    stmt = (
        select(Participation, EventSession)
        .join(EventSession, Participation.session_id == EventSession.id)
        .where(
            Participation.user_id == user_id,
            EventSession.organization_id == ctx.organization_id,
        )
    )
    if ctx.activity_id is not None:
        stmt = stmt.where(EventSession.activity_id == ctx.activity_id)
    with transaction(engine) as session:
        rows = session.execute(
            stmt.order_by(Participation.created_at.desc(), Participation.id.desc())
            .limit(limit)
            .offset(offset)
        ).all()
        return [
            HistoryEntry(ParticipationRecord.from_row(p), SessionRecord.from_row(s))
            for p, s in rows
        ]


def my_history(
    engine: Engine,
    ctx: CallerContext,
    *,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
    max_limit: int = DEFAULT_HISTORY_PAGE_LIMIT,
) -> list[HistoryEntry]:
    """The caller's participations in this organization, newest first."""
    _check_page(limit, offset, max_limit)
    return _history(engine, ctx, ctx.user_id, limit, offset)


def user_history(
    engine: Engine,
    ctx: CallerContext,
    user_id: int,
    *,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
    max_limit: int = DEFAULT_HISTORY_PAGE_LIMIT,
) -> list[HistoryEntry]:
    """Admin view of another member's participations in this organization."""
    assert_admin(ctx)
    _check_page(limit, offset, max_limit)
    return _history(engine, ctx, user_id, limit, offset)
