"""
rollcall.services.session_service — Session Lifecycle Controller
=================================================================

Create, patch, transition and soft-delete sessions, plus the member-facing
reads.  Every mutation follows the same pattern:

  1. Role check (owner / admin)                       → ForbiddenError
  2. Scope guard fetch, row-locked                    → NotFound / Forbidden
  3. Input validation                                 → ValidationError
  4. Gate: status machine / conflict detector / capacity warnings
  5. Write, flush, translate to :class:`SessionRecord`, commit
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Engine, or_, select

from rollcall.constants import (
    DEFAULT_PAGE_SIZE,
    DEFAULT_HISTORY_PAGE_LIMIT,
    DESCRIPTION_MAX_LENGTH,
    LOCATION_MAX_LENGTH,
    SESSION_LIST_WINDOWS,
    TITLE_MAX_LENGTH,
)
from rollcall.database.engine import transaction
from rollcall.database.models import EventSession
from rollcall.engine.records import Occupancy, SessionRecord, as_utc
from rollcall.engine.status import (
    JoinMode,
    SessionStatus,
    TransitionKind,
    assert_transition,
    is_join_mode,
    is_session_status,
    is_terminal,
)
from rollcall.errors import BadRequestError, ValidationError
from rollcall.services.conflict_service import check_reschedule
from rollcall.services.scope import CallerContext, OrgScope, assert_admin
from rollcall.services.waitlist_service import (
    check_capacity_change,
    count_occupancy,
    count_occupancy_many,
)

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS: frozenset[str] = frozenset({
    "title", "description", "location", "date_time",
    "max_capacity", "max_waitlist", "join_mode",
})
NULLABLE_FIELDS: frozenset[str] = frozenset({"description", "location"})


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class SessionUpdateResult:
    """The patched session plus any non-fatal capacity warnings."""

    session: SessionRecord
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class SessionSummary:
    session: SessionRecord
    occupancy: Occupancy


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _validate_fields(values: dict[str, Any]) -> dict[str, str]:
    """Return ``{field: problem}`` for every invalid entry in *values*."""
    errors: dict[str, str] = {}

    if "title" in values:
        title = values["title"]
        if not isinstance(title, str) or not title.strip():
            errors["title"] = "must be a non-empty string"
        elif len(title) > TITLE_MAX_LENGTH:
            errors["title"] = f"must be at most {TITLE_MAX_LENGTH} characters"

    for name, limit in (("description", DESCRIPTION_MAX_LENGTH), ("location", LOCATION_MAX_LENGTH)):
        if name in values and values[name] is not None:
            if not isinstance(values[name], str):
                errors[name] = "must be a string"
            elif len(values[name]) > limit:
                errors[name] = f"must be at most {limit} characters"

    if "date_time" in values and not isinstance(values["date_time"], datetime):
        errors["date_time"] = "must be a datetime"

    if "max_capacity" in values:
        cap = values["max_capacity"]
        if not _is_int(cap) or cap <= 0:
            errors["max_capacity"] = "must be a positive integer"

    if "max_waitlist" in values:
        wait = values["max_waitlist"]
        if not _is_int(wait) or wait < 0:
            errors["max_waitlist"] = "must be a non-negative integer"

    if "join_mode" in values and not is_join_mode(values["join_mode"]):
        errors["join_mode"] = f"must be one of {', '.join(m.value for m in JoinMode)}"

    return errors


def _raise_if_invalid(values: dict[str, Any]) -> None:
    errors = _validate_fields(values)
    if errors:
        raise ValidationError(
            "Invalid session fields: " + ", ".join(sorted(errors)), details=errors
        )


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------
def create_session(
    engine: Engine,
    ctx: CallerContext,
    *,
    title: str,
    date_time: datetime,
    max_capacity: int,
    max_waitlist: int = 0,
    join_mode: str = JoinMode.OPEN.value,
    description: str | None = None,
    location: str | None = None,
    activity_id: int | None = None,
) -> SessionRecord:
    """Create a session in ``draft`` status.  Owner/admin only."""
    assert_admin(ctx)
    _raise_if_invalid({
        "title": title,
        "date_time": date_time,
        "max_capacity": max_capacity,
        "max_waitlist": max_waitlist,
        "join_mode": join_mode,
        "description": description,
        "location": location,
    })

    with transaction(engine) as session:
        scope = OrgScope.for_caller(session, ctx)
        activity_id = activity_id if activity_id is not None else ctx.activity_id
        if activity_id is not None:
            scope.require_activity_for_mutation(activity_id)

        row = EventSession(
            organization_id=ctx.organization_id,
            activity_id=activity_id,
            title=title.strip(),
            description=description,
            location=location,
            date_time=as_utc(date_time),
            max_capacity=max_capacity,
            max_waitlist=max_waitlist,
            join_mode=JoinMode(join_mode).value,
            status=SessionStatus.DRAFT.value,
            created_by=ctx.user_id,
        )
        session.add(row)
        session.flush()
        record = SessionRecord.from_row(row)

    logger.info(
        "Session %d created in org %d by user %d (%r at %s)",
        record.id, ctx.organization_id, ctx.user_id, record.title, record.date_time.isoformat(),
    )
    return record


def update_session(
    engine: Engine,
    ctx: CallerContext,
    session_id: int,
    **changes: Any,
) -> SessionUpdateResult:
    """Patch session fields.

    * A ``date_time`` change runs the conflict detector first and fails with
      :class:`ConflictingParticipantsError` if anyone would be double-booked.
    * A ``max_capacity`` / ``max_waitlist`` change below current occupancy
      is applied and reported in :attr:`SessionUpdateResult.warnings`.
    * Cancelled and completed sessions cannot be modified.
    """
    assert_admin(ctx)
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(
            "Unknown session fields: " + ", ".join(sorted(unknown)),
            details={name: "not updatable" for name in unknown},
        )
    for name, value in changes.items():
        if value is None and name not in NULLABLE_FIELDS:
            raise ValidationError(f"{name} cannot be null", details={name: "cannot be null"})
    _raise_if_invalid(changes)

    warnings: list[str] = []
    with transaction(engine) as session:
        scope = OrgScope.for_caller(session, ctx)
        row = scope.require_session_for_mutation(session_id, lock=True)

        if is_terminal(TransitionKind.SESSION, row.status):
            raise BadRequestError(f"Cannot modify session with status '{row.status}'")

        if "date_time" in changes:
            new_dt = as_utc(changes["date_time"])
            if new_dt != as_utc(row.date_time):
                check_reschedule(session, row.id, new_dt)
            changes["date_time"] = new_dt

        if "max_capacity" in changes or "max_waitlist" in changes:
            warnings = check_capacity_change(
                session,
                row,
                changes.get("max_capacity", row.max_capacity),
                changes.get("max_waitlist", row.max_waitlist),
            )

        if "title" in changes:
            changes["title"] = changes["title"].strip()
        if "join_mode" in changes:
            changes["join_mode"] = JoinMode(changes["join_mode"]).value

        for key, value in changes.items():
            setattr(row, key, value)
        session.flush()
        record = SessionRecord.from_row(row)

    logger.info(
        "Session %d updated by user %d (fields: %s)",
        session_id, ctx.user_id, ", ".join(sorted(changes)) or "none",
    )
    return SessionUpdateResult(session=record, warnings=warnings)


def update_session_status(
    engine: Engine,
    ctx: CallerContext,
    session_id: int,
    status: str,
) -> SessionRecord:
    """Move a session through the status machine.  Owner/admin only."""
    assert_admin(ctx)
    if not is_session_status(status):
        raise ValidationError(
            f"Unknown session status '{status}'", details={"status": "unknown value"}
        )

    with transaction(engine) as session:
        scope = OrgScope.for_caller(session, ctx)
        row = scope.require_session_for_mutation(session_id, lock=True)
        previous = row.status
        assert_transition(TransitionKind.SESSION, previous, status)
        row.status = SessionStatus(status).value
        session.flush()
        record = SessionRecord.from_row(row)

    logger.info("Session %d status %s → %s by user %d", session_id, previous, status, ctx.user_id)
    return record


def delete_session(engine: Engine, ctx: CallerContext, session_id: int) -> SessionRecord:
    """Soft-delete: sets ``deleted_at``; rows and history are kept."""
    assert_admin(ctx)
    with transaction(engine) as session:
        scope = OrgScope.for_caller(session, ctx)
        row = scope.require_session_for_mutation(session_id, lock=True)
        row.deleted_at = datetime.now(UTC)
        session.flush()
        record = SessionRecord.from_row(row)

    logger.info("Session %d soft-deleted by user %d", session_id, ctx.user_id)
    return record


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_session(engine: Engine, ctx: CallerContext, session_id: int) -> SessionSummary:
    """Session with live joined / waitlisted counts."""
    with transaction(engine) as session:
        row = OrgScope.for_caller(session, ctx).require_session(session_id)
        return SessionSummary(
            session=SessionRecord.from_row(row),
            occupancy=count_occupancy(session, row.id),
        )


def _list_statement(
    ctx: CallerContext,
    *,
    status: str | None,
    window: str,
    limit: int,
    offset: int,
    include_deleted: bool,
    max_limit: int,
    now: datetime | None,
):
    """Validate list filters and build the paginated ``SELECT``."""
    if status is not None and not is_session_status(status):
        raise ValidationError(f"Unknown session status '{status}'", details={"status": "unknown value"})
    if window not in SESSION_LIST_WINDOWS:
        raise ValidationError(f"Unknown window '{window}'", details={"window": "unknown value"})
    if not (1 <= limit <= max_limit) or offset < 0:
        raise ValidationError(
            f"limit must be 1..{max_limit} and offset >= 0",
            details={"limit": f"1..{max_limit}", "offset": ">= 0"},
        )
    if include_deleted:
        assert_admin(ctx)
    now = as_utc(now) or datetime.now(UTC)

    stmt = select(EventSession).where(EventSession.organization_id == ctx.organization_id)
    if ctx.activity_id is not None:
        stmt = stmt.where(EventSession.activity_id == ctx.activity_id)
    if not include_deleted:
        stmt = stmt.where(EventSession.deleted_at.is_(None))
    if not ctx.is_admin:
        stmt = stmt.where(EventSession.status != SessionStatus.DRAFT.value)
    if status is not None:
        stmt = stmt.where(EventSession.status == status)

    if window == "upcoming":
        stmt = stmt.where(
            EventSession.status == SessionStatus.PUBLISHED.value,
            EventSession.date_time > now,
        ).order_by(EventSession.date_time.asc(), EventSession.id.asc())
    elif window == "past":
        stmt = stmt.where(
            or_(
                EventSession.date_time < now,
                EventSession.status.in_(
                    (SessionStatus.COMPLETED.value, SessionStatus.CANCELLED.value)
                ),
            )
        ).order_by(EventSession.date_time.desc(), EventSession.id.desc())
    else:
        stmt = stmt.order_by(EventSession.date_time.desc(), EventSession.id.desc())
    return stmt.limit(limit).offset(offset)


def list_sessions(
    engine: Engine,
    ctx: CallerContext,
    *,
    status: str | None = None,
    window: str = "all",
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
    include_deleted: bool = False,
    max_limit: int = DEFAULT_HISTORY_PAGE_LIMIT,
    now: datetime | None = None,
) -> list[SessionRecord]:
    """List sessions of the caller's organization.

    ``window``:
      * ``all`` — everything (newest first)
      * ``upcoming`` — published and in the future (soonest first)
      * ``past`` — in the past, or completed / cancelled (newest first)

    Drafts and soft-deleted sessions are only visible to owners/admins.
    """
    stmt = _list_statement(
        ctx, status=status, window=window, limit=limit, offset=offset,
        include_deleted=include_deleted, max_limit=max_limit, now=now,
    )
    with transaction(engine) as session:
        rows = session.scalars(stmt).all()
        return [SessionRecord.from_row(r) for r in rows]


def list_session_summaries(
    engine: Engine,
    ctx: CallerContext,
    *,
    status: str | None = None,
    window: str = "all",
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
    include_deleted: bool = False,
    max_limit: int = DEFAULT_HISTORY_PAGE_LIMIT,
    now: datetime | None = None,
) -> list[SessionSummary]:
    """Same filters as :func:`list_sessions`, each row with its live counts."""
    stmt = _list_statement(
        ctx, status=status, window=window, limit=limit, offset=offset,
        include_deleted=include_deleted, max_limit=max_limit, now=now,
    )
    with transaction(engine) as session:
        rows = session.scalars(stmt).all()
        occupancy = count_occupancy_many(session, [r.id for r in rows])
        return [
            SessionSummary(session=SessionRecord.from_row(r), occupancy=occupancy[r.id])
            for r in rows
        ]
