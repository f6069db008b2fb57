"""
rollcall.services.scope — Organization Scope Guard
===================================================

Every read and write in the controllers goes through an :class:`OrgScope`
bound to the caller's active organization.  Two lookup flavours:

``get_* / require_*``
    Filter by organization (and soft-delete) in the query itself.  Anything
    outside the tenant is simply absent → :class:`NotFoundError`.

``require_*_for_mutation``
    Fetch by id *without* the organization filter, then compare.  A record
    that exists in another organization raises :class:`ForbiddenError`, so an
    admin who mis-scopes a call gets an actionable answer instead of a
    misleading "not found".

``require_user_participation`` is the self-service variant: a participation
owned by somebody else is reported as not found, never forbidden.

The guard only reads.  ``lock=True`` takes ``SELECT … FOR UPDATE`` on the
parent session row so the caller can count-then-write safely.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from rollcall.constants import ADMIN_ROLES
from rollcall.database.models import Activity, EventSession, Participation
from rollcall.errors import ForbiddenError, NotFoundError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Caller context — resolved upstream from the authenticated request
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class CallerContext:
    """Who is calling, in which organization, with what role.

    ``activity_id`` is set when the caller is working inside one activity;
    session lookups are then narrowed to that activity.
    """

    user_id: int
    organization_id: int
    role: str
    activity_id: int | None = None

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


def assert_admin(ctx: CallerContext) -> None:
    """Raise :class:`ForbiddenError` unless the caller is an owner or admin."""
    if not ctx.is_admin:
        raise ForbiddenError("Only organization owners and admins can perform this action")


# ---------------------------------------------------------------------------
# Scope guard
# ---------------------------------------------------------------------------
class OrgScope:
    """Tenant-safe accessors for one organization inside one DB session."""

    def __init__(
        self,
        session: Session,
        organization_id: int,
        activity_id: int | None = None,
    ) -> None:
        self.session = session
        self.organization_id = organization_id
        self.activity_id = activity_id

    @classmethod
    def for_caller(cls, session: Session, ctx: CallerContext) -> OrgScope:
        return cls(session, ctx.organization_id, ctx.activity_id)

    # -- Sessions -------------------------------------------------------------

    def _lock_session(self, session_id: int) -> EventSession | None:
        return self.session.scalar(
            select(EventSession)
            .where(EventSession.id == session_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )

    def get_session(self, session_id: int, *, lock: bool = False) -> EventSession | None:
        """Fetch a live session of this organization (and activity, if scoped)."""
        stmt = select(EventSession).where(
            EventSession.id == session_id,
            EventSession.organization_id == self.organization_id,
            EventSession.deleted_at.is_(None),
        )
        if self.activity_id is not None:
            stmt = stmt.where(EventSession.activity_id == self.activity_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.session.scalar(stmt)

    def require_session(self, session_id: int, *, lock: bool = False) -> EventSession:
        row = self.get_session(session_id, lock=lock)
        if row is None:
            raise NotFoundError("Session not found")
        return row

    def require_session_for_mutation(self, session_id: int, *, lock: bool = False) -> EventSession:
        stmt = select(EventSession).where(
            EventSession.id == session_id,
            EventSession.deleted_at.is_(None),
        )
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        row = self.session.scalar(stmt)
        if row is None:
            raise NotFoundError("Session not found")
        if row.organization_id != self.organization_id:
            logger.warning(
                "Cross-organization session mutation blocked: session=%d org=%d caller_org=%d",
                session_id, row.organization_id, self.organization_id,
            )
            raise ForbiddenError("Session belongs to a different organization")
        if self.activity_id is not None and row.activity_id != self.activity_id:
            raise NotFoundError("Session not found")
        return row

    # -- Participations -------------------------------------------------------

    def _in_activity(self, stmt):
        if self.activity_id is not None:
            stmt = stmt.where(EventSession.activity_id == self.activity_id)
        return stmt

    def get_participation(self, participation_id: int) -> Participation | None:
        return self.session.scalar(
            self._in_activity(
                select(Participation)
                .join(EventSession, Participation.session_id == EventSession.id)
                .where(
                    Participation.id == participation_id,
                    EventSession.organization_id == self.organization_id,
                    EventSession.deleted_at.is_(None),
                )
            )
        )

    def require_participation(self, participation_id: int) -> Participation:
        row = self.get_participation(participation_id)
        if row is None:
            raise NotFoundError("Participation not found")
        return row

    def require_participation_for_mutation(
        self, participation_id: int, *, lock: bool = False
    ) -> Participation:
        result = self.session.execute(
            select(Participation, EventSession.organization_id, EventSession.activity_id)
            .join(EventSession, Participation.session_id == EventSession.id)
            .where(
                Participation.id == participation_id,
                EventSession.deleted_at.is_(None),
            )
        ).first()
        if result is None:
            raise NotFoundError("Participation not found")
        participation, organization_id, activity_id = result
        if organization_id != self.organization_id:
            logger.warning(
                "Cross-organization participation mutation blocked: participation=%d caller_org=%d",
                participation_id, self.organization_id,
            )
            raise ForbiddenError("Participation belongs to a different organization")
        if self.activity_id is not None and activity_id != self.activity_id:
            raise NotFoundError("Participation not found")
        if lock:
            self._lock_and_refresh(participation)
        return participation

    def require_user_participation(
        self, participation_id: int, user_id: int, *, lock: bool = False
    ) -> Participation:
        row = self.session.scalar(
            self._in_activity(
                select(Participation)
                .join(EventSession, Participation.session_id == EventSession.id)
                .where(
                    Participation.id == participation_id,
                    Participation.user_id == user_id,
                    EventSession.organization_id == self.organization_id,
                    EventSession.deleted_at.is_(None),
                )
            )
        )
        if row is None:
            raise NotFoundError("Participation not found")
        if lock:
            self._lock_and_refresh(row)
        return row

    def _lock_and_refresh(self, participation: Participation) -> None:
        # Re-read after the lock so the status we act on is the committed one.
        if self._lock_session(participation.session_id) is None:
            raise NotFoundError("Session not found")
        self.session.refresh(participation)

    # -- Activities -----------------------------------------------------------

    def get_activity(self, activity_id: int) -> Activity | None:
        return self.session.scalar(
            select(Activity).where(
                Activity.id == activity_id,
                Activity.organization_id == self.organization_id,
            )
        )

    def require_activity(self, activity_id: int) -> Activity:
        row = self.get_activity(activity_id)
        if row is None:
            raise NotFoundError("Activity not found")
        return row

    def require_activity_for_mutation(self, activity_id: int) -> Activity:
        row = self.session.get(Activity, activity_id)
        if row is None:
            raise NotFoundError("Activity not found")
        if row.organization_id != self.organization_id:
            raise ForbiddenError("Activity belongs to a different organization")
        return row
