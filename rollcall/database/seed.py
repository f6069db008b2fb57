"""
rollcall.database.seed — Demo Data Seeder
==========================================

One demo organization with an owner, a few members, an activity and two
sessions (one draft, one published) so a fresh local stack is immediately
usable from the API.

Idempotent — keyed on the organization slug; if it already exists nothing
is written.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from rollcall.database.models import (
    Activity,
    EventSession,
    Membership,
    MemberRole,
    Organization,
    User,
)
from rollcall.engine.status import JoinMode, SessionStatus

logger = logging.getLogger(__name__)

DEMO_ORG_SLUG = "demo-club"

# ---------------------------------------------------------------------------
# Demo catalogue
# ---------------------------------------------------------------------------
DEMO_USERS: list[tuple[str, str, MemberRole]] = [
    ("Dana Owner", "owner@demo.rollcall.test", MemberRole.OWNER),
    ("Ari Admin", "admin@demo.rollcall.test", MemberRole.ADMIN),
    ("Mo Member", "mo@demo.rollcall.test", MemberRole.MEMBER),
    ("Sam Member", "sam@demo.rollcall.test", MemberRole.MEMBER),
]
"""Each entry is ``(display name, email, role)``."""


# ---------------------------------------------------------------------------
# Seeder
# ---------------------------------------------------------------------------
def seed_demo_data(engine: Engine, *, now: datetime | None = None) -> int | None:
    """Insert the demo organization if it is missing.

    Returns the new organization id, or ``None`` when the demo data was
    already present.
    """
    now = now or datetime.now(UTC)
    session = Session(engine)
    try:
        existing = session.scalar(
            select(Organization).where(Organization.slug == DEMO_ORG_SLUG)
        )
        if existing is not None:
            return None

        org = Organization(name="Demo Club", slug=DEMO_ORG_SLUG)
        session.add(org)
        session.flush()

        owner_id: int | None = None
        for name, email, role in DEMO_USERS:
            user = User(name=name, email=email)
            session.add(user)
            session.flush()
            session.add(Membership(organization_id=org.id, user_id=user.id, role=role.value))
            if role == MemberRole.OWNER:
                owner_id = user.id

        activity = Activity(organization_id=org.id, name="Weekly Padel")
        session.add(activity)
        session.flush()

        start = (now + timedelta(days=7)).replace(minute=0, second=0, microsecond=0)
        session.add_all([
            EventSession(
                organization_id=org.id,
                activity_id=activity.id,
                title="Padel Night",
                location="Court 3",
                date_time=start,
                max_capacity=4,
                max_waitlist=2,
                join_mode=JoinMode.OPEN.value,
                status=SessionStatus.PUBLISHED.value,
                created_by=owner_id,
            ),
            EventSession(
                organization_id=org.id,
                activity_id=activity.id,
                title="Padel Night (next week)",
                location="Court 3",
                date_time=start + timedelta(days=7),
                max_capacity=4,
                max_waitlist=2,
                join_mode=JoinMode.OPEN.value,
                status=SessionStatus.DRAFT.value,
                created_by=owner_id,
            ),
        ])
        session.commit()
        org_id = org.id
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    logger.info("Seeded demo organization %s (id=%d).", DEMO_ORG_SLUG, org_id)
    return org_id
