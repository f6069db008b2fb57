"""
tests/test_participation_service.py — Participation Lifecycle Controller Tests
===============================================================================

Join decision, FIFO auto-promotion, cancel, admin add, field updates, bulk
attendance, move, and the roster / history reads.

Uses an in-memory SQLite database via the shared conftest fixtures.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from rollcall.engine.status import ParticipationStatus
from rollcall.errors import (
    BadRequestError,
    CapacityExceededError,
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from rollcall.services import participation_service as ps
from rollcall.services.participation_service import AttendanceUpdate

BASE_TIME = datetime(2030, 6, 1, 18, 0, tzinfo=UTC)
T0 = datetime(2030, 5, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def org(world):
    return world.org()


@pytest.fixture
def admin(world, org, ctx_for):
    return ctx_for(world.member(org, "Admin", role="admin"), org, "admin")


@pytest.fixture
def members(world, org, ctx_for):
    """Factory: ``members(n)`` → list of member CallerContexts."""

    def _make(n: int, prefix: str = "M"):
        return [ctx_for(world.member(org, f"{prefix}{i}"), org, "member") for i in range(n)]

    return _make


# ===========================================================================
# Join
# ===========================================================================
class TestJoin:
    def test_capacity_then_waitlist_then_full(self, db_engine, world, org, members):
        """maxCapacity=2, maxWaitlist=1: joined, joined, waitlisted, rejected."""
        sid = world.session(org, max_capacity=2, max_waitlist=1)
        u1, u2, u3, u4 = members(4)
        assert ps.join_session(db_engine, u1, sid).status == ParticipationStatus.JOINED
        assert ps.join_session(db_engine, u2, sid).status == ParticipationStatus.JOINED
        assert ps.join_session(db_engine, u3, sid).status == ParticipationStatus.WAITLISTED
        with pytest.raises(CapacityExceededError):
            ps.join_session(db_engine, u4, sid)
        assert world.statuses(sid) == {
            u1.user_id: "joined", u2.user_id: "joined", u3.user_id: "waitlisted",
        }

    def test_join_is_idempotent(self, db_engine, world, org, members):
        sid = world.session(org)
        (u,) = members(1)
        first = ps.join_session(db_engine, u, sid)
        again = ps.join_session(db_engine, u, sid)
        assert again.id == first.id
        assert len(world.statuses(sid)) == 1

    def test_rejoin_after_cancel_creates_new_row(self, db_engine, world, org, members):
        sid = world.session(org)
        (u,) = members(1)
        first = ps.join_session(db_engine, u, sid)
        ps.cancel_participation(db_engine, u, first.id)
        second = ps.join_session(db_engine, u, sid)
        assert second.id != first.id
        assert second.status == ParticipationStatus.JOINED
        assert world.get_participation(first.id).status == "cancelled"

    @pytest.mark.parametrize("status", ["draft", "cancelled", "completed"])
    def test_only_published_sessions_accept_joins(self, db_engine, world, org, members, status):
        sid = world.session(org, status=status)
        (u,) = members(1)
        with pytest.raises(BadRequestError):
            ps.join_session(db_engine, u, sid)

    @pytest.mark.parametrize("mode", ["approval_required", "invite_only"])
    def test_non_open_join_mode_rejected(self, db_engine, world, org, members, mode):
        sid = world.session(org, join_mode=mode)
        (u,) = members(1)
        with pytest.raises(BadRequestError):
            ps.join_session(db_engine, u, sid)

    def test_other_org_session_not_found(self, db_engine, world, members):
        foreign = world.session(world.org())
        (u,) = members(1)
        with pytest.raises(NotFoundError):
            ps.join_session(db_engine, u, foreign)

    def test_double_booking_rejected(self, db_engine, world, org, members):
        s1 = world.session(org, title="A")
        s2 = world.session(org, title="B")
        (u,) = members(1)
        ps.join_session(db_engine, u, s1)
        with pytest.raises(ConflictError):
            ps.join_session(db_engine, u, s2)

    def test_cancelled_booking_does_not_block(self, db_engine, world, org, members):
        s1 = world.session(org, title="A")
        s2 = world.session(org, title="B")
        (u,) = members(1)
        p = ps.join_session(db_engine, u, s1)
        ps.cancel_participation(db_engine, u, p.id)
        assert ps.join_session(db_engine, u, s2).status == ParticipationStatus.JOINED


# ===========================================================================
# Cancel + promotion
# ===========================================================================
class TestCancelAndPromote:
    def test_fifo_promotion(self, db_engine, world, org, members):
        """W1 (older) is promoted, never W2."""
        sid = world.session(org, max_capacity=1, max_waitlist=2)
        j, w1, w2 = members(3)
        pj = world.participation(sid, j.user_id, "joined", T0)
        pw2 = world.participation(sid, w2.user_id, "waitlisted", T0 + timedelta(minutes=2))
        pw1 = world.participation(sid, w1.user_id, "waitlisted", T0 + timedelta(minutes=1))

        result = ps.cancel_participation(db_engine, j, pj)
        assert result.cancelled.status == ParticipationStatus.CANCELLED
        assert result.cancelled.cancelled_at is not None
        assert result.promoted.id == pw1
        assert world.get_participation(pw2).status == "waitlisted"

    def test_fifo_tie_broken_by_id(self, db_engine, world, org, members):
        sid = world.session(org, max_capacity=1, max_waitlist=2)
        j, a, b = members(3)
        pj = world.participation(sid, j.user_id, "joined", T0)
        pa = world.participation(sid, a.user_id, "waitlisted", T0)
        world.participation(sid, b.user_id, "waitlisted", T0)
        assert ps.cancel_participation(db_engine, j, pj).promoted.id == pa

    def test_cancel_promotes_waitlisted_then_next_join_waits(self, db_engine, world, org, members):
        """capacity 2 / waitlist 1: U1 cancels → U3 joined, then U4 waitlisted."""
        sid = world.session(org, max_capacity=2, max_waitlist=1)
        u1, u2, u3, u4 = members(4)
        p1 = ps.join_session(db_engine, u1, sid)
        ps.join_session(db_engine, u2, sid)
        p3 = ps.join_session(db_engine, u3, sid)

        result = ps.cancel_participation(db_engine, u1, p1.id)
        assert result.promoted.id == p3.id
        assert result.promoted.status == ParticipationStatus.JOINED
        assert ps.join_session(db_engine, u4, sid).status == ParticipationStatus.WAITLISTED

    def test_at_most_one_promotion_per_cancel(self, db_engine, world, org, members):
        sid = world.session(org, max_capacity=2, max_waitlist=3)
        j1, j2, w1, w2, w3 = members(5)
        p1 = world.participation(sid, j1.user_id, "joined", T0)
        world.participation(sid, j2.user_id, "joined", T0)
        for i, w in enumerate((w1, w2, w3), start=1):
            world.participation(sid, w.user_id, "waitlisted", T0 + timedelta(minutes=i))

        ps.cancel_participation(db_engine, j1, p1)
        statuses = world.statuses(sid)
        assert list(statuses.values()).count("joined") == 2
        assert list(statuses.values()).count("waitlisted") == 2

    def test_waitlisted_cancel_promotes_nobody(self, db_engine, world, org, members):
        sid = world.session(org, max_capacity=1, max_waitlist=2)
        j, w1, w2 = members(3)
        world.participation(sid, j.user_id, "joined", T0)
        pw1 = world.participation(sid, w1.user_id, "waitlisted", T0)
        world.participation(sid, w2.user_id, "waitlisted", T0 + timedelta(minutes=1))
        assert ps.cancel_participation(db_engine, w1, pw1).promoted is None
        assert world.statuses(sid)[w2.user_id] == "waitlisted"

    @pytest.mark.parametrize("status", ["cancelled", "completed"])
    def test_closed_session_rejects_cancel(self, db_engine, world, org, members, status):
        sid = world.session(org, status=status)
        (u,) = members(1)
        pid = world.participation(sid, u.user_id)
        with pytest.raises(BadRequestError):
            ps.cancel_participation(db_engine, u, pid)

    def test_cancel_twice_is_invalid_transition(self, db_engine, world, org, members):
        sid = world.session(org)
        (u,) = members(1)
        p = ps.join_session(db_engine, u, sid)
        ps.cancel_participation(db_engine, u, p.id)
        with pytest.raises(InvalidTransitionError):
            ps.cancel_participation(db_engine, u, p.id)

    def test_member_cannot_cancel_someone_else(self, db_engine, world, org, members):
        sid = world.session(org)
        owner, intruder = members(2)
        p = ps.join_session(db_engine, owner, sid)
        with pytest.raises(NotFoundError):
            ps.cancel_participation(db_engine, intruder, p.id)

    def test_admin_can_remove_participant(self, db_engine, world, org, admin, members):
        sid = world.session(org)
        (u,) = members(1)
        p = ps.join_session(db_engine, u, sid)
        assert ps.cancel_participation(db_engine, admin, p.id).cancelled.status == "cancelled"

    def test_admin_of_other_org_forbidden(self, db_engine, world, ctx_for):
        sid = world.session(world.org())
        uid = world.user()
        pid = world.participation(sid, uid)
        other_org = world.org()
        outsider = ctx_for(world.member(other_org, role="admin"), other_org, "admin")
        with pytest.raises(ForbiddenError):
            ps.cancel_participation(db_engine, outsider, pid)


# ===========================================================================
# Admin add
# ===========================================================================
class TestAddParticipant:
    def test_bypasses_join_mode_and_draft(self, db_engine, world, org, admin, members):
        sid = world.session(org, status="draft", join_mode="invite_only")
        (u,) = members(1)
        record = ps.add_participant(db_engine, admin, sid, u.user_id)
        assert record.status == ParticipationStatus.JOINED

    def test_duplicate_is_conflict(self, db_engine, world, org, admin, members):
        sid = world.session(org)
        (u,) = members(1)
        ps.add_participant(db_engine, admin, sid, u.user_id)
        with pytest.raises(ConflictError):
            ps.add_participant(db_engine, admin, sid, u.user_id)

    def test_non_member_not_found(self, db_engine, world, org, admin):
        sid = world.session(org)
        with pytest.raises(NotFoundError):
            ps.add_participant(db_engine, admin, sid, world.user())

    def test_member_role_forbidden(self, db_engine, world, org, members):
        sid = world.session(org)
        u, v = members(2)
        with pytest.raises(ForbiddenError):
            ps.add_participant(db_engine, u, sid, v.user_id)

    def test_full_session_rejected(self, db_engine, world, org, admin, members):
        sid = world.session(org, max_capacity=1, max_waitlist=0)
        u, v = members(2)
        ps.add_participant(db_engine, admin, sid, u.user_id)
        with pytest.raises(CapacityExceededError):
            ps.add_participant(db_engine, admin, sid, v.user_id)


# ===========================================================================
# Field updates
# ===========================================================================
class TestUpdateParticipation:
    def test_updates_fields(self, db_engine, world, org, admin, members):
        sid = world.session(org, status="completed")
        (u,) = members(1)
        pid = world.participation(sid, u.user_id)
        record = ps.update_participation(
            db_engine, admin, pid, attendance="show", payment="paid", notes="Brought balls"
        )
        assert record.attendance == "show"
        assert record.payment == "paid"
        assert record.notes == "Brought balls"
        assert record.status == ParticipationStatus.JOINED

    def test_invalid_values_rejected(self, db_engine, world, org, admin, members):
        sid = world.session(org)
        (u,) = members(1)
        pid = world.participation(sid, u.user_id)
        with pytest.raises(ValidationError) as exc_info:
            ps.update_participation(db_engine, admin, pid, attendance="late", status="joined")
        assert set(exc_info.value.details) == {"attendance", "status"}

    def test_member_forbidden(self, db_engine, world, org, members):
        sid = world.session(org)
        (u,) = members(1)
        pid = world.participation(sid, u.user_id)
        with pytest.raises(ForbiddenError):
            ps.update_participation(db_engine, u, pid, payment="paid")


# ===========================================================================
# Bulk attendance
# ===========================================================================
class TestBulkAttendance:
    def test_bad_rows_do_not_abort_siblings(self, db_engine, world, org, admin, members):
        sid = world.session(org, max_capacity=5)
        other = world.session(org, title="Other", date_time=BASE_TIME + timedelta(days=1))
        a, b, c = members(3)
        pa = world.participation(sid, a.user_id)
        pb = world.participation(sid, b.user_id)
        p_other = world.participation(other, c.user_id)

        result = ps.bulk_update_attendance(
            db_engine,
            admin,
            sid,
            [
                AttendanceUpdate(pa, "show"),
                AttendanceUpdate(pb, "sometimes"),
                AttendanceUpdate(p_other, "show"),
                AttendanceUpdate(9999, "no_show"),
            ],
        )
        assert [r.id for r in result.updated] == [pa]
        assert [(e.participation_id, e.kind) for e in result.errors] == [
            (pb, "validation"),
            (p_other, "not_found"),
            (9999, "not_found"),
        ]
        assert world.get_participation(pa).attendance == "show"
        assert world.get_participation(pb).attendance == "pending"
        assert world.get_participation(p_other).attendance == "pending"

    def test_empty_batch_rejected(self, db_engine, world, org, admin):
        sid = world.session(org)
        with pytest.raises(ValidationError):
            ps.bulk_update_attendance(db_engine, admin, sid, [])

    def test_oversized_batch_rejected(self, db_engine, world, org, admin):
        sid = world.session(org)
        updates = [AttendanceUpdate(i, "show") for i in range(4)]
        with pytest.raises(ValidationError):
            ps.bulk_update_attendance(db_engine, admin, sid, updates, max_batch=3)

    def test_other_org_session_forbidden(self, db_engine, world, admin):
        foreign = world.session(world.org())
        with pytest.raises(ForbiddenError):
            ps.bulk_update_attendance(db_engine, admin, foreign, [AttendanceUpdate(1, "show")])


# ===========================================================================
# Move
# ===========================================================================
class TestMoveParticipant:
    def test_move_promotes_in_source_and_joins_target(self, db_engine, world, org, admin, members):
        source = world.session(org, title="Src", max_capacity=1, max_waitlist=1)
        target = world.session(org, title="Dst", date_time=BASE_TIME + timedelta(days=1))
        mover, waiting = members(2)
        p_mover = world.participation(source, mover.user_id, "joined", T0)
        p_wait = world.participation(source, waiting.user_id, "waitlisted", T0)

        result = ps.move_participant(db_engine, admin, p_mover, target)
        assert result.cancelled.id == p_mover
        assert result.cancelled.status == ParticipationStatus.CANCELLED
        assert result.created.session_id == target
        assert result.created.status == ParticipationStatus.JOINED
        assert result.promoted.id == p_wait

    def test_round_trip(self, db_engine, world, org, admin, members):
        a = world.session(org, title="A")
        b = world.session(org, title="B", date_time=BASE_TIME + timedelta(days=1))
        (u,) = members(1)
        p = ps.join_session(db_engine, u, a)

        there = ps.move_participant(db_engine, admin, p.id, b)
        back = ps.move_participant(db_engine, admin, there.created.id, a)
        assert back.created.session_id == a
        assert back.created.status == ParticipationStatus.JOINED
        assert world.statuses(a) == {u.user_id: "joined"}
        assert world.statuses(b) == {}

    def test_round_trip_rewaitlists_when_source_filled(self, db_engine, world, org, admin, members):
        a = world.session(org, title="A", max_capacity=1, max_waitlist=1)
        b = world.session(org, title="B", date_time=BASE_TIME + timedelta(days=1))
        u, v = members(2)
        p = ps.join_session(db_engine, u, a)
        there = ps.move_participant(db_engine, admin, p.id, b)
        ps.join_session(db_engine, v, a)
        back = ps.move_participant(db_engine, admin, there.created.id, a)
        assert back.created.status == ParticipationStatus.WAITLISTED

    def test_same_session_rejected(self, db_engine, world, org, admin, members):
        sid = world.session(org)
        (u,) = members(1)
        pid = world.participation(sid, u.user_id)
        with pytest.raises(BadRequestError):
            ps.move_participant(db_engine, admin, pid, sid)

    def test_closed_target_rejected(self, db_engine, world, org, admin, members):
        source = world.session(org)
        target = world.session(org, status="cancelled", date_time=BASE_TIME + timedelta(days=1))
        (u,) = members(1)
        pid = world.participation(source, u.user_id)
        with pytest.raises(BadRequestError):
            ps.move_participant(db_engine, admin, pid, target)

    def test_existing_target_participation_conflict(self, db_engine, world, org, admin, members):
        source = world.session(org)
        target = world.session(org, date_time=BASE_TIME + timedelta(days=1))
        (u,) = members(1)
        pid = world.participation(source, u.user_id)
        world.participation(target, u.user_id)
        with pytest.raises(ConflictError):
            ps.move_participant(db_engine, admin, pid, target)

    def test_failed_move_leaves_source_untouched(self, db_engine, world, org, admin, members):
        """A full target rolls back the source cancellation and its promotion."""
        source = world.session(org, max_capacity=1, max_waitlist=1)
        target = world.session(org, max_capacity=1, max_waitlist=0, date_time=BASE_TIME + timedelta(days=1))
        mover, waiting, blocker = members(3)
        pid = world.participation(source, mover.user_id, "joined", T0)
        world.participation(source, waiting.user_id, "waitlisted", T0)
        world.participation(target, blocker.user_id)

        with pytest.raises(CapacityExceededError):
            ps.move_participant(db_engine, admin, pid, target)
        assert world.statuses(source) == {mover.user_id: "joined", waiting.user_id: "waitlisted"}

    def test_cross_org_target_forbidden(self, db_engine, world, org, admin, members):
        source = world.session(org)
        foreign = world.session(world.org(), date_time=BASE_TIME + timedelta(days=1))
        (u,) = members(1)
        pid = world.participation(source, u.user_id)
        with pytest.raises(ForbiddenError):
            ps.move_participant(db_engine, admin, pid, foreign)


# ===========================================================================
# Reads
# ===========================================================================
class TestReads:
    def test_waitlist_position(self, db_engine, world, org, members):
        sid = world.session(org, max_capacity=1, max_waitlist=3)
        j, w1, w2 = members(3)
        world.participation(sid, j.user_id, "joined", T0)
        world.participation(sid, w1.user_id, "waitlisted", T0 + timedelta(minutes=1))
        world.participation(sid, w2.user_id, "waitlisted", T0 + timedelta(minutes=2))

        assert ps.get_my_participation(db_engine, j, sid).waitlist_position is None
        assert ps.get_my_participation(db_engine, w1, sid).waitlist_position == 1
        assert ps.get_my_participation(db_engine, w2, sid).waitlist_position == 2

    def test_no_participation(self, db_engine, world, org, members):
        sid = world.session(org)
        (u,) = members(1)
        assert ps.get_my_participation(db_engine, u, sid) is None

    def test_roster_fifo_with_filter(self, db_engine, world, org, admin, members):
        sid = world.session(org, max_capacity=1, max_waitlist=2)
        a, b, c = members(3, prefix="R")
        world.participation(sid, b.user_id, "waitlisted", T0 + timedelta(minutes=1))
        world.participation(sid, a.user_id, "joined", T0)
        world.participation(sid, c.user_id, "cancelled", T0 + timedelta(minutes=2))

        roster = ps.get_roster(db_engine, admin, sid)
        assert [e.participation.user_id for e in roster] == [a.user_id, b.user_id, c.user_id]
        assert roster[0].user_name == "R0"

        waitlisted = ps.get_roster(db_engine, admin, sid, status="waitlisted")
        assert [e.participation.user_id for e in waitlisted] == [b.user_id]

    def test_roster_limit_bounds(self, db_engine, world, org, admin):
        sid = world.session(org)
        with pytest.raises(ValidationError):
            ps.get_roster(db_engine, admin, sid, limit=501)
        with pytest.raises(ValidationError):
            ps.get_roster(db_engine, admin, sid, status="gone")

    def test_roster_requires_admin(self, db_engine, world, org, members):
        sid = world.session(org)
        (u,) = members(1)
        with pytest.raises(ForbiddenError):
            ps.get_roster(db_engine, u, sid)

    def test_history_newest_first_and_tenant_scoped(self, db_engine, world, org, admin, members):
        (u,) = members(1)
        s1 = world.session(org, title="First")
        s2 = world.session(org, title="Second", date_time=BASE_TIME + timedelta(days=1))
        foreign = world.session(world.org(), title="Elsewhere")
        world.participation(s1, u.user_id, "cancelled", T0)
        world.participation(s2, u.user_id, "joined", T0 + timedelta(hours=1))
        world.participation(foreign, u.user_id, "joined", T0 + timedelta(hours=2))

        mine = ps.my_history(db_engine, u)
        assert [h.session.title for h in mine] == ["Second", "First"]
        theirs = ps.user_history(db_engine, admin, u.user_id)
        assert [h.session.id for h in theirs] == [s2, s1]
        with pytest.raises(ForbiddenError):
            ps.user_history(db_engine, u, admin.user_id)

    def test_history_narrowed_to_activity(self, db_engine, world, org, ctx_for):
        padel = world.activity(org, "Padel")
        tennis = world.activity(org, "Tennis")
        user = world.member(org)
        s_padel = world.session(org, title="Padel", activity_id=padel)
        s_tennis = world.session(org, title="Tennis", activity_id=tennis, date_time=BASE_TIME + timedelta(days=1))
        world.participation(s_padel, user, "joined", T0)
        world.participation(s_tennis, user, "joined", T0 + timedelta(hours=1))

        in_padel = ctx_for(user, org, "member", activity_id=padel)
        assert [h.session.id for h in ps.my_history(db_engine, in_padel)] == [s_padel]
        assert len(ps.my_history(db_engine, ctx_for(user, org, "member"))) == 2


class TestActivityScope:
    def test_cannot_cancel_participation_of_another_activity(self, db_engine, world, org, ctx_for):
        padel = world.activity(org, "Padel")
        tennis = world.activity(org, "Tennis")
        admin_id = world.member(org, "Admin", role="admin")
        user = world.member(org)
        pid = world.participation(world.session(org, activity_id=tennis), user)

        with pytest.raises(NotFoundError):
            ps.cancel_participation(db_engine, ctx_for(admin_id, org, "admin", activity_id=padel), pid)
        with pytest.raises(NotFoundError):
            ps.cancel_participation(db_engine, ctx_for(user, org, "member", activity_id=padel), pid)
        assert world.get_participation(pid).status == "joined"

        result = ps.cancel_participation(db_engine, ctx_for(user, org, "member", activity_id=tennis), pid)
        assert result.cancelled.status == ParticipationStatus.CANCELLED
