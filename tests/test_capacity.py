"""
tests/test_capacity.py — Join Decision & Promotion Policy Tests
================================================================

Pure policy from rollcall.engine.capacity; no database.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from rollcall.engine.capacity import (
    capacity_warnings,
    decide_join,
    pick_promotion,
    should_promote,
)
from rollcall.engine.records import Occupancy, ParticipationRecord
from rollcall.engine.status import (
    AttendanceStatus,
    ParticipationStatus,
    PaymentStatus,
)
from rollcall.errors import CapacityExceededError

T0 = datetime(2026, 3, 1, 18, 0, tzinfo=UTC)


def _record(pid: int, status: str = "waitlisted", created_at: datetime = T0) -> ParticipationRecord:
    return ParticipationRecord(
        id=pid,
        session_id=1,
        user_id=100 + pid,
        status=ParticipationStatus(status),
        attendance=AttendanceStatus.PENDING,
        payment=PaymentStatus.UNPAID,
        notes=None,
        created_at=created_at,
        cancelled_at=None,
        updated_at=None,
    )


class TestDecideJoin:
    def test_joined_while_slots_free(self):
        assert decide_join(2, 1, Occupancy(joined=1)) == ParticipationStatus.JOINED

    def test_waitlisted_when_full(self):
        assert decide_join(2, 1, Occupancy(joined=2)) == ParticipationStatus.WAITLISTED

    def test_rejected_when_both_full(self):
        with pytest.raises(CapacityExceededError) as exc_info:
            decide_join(2, 1, Occupancy(joined=2, waitlisted=1))
        assert exc_info.value.kind == "capacity_exceeded"
        assert "2/2 joined" in exc_info.value.message

    def test_zero_waitlist_rejects_immediately(self):
        with pytest.raises(CapacityExceededError):
            decide_join(1, 0, Occupancy(joined=1))

    def test_over_capacity_after_lowered_limit_still_waitlists(self):
        """Occupancy above a lowered limit routes new joins to the waitlist."""
        assert decide_join(2, 3, Occupancy(joined=4)) == ParticipationStatus.WAITLISTED


class TestShouldPromote:
    def test_joined_cancel_in_live_session(self):
        assert should_promote("joined", "published")
        assert should_promote("joined", "draft")

    def test_waitlisted_cancel_frees_no_slot(self):
        assert not should_promote("waitlisted", "published")

    @pytest.mark.parametrize("session_status", ["cancelled", "completed"])
    def test_closed_session_never_promotes(self, session_status):
        assert not should_promote("joined", session_status)


class TestPickPromotion:
    def test_oldest_wins(self):
        older = _record(7, created_at=T0)
        newer = _record(3, created_at=T0 + timedelta(seconds=1))
        assert pick_promotion([newer, older]) is older

    def test_tie_broken_by_id(self):
        a = _record(5)
        b = _record(4)
        assert pick_promotion([a, b]) is b

    def test_ignores_non_waitlisted(self):
        joined = _record(1, status="joined", created_at=T0 - timedelta(days=1))
        waiting = _record(2)
        assert pick_promotion([joined, waiting]) is waiting

    def test_empty_waitlist(self):
        assert pick_promotion([]) is None
        assert pick_promotion([_record(1, status="cancelled")]) is None


class TestCapacityWarnings:
    def test_no_warning_within_bounds(self):
        assert capacity_warnings(5, 2, Occupancy(joined=5, waitlisted=2)) == []

    def test_both_bounds_below_occupancy(self):
        warnings = capacity_warnings(3, 0, Occupancy(joined=5, waitlisted=2))
        assert len(warnings) == 2
        assert "max_capacity 3 is below current joined count 5" in warnings
        assert "max_waitlist 0 is below current waitlisted count 2" in warnings
