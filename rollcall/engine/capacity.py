"""
rollcall.engine.capacity — Join Decision & Auto-Promotion Policy
=================================================================

Pure policy over live counts.  The transactional half (locking the session
row, counting, inserting, promoting) lives in
:mod:`rollcall.services.waitlist_service`, which calls into this module while
holding the lock so that the decision and the write see the same state.

Join decision::

    joined < max_capacity          → joined
    waitlisted < max_waitlist      → waitlisted
    otherwise                      → CapacityExceededError

Auto-promotion: one cancelled ``joined`` row frees one slot, which goes to
the single oldest waitlisted row (``created_at``, then ``id``).
"""

from __future__ import annotations

from collections.abc import Iterable

from rollcall.engine.records import Occupancy, ParticipationRecord
from rollcall.engine.status import ParticipationStatus, SessionStatus
from rollcall.errors import CapacityExceededError

__all__ = [
    "decide_join",
    "should_promote",
    "pick_promotion",
    "capacity_warnings",
]

_CLOSED_SESSION_STATUSES = frozenset({SessionStatus.CANCELLED, SessionStatus.COMPLETED})


def decide_join(
    max_capacity: int,
    max_waitlist: int,
    occupancy: Occupancy,
) -> ParticipationStatus:
    """Return the status a new participation starts in.

    Raises
    ------
    CapacityExceededError
        If both the joined slots and the waitlist are full.
    """
    if occupancy.joined < max_capacity:
        return ParticipationStatus.JOINED
    if occupancy.waitlisted < max_waitlist:
        return ParticipationStatus.WAITLISTED
    raise CapacityExceededError(
        f"Session and waitlist are full ({occupancy.joined}/{max_capacity} joined, "
        f"{occupancy.waitlisted}/{max_waitlist} waitlisted)"
    )


def should_promote(previous_status: str, session_status: str) -> bool:
    """A cancellation frees a slot only if the row held one and the session is live."""
    return (
        previous_status == ParticipationStatus.JOINED
        and session_status not in _CLOSED_SESSION_STATUSES
    )


def pick_promotion(
    candidates: Iterable[ParticipationRecord],
) -> ParticipationRecord | None:
    """Return the oldest waitlisted candidate, or None.

    Non-waitlisted rows in *candidates* are ignored, so callers may pass a
    whole roster.
    """
    waitlisted = [p for p in candidates if p.status == ParticipationStatus.WAITLISTED]
    if not waitlisted:
        return None
    return min(waitlisted, key=lambda p: p.fifo_key)


def capacity_warnings(
    max_capacity: int,
    max_waitlist: int,
    occupancy: Occupancy,
) -> list[str]:
    """Describe bounds that are now below current occupancy.

    Lowering a limit never cancels anyone; the caller just gets told.
    """
    warnings: list[str] = []
    if occupancy.joined > max_capacity:
        warnings.append(
            f"max_capacity {max_capacity} is below current joined count {occupancy.joined}"
        )
    if occupancy.waitlisted > max_waitlist:
        warnings.append(
            f"max_waitlist {max_waitlist} is below current waitlisted count {occupancy.waitlisted}"
        )
    return warnings
