"""
rollcall.engine.status — Status Enums & Transition Tables
==========================================================

Closed enumerations for every status-like field plus the two transition
tables.  :func:`assert_transition` is the single gate every status write goes
through; no service special-cases an edge.

Session status flow::

    draft ──► published ──► completed
      │           │
      ▼           ▼
    cancelled   cancelled

Participation status flow::

    (new) ──► joined ──► cancelled
                ▲
    (new) ──► waitlisted ──► cancelled
"""

from __future__ import annotations

import enum
from typing import Any

from rollcall.errors import InvalidTransitionError

__all__ = [
    "SessionStatus",
    "ParticipationStatus",
    "AttendanceStatus",
    "PaymentStatus",
    "JoinMode",
    "TransitionKind",
    "SESSION_TRANSITIONS",
    "PARTICIPATION_TRANSITIONS",
    "can_transition",
    "assert_transition",
    "is_terminal",
    "is_session_status",
    "is_participation_status",
    "is_attendance_status",
    "is_payment_status",
    "is_join_mode",
]


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class SessionStatus(enum.StrEnum):
    DRAFT = "draft"
    PUBLISHED = "published"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class ParticipationStatus(enum.StrEnum):
    JOINED = "joined"
    WAITLISTED = "waitlisted"
    CANCELLED = "cancelled"


class AttendanceStatus(enum.StrEnum):
    PENDING = "pending"
    SHOW = "show"
    NO_SHOW = "no_show"


class PaymentStatus(enum.StrEnum):
    UNPAID = "unpaid"
    PAID = "paid"


class JoinMode(enum.StrEnum):
    OPEN = "open"
    APPROVAL_REQUIRED = "approval_required"
    INVITE_ONLY = "invite_only"


class TransitionKind(enum.StrEnum):
    """Which transition table :func:`can_transition` consults."""
    SESSION = "session"
    PARTICIPATION = "participation"


# ---------------------------------------------------------------------------
# Transition tables
# ---------------------------------------------------------------------------
SESSION_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.DRAFT: frozenset({SessionStatus.PUBLISHED, SessionStatus.CANCELLED}),
    SessionStatus.PUBLISHED: frozenset({SessionStatus.COMPLETED, SessionStatus.CANCELLED}),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.CANCELLED: frozenset(),
}

PARTICIPATION_TRANSITIONS: dict[ParticipationStatus, frozenset[ParticipationStatus]] = {
    ParticipationStatus.JOINED: frozenset({ParticipationStatus.CANCELLED}),
    ParticipationStatus.WAITLISTED: frozenset(
        {ParticipationStatus.JOINED, ParticipationStatus.CANCELLED}
    ),
    ParticipationStatus.CANCELLED: frozenset(),
}

_TABLES: dict[TransitionKind, tuple[type[enum.StrEnum], dict]] = {
    TransitionKind.SESSION: (SessionStatus, SESSION_TRANSITIONS),
    TransitionKind.PARTICIPATION: (ParticipationStatus, PARTICIPATION_TRANSITIONS),
}


def can_transition(kind: TransitionKind | str, from_status: str, to_status: str) -> bool:
    """Return True if *from_status* → *to_status* is an edge of *kind*'s table.

    Unknown kinds or statuses are simply not transitions (returns False).
    """
    try:
        enum_cls, table = _TABLES[TransitionKind(kind)]
        source = enum_cls(from_status)
        target = enum_cls(to_status)
    except ValueError:
        return False
    return target in table[source]


def assert_transition(kind: TransitionKind | str, from_status: str, to_status: str) -> None:
    """Raise :class:`InvalidTransitionError` unless :func:`can_transition` holds."""
    if not can_transition(kind, from_status, to_status):
        raise InvalidTransitionError(
            f"Cannot transition {kind} from '{from_status}' to '{to_status}'"
        )


def is_terminal(kind: TransitionKind | str, status: str) -> bool:
    """A status is terminal when its row in the table has no outgoing edges."""
    enum_cls, table = _TABLES[TransitionKind(kind)]
    return not table[enum_cls(status)]


# ---------------------------------------------------------------------------
# Type guards for untrusted input
# ---------------------------------------------------------------------------
def _is_member(enum_cls: type[enum.StrEnum], value: Any) -> bool:
    return isinstance(value, str) and value in {member.value for member in enum_cls}


def is_session_status(value: Any) -> bool:
    return _is_member(SessionStatus, value)


def is_participation_status(value: Any) -> bool:
    return _is_member(ParticipationStatus, value)


def is_attendance_status(value: Any) -> bool:
    return _is_member(AttendanceStatus, value)


def is_payment_status(value: Any) -> bool:
    return _is_member(PaymentStatus, value)


def is_join_mode(value: Any) -> bool:
    return _is_member(JoinMode, value)
