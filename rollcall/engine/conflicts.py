"""
rollcall.engine.conflicts — Reschedule Conflict Policy
=======================================================

Sessions are points in time, not intervals, so a conflict is an exact-instant
collision: a participant of the session being moved already holds another
active participation whose session starts at the new instant.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from rollcall.errors import ConflictingParticipantsError

__all__ = ["ConflictingParticipant", "assert_no_conflicts", "conflict_message"]


@dataclass(frozen=True, slots=True)
class ConflictingParticipant:
    user_id: int
    display_name: str
    other_session_id: int


def conflict_message(names: Sequence[str]) -> str:
    return (
        f"Cannot change session time: {len(names)} participant(s) have "
        f"conflicting sessions at that time: {', '.join(names)}"
    )


def assert_no_conflicts(conflicts: Sequence[ConflictingParticipant]) -> None:
    """Raise :class:`ConflictingParticipantsError` naming every blocked user.

    A user with several colliding sessions is listed once.
    """
    if not conflicts:
        return
    seen: dict[int, str] = {}
    for conflict in conflicts:
        seen.setdefault(conflict.user_id, conflict.display_name)
    names = sorted(seen.values())
    raise ConflictingParticipantsError(conflict_message(names), participants=names)
