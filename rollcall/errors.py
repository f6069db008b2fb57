"""
rollcall.errors — Error Taxonomy
=================================

Every rejected precondition in the engine is raised as a subclass of
:class:`RollcallError`.  Each carries a stable ``kind`` string and a
user-readable ``message``; the API layer registers one handler against the
base class and renders ``{"error": {"kind": ..., "message": ...}}`` for all
of them.

Kinds:

=========================  ======  ===========================================
kind                       HTTP    raised when
=========================  ======  ===========================================
``not_found``              404     entity absent or filtered out by tenant scope
``forbidden``              403     entity exists but org / role forbids access
``invalid_transition``     400     status-machine violation
``capacity_exceeded``      409     capacity and waitlist are both full
``conflicting_participants`` 409   reschedule would double-book participants
``conflict``               409     uniqueness violation / duplicate enrollment
``bad_request``            400     request not applicable to current state
``validation``             422     malformed input caught before business logic
``internal``               500     unexpected storage failure (detail hidden)
=========================  ======  ===========================================

Usage::

    from rollcall.errors import NotFoundError

    raise NotFoundError("Session not found")
"""

from __future__ import annotations

from typing import Any


class RollcallError(Exception):
    """Base class for all typed engine errors."""

    kind: str = "internal"
    status_code: int = 500
    default_message: str = "Internal error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message}


class NotFoundError(RollcallError):
    """Entity absent, soft-deleted, or outside the caller's organization.

    Also used when a member asks for someone else's participation: from the
    caller's point of view the record does not exist.
    """

    kind = "not_found"
    status_code = 404
    default_message = "Resource not found"


class ForbiddenError(RollcallError):
    """Entity exists but the caller's organization or role may not touch it."""

    kind = "forbidden"
    status_code = 403
    default_message = "Forbidden"


class InvalidTransitionError(RollcallError):
    kind = "invalid_transition"
    status_code = 400
    default_message = "Invalid status transition"


class CapacityExceededError(RollcallError):
    kind = "capacity_exceeded"
    status_code = 409
    default_message = "Session and waitlist are full"


class ConflictingParticipantsError(RollcallError):
    """A reschedule would double-book one or more participants.

    ``participants`` is part of the user-visible contract: the admin UI lists
    who is blocking the change.
    """

    kind = "conflicting_participants"
    status_code = 409
    default_message = "Participants have conflicting sessions at that time"

    def __init__(self, message: str | None = None, participants: list[str] | None = None) -> None:
        self.participants = list(participants or [])
        super().__init__(message)

    @property
    def count(self) -> int:
        return len(self.participants)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["participants"] = self.participants
        data["count"] = self.count
        return data


class ConflictError(RollcallError):
    kind = "conflict"
    status_code = 409
    default_message = "Conflict"


class BadRequestError(RollcallError):
    kind = "bad_request"
    status_code = 400
    default_message = "Bad request"


class ValidationError(RollcallError):
    """Malformed input rejected before any business logic runs.

    ``details`` maps field names to a short description of what was wrong.
    """

    kind = "validation"
    status_code = 422
    default_message = "Validation failed"

    def __init__(self, message: str | None = None, details: dict[str, str] | None = None) -> None:
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.details:
            data["details"] = self.details
        return data


class InternalError(RollcallError):
    """Opaque wrapper for unexpected storage failures.

    The original exception is chained (``raise ... from exc``) and logged, but
    never rendered to the caller.
    """
