"""
rollcall.api.routes.participations — Enrollment endpoints
==========================================================

Session-nested routes (join, roster, attendance) and participation-level
routes (cancel, patch, move), plus the two history views.
"""

from __future__ import annotations

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from rollcall.api.deps import Caller, Config, DbEngine
from rollcall.api.routes.sessions import session_dict
from rollcall.constants import DEFAULT_PAGE_SIZE, DEFAULT_ROSTER_PAGE_SIZE
from rollcall.database.engine import run_db
from rollcall.engine.records import ParticipationRecord
from rollcall.services import participation_service
from rollcall.services.participation_service import AttendanceUpdate, HistoryEntry

router = APIRouter(tags=["participations"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class AddParticipant(BaseModel):
    user_id: int


class AttendanceItem(BaseModel):
    participation_id: int
    attendance: str


class BulkAttendance(BaseModel):
    updates: list[AttendanceItem] = Field(default_factory=list)


class ParticipationPatch(BaseModel):
    attendance: str | None = None
    payment: str | None = None
    notes: str | None = None


class MoveRequest(BaseModel):
    target_session_id: int


# ---------------------------------------------------------------------------
# Serializers
# ---------------------------------------------------------------------------
def participation_dict(record: ParticipationRecord | None) -> dict | None:
    if record is None:
        return None
    return {
        "id": record.id,
        "session_id": record.session_id,
        "user_id": record.user_id,
        "status": record.status.value,
        "attendance": record.attendance.value,
        "payment": record.payment.value,
        "notes": record.notes,
        "created_at": record.created_at.isoformat(),
        "cancelled_at": record.cancelled_at.isoformat() if record.cancelled_at else None,
        "updated_at": record.updated_at.isoformat() if record.updated_at else None,
    }


def _history_dict(entry: HistoryEntry) -> dict:
    return {
        "participation": participation_dict(entry.participation),
        "session": session_dict(entry.session),
    }


# ---------------------------------------------------------------------------
# Session-nested routes
# ---------------------------------------------------------------------------
@router.post("/sessions/{session_id}/join")
async def join_session(session_id: int, ctx: Caller, engine: DbEngine):
    record = await run_db(participation_service.join_session, engine, ctx, session_id)
    return participation_dict(record)


@router.get("/sessions/{session_id}/me")
async def my_participation(session_id: int, ctx: Caller, engine: DbEngine):
    mine = await run_db(participation_service.get_my_participation, engine, ctx, session_id)
    if mine is None:
        return {"participation": None, "waitlist_position": None}
    return {
        "participation": participation_dict(mine.participation),
        "waitlist_position": mine.waitlist_position,
    }


@router.get("/sessions/{session_id}/roster")
async def roster(
    session_id: int,
    ctx: Caller,
    engine: DbEngine,
    cfg: Config,
    status: str | None = None,
    limit: int | None = Query(None),
    offset: int = Query(0),
):
    if limit is None:
        limit = min(DEFAULT_ROSTER_PAGE_SIZE, cfg.roster_page_limit)
    entries = await run_db(
        participation_service.get_roster,
        engine,
        ctx,
        session_id,
        status=status,
        limit=limit,
        offset=offset,
        max_limit=cfg.roster_page_limit,
    )
    return {
        "participants": [
            {
                **participation_dict(e.participation),
                "user_name": e.user_name,
                "user_email": e.user_email,
            }
            for e in entries
        ]
    }


@router.post("/sessions/{session_id}/participants", status_code=201)
async def add_participant(session_id: int, body: AddParticipant, ctx: Caller, engine: DbEngine):
    record = await run_db(
        participation_service.add_participant, engine, ctx, session_id, body.user_id
    )
    return participation_dict(record)


@router.post("/sessions/{session_id}/attendance")
async def bulk_update_attendance(
    session_id: int, body: BulkAttendance, ctx: Caller, engine: DbEngine, cfg: Config
):
    updates = [AttendanceUpdate(u.participation_id, u.attendance) for u in body.updates]
    result = await run_db(
        participation_service.bulk_update_attendance,
        engine,
        ctx,
        session_id,
        updates,
        max_batch=cfg.bulk_attendance_limit,
    )
    return {
        "count": len(result.updated),
        "updated": [participation_dict(r) for r in result.updated],
        "errors": [e.to_dict() for e in result.errors],
    }


# ---------------------------------------------------------------------------
# Participation routes
# ---------------------------------------------------------------------------
@router.post("/participations/{participation_id}/cancel")
async def cancel_participation(participation_id: int, ctx: Caller, engine: DbEngine):
    result = await run_db(
        participation_service.cancel_participation, engine, ctx, participation_id
    )
    return {
        "cancelled": participation_dict(result.cancelled),
        "promoted": participation_dict(result.promoted),
    }


@router.patch("/participations/{participation_id}")
async def update_participation(
    participation_id: int, body: ParticipationPatch, ctx: Caller, engine: DbEngine
):
    record = await run_db(
        participation_service.update_participation,
        engine,
        ctx,
        participation_id,
        **body.model_dump(exclude_unset=True),
    )
    return participation_dict(record)


@router.post("/participations/{participation_id}/move")
async def move_participant(
    participation_id: int, body: MoveRequest, ctx: Caller, engine: DbEngine
):
    result = await run_db(
        participation_service.move_participant,
        engine,
        ctx,
        participation_id,
        body.target_session_id,
    )
    return {
        "cancelled": participation_dict(result.cancelled),
        "created": participation_dict(result.created),
        "promoted": participation_dict(result.promoted),
    }


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------
@router.get("/me/history")
async def my_history(
    ctx: Caller,
    engine: DbEngine,
    cfg: Config,
    limit: int = Query(DEFAULT_PAGE_SIZE),
    offset: int = Query(0),
):
    entries = await run_db(
        participation_service.my_history,
        engine,
        ctx,
        limit=limit,
        offset=offset,
        max_limit=cfg.history_page_limit,
    )
    return {"history": [_history_dict(e) for e in entries]}


@router.get("/users/{user_id}/history")
async def user_history(
    user_id: int,
    ctx: Caller,
    engine: DbEngine,
    cfg: Config,
    limit: int = Query(DEFAULT_PAGE_SIZE),
    offset: int = Query(0),
):
    entries = await run_db(
        participation_service.user_history,
        engine,
        ctx,
        user_id,
        limit=limit,
        offset=offset,
        max_limit=cfg.history_page_limit,
    )
    return {"history": [_history_dict(e) for e in entries]}
