"""
rollcall.api.routes.sessions — Session endpoints
=================================================
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Query
from pydantic import BaseModel

from rollcall.api.deps import Caller, Config, DbEngine
from rollcall.constants import DEFAULT_PAGE_SIZE
from rollcall.database.engine import run_db
from rollcall.engine.records import Occupancy, SessionRecord
from rollcall.services import session_service

router = APIRouter(prefix="/sessions", tags=["sessions"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class SessionCreate(BaseModel):
    title: str
    date_time: datetime
    max_capacity: int
    max_waitlist: int = 0
    join_mode: str = "open"
    description: str | None = None
    location: str | None = None
    activity_id: int | None = None


class SessionPatch(BaseModel):
    title: str | None = None
    description: str | None = None
    location: str | None = None
    date_time: datetime | None = None
    max_capacity: int | None = None
    max_waitlist: int | None = None
    join_mode: str | None = None


class StatusChange(BaseModel):
    status: str


# ---------------------------------------------------------------------------
# Serializers
# ---------------------------------------------------------------------------
def session_dict(record: SessionRecord, occupancy: Occupancy | None = None) -> dict:
    data = {
        "id": record.id,
        "organization_id": record.organization_id,
        "activity_id": record.activity_id,
        "title": record.title,
        "description": record.description,
        "location": record.location,
        "date_time": record.date_time.isoformat(),
        "max_capacity": record.max_capacity,
        "max_waitlist": record.max_waitlist,
        "join_mode": record.join_mode.value,
        "status": record.status.value,
        "created_by": record.created_by,
        "deleted_at": record.deleted_at.isoformat() if record.deleted_at else None,
        "created_at": record.created_at.isoformat() if record.created_at else None,
        "updated_at": record.updated_at.isoformat() if record.updated_at else None,
    }
    if occupancy is not None:
        data["joined_count"] = occupancy.joined
        data["waitlisted_count"] = occupancy.waitlisted
    return data


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@router.post("", status_code=201)
async def create_session(body: SessionCreate, ctx: Caller, engine: DbEngine):
    record = await run_db(
        session_service.create_session, engine, ctx, **body.model_dump()
    )
    return session_dict(record)


@router.get("")
async def list_sessions(
    ctx: Caller,
    engine: DbEngine,
    cfg: Config,
    status: str | None = None,
    scope: str = "all",
    limit: int = Query(DEFAULT_PAGE_SIZE),
    offset: int = Query(0),
    counts: bool = Query(False),
):
    filters = dict(
        status=status,
        window=scope,
        limit=limit,
        offset=offset,
        max_limit=cfg.history_page_limit,
    )
    if counts:
        summaries = await run_db(session_service.list_session_summaries, engine, ctx, **filters)
        return {"sessions": [session_dict(s.session, s.occupancy) for s in summaries]}
    records = await run_db(session_service.list_sessions, engine, ctx, **filters)
    return {"sessions": [session_dict(r) for r in records]}


@router.get("/{session_id}")
async def get_session(session_id: int, ctx: Caller, engine: DbEngine):
    summary = await run_db(session_service.get_session, engine, ctx, session_id)
    return session_dict(summary.session, summary.occupancy)


@router.patch("/{session_id}")
async def update_session(session_id: int, body: SessionPatch, ctx: Caller, engine: DbEngine):
    result = await run_db(
        session_service.update_session,
        engine,
        ctx,
        session_id,
        **body.model_dump(exclude_unset=True),
    )
    return {"session": session_dict(result.session), "warnings": result.warnings}


@router.post("/{session_id}/status")
async def update_session_status(
    session_id: int, body: StatusChange, ctx: Caller, engine: DbEngine
):
    record = await run_db(
        session_service.update_session_status, engine, ctx, session_id, body.status
    )
    return session_dict(record)


@router.delete("/{session_id}")
async def delete_session(session_id: int, ctx: Caller, engine: DbEngine):
    record = await run_db(session_service.delete_session, engine, ctx, session_id)
    return {"success": True, "id": record.id}
