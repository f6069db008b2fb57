"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of rollcall.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

from datetime import UTC, datetime  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import Engine, select  # noqa: E402

from rollcall.config import RollcallConfig  # noqa: E402
from rollcall.database.engine import create_db_engine, init_db, transaction  # noqa: E402
from rollcall.database.models import (  # noqa: E402
    Activity,
    EventSession,
    Membership,
    Organization,
    Participation,
    User,
)
from rollcall.services.scope import CallerContext  # noqa: E402

# Default start for fixture sessions; tests that compare against it repeat it.
BASE_TIME = datetime(2030, 6, 1, 18, 0, tzinfo=UTC)


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Rollcall tables.

    ``create_db_engine`` gives in-memory URLs a StaticPool so every thread
    (``asyncio.to_thread`` in the API layer) sees the same database.
    """
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


# ---------------------------------------------------------------------------
# Row factory
# ---------------------------------------------------------------------------
class World:
    """Inserts fixture rows one committed transaction at a time and returns ids."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._counter = 0

    def _next(self) -> int:
        self._counter += 1
        return self._counter

    def org(self, name: str | None = None) -> int:
        n = self._next()
        with transaction(self.engine) as session:
            row = Organization(name=name or f"Org {n}", slug=f"org-{n}")
            session.add(row)
            session.flush()
            return row.id

    def user(self, name: str | None = None, email: str | None = None) -> int:
        n = self._next()
        with transaction(self.engine) as session:
            row = User(name=name or f"User {n}", email=email)
            session.add(row)
            session.flush()
            return row.id

    def member(self, org_id: int, name: str | None = None, role: str = "member") -> int:
        """Create a user and add them to *org_id* with *role*."""
        user_id = self.user(name)
        with transaction(self.engine) as session:
            session.add(Membership(organization_id=org_id, user_id=user_id, role=role))
        return user_id

    def activity(self, org_id: int, name: str = "Padel") -> int:
        with transaction(self.engine) as session:
            row = Activity(organization_id=org_id, name=name)
            session.add(row)
            session.flush()
            return row.id

    def session(
        self,
        org_id: int,
        *,
        title: str = "Padel Night",
        date_time: datetime | None = None,
        max_capacity: int = 2,
        max_waitlist: int = 2,
        status: str = "published",
        join_mode: str = "open",
        activity_id: int | None = None,
        deleted: bool = False,
    ) -> int:
        with transaction(self.engine) as session:
            row = EventSession(
                organization_id=org_id,
                activity_id=activity_id,
                title=title,
                date_time=date_time or BASE_TIME,
                max_capacity=max_capacity,
                max_waitlist=max_waitlist,
                status=status,
                join_mode=join_mode,
                deleted_at=datetime.now(UTC) if deleted else None,
            )
            session.add(row)
            session.flush()
            return row.id

    def participation(
        self,
        session_id: int,
        user_id: int,
        status: str = "joined",
        created_at: datetime | None = None,
    ) -> int:
        """Insert a participation directly, bypassing the join decision."""
        with transaction(self.engine) as session:
            row = Participation(
                session_id=session_id,
                user_id=user_id,
                status=status,
                created_at=created_at or datetime.now(UTC),
            )
            session.add(row)
            session.flush()
            return row.id

    def get_participation(self, participation_id: int) -> Participation:
        with transaction(self.engine) as session:
            return session.get(Participation, participation_id)

    def get_session(self, session_id: int) -> EventSession:
        with transaction(self.engine) as session:
            return session.get(EventSession, session_id)

    def statuses(self, session_id: int) -> dict[int, str]:
        """``{user_id: status}`` of the non-cancelled rows of *session_id*."""
        with transaction(self.engine) as session:
            rows = session.scalars(
                select(Participation).where(
                    Participation.session_id == session_id,
                    Participation.status != "cancelled",
                )
            )
            return {p.user_id: p.status for p in rows}


@pytest.fixture
def world(db_engine: Engine) -> World:
    return World(db_engine)


@pytest.fixture
def file_world(tmp_path) -> World:
    """A :class:`World` on a file-backed SQLite database with a real connection pool."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'rollcall.db'}")
    init_db(engine)
    yield World(engine)
    engine.dispose()


def make_ctx(user_id: int, org_id: int, role: str = "member", activity_id: int | None = None) -> CallerContext:
    return CallerContext(user_id=user_id, organization_id=org_id, role=role, activity_id=activity_id)


@pytest.fixture
def ctx_for():
    """Factory fixture: ``ctx_for(user_id, org_id, role)`` → CallerContext."""
    return make_ctx


@pytest.fixture
def test_config() -> RollcallConfig:
    return RollcallConfig(
        service_name="Rollcall Test",
        api_port=8000,
        log_level="INFO",
        bulk_attendance_limit=5,
        roster_page_limit=50,
        history_page_limit=50,
    )


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------
def make_token(user_id: int) -> str:
    """Create a bearer JWT for *user_id*."""
    import jwt

    from rollcall.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode({"sub": str(user_id)}, JWT_SECRET, algorithm=JWT_ALGORITHM)


@pytest.fixture
def auth_headers():
    """Factory fixture: ``auth_headers(user_id, org_id)`` → request headers."""

    def _headers(user_id: int, org_id: int | None = None, activity_id: int | None = None) -> dict:
        headers = {"Authorization": f"Bearer {make_token(user_id)}"}
        if org_id is not None:
            headers["X-Organization-Id"] = str(org_id)
        if activity_id is not None:
            headers["X-Activity-Id"] = str(activity_id)
        return headers

    return _headers


@pytest.fixture
def client(db_engine: Engine, test_config: RollcallConfig):
    """FastAPI TestClient bound to the in-memory engine and test config."""
    from fastapi.testclient import TestClient

    from rollcall.api.deps import get_config, get_engine
    from rollcall.api.main import app

    app.dependency_overrides[get_engine] = lambda: db_engine
    app.dependency_overrides[get_config] = lambda: test_config
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
