"""
rollcall.database.engine — Database Connection, Transactions & Async Helper
============================================================================

Every logical action in Rollcall ("join", "cancel and promote", "reschedule")
is one call to :func:`transaction`: a fresh :class:`Session`, committed on
success, rolled back on any exception, with storage errors classified before
they leave this module.

Isolation:
    Services lock the affected session row with ``SELECT … FOR UPDATE`` before
    they count participations.  PostgreSQL honours the lock; SQLite ignores
    ``FOR UPDATE``, so SQLite engines built here open every transaction with
    ``BEGIN IMMEDIATE`` instead, which takes the database write lock up front.
    Either way two joins racing for the last slot are serialized.

Usage::

    from rollcall.database.engine import create_db_engine, init_db, transaction

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    with transaction(engine) as session:
        session.add(Organization(name="Padel Club", slug="padel"))

    # Inside an async route:
    record = await run_db(join_session, engine, ctx, session_id)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from rollcall.database.models import Base
from rollcall.errors import ConflictError, InternalError, RollcallError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

_IN_MEMORY_SQLITE_URLS = frozenset({"sqlite://", "sqlite:///:memory:"})


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(url: str | None = None) -> Engine:
    """Build a SQLAlchemy :class:`Engine` for *url* or ``DATABASE_URL``.

    PostgreSQL pool sizing:
    * ``pool_size=5`` — five persistent connections.
    * ``max_overflow=10`` — up to 10 extra connections under load.
    * ``pool_timeout=10`` — fail after 10 s if no connection is available.
    * ``pool_recycle=3600`` — recycle connections after 1 hour.

    SQLite URLs (local runs and tests) get thread-safe connect args, a shared
    single connection for in-memory databases, and the ``BEGIN IMMEDIATE``
    write lock from :func:`install_sqlite_write_lock`.

    Raises
    ------
    RuntimeError
        If neither *url* nor ``DATABASE_URL`` is set.
    """
    url = url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    if url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False, "timeout": 30}}
        if url in _IN_MEMORY_SQLITE_URLS:
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, echo=False, **kwargs)
        install_sqlite_write_lock(engine)
    else:
        engine = create_engine(
            url,
            echo=False,        # Set True for SQL debugging
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,   # Reconnect stale connections automatically
            pool_timeout=10,      # Fail after 10s instead of hanging forever
            pool_recycle=3600,    # Recycle connections after 1 hour
        )
    logger.info("Database engine created → %s", engine.url.host or engine.url.database)
    return engine


def install_sqlite_write_lock(engine: Engine) -> None:
    """Make every SQLite transaction start with ``BEGIN IMMEDIATE``.

    pysqlite normally defers ``BEGIN`` until the first write, which lets two
    transactions both read a count before either writes.  Taking over
    transaction control (``isolation_level = None``) and emitting our own
    ``BEGIN IMMEDIATE`` acquires the write lock before the first read.  This
    also makes SAVEPOINTs behave.
    """

    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`rollcall.database.models`.

    .. note::

        In production the schema is managed by Alembic (``alembic upgrade
        head``).  ``create_all`` is retained for dev/test environments where
        Alembic may not have run.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")


# ---------------------------------------------------------------------------
# Transaction helper
# ---------------------------------------------------------------------------
@contextmanager
def transaction(engine: Engine) -> Iterator[Session]:
    """Yield a :class:`Session` that commits on success and rolls back on error.

    Error classification on the way out:

    * :class:`RollcallError` — re-raised untouched (business rule rejections).
    * :class:`IntegrityError` — a uniqueness race the pre-checks could not
      see; surfaced as :class:`ConflictError`.
    * any other :class:`SQLAlchemyError` — logged with traceback and wrapped
      as an opaque :class:`InternalError`.
    """
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
        session.commit()
    except RollcallError:
        session.rollback()
        raise
    except IntegrityError as exc:
        session.rollback()
        logger.warning("Integrity violation rolled back: %s", exc.orig)
        raise ConflictError("The change conflicts with an existing record") from exc
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("Storage failure rolled back")
        raise InternalError() from exc
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** database function on a background thread.

    Async routes call every service through this wrapper so the event loop
    is never blocked by a query or a lock wait::

        result = await run_db(join_session, engine, ctx, session_id)
    """
    return await asyncio.to_thread(func, *args, **kwargs)
