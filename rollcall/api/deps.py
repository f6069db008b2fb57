"""
rollcall.api.deps — FastAPI dependency injection
=================================================

Resolves the :class:`CallerContext` every route runs under:

* ``Authorization: Bearer <jwt>``   → user id (``sub`` claim)
* ``X-Organization-Id``             → active organization
* ``X-Activity-Id`` (optional)      → activity sub-scope
* ``memberships`` row               → role (non-member → 403)
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine, select

from rollcall.config import RollcallConfig, load_config
from rollcall.database.engine import create_db_engine, transaction
from rollcall.database.models import Membership
from rollcall.errors import BadRequestError, ForbiddenError
from rollcall.services.scope import CallerContext

logger = logging.getLogger(__name__)

_WEAK_SECRETS = frozenset({
    "rollcall-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> RollcallConfig:
    return load_config(os.getenv("ROLLCALL_CONFIG", "config.yaml"))


def get_current_user_id(
    authorization: Annotated[str | None, Header()] = None,
) -> int:
    """Validate the bearer JWT and return its ``sub`` as a user id. 401 if invalid."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token subject")


def _lookup_role(engine: Engine, organization_id: int, user_id: int) -> str | None:
    with transaction(engine) as session:
        return session.scalar(
            select(Membership.role).where(
                Membership.organization_id == organization_id,
                Membership.user_id == user_id,
            )
        )


def get_caller(
    user_id: Annotated[int, Depends(get_current_user_id)],
    engine: Annotated[Engine, Depends(get_engine)],
    x_organization_id: Annotated[int | None, Header()] = None,
    x_activity_id: Annotated[int | None, Header()] = None,
) -> CallerContext:
    """Build the caller context for the active organization.

    Raises :class:`BadRequestError` without an ``X-Organization-Id`` header and
    :class:`ForbiddenError` when the user is not a member of it.
    """
    if x_organization_id is None:
        raise BadRequestError("X-Organization-Id header required")
    role = _lookup_role(engine, x_organization_id, user_id)
    if role is None:
        logger.info("User %d denied: not a member of org %d", user_id, x_organization_id)
        raise ForbiddenError("You are not a member of this organization")
    return CallerContext(
        user_id=user_id,
        organization_id=x_organization_id,
        role=role,
        activity_id=x_activity_id,
    )


Caller = Annotated[CallerContext, Depends(get_caller)]
DbEngine = Annotated[Engine, Depends(get_engine)]
Config = Annotated[RollcallConfig, Depends(get_config)]
