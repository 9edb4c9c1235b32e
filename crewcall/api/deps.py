"""
crewcall.api.deps — FastAPI dependency injection
=================================================

Identity is issued elsewhere; the API only verifies the bearer token
and turns its ``sub`` / ``role`` claims into an :class:`Actor`.
"""

from __future__ import annotations

import os
from datetime import UTC, datetime
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from crewcall.config import CrewcallConfig, load_config
from crewcall.database.engine import create_db_engine
from crewcall.engine.context import Actor, EngineContext, Role
from crewcall.services.notification_service import NotificationDispatcher, build_dispatcher
from crewcall.services.settings_service import load_context

_WEAK_SECRETS = frozenset({
    "crewcall-dev-secret-change-me",
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
def get_config() -> CrewcallConfig:
    return load_config()


@lru_cache(maxsize=1)
def get_dispatcher() -> NotificationDispatcher:
    return build_dispatcher(get_config())


def get_context(
    engine: Annotated[Engine, Depends(get_engine)],
    cfg: Annotated[CrewcallConfig, Depends(get_config)],
) -> EngineContext:
    """Fresh ladder + integration snapshot for this request."""
    return load_context(engine, cfg)


def get_now() -> datetime:
    return datetime.now(UTC)


def get_current_actor(
    authorization: Annotated[str | None, Header()] = None,
) -> Actor:
    """Validate the JWT and return the caller.  Raises 401 if invalid."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
        actor = Actor(id=int(payload["sub"]), role=Role(payload.get("role", Role.STAFF)))
    except (InvalidTokenError, KeyError, ValueError):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    return actor


def create_token(actor: Actor, ttl_seconds: int = 3600) -> str:
    """Mint a token for *actor* (used by tests and local tooling)."""
    now = int(datetime.now(UTC).timestamp())
    payload = {
        "sub": str(actor.id),
        "role": actor.role.value,
        "iat": now,
        "exp": now + ttl_seconds,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)
