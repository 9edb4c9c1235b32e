"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of crewcall.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

from datetime import UTC, date, datetime, timedelta  # noqa: E402
from unittest.mock import MagicMock  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine, event  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from crewcall.config import CrewcallConfig  # noqa: E402
from crewcall.constants import Channel  # noqa: E402
from crewcall.database.models import (  # noqa: E402
    Base,
    Event,
    EventSignup,
    EventStatus,
    Level,
    StaffMember,
    StaffPreferences,
    StaffStatus,
)
from crewcall.database.seed import seed_defaults  # noqa: E402
from crewcall.engine.context import Actor, Role  # noqa: E402
from crewcall.services.notification_service import NotificationDispatcher  # noqa: E402
from crewcall.services.settings_service import load_context  # noqa: E402

_jsonb_sqlite_registered = False

# Fixed clock for every test: admission rules never read the system time.
NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent)."""
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Crewcall tables.

    JSONB columns are transparently mapped to TEXT for SQLite compatibility.
    Uses StaticPool so all threads share the same in-memory database.
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite defers BEGIN; emit it ourselves so SAVEPOINTs nest correctly
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_conn, _record):
        dbapi_conn.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def engine(db_engine: Engine) -> Engine:
    """Engine with default settings and the Gold/Silver/Bronze ladder."""
    seed_defaults(db_engine)
    return db_engine


@pytest.fixture
def ctx(engine):
    return load_context(engine)


@pytest.fixture
def levels(engine) -> dict[str, int]:
    """Level name → id for the seeded ladder."""
    with Session(engine) as session:
        return {lvl.name: lvl.id for lvl in session.query(Level).all()}


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def admin() -> Actor:
    return Actor(id=9000, role=Role.ADMIN)


@pytest.fixture
def make_staff(engine, levels):
    """Factory: insert an active staff member (points via the ledger only)."""
    counter = iter(range(1, 10_000))

    def _make(
        name: str | None = None,
        *,
        level: str = "Bronze",
        email: str | None = None,
        chat_id: str | None = None,
        status: StaffStatus = StaffStatus.ACTIVE,
        preferences: dict | None = None,
    ) -> int:
        n = next(counter)
        with Session(engine) as session:
            staff = StaffMember(
                name=name or f"Staff {n}",
                email=email or f"staff{n}@example.com",
                chat_id=chat_id,
                status=status.value,
                points=0,
                level_id=levels[level],
            )
            staff.preferences = StaffPreferences(**(preferences or {}))
            session.add(staff)
            session.commit()
            return staff.id

    return _make


@pytest.fixture
def make_event(engine, levels):
    """Factory: insert an event directly in the given status."""

    def _make(
        name: str = "Harbor Festival",
        *,
        status: EventStatus = EventStatus.OPEN,
        required_level: str = "Bronze",
        points: int = 50,
        start_date: date | None = None,
        signup_deadline: datetime | None = None,
        signed_up: list[int] | None = None,
    ) -> int:
        with Session(engine) as session:
            row = Event(
                name=name,
                start_date=start_date or (NOW + timedelta(days=7)).date(),
                time="18:00",
                location="Pier 4",
                points=points,
                required_level_id=levels[required_level],
                signup_deadline=signup_deadline,
                status=status.value,
            )
            session.add(row)
            session.flush()
            for staff_id in signed_up or []:
                session.add(EventSignup(
                    event_id=row.id, staff_id=staff_id, signed_up_at=NOW,
                ))
            session.commit()
            return row.id

    return _make


@pytest.fixture
def channels():
    """Mock mail + chat channels that always succeed."""
    mail = MagicMock()
    mail.send.return_value = True
    chat = MagicMock()
    chat.send.return_value = True
    return {Channel.PRIMARY: mail, Channel.CHAT: chat}


@pytest.fixture
def dispatcher(channels) -> NotificationDispatcher:
    return NotificationDispatcher(channels)


@pytest.fixture
def client(engine, dispatcher):
    """FastAPI TestClient bound to the test engine and mock channels.

    Not entered as a context manager, so the lifespan hook (which would
    connect to the configured database) never runs.
    """
    from fastapi.testclient import TestClient

    from crewcall.api.deps import get_config, get_dispatcher, get_engine, get_now
    from crewcall.api.main import app

    app.dependency_overrides[get_engine] = lambda: engine
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_now] = lambda: NOW
    app.dependency_overrides[get_config] = lambda: CrewcallConfig(
        organization_name="Test Crew", dashboard_port=8000,
    )
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


@pytest.fixture
def auth():
    """Factory: Authorization header for an actor."""
    from crewcall.api.deps import create_token

    def _headers(actor_id: int, role: Role = Role.STAFF) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_token(Actor(id=actor_id, role=role))}"}

    return _headers
