"""
crewcall.engine.context — Explicit Engine Context & Actor
==========================================================

The ladder and the integration toggles are read once per request and
handed to every engine operation, instead of being looked up from
module-level state.  Tests build a context by hand; production code uses
:func:`crewcall.services.settings_service.load_context`.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date, datetime
from zoneinfo import ZoneInfo

from crewcall.engine.errors import Forbidden
from crewcall.engine.ladder import LevelLadder


class Role(enum.StrEnum):
    ADMIN = "admin"
    STAFF = "staff"


@dataclass(frozen=True, slots=True)
class Actor:
    """Authenticated caller, as supplied by the identity collaborator."""

    id: int
    role: Role = Role.STAFF

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def require_admin(actor: Actor) -> None:
    """Reject non-admin callers with :class:`Forbidden`."""
    if not actor.is_admin:
        raise Forbidden("Administrator role required")


def require_self_or_admin(actor: Actor, staff_id: int) -> None:
    if not actor.is_admin and actor.id != staff_id:
        raise Forbidden("Staff may only act on their own record")


@dataclass(frozen=True, slots=True)
class EngineContext:
    """Everything an engine decision may depend on besides its arguments."""

    ladder: LevelLadder
    chat_connected: bool = False
    timezone: str = "UTC"

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def local_date(self, now: datetime) -> date:
        """Calendar date of *now* in the configured timezone.

        Naive datetimes are treated as already local.
        """
        if now.tzinfo is None:
            return now.date()
        return now.astimezone(self.tz).date()
