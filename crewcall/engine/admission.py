"""
crewcall.engine.admission — Sign-up & Cancellation Admission Control
=====================================================================

Pure decisions, no DB I/O.  ``now`` is always passed in so the deadline
rules are deterministic under test.

Sign-up checks, in order:

1. the event is ``open``                        → ``EventNotOpen``
2. the sign-up window is still open             → ``DeadlinePassed``
3. the staff member is not already signed up    → ``AlreadySignedUp``
4. the staff member's level meets the event's   → ``LevelNotMet``

The sign-up window closes at the explicit deadline when one is set, and
in any case at the start of the event's calendar day: staff must
register at least one full day before the event.  Cancellation uses the
same window.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from crewcall.database.models import EventStatus
from crewcall.engine.context import EngineContext
from crewcall.engine.errors import ADMISSION_ERRORS, AdmissionReason
from crewcall.engine.ladder import is_eligible

__all__ = [
    "AdmissionDecision",
    "can_cancel_sign_up",
    "can_sign_up",
    "signup_window_closed",
]


@dataclass(frozen=True, slots=True)
class AdmissionDecision:
    allowed: bool
    reason: AdmissionReason | None = None

    @classmethod
    def allow(cls) -> AdmissionDecision:
        return cls(True)

    @classmethod
    def deny(cls, reason: AdmissionReason) -> AdmissionDecision:
        return cls(False, reason)

    def raise_if_denied(self, message: str | None = None) -> None:
        if not self.allowed and self.reason is not None:
            raise ADMISSION_ERRORS[self.reason](message)

    def to_dict(self) -> dict:
        return {"allowed": self.allowed, "reason": self.reason.value if self.reason else None}


def _as_aware(value: datetime, ctx: EngineContext) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=ctx.tz)


def signup_window_closed(event, now: datetime, ctx: EngineContext) -> bool:
    """True once the explicit deadline or the event's calendar day is reached."""
    deadline = event.signup_deadline
    if deadline is not None and _as_aware(now, ctx) >= _as_aware(deadline, ctx):
        return True
    return ctx.local_date(now) >= event.start_date


def can_sign_up(event, staff, now: datetime, ctx: EngineContext) -> AdmissionDecision:
    """Decide whether *staff* may sign up for *event* at *now*.

    *event* needs ``status``, ``start_date``, ``signup_deadline``,
    ``required_level_id`` and ``signed_up``; *staff* needs ``id`` and
    ``level_id``.
    """
    if event.status != EventStatus.OPEN:
        return AdmissionDecision.deny(AdmissionReason.EVENT_NOT_OPEN)
    if signup_window_closed(event, now, ctx):
        return AdmissionDecision.deny(AdmissionReason.DEADLINE_PASSED)
    if staff.id in event.signed_up:
        return AdmissionDecision.deny(AdmissionReason.ALREADY_SIGNED_UP)
    if not is_eligible(ctx.ladder, staff.level_id, event.required_level_id):
        return AdmissionDecision.deny(AdmissionReason.LEVEL_NOT_MET)
    return AdmissionDecision.allow()


def can_cancel_sign_up(
    event, staff, now: datetime, ctx: EngineContext
) -> AdmissionDecision:
    """Decide whether *staff* may withdraw from *event* at *now*."""
    if staff.id not in event.signed_up:
        return AdmissionDecision.deny(AdmissionReason.NOT_SIGNED_UP)
    if signup_window_closed(event, now, ctx):
        return AdmissionDecision.deny(AdmissionReason.DEADLINE_PASSED)
    return AdmissionDecision.allow()
