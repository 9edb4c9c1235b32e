"""
crewcall.services.signup_service — Sign-up Persistence
=======================================================

Wraps the pure admission rules of :mod:`crewcall.engine.admission` in a
transaction.  The composite primary key on ``event_signups`` is the last
line against duplicates: a concurrent second insert is caught with a
SAVEPOINT and reported as :class:`AlreadySignedUp`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crewcall.database.models import AdminActionType, EventSignup, EventStatus, StaffMember
from crewcall.engine.admission import AdmissionDecision, can_cancel_sign_up, can_sign_up
from crewcall.engine.context import Actor, EngineContext, require_admin
from crewcall.engine.errors import AlreadySignedUp, EventNotOpen, NotFound
from crewcall.services.audit import log_admin_action
from crewcall.services.event_service import load_event

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


@dataclass
class BulkSignupResult:
    added: list[int] = field(default_factory=list)
    already_present: list[int] = field(default_factory=list)
    unknown: list[int] = field(default_factory=list)


def _load_staff(session: Session, staff_id: int) -> StaffMember:
    staff = session.get(StaffMember, staff_id)
    if staff is None:
        raise NotFound(f"Staff member {staff_id} not found")
    return staff


def check_sign_up(
    engine: Engine, ctx: EngineContext, event_id: int, staff_id: int, now: datetime
) -> AdmissionDecision:
    """Dry-run admission check (drives the sign-up button state)."""
    with Session(engine) as session:
        event = load_event(session, event_id)
        staff = _load_staff(session, staff_id)
        return can_sign_up(event, staff, now, ctx)


def sign_up(
    engine: Engine, ctx: EngineContext, event_id: int, *, actor: Actor, now: datetime
) -> EventSignup:
    """The calling staff member signs up for *event_id*."""
    with Session(engine, expire_on_commit=False) as session:
        event = load_event(session, event_id)
        staff = _load_staff(session, actor.id)
        can_sign_up(event, staff, now, ctx).raise_if_denied(
            f"Cannot sign up for '{event.name}'"
        )

        signup = EventSignup(event_id=event_id, staff_id=staff.id, signed_up_at=now)
        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(signup)
                session.flush()
        except IntegrityError:
            raise AlreadySignedUp(f"Already signed up for '{event.name}'") from None
        session.commit()

    logger.info("Staff %d signed up for event %d", actor.id, event_id)
    return signup


def cancel_sign_up(
    engine: Engine, ctx: EngineContext, event_id: int, *, actor: Actor, now: datetime
) -> None:
    """The calling staff member withdraws.  Ledger history is untouched."""
    with Session(engine) as session:
        event = load_event(session, event_id)
        staff = _load_staff(session, actor.id)
        if event.status == EventStatus.CLOSED:
            raise EventNotOpen(f"'{event.name}' is closed")
        can_cancel_sign_up(event, staff, now, ctx).raise_if_denied(
            f"Cannot cancel sign-up for '{event.name}'"
        )
        signup = session.get(EventSignup, (event_id, staff.id))
        session.delete(signup)
        session.commit()

    logger.info("Staff %d cancelled sign-up for event %d", actor.id, event_id)


def admin_sign_up(
    engine: Engine,
    event_id: int,
    staff_ids: list[int],
    *,
    actor: Actor,
    now: datetime,
) -> BulkSignupResult:
    """Trusted override: add staff regardless of deadline and level.

    The event must still be ``open``; existing sign-ups are left alone.
    """
    require_admin(actor)
    result = BulkSignupResult()
    with Session(engine) as session:
        event = load_event(session, event_id)
        if event.status != EventStatus.OPEN:
            raise EventNotOpen(f"'{event.name}' is not open for sign-ups")

        present = event.signed_up
        for staff_id in dict.fromkeys(staff_ids):
            if staff_id in present:
                result.already_present.append(staff_id)
                continue
            if session.get(StaffMember, staff_id) is None:
                result.unknown.append(staff_id)
                continue
            try:
                with session.begin_nested():
                    session.add(EventSignup(
                        event_id=event_id,
                        staff_id=staff_id,
                        signed_up_at=now,
                        added_by_admin=actor.id,
                    ))
                    session.flush()
            except IntegrityError:
                result.already_present.append(staff_id)
                continue
            result.added.append(staff_id)

        if result.added:
            log_admin_action(
                session,
                actor_id=actor.id,
                action_type=AdminActionType.BULK_SIGNUP,
                target_table="event_signups",
                target_id=event_id,
                before={"signed_up": sorted(present)},
                after={"signed_up": sorted(present | set(result.added))},
            )
        session.commit()

    logger.info(
        "Admin %d added %d staff to event %d (%d already present)",
        actor.id, len(result.added), event_id, len(result.already_present),
    )
    return result
