"""
crewcall.services.selection_service — Confirmation, Awards & Closing
=====================================================================

Turns sign-ups into paid participation.

Each confirmation runs in its own transaction:

1. compare-and-set the sign-up row to ``confirmed + points_awarded``
   (a concurrent confirmer loses the race and sees a no-op),
2. append ``+event.points`` to the ledger inside a SAVEPOINT — the
   partial unique index ``ix_adjustments_participation_once`` rejects a
   second participation award for the same (staff, event),
3. recompute the staff member's total and level,
4. commit, then notify.

Batch operations collect per-staff failures instead of aborting.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from crewcall.constants import NotificationKind, participation_reason
from crewcall.database.models import (
    AdjustmentKind,
    AdminActionType,
    EventSignup,
    EventStatus,
    StaffMember,
)
from crewcall.engine.context import Actor, EngineContext, require_admin
from crewcall.engine.errors import CrewcallError, EventNotOpen, InvalidTransition, NotSignedUp
from crewcall.engine.ledger import LedgerResult
from crewcall.services import templates
from crewcall.services.audit import log_admin_action, row_to_dict
from crewcall.services.event_service import load_event, transition
from crewcall.services.ledger_service import append_entry, notify_result, recompute_staff
from crewcall.services.notification_service import (
    DispatchReport,
    NotificationDispatcher,
    Recipient,
    dispatch,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

CONFIRMABLE_STATUSES = frozenset({EventStatus.OPEN, EventStatus.CLOSED})


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------
@dataclass
class ConfirmationResult:
    event_id: int
    staff_id: int
    awarded: bool                      # points paid by this call
    already_awarded: bool = False      # no-op: paid earlier
    ledger: LedgerResult | None = None
    notifications: DispatchReport = field(default_factory=DispatchReport)

    @property
    def leveled_up(self) -> bool:
        return bool(self.ledger and self.ledger.leveled_up)


@dataclass
class BatchResult:
    event_id: int
    confirmed: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    level_ups: list[int] = field(default_factory=list)
    failures: dict[int, str] = field(default_factory=dict)
    notifications: DispatchReport = field(default_factory=DispatchReport)

    def record(self, result: ConfirmationResult) -> None:
        if result.already_awarded:
            self.skipped.append(result.staff_id)
        else:
            self.confirmed.append(result.staff_id)
        if result.leveled_up:
            self.level_ups.append(result.staff_id)
        self.notifications.merge(result.notifications)


@dataclass
class CloseResult(BatchResult):
    closed: bool = False
    ignored: list[int] = field(default_factory=list)
    rejected: list[int] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Single confirmation
# ---------------------------------------------------------------------------
def confirm_one(
    engine: Engine,
    ctx: EngineContext,
    event_id: int,
    staff_id: int,
    *,
    actor: Actor,
    dispatcher: NotificationDispatcher | None = None,
    now: datetime | None = None,
) -> ConfirmationResult:
    """Confirm one signed-up staff member and pay the event's points.

    Idempotent: a pair that was already paid returns a no-op result.
    """
    require_admin(actor)
    now = now or datetime.now(UTC)

    with Session(engine, expire_on_commit=False) as session:
        event = load_event(session, event_id)
        if event.status not in CONFIRMABLE_STATUSES:
            raise EventNotOpen(f"Cannot confirm participants of a {event.status} event")
        signup = session.get(EventSignup, (event_id, staff_id))
        if signup is None:
            raise NotSignedUp(f"Staff {staff_id} is not signed up for '{event.name}'")
        if signup.points_awarded:
            return ConfirmationResult(event_id, staff_id, awarded=False, already_awarded=True)

        claimed = session.execute(
            update(EventSignup)
            .where(
                EventSignup.event_id == event_id,
                EventSignup.staff_id == staff_id,
                EventSignup.points_awarded.is_(False),
            )
            .values(is_confirmed=True, points_awarded=True)
            .execution_options(synchronize_session=False)
        ).rowcount
        if claimed != 1:
            session.rollback()
            return ConfirmationResult(event_id, staff_id, awarded=False, already_awarded=True)

        staff = session.get(StaffMember, staff_id, with_for_update=True)
        reason = participation_reason(event.name)
        ledger: LedgerResult | None = None
        try:
            with session.begin_nested():   # SAVEPOINT
                ledger = append_entry(
                    session, staff, ctx.ladder,
                    delta=event.points,
                    reason=reason,
                    actor_id=actor.id,
                    kind=AdjustmentKind.EVENT_PARTICIPATION,
                    event_id=event_id,
                    now=now,
                )
        except IntegrityError:
            # Paid before (cancel + re-sign-up); keep the existing entry.
            logger.info(
                "Participation for staff %d in event %d already in ledger",
                staff_id, event_id,
            )
            recompute_staff(session, staff, ctx.ladder)

        log_admin_action(
            session,
            actor_id=actor.id,
            action_type=AdminActionType.UPDATE,
            target_table="event_signups",
            target_id=f"{event_id}:{staff_id}",
            before={"is_confirmed": signup.is_confirmed, "points_awarded": False},
            after={"is_confirmed": True, "points_awarded": True},
            reason=reason,
        )
        recipient = Recipient.from_staff(staff)
        payload = templates.event_payload(event)
        session.commit()

    logger.info(
        "Admin %d confirmed staff %d for event %d (+%d)",
        actor.id, staff_id, event_id, event.points,
    )
    result = ConfirmationResult(event_id, staff_id, awarded=ledger is not None, ledger=ledger)
    result.notifications.merge(
        dispatch(dispatcher, [recipient], NotificationKind.SELECTED, payload, ctx)
    )
    if ledger is not None:
        result.notifications.merge(notify_result(dispatcher, recipient, ledger, reason, ctx))
    return result


def _confirm_many(
    engine: Engine,
    ctx: EngineContext,
    event_id: int,
    staff_ids: list[int],
    result: BatchResult,
    *,
    actor: Actor,
    dispatcher: NotificationDispatcher | None,
    now: datetime | None,
) -> None:
    for staff_id in staff_ids:
        try:
            outcome = confirm_one(
                engine, ctx, event_id, staff_id,
                actor=actor, dispatcher=dispatcher, now=now,
            )
        except CrewcallError as exc:
            logger.warning("Confirmation of staff %d for event %d failed: %s",
                           staff_id, event_id, exc.message)
            result.failures[staff_id] = exc.code
            continue
        except SQLAlchemyError:
            logger.exception("Database error confirming staff %d for event %d",
                             staff_id, event_id)
            result.failures[staff_id] = "DatabaseError"
            continue
        result.record(outcome)


def confirm_all(
    engine: Engine,
    ctx: EngineContext,
    event_id: int,
    *,
    actor: Actor,
    dispatcher: NotificationDispatcher | None = None,
    now: datetime | None = None,
) -> BatchResult:
    """Confirm every signed-up staff member not yet paid."""
    require_admin(actor)
    with Session(engine) as session:
        event = load_event(session, event_id)
        if event.status not in CONFIRMABLE_STATUSES:
            raise EventNotOpen(f"Cannot confirm participants of a {event.status} event")
        signed_up = [s.staff_id for s in event.signups]
        paid = event.points_awarded

    result = BatchResult(event_id=event_id, skipped=[s for s in signed_up if s in paid])
    _confirm_many(
        engine, ctx, event_id, [s for s in signed_up if s not in paid], result,
        actor=actor, dispatcher=dispatcher, now=now,
    )
    logger.info(
        "Confirm-all on event %d: %d confirmed, %d skipped, %d failed",
        event_id, len(result.confirmed), len(result.skipped), len(result.failures),
    )
    return result


# ---------------------------------------------------------------------------
# Closing
# ---------------------------------------------------------------------------
def close_event(
    engine: Engine,
    ctx: EngineContext,
    event_id: int,
    approved_staff_ids: list[int],
    *,
    actor: Actor,
    dispatcher: NotificationDispatcher | None = None,
    now: datetime | None = None,
) -> CloseResult:
    """Confirm the approved participants and move the event to ``closed``.

    If any approved confirmation fails the event stays ``open`` and the
    partial result is returned.  The same happens when another writer
    moved the event out of ``open`` meanwhile.  Rejections are only sent
    once the event actually closed, and never to staff already paid.
    """
    require_admin(actor)
    with Session(engine) as session:
        event = load_event(session, event_id)
        if event.status != EventStatus.OPEN:
            raise InvalidTransition(event.status, EventStatus.CLOSED)
        signed_up = [s.staff_id for s in event.signups]

    approved = set(approved_staff_ids)
    result = CloseResult(
        event_id=event_id,
        ignored=sorted(approved - set(signed_up)),
    )
    _confirm_many(
        engine, ctx, event_id, [s for s in signed_up if s in approved], result,
        actor=actor, dispatcher=dispatcher, now=now,
    )
    if result.failures:
        logger.warning(
            "Event %d left open: %d confirmations failed", event_id, len(result.failures)
        )
        return result

    with Session(engine, expire_on_commit=False) as session:
        event = load_event(session, event_id)
        before = row_to_dict(event)
        try:
            transition(session, event, EventStatus.CLOSED)
        except InvalidTransition as exc:
            logger.warning("Event %d not closed after confirming: %s", event_id, exc.message)
            return result
        log_admin_action(
            session,
            actor_id=actor.id,
            action_type=AdminActionType.TRANSITION,
            target_table="events",
            target_id=event_id,
            before=before,
            after=row_to_dict(event),
        )
        # staff paid by an earlier confirmation were selected, not rejected
        paid = event.points_awarded
        rejected_staff = [
            session.get(StaffMember, s)
            for s in signed_up
            if s not in approved and s not in paid
        ]
        recipients = [Recipient.from_staff(s) for s in rejected_staff if s is not None]
        payload = templates.event_payload(event)
        session.commit()

    result.closed = True
    result.rejected = [r.id for r in recipients]
    result.notifications.merge(
        dispatch(dispatcher, recipients, NotificationKind.REJECTED, payload, ctx)
    )
    logger.info(
        "Admin %d closed event %d: %d confirmed, %d rejected, %d ignored",
        actor.id, event_id, len(result.confirmed), len(result.rejected), len(result.ignored),
    )
    return result


def get_participation(engine: Engine, event_id: int) -> dict[str, list[int]]:
    """Sign-up, confirmation and award sets for one event."""
    with Session(engine) as session:
        event = load_event(session, event_id)
        return {
            "signed_up": sorted(event.signed_up),
            "confirmed": sorted(event.confirmed),
            "points_awarded": sorted(event.points_awarded),
        }
