"""
crewcall.services.event_service — Event CRUD & Lifecycle Transitions
=====================================================================

Every admin mutation follows the audited pattern:
  1. Begin transaction
  2. Read "before" snapshot
  3. Apply change (status changes use compare-and-set)
  4. Write admin_log with before/after JSON
  5. Commit
  6. Fan out notifications

Closing an event lives in :mod:`crewcall.services.selection_service`
because it is part of the confirmation workflow.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from crewcall.constants import NotificationKind
from crewcall.database.models import (
    AdminActionType,
    Event,
    EventStatus,
    Level,
    StaffMember,
    StaffStatus,
)
from crewcall.engine.context import Actor, EngineContext, require_admin
from crewcall.engine.errors import InvalidEventSpec, InvalidTransition, NotFound
from crewcall.engine.ladder import is_eligible
from crewcall.engine.lifecycle import (
    INITIAL_STATUSES,
    VISIBLE_TO_STAFF,
    assert_editable,
    assert_transition,
)
from crewcall.services import templates
from crewcall.services.audit import log_admin_action, row_to_dict
from crewcall.services.notification_service import (
    DispatchReport,
    NotificationDispatcher,
    Recipient,
    dispatch,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Event specification
# ---------------------------------------------------------------------------
@dataclass
class EventSpec:
    """Full set of admin-editable event fields."""

    name: str
    start_date: date
    time: str
    location: str
    required_level_id: int
    points: int = 0
    end_date: date | None = None
    duration: str | None = None
    description: str | None = None
    notes: str | None = None
    signup_deadline: datetime | None = None

    def validate(self) -> None:
        for label in ("name", "time", "location"):
            if not (getattr(self, label) or "").strip():
                raise InvalidEventSpec(f"Event {label} is required")
        if self.points < 0:
            raise InvalidEventSpec("Event points must be non-negative")
        if self.end_date is not None and self.end_date < self.start_date:
            raise InvalidEventSpec("End date must not be before the start date")

    def apply_to(self, event: Event) -> None:
        for key, value in asdict(self).items():
            setattr(event, key, value.strip() if isinstance(value, str) else value)


def _require_level(session: Session, level_id: int) -> None:
    if session.get(Level, level_id) is None:
        raise InvalidEventSpec(f"Required level {level_id} does not exist")


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def load_event(session: Session, event_id: int, *, for_update: bool = False) -> Event:
    stmt = (
        select(Event)
        .where(Event.id == event_id)
        .options(selectinload(Event.signups))
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()
    event = session.scalar(stmt)
    if event is None:
        raise NotFound(f"Event {event_id} not found")
    return event


def get_event(engine: Engine, event_id: int) -> Event:
    with Session(engine, expire_on_commit=False) as session:
        event = load_event(session, event_id)
        session.expunge_all()
        return event


def list_visible_events(
    engine: Engine, ctx: EngineContext, actor: Actor
) -> list[Event]:
    """Admins see every event; staff see open/closed events they qualify for."""
    with Session(engine) as session:
        stmt = (
            select(Event)
            .options(selectinload(Event.signups))
            .order_by(Event.start_date, Event.id)
        )
        if actor.is_admin:
            events = list(session.scalars(stmt).all())
        else:
            staff = session.get(StaffMember, actor.id)
            if staff is None:
                raise NotFound(f"Staff member {actor.id} not found")
            stmt = stmt.where(Event.status.in_([s.value for s in VISIBLE_TO_STAFF]))
            events = [
                e for e in session.scalars(stmt).all()
                if is_eligible(ctx.ladder, staff.level_id, e.required_level_id)
            ]
        session.expunge_all()
        return events


def get_visible_event(
    engine: Engine, ctx: EngineContext, event_id: int, actor: Actor
) -> Event:
    """Single event, hidden from staff exactly as in :func:`list_visible_events`."""
    with Session(engine) as session:
        event = load_event(session, event_id)
        if not actor.is_admin:
            staff = session.get(StaffMember, actor.id)
            visible = (
                staff is not None
                and event.status in VISIBLE_TO_STAFF
                and is_eligible(ctx.ladder, staff.level_id, event.required_level_id)
            )
            if not visible:
                raise NotFound(f"Event {event_id} not found")
        session.expunge_all()
        return event


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------
def transition(session: Session, event: Event, requested: EventStatus) -> None:
    """Compare-and-set ``event.status`` to *requested*.

    Raises :class:`InvalidTransition` if the move is illegal or another
    writer changed the status since *event* was loaded.
    """
    current = event.status
    assert_transition(current, requested)
    result = session.execute(
        update(Event)
        .where(Event.id == event.id, Event.status == current)
        .values(status=requested.value, updated_at=datetime.now(UTC))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        session.refresh(event)
        raise InvalidTransition(event.status, requested)
    event.status = requested.value


def _eligible_recipients(session: Session, event: Event, ctx: EngineContext) -> list[Recipient]:
    staff = session.scalars(
        select(StaffMember)
        .where(StaffMember.status == StaffStatus.ACTIVE.value)
        .options(selectinload(StaffMember.preferences))
    ).all()
    return [
        Recipient.from_staff(s)
        for s in staff
        if is_eligible(ctx.ladder, s.level_id, event.required_level_id)
    ]


def _signed_up_recipients(session: Session, event: Event) -> list[Recipient]:
    ids = event.signed_up
    if not ids:
        return []
    staff = session.scalars(
        select(StaffMember)
        .where(StaffMember.id.in_(ids))
        .options(selectinload(StaffMember.preferences))
    ).all()
    return [Recipient.from_staff(s) for s in staff]


def _change_status(
    engine: Engine,
    ctx: EngineContext,
    event_id: int,
    requested: EventStatus,
    *,
    actor: Actor,
    audience: str,
    kind: NotificationKind,
    dispatcher: NotificationDispatcher | None,
) -> tuple[Event, DispatchReport]:
    require_admin(actor)
    with Session(engine, expire_on_commit=False) as session:
        event = load_event(session, event_id)
        before = row_to_dict(event)
        transition(session, event, requested)
        log_admin_action(
            session,
            actor_id=actor.id,
            action_type=AdminActionType.TRANSITION,
            target_table="events",
            target_id=event_id,
            before=before,
            after=row_to_dict(event),
        )
        if audience == "eligible":
            recipients = _eligible_recipients(session, event, ctx)
        else:
            recipients = _signed_up_recipients(session, event)
        session.commit()
        session.expunge_all()

    logger.info(
        "Admin %d moved event %d (%s) %s -> %s",
        actor.id, event_id, event.name, before["status"], requested,
    )
    report = dispatch(dispatcher, recipients, kind, templates.event_payload(event), ctx)
    return event, report


def publish_event(engine, ctx, event_id, *, actor, dispatcher=None):
    """``draft → open``; announces the event to all eligible staff."""
    return _change_status(
        engine, ctx, event_id, EventStatus.OPEN, actor=actor,
        audience="eligible", kind=NotificationKind.CREATED, dispatcher=dispatcher,
    )


def cancel_event(engine, ctx, event_id, *, actor, dispatcher=None):
    """``open → cancelled``; sign-ups are kept for a possible reinstatement."""
    return _change_status(
        engine, ctx, event_id, EventStatus.CANCELLED, actor=actor,
        audience="signed_up", kind=NotificationKind.CANCELLED, dispatcher=dispatcher,
    )


def reinstate_event(engine, ctx, event_id, *, actor, dispatcher=None):
    """``cancelled → open``; sign-ups and confirmations are untouched."""
    event = get_event(engine, event_id)
    if event.status != EventStatus.CANCELLED:
        raise InvalidTransition(event.status, "reinstated")
    return _change_status(
        engine, ctx, event_id, EventStatus.OPEN, actor=actor,
        audience="signed_up", kind=NotificationKind.REINSTATED, dispatcher=dispatcher,
    )


# ---------------------------------------------------------------------------
# Create / update / delete
# ---------------------------------------------------------------------------
def create_event(
    engine: Engine,
    ctx: EngineContext,
    spec: EventSpec,
    *,
    actor: Actor,
    status: EventStatus = EventStatus.DRAFT,
    dispatcher: NotificationDispatcher | None = None,
) -> tuple[Event, DispatchReport]:
    """Create an event in ``draft`` or directly ``open``."""
    require_admin(actor)
    status = EventStatus(status)
    if status not in INITIAL_STATUSES:
        raise InvalidTransition("new", status)
    spec.validate()

    with Session(engine, expire_on_commit=False) as session:
        _require_level(session, spec.required_level_id)
        event = Event(status=status.value, created_by=actor.id)
        spec.apply_to(event)
        session.add(event)
        session.flush()
        log_admin_action(
            session,
            actor_id=actor.id,
            action_type=AdminActionType.CREATE,
            target_table="events",
            target_id=event.id,
            before=None,
            after=row_to_dict(event),
        )
        recipients = (
            _eligible_recipients(session, event, ctx)
            if status == EventStatus.OPEN else []
        )
        session.commit()
        event = load_event(session, event.id)
        session.expunge_all()

    logger.info("Admin %d created event %d (%s) as %s", actor.id, event.id, event.name, status)
    report = DispatchReport()
    if status == EventStatus.OPEN:
        report = dispatch(
            dispatcher, recipients, NotificationKind.CREATED,
            templates.event_payload(event), ctx,
        )
    return event, report


def update_event(engine: Engine, event_id: int, spec: EventSpec, *, actor: Actor) -> Event:
    """Full-field replace.  Status, sign-ups and confirmations are untouched."""
    require_admin(actor)
    spec.validate()
    with Session(engine, expire_on_commit=False) as session:
        event = load_event(session, event_id, for_update=True)
        assert_editable(event.status)
        _require_level(session, spec.required_level_id)
        before = row_to_dict(event)
        spec.apply_to(event)
        event.updated_at = datetime.now(UTC)
        session.flush()
        log_admin_action(
            session,
            actor_id=actor.id,
            action_type=AdminActionType.UPDATE,
            target_table="events",
            target_id=event_id,
            before=before,
            after=row_to_dict(event),
        )
        session.commit()
        session.expunge_all()

    logger.info("Admin %d updated event %d", actor.id, event_id)
    return event


def delete_event(engine: Engine, event_id: int, *, actor: Actor) -> None:
    """Irreversible; sign-ups go with the event, ledger history stays."""
    require_admin(actor)
    with Session(engine) as session:
        event = load_event(session, event_id)
        before = row_to_dict(event)
        before["signed_up"] = sorted(event.signed_up)
        session.delete(event)
        log_admin_action(
            session,
            actor_id=actor.id,
            action_type=AdminActionType.DELETE,
            target_table="events",
            target_id=event_id,
            before=before,
            after=None,
        )
        session.commit()

    logger.info("Admin %d deleted event %d (%s)", actor.id, event_id, before["name"])
