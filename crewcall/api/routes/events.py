"""
crewcall.api.routes.events — Events, lifecycle, sign-ups & participation
=========================================================================
"""

from __future__ import annotations

import logging
from datetime import date, datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from crewcall.api.deps import get_context, get_current_actor, get_dispatcher, get_engine, get_now
from crewcall.database.models import Event, EventStatus
from crewcall.engine.context import Actor, EngineContext, require_admin
from crewcall.services import event_service, selection_service, signup_service
from crewcall.services.event_service import EventSpec

router = APIRouter(prefix="/events", tags=["events"])
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class EventBody(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    start_date: date
    end_date: date | None = None
    time: str = Field(min_length=1, max_length=20)
    duration: str | None = None
    location: str = Field(min_length=1, max_length=300)
    description: str | None = None
    notes: str | None = None
    points: int = Field(0, ge=0)
    required_level_id: int
    signup_deadline: datetime | None = None

    def to_spec(self) -> EventSpec:
        return EventSpec(**self.model_dump())


class EventCreate(EventBody):
    status: EventStatus = EventStatus.DRAFT


class StaffIdsBody(BaseModel):
    staff_ids: list[int] = Field(default_factory=list)


def _event_dict(e: Event, actor: Actor) -> dict:
    data = {
        "id": e.id,
        "name": e.name,
        "start_date": e.start_date.isoformat(),
        "end_date": e.end_date.isoformat() if e.end_date else None,
        "time": e.time,
        "duration": e.duration,
        "location": e.location,
        "description": e.description,
        "points": e.points,
        "required_level_id": e.required_level_id,
        "signup_deadline": e.signup_deadline.isoformat() if e.signup_deadline else None,
        "status": e.status,
        "signed_up_count": len(e.signed_up),
        "is_signed_up": actor.id in e.signed_up,
    }
    if actor.is_admin:
        data["notes"] = e.notes
        data["signed_up"] = sorted(e.signed_up)
        data["confirmed"] = sorted(e.confirmed)
        data["points_awarded"] = sorted(e.points_awarded)
    return data


def _with_report(event: Event, report, actor: Actor) -> dict:
    return {"event": _event_dict(event, actor), "notifications": report.to_dict()}


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------
@router.get("")
def list_events(
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
    ctx: EngineContext = Depends(get_context),
):
    events = event_service.list_visible_events(engine, ctx, actor)
    return {"events": [_event_dict(e, actor) for e in events]}


@router.post("", status_code=201)
def create_event(
    body: EventCreate,
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
    ctx: EngineContext = Depends(get_context),
    dispatcher=Depends(get_dispatcher),
):
    spec = EventSpec(**body.model_dump(exclude={"status"}))
    event, report = event_service.create_event(
        engine, ctx, spec, actor=actor, status=body.status, dispatcher=dispatcher,
    )
    return _with_report(event, report, actor)


@router.get("/{event_id}")
def get_event(
    event_id: int,
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
    ctx: EngineContext = Depends(get_context),
):
    event = event_service.get_visible_event(engine, ctx, event_id, actor)
    return {"event": _event_dict(event, actor)}


@router.put("/{event_id}")
def update_event(
    event_id: int,
    body: EventBody,
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
):
    event = event_service.update_event(engine, event_id, body.to_spec(), actor=actor)
    return {"event": _event_dict(event, actor)}


@router.delete("/{event_id}", status_code=204)
def delete_event(
    event_id: int,
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
):
    event_service.delete_event(engine, event_id, actor=actor)


@router.post("/{event_id}/publish")
def publish_event(
    event_id: int,
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
    ctx: EngineContext = Depends(get_context),
    dispatcher=Depends(get_dispatcher),
):
    event, report = event_service.publish_event(
        engine, ctx, event_id, actor=actor, dispatcher=dispatcher,
    )
    return _with_report(event, report, actor)


@router.post("/{event_id}/cancel")
def cancel_event(
    event_id: int,
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
    ctx: EngineContext = Depends(get_context),
    dispatcher=Depends(get_dispatcher),
):
    event, report = event_service.cancel_event(
        engine, ctx, event_id, actor=actor, dispatcher=dispatcher,
    )
    return _with_report(event, report, actor)


@router.post("/{event_id}/reinstate")
def reinstate_event(
    event_id: int,
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
    ctx: EngineContext = Depends(get_context),
    dispatcher=Depends(get_dispatcher),
):
    event, report = event_service.reinstate_event(
        engine, ctx, event_id, actor=actor, dispatcher=dispatcher,
    )
    return _with_report(event, report, actor)


@router.post("/{event_id}/close")
def close_event(
    event_id: int,
    body: StaffIdsBody,
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
    ctx: EngineContext = Depends(get_context),
    dispatcher=Depends(get_dispatcher),
):
    """Confirm the approved staff and close; stays open on any failure."""
    result = selection_service.close_event(
        engine, ctx, event_id, body.staff_ids, actor=actor, dispatcher=dispatcher,
    )
    return {
        "closed": result.closed,
        "confirmed": result.confirmed,
        "skipped": result.skipped,
        "rejected": result.rejected,
        "ignored": result.ignored,
        "level_ups": result.level_ups,
        "failures": result.failures,
        "notifications": result.notifications.to_dict(),
    }


# ---------------------------------------------------------------------------
# Sign-ups
# ---------------------------------------------------------------------------
@router.get("/{event_id}/signup")
def check_signup(
    event_id: int,
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
    ctx: EngineContext = Depends(get_context),
    now: datetime = Depends(get_now),
):
    decision = signup_service.check_sign_up(engine, ctx, event_id, actor.id, now)
    return decision.to_dict()


@router.post("/{event_id}/signup", status_code=201)
def sign_up(
    event_id: int,
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
    ctx: EngineContext = Depends(get_context),
    now: datetime = Depends(get_now),
):
    signup = signup_service.sign_up(engine, ctx, event_id, actor=actor, now=now)
    return {
        "event_id": signup.event_id,
        "staff_id": signup.staff_id,
        "signed_up_at": signup.signed_up_at.isoformat(),
    }


@router.delete("/{event_id}/signup", status_code=204)
def cancel_signup(
    event_id: int,
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
    ctx: EngineContext = Depends(get_context),
    now: datetime = Depends(get_now),
):
    signup_service.cancel_sign_up(engine, ctx, event_id, actor=actor, now=now)


@router.post("/{event_id}/signups")
def admin_add_signups(
    event_id: int,
    body: StaffIdsBody,
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
    now: datetime = Depends(get_now),
):
    result = signup_service.admin_sign_up(engine, event_id, body.staff_ids, actor=actor, now=now)
    return {
        "added": result.added,
        "already_present": result.already_present,
        "unknown": result.unknown,
    }


# ---------------------------------------------------------------------------
# Participation
# ---------------------------------------------------------------------------
@router.get("/{event_id}/participation")
def get_participation(
    event_id: int,
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
):
    require_admin(actor)
    return selection_service.get_participation(engine, event_id)


@router.post("/{event_id}/participation/{staff_id}")
def confirm_participant(
    event_id: int,
    staff_id: int,
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
    ctx: EngineContext = Depends(get_context),
    dispatcher=Depends(get_dispatcher),
):
    result = selection_service.confirm_one(
        engine, ctx, event_id, staff_id, actor=actor, dispatcher=dispatcher,
    )
    return {
        "event_id": event_id,
        "staff_id": staff_id,
        "awarded": result.awarded,
        "already_awarded": result.already_awarded,
        "leveled_up": result.leveled_up,
        "new_points": result.ledger.new_points if result.ledger else None,
        "new_level": result.ledger.new_level if result.ledger else None,
        "notifications": result.notifications.to_dict(),
    }


@router.post("/{event_id}/participation")
def confirm_all_participants(
    event_id: int,
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
    ctx: EngineContext = Depends(get_context),
    dispatcher=Depends(get_dispatcher),
):
    result = selection_service.confirm_all(
        engine, ctx, event_id, actor=actor, dispatcher=dispatcher,
    )
    return {
        "confirmed": result.confirmed,
        "skipped": result.skipped,
        "level_ups": result.level_ups,
        "failures": result.failures,
        "notifications": result.notifications.to_dict(),
    }
