"""
crewcall.api.routes.staff — Staff records, status & preferences
================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from crewcall.api.deps import get_context, get_current_actor, get_dispatcher, get_engine
from crewcall.constants import Channel
from crewcall.database.models import StaffMember, StaffStatus
from crewcall.engine.context import Actor, EngineContext
from crewcall.services import staff_service

router = APIRouter(prefix="/staff", tags=["staff"])


class StaffCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: str = Field(min_length=3, max_length=320)
    phone: str | None = None
    chat_id: str | None = None
    status: StaffStatus = StaffStatus.PENDING


class StaffUpdate(BaseModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    chat_id: str | None = None
    notify_new_events: bool | None = None
    notify_points: bool | None = None
    notify_level_up: bool | None = None


class StatusBody(BaseModel):
    status: StaffStatus


class MessageChannelBody(BaseModel):
    channel: Channel = Channel.CHAT


def _staff_dict(s: StaffMember, ctx: EngineContext) -> dict:
    prefs = s.preferences
    return {
        "id": s.id,
        "name": s.name,
        "email": s.email,
        "phone": s.phone,
        "chat_id": s.chat_id,
        "status": s.status,
        **staff_service.progress(s, ctx),
        "preferences": {
            "notify_new_events": prefs.notify_new_events if prefs else True,
            "notify_points": prefs.notify_points if prefs else True,
            "notify_level_up": prefs.notify_level_up if prefs else True,
        },
    }


@router.get("")
def list_staff(
    status: StaffStatus | None = Query(None),
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
    ctx: EngineContext = Depends(get_context),
):
    rows = staff_service.list_staff(engine, actor=actor, status=status)
    return {"staff": [_staff_dict(s, ctx) for s in rows]}


@router.post("", status_code=201)
def create_staff(
    body: StaffCreate,
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
    ctx: EngineContext = Depends(get_context),
):
    staff = staff_service.create_staff(
        engine, ctx,
        name=body.name, email=body.email, phone=body.phone,
        chat_id=body.chat_id, status=body.status, actor=actor,
    )
    return _staff_dict(staff, ctx)


@router.get("/me")
def get_me(
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
    ctx: EngineContext = Depends(get_context),
):
    return _staff_dict(staff_service.get_staff(engine, actor.id, actor=actor), ctx)


@router.get("/{staff_id}")
def get_staff(
    staff_id: int,
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
    ctx: EngineContext = Depends(get_context),
):
    return _staff_dict(staff_service.get_staff(engine, staff_id, actor=actor), ctx)


@router.patch("/{staff_id}")
def update_staff(
    staff_id: int,
    body: StaffUpdate,
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
    ctx: EngineContext = Depends(get_context),
):
    changes = body.model_dump(exclude_unset=True)
    staff = staff_service.update_staff(engine, staff_id, changes, actor=actor)
    return _staff_dict(staff, ctx)


@router.put("/{staff_id}/status")
def set_status(
    staff_id: int,
    body: StatusBody,
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
    ctx: EngineContext = Depends(get_context),
):
    staff = staff_service.set_status(engine, staff_id, body.status, actor=actor)
    return _staff_dict(staff, ctx)


@router.delete("/{staff_id}", status_code=204)
def delete_staff(
    staff_id: int,
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
):
    """Remove a staff record with no ledger history."""
    staff_service.delete_staff(engine, staff_id, actor=actor)


@router.post("/{staff_id}/test-message")
def send_test_message(
    staff_id: int,
    body: MessageChannelBody | None = None,
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
    ctx: EngineContext = Depends(get_context),
    dispatcher=Depends(get_dispatcher),
):
    channel = body.channel if body else Channel.CHAT
    report = staff_service.send_test_message(
        engine, ctx, staff_id, actor=actor, dispatcher=dispatcher, channel=channel,
    )
    return {"delivered": bool(report.sent), **report.to_dict()}
