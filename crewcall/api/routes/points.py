"""
crewcall.api.routes.points — Manual adjustments & points log
=============================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from crewcall.api.deps import get_context, get_current_actor, get_dispatcher, get_engine
from crewcall.engine.context import Actor, EngineContext, require_admin
from crewcall.services import ledger_service

router = APIRouter(prefix="/points", tags=["points"])


class AdjustmentBody(BaseModel):
    staff_id: int
    delta: int
    reason: str = Field(max_length=500)


@router.post("/adjustments", status_code=201)
def adjust_points(
    body: AdjustmentBody,
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
    ctx: EngineContext = Depends(get_context),
    dispatcher=Depends(get_dispatcher),
):
    result = ledger_service.adjust_points(
        engine, ctx,
        staff_id=body.staff_id,
        delta=body.delta,
        reason=body.reason,
        actor=actor,
        dispatcher=dispatcher,
    )
    return {
        "adjustment_id": result.adjustment_id,
        "staff_id": result.staff_id,
        "delta": result.delta,
        "old_points": result.old_points,
        "new_points": result.new_points,
        "old_level": result.old_level,
        "new_level": result.new_level,
        "leveled_up": result.leveled_up,
        "leveled_down": result.leveled_down,
        "notifications": result.notifications.to_dict(),
    }


@router.get("/adjustments")
def list_adjustments(
    staff_id: int | None = Query(None),
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
):
    rows = ledger_service.list_adjustments(engine, actor, staff_id=staff_id)
    return {
        "entries": [
            {
                "id": r.id,
                "staff_id": r.staff_id,
                "delta": r.delta,
                "reason": r.reason,
                "kind": r.kind,
                "actor_id": r.actor_id,
                "event_id": r.event_id,
                "timestamp": r.timestamp.isoformat() if r.timestamp else None,
            }
            for r in rows
        ],
    }


@router.post("/rebuild")
def rebuild_totals(
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
    ctx: EngineContext = Depends(get_context),
):
    """Recompute every staff total from the ledger."""
    require_admin(actor)
    return {"corrected": ledger_service.rebuild_all(engine, ctx)}
