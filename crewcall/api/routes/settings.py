"""
crewcall.api.routes.settings — Settings, integrations & audit log
==================================================================
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from crewcall.api.deps import get_current_actor, get_dispatcher, get_engine
from crewcall.database.models import AdminLog
from crewcall.engine.context import Actor, require_admin
from crewcall.services import settings_service
from crewcall.services.notification_service import verify_telegram_bot

router = APIRouter(prefix="/admin", tags=["admin"])
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class SettingUpdate(BaseModel):
    key: str
    value: Any
    category: str | None = None
    description: str | None = None


class ChatIntegrationBody(BaseModel):
    connected: bool


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------
@router.get("/settings")
def get_all_settings(
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
):
    require_admin(actor)
    rows = settings_service.get_all_settings(engine)
    return {
        "settings": [
            {
                "key": r.key,
                "value": json.loads(r.value_json) if r.value_json else None,
                "category": r.category,
                "description": r.description,
                "updated_at": r.updated_at.isoformat() if r.updated_at else None,
            }
            for r in rows
        ],
    }


@router.put("/settings")
def update_settings(
    body: list[SettingUpdate],
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
):
    items = [
        {
            "key": s.key,
            "value": s.value,
            **({"category": s.category} if s.category else {}),
            **({"description": s.description} if s.description else {}),
        }
        for s in body
    ]
    count = settings_service.bulk_upsert(engine, items, actor=actor)
    return {"updated": count}


# ---------------------------------------------------------------------------
# Integrations
# ---------------------------------------------------------------------------
@router.get("/integrations")
def integration_status(
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
    dispatcher=Depends(get_dispatcher),
):
    require_admin(actor)
    return settings_service.get_integration_status(engine, dispatcher)


@router.put("/integrations/chat")
def set_chat_integration(
    body: ChatIntegrationBody,
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
    dispatcher=Depends(get_dispatcher),
):
    """Connect (after verifying the bot token) or disconnect the chat bot."""
    require_admin(actor)
    bot_name = ""
    if body.connected:
        bot_name = verify_telegram_bot(os.getenv("TELEGRAM_BOT_TOKEN", "").strip())
        if bot_name is None:
            raise HTTPException(400, "Telegram bot token is missing or was rejected")
    settings_service.set_chat_integration(
        engine, connected=body.connected, bot_name=bot_name, actor=actor,
    )
    return settings_service.get_integration_status(engine, dispatcher)


# ---------------------------------------------------------------------------
# Audit Log
# ---------------------------------------------------------------------------
@router.get("/audit")
def get_audit_log(
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
):
    """Paginated admin audit log."""
    require_admin(actor)
    with Session(engine) as session:
        total = session.scalar(select(func.count()).select_from(AdminLog)) or 0
        offset = (page - 1) * page_size
        rows = session.scalars(
            select(AdminLog)
            .order_by(AdminLog.timestamp.desc(), AdminLog.id.desc())
            .offset(offset)
            .limit(page_size)
        ).all()

        return {
            "total": total,
            "page": page,
            "page_size": page_size,
            "entries": [
                {
                    "id": r.id,
                    "actor_id": r.actor_id,
                    "action_type": r.action_type,
                    "target_table": r.target_table,
                    "target_id": r.target_id,
                    "before_snapshot": r.before_snapshot,
                    "after_snapshot": r.after_snapshot,
                    "reason": r.reason,
                    "timestamp": r.timestamp.isoformat() if r.timestamp else None,
                }
                for r in rows
            ],
        }
