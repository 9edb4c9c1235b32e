"""
crewcall.api.routes.levels — Level ladder CRUD
===============================================
"""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from crewcall.api.deps import get_current_actor, get_engine
from crewcall.database.models import Level
from crewcall.engine.context import Actor
from crewcall.services import level_service

router = APIRouter(prefix="/levels", tags=["levels"])


class LevelCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    min_points: int = Field(ge=0)


class LevelUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    min_points: int | None = Field(None, ge=0)


class ReorderBody(BaseModel):
    direction: Literal["up", "down"]


def _level_dict(lvl: Level) -> dict:
    return {"id": lvl.id, "name": lvl.name, "min_points": lvl.min_points, "rank": lvl.rank}


@router.get("")
def list_levels(
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
):
    return {"levels": [_level_dict(lvl) for lvl in level_service.list_levels(engine)]}


@router.post("", status_code=201)
def create_level(
    body: LevelCreate,
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
):
    level = level_service.create_level(
        engine, name=body.name, min_points=body.min_points, actor=actor,
    )
    return _level_dict(level)


@router.patch("/{level_id}")
def update_level(
    level_id: int,
    body: LevelUpdate,
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
):
    level = level_service.update_level(
        engine, level_id, actor=actor, name=body.name, min_points=body.min_points,
    )
    return _level_dict(level)


@router.delete("/{level_id}", status_code=204)
def delete_level(
    level_id: int,
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
):
    level_service.delete_level(engine, level_id, actor=actor)


@router.post("/{level_id}/reorder")
def reorder_level(
    level_id: int,
    body: ReorderBody,
    actor: Actor = Depends(get_current_actor),
    engine=Depends(get_engine),
):
    levels = level_service.reorder_level(engine, level_id, body.direction, actor=actor)
    return {"levels": [_level_dict(lvl) for lvl in levels]}
