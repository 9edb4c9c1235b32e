"""
crewcall.services.level_service — Audited Ladder Mutations
===========================================================

Admin CRUD over the ``levels`` table.  After every mutation:

* ranks are dense ``0..n-1`` again,
* thresholds are non-increasing as rank grows (checked by
  :meth:`LevelLadder.validate`),
* every staff member's materialised level matches their total.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.orm import Session

from crewcall.database.models import AdminActionType, Event, Level, StaffMember
from crewcall.engine.context import Actor, require_admin
from crewcall.engine.errors import InvalidLadder, LevelInUse, NotFound
from crewcall.services.audit import log_admin_action, row_to_dict
from crewcall.services.ledger_service import relevel_all
from crewcall.services.settings_service import load_ladder

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

_NEW_RANK = 10**6  # sorts a freshly created level after its threshold ties


def list_levels(engine: Engine) -> list[Level]:
    with Session(engine) as session:
        rows = session.scalars(select(Level).order_by(Level.rank)).all()
        for r in rows:
            session.expunge(r)
        return list(rows)


def _validate_fields(name: str | None, min_points: int | None) -> None:
    if name is not None and not name.strip():
        raise InvalidLadder("Level name must not be empty")
    if min_points is not None and min_points < 0:
        raise InvalidLadder("Level min_points must be non-negative")


def _assert_unique_name(session: Session, name: str, exclude_id: int | None = None) -> None:
    stmt = select(Level.id).where(Level.name == name)
    if exclude_id is not None:
        stmt = stmt.where(Level.id != exclude_id)
    if session.scalar(stmt) is not None:
        raise InvalidLadder(f"A level named '{name}' already exists")


def _normalize_ranks(session: Session) -> None:
    """Re-derive ranks from thresholds: highest ``min_points`` → rank 0.

    Ties keep their previous relative order.
    """
    levels = session.scalars(select(Level)).all()
    ordered = sorted(levels, key=lambda lvl: (-lvl.min_points, lvl.rank, lvl.id or 0))
    for rank, lvl in enumerate(ordered):
        lvl.rank = rank
    session.flush()


def _finish(session: Session) -> int:
    """Validate the ladder and re-level staff.  Returns staff rows changed."""
    ladder = load_ladder(session)
    ladder.validate()
    return relevel_all(session, ladder)


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------
def create_level(engine: Engine, *, name: str, min_points: int, actor: Actor) -> Level:
    require_admin(actor)
    _validate_fields(name, min_points)
    name = name.strip()

    with Session(engine, expire_on_commit=False) as session:
        _assert_unique_name(session, name)
        level = Level(name=name, min_points=min_points, rank=_NEW_RANK)
        session.add(level)
        session.flush()
        _normalize_ranks(session)
        relevelled = _finish(session)
        log_admin_action(
            session,
            actor_id=actor.id,
            action_type=AdminActionType.CREATE,
            target_table="levels",
            target_id=level.id,
            before=None,
            after=row_to_dict(level),
        )
        session.commit()

    logger.info(
        "Admin %d created level %r (min %d, rank %d); %d staff re-levelled",
        actor.id, name, min_points, level.rank, relevelled,
    )
    return level


def update_level(
    engine: Engine,
    level_id: int,
    *,
    actor: Actor,
    name: str | None = None,
    min_points: int | None = None,
) -> Level:
    require_admin(actor)
    _validate_fields(name, min_points)

    with Session(engine, expire_on_commit=False) as session:
        level = session.get(Level, level_id)
        if level is None:
            raise NotFound(f"Level {level_id} not found")
        before = row_to_dict(level)
        if name is not None:
            _assert_unique_name(session, name.strip(), exclude_id=level_id)
            level.name = name.strip()
        if min_points is not None:
            level.min_points = min_points
        session.flush()
        _normalize_ranks(session)
        relevelled = _finish(session)
        log_admin_action(
            session,
            actor_id=actor.id,
            action_type=AdminActionType.UPDATE,
            target_table="levels",
            target_id=level_id,
            before=before,
            after=row_to_dict(level),
        )
        session.commit()

    logger.info("Admin %d updated level %d; %d staff re-levelled", actor.id, level_id, relevelled)
    return level


def delete_level(engine: Engine, level_id: int, *, actor: Actor) -> None:
    """Remove a level that no event requires and no staff member holds."""
    require_admin(actor)
    with Session(engine) as session:
        level = session.get(Level, level_id)
        if level is None:
            raise NotFound(f"Level {level_id} not found")

        events_using = session.scalar(
            select(Event.id).where(Event.required_level_id == level_id).limit(1)
        )
        staff_using = session.scalar(
            select(StaffMember.id).where(StaffMember.level_id == level_id).limit(1)
        )
        if events_using is not None or staff_using is not None:
            raise LevelInUse(
                f"Level '{level.name}' is still referenced by "
                f"{'an event' if events_using is not None else 'a staff member'}"
            )

        before = row_to_dict(level)
        session.delete(level)
        session.flush()
        _normalize_ranks(session)
        _finish(session)
        log_admin_action(
            session,
            actor_id=actor.id,
            action_type=AdminActionType.DELETE,
            target_table="levels",
            target_id=level_id,
            before=before,
            after=None,
        )
        session.commit()

    logger.info("Admin %d deleted level %d (%s)", actor.id, level_id, before["name"])


def reorder_level(engine: Engine, level_id: int, direction: str, *, actor: Actor) -> list[Level]:
    """Swap a level with its neighbour.  ``"up"`` means more prestigious.

    Only levels with equal thresholds can actually trade places; any
    other swap breaks monotonicity and raises :class:`InvalidLadder`.
    """
    require_admin(actor)
    if direction not in ("up", "down"):
        raise InvalidLadder(f"Unknown direction {direction!r}; use 'up' or 'down'")

    with Session(engine, expire_on_commit=False) as session:
        levels = list(session.scalars(select(Level).order_by(Level.rank)).all())
        positions = {lvl.id: i for i, lvl in enumerate(levels)}
        if level_id not in positions:
            raise NotFound(f"Level {level_id} not found")
        pos = positions[level_id]
        other = pos - 1 if direction == "up" else pos + 1
        if other < 0 or other >= len(levels):
            raise InvalidLadder(f"Level is already at the {'top' if direction == 'up' else 'bottom'}")

        before = [row_to_dict(lvl) for lvl in levels]
        a, b = levels[pos], levels[other]
        a.rank, b.rank = b.rank, a.rank
        session.flush()
        _finish(session)
        log_admin_action(
            session,
            actor_id=actor.id,
            action_type=AdminActionType.REORDER,
            target_table="levels",
            target_id=level_id,
            before={"levels": before},
            after={"levels": [row_to_dict(lvl) for lvl in levels]},
        )
        session.commit()
        result = sorted(levels, key=lambda lvl: lvl.rank)

    logger.info("Admin %d moved level %d %s", actor.id, level_id, direction)
    return result
