"""
crewcall.services.ledger_service — Points Ledger Persistence
=============================================================

Append-only ``point_adjustments`` plus the materialised total/level on
``staff``.  :func:`recompute_staff` is the only code path that writes
``StaffMember.points`` or ``StaffMember.level_id``.

Participation awards go through :func:`append_entry` from the selection
service inside its own transaction; manual adjustments go through
:func:`adjust_points`.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from crewcall.constants import NotificationKind
from crewcall.database.models import AdjustmentKind, PointAdjustment, StaffMember
from crewcall.engine.context import Actor, EngineContext, require_admin, require_self_or_admin
from crewcall.engine.errors import InvalidReason, NotFound
from crewcall.engine.ladder import LevelLadder
from crewcall.engine.ledger import LedgerResult, Standing, derive_total, validate_reason
from crewcall.services.notification_service import (
    DispatchReport,
    NotificationDispatcher,
    Recipient,
    dispatch,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


@dataclass
class AdjustmentResult(LedgerResult):
    """A manual adjustment plus what its post-commit notifications did."""

    notifications: DispatchReport = field(default_factory=DispatchReport)


def ledger_sum(session: Session, staff_id: int) -> int:
    """Raw Σ delta for one staff member (may be negative)."""
    return session.scalar(
        select(func.coalesce(func.sum(PointAdjustment.delta), 0)).where(
            PointAdjustment.staff_id == staff_id
        )
    ) or 0


def recompute_staff(
    session: Session, staff: StaffMember, ladder: LevelLadder
) -> tuple[Standing, Standing]:
    """Refresh *staff*'s materialised total and level from the ledger.

    Returns ``(old_standing, new_standing)``.
    """
    session.flush()
    old = Standing(points=staff.points, level=ladder.by_id(staff.level_id))
    total = derive_total([ledger_sum(session, staff.id)])
    rung = ladder.level_for(total)
    staff.points = total
    staff.level_id = rung.id if rung else None
    return old, Standing(points=total, level=rung)


def append_entry(
    session: Session,
    staff: StaffMember,
    ladder: LevelLadder,
    *,
    delta: int,
    reason: str,
    actor_id: int,
    kind: AdjustmentKind = AdjustmentKind.MANUAL,
    event_id: int | None = None,
    now: datetime | None = None,
) -> LedgerResult:
    """Append one ledger entry and recompute within the caller's transaction."""
    entry = PointAdjustment(
        staff_id=staff.id,
        delta=delta,
        reason=validate_reason(reason),
        kind=kind,
        actor_id=actor_id,
        event_id=event_id,
        timestamp=now or datetime.now(UTC),
    )
    session.add(entry)
    session.flush()
    old, new = recompute_staff(session, staff, ladder)
    return _result(staff.id, entry.id, delta, old, new, ladder)


def _result(staff_id, adjustment_id, delta, old: Standing, new: Standing,
            ladder: LevelLadder) -> LedgerResult:
    old_name = old.level.name if old.level else None
    new_name = new.level.name if new.level else None
    up = old_name != new_name and ladder.is_level_up(old.level, new.level)
    return LedgerResult(
        staff_id=staff_id,
        adjustment_id=adjustment_id,
        delta=delta,
        old_points=old.points,
        new_points=new.points,
        old_level=old_name,
        new_level=new_name,
        leveled_up=up,
        leveled_down=old_name != new_name and not up and new.level is not None,
    )


def notify_result(
    dispatcher: NotificationDispatcher | None,
    recipient: Recipient,
    result: LedgerResult,
    reason: str,
    ctx: EngineContext,
) -> DispatchReport:
    """Post-commit fan-out for a ledger change (points-awarded / level-up)."""
    report = DispatchReport()
    if result.delta > 0:
        report.merge(dispatch(
            dispatcher, [recipient], NotificationKind.POINTS_AWARDED,
            {"delta": result.delta, "total": result.new_points,
             "reason": reason},
            ctx,
        ))
    if result.leveled_up:
        report.merge(dispatch(
            dispatcher, [recipient], NotificationKind.LEVEL_UP,
            {"level": result.new_level, "total": result.new_points},
            ctx,
        ))
    return report


# ---------------------------------------------------------------------------
# Public operations
# ---------------------------------------------------------------------------
def adjust_points(
    engine: Engine,
    ctx: EngineContext,
    *,
    staff_id: int,
    delta: int,
    reason: str,
    actor: Actor,
    dispatcher: NotificationDispatcher | None = None,
    now: datetime | None = None,
) -> AdjustmentResult:
    """Manual adjustment (admin-only): bonus, penalty or correction."""
    require_admin(actor)
    cleaned = validate_reason(reason)
    if delta == 0:
        raise InvalidReason("A point adjustment must change the total")

    with Session(engine, expire_on_commit=False) as session:
        staff = session.get(StaffMember, staff_id, with_for_update=True)
        if staff is None:
            raise NotFound(f"Staff member {staff_id} not found")
        result = append_entry(
            session, staff, ctx.ladder,
            delta=delta, reason=cleaned, actor_id=actor.id,
            kind=AdjustmentKind.MANUAL, now=now,
        )
        recipient = Recipient.from_staff(staff)
        session.commit()

    logger.info(
        "Admin %d adjusted staff %d by %+d (%s): %d -> %d",
        actor.id, staff_id, delta, cleaned, result.old_points, result.new_points,
    )
    report = notify_result(dispatcher, recipient, result, cleaned, ctx)
    return AdjustmentResult(**asdict(result), notifications=report)


def list_adjustments(
    engine: Engine, actor: Actor, staff_id: int | None = None
) -> list[PointAdjustment]:
    """Ledger entries, newest first.  Staff may only read their own."""
    if staff_id is None:
        if not actor.is_admin:
            staff_id = actor.id
    else:
        require_self_or_admin(actor, staff_id)

    with Session(engine) as session:
        stmt = select(PointAdjustment).order_by(
            PointAdjustment.timestamp.desc(), PointAdjustment.id.desc()
        )
        if staff_id is not None:
            stmt = stmt.where(PointAdjustment.staff_id == staff_id)
        rows = session.scalars(stmt).all()
        for r in rows:
            session.expunge(r)
        return list(rows)


def rebuild_all(engine: Engine, ctx: EngineContext) -> int:
    """Recompute every staff member's total and level from the ledger.

    Returns the number of staff rows whose materialised values changed.
    """
    changed = 0
    with Session(engine) as session:
        changed = relevel_all(session, ctx.ladder)
        session.commit()
    logger.info("Ledger rebuild: %d staff rows corrected", changed)
    return changed


def relevel_all(session: Session, ladder: LevelLadder) -> int:
    """Recompute every staff row inside an open session."""
    changed = 0
    for staff in session.scalars(select(StaffMember)).all():
        old, new = recompute_staff(session, staff, ladder)
        old_id = old.level.id if old.level else None
        new_id = new.level.id if new.level else None
        if old.points != new.points or old_id != new_id:
            changed += 1
    return changed
