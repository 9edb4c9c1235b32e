"""
crewcall.services.staff_service — Staff Records & Preferences
==============================================================

Contact details, account status and notification preferences.  Points
and level are read-only here; they change only through the ledger.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from crewcall.constants import Channel, NotificationKind, is_valid_email
from crewcall.database.models import (
    AdminActionType,
    PointAdjustment,
    StaffMember,
    StaffPreferences,
    StaffStatus,
)
from crewcall.engine.context import Actor, EngineContext, require_admin, require_self_or_admin
from crewcall.engine.errors import (
    DuplicateEmail,
    Forbidden,
    InvalidStaffRecord,
    NotFound,
    StaffHasHistory,
)
from crewcall.engine.notify_rules import validate_chat_id
from crewcall.services.audit import log_admin_action, row_to_dict
from crewcall.services.notification_service import (
    DispatchReport,
    NotificationDispatcher,
    Recipient,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

CONTACT_FIELDS = ("name", "email", "phone", "chat_id")
PREFERENCE_FIELDS = ("notify_new_events", "notify_points", "notify_level_up")


def _clean_email(email: str) -> str:
    cleaned = (email or "").strip().lower()
    if not is_valid_email(cleaned):
        raise InvalidStaffRecord(f"'{email}' is not a valid email address")
    return cleaned


def _assert_email_free(session: Session, email: str, exclude_id: int | None = None) -> None:
    stmt = select(StaffMember.id).where(StaffMember.email == email)
    if exclude_id is not None:
        stmt = stmt.where(StaffMember.id != exclude_id)
    if session.scalar(stmt) is not None:
        raise DuplicateEmail(f"Email '{email}' is already in use")


def _load(session: Session, staff_id: int) -> StaffMember:
    staff = session.scalar(
        select(StaffMember)
        .where(StaffMember.id == staff_id)
        .options(selectinload(StaffMember.preferences), selectinload(StaffMember.level))
    )
    if staff is None:
        raise NotFound(f"Staff member {staff_id} not found")
    return staff


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_staff(engine: Engine, staff_id: int, *, actor: Actor) -> StaffMember:
    require_self_or_admin(actor, staff_id)
    with Session(engine) as session:
        staff = _load(session, staff_id)
        session.expunge_all()
        return staff


def list_staff(engine: Engine, *, actor: Actor, status: str | None = None) -> list[StaffMember]:
    require_admin(actor)
    with Session(engine) as session:
        stmt = (
            select(StaffMember)
            .options(selectinload(StaffMember.preferences), selectinload(StaffMember.level))
            .order_by(StaffMember.name)
        )
        if status:
            stmt = stmt.where(StaffMember.status == StaffStatus(status).value)
        rows = list(session.scalars(stmt).all())
        session.expunge_all()
        return rows


def progress(staff: StaffMember, ctx: EngineContext) -> dict[str, Any]:
    """Level progress summary for the staff dashboard."""
    current = ctx.ladder.by_id(staff.level_id)
    nxt = ctx.ladder.next_level(current)
    return {
        "points": staff.points,
        "level": current.name if current else None,
        "next_level": nxt.name if nxt else None,
        "points_to_next": ctx.ladder.points_to_next(staff.points),
    }


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------
def create_staff(
    engine: Engine,
    ctx: EngineContext,
    *,
    name: str,
    email: str,
    actor: Actor,
    phone: str | None = None,
    chat_id: str | None = None,
    status: str = StaffStatus.PENDING,
) -> StaffMember:
    """Register a staff member with zero points at the lowest level."""
    require_admin(actor)
    if not (name or "").strip():
        raise InvalidStaffRecord("Staff name is required")
    email = _clean_email(email)
    chat_id = validate_chat_id(chat_id)
    lowest = ctx.ladder.level_for(0)

    with Session(engine, expire_on_commit=False) as session:
        _assert_email_free(session, email)
        staff = StaffMember(
            name=name.strip(),
            email=email,
            phone=(phone or "").strip() or None,
            chat_id=chat_id,
            status=StaffStatus(status).value,
            points=0,
            level_id=lowest.id if lowest else None,
        )
        staff.preferences = StaffPreferences()
        session.add(staff)
        session.flush()
        log_admin_action(
            session,
            actor_id=actor.id,
            action_type=AdminActionType.CREATE,
            target_table="staff_members",
            target_id=staff.id,
            before=None,
            after=row_to_dict(staff),
        )
        session.commit()
        staff = _load(session, staff.id)
        session.expunge_all()

    logger.info("Admin %d registered staff %d (%s)", actor.id, staff.id, staff.email)
    return staff


def update_staff(
    engine: Engine,
    staff_id: int,
    changes: dict[str, Any],
    *,
    actor: Actor,
) -> StaffMember:
    """Update contact details and/or notification preferences.

    Staff may edit their own record; ``status`` requires an admin.
    Unknown keys (including ``points`` and ``level_id``) are rejected.
    """
    require_self_or_admin(actor, staff_id)
    unknown = set(changes) - set(CONTACT_FIELDS) - set(PREFERENCE_FIELDS)
    if unknown:
        raise Forbidden(f"Fields not editable here: {', '.join(sorted(unknown))}")

    with Session(engine, expire_on_commit=False) as session:
        staff = _load(session, staff_id)
        before = row_to_dict(staff)
        if staff.preferences is not None:
            before["preferences"] = row_to_dict(staff.preferences)

        if "name" in changes:
            if not (changes["name"] or "").strip():
                raise InvalidStaffRecord("Staff name is required")
            staff.name = changes["name"].strip()
        if "email" in changes:
            email = _clean_email(changes["email"])
            _assert_email_free(session, email, exclude_id=staff_id)
            staff.email = email
        if "phone" in changes:
            staff.phone = (changes["phone"] or "").strip() or None
        if "chat_id" in changes:
            staff.chat_id = validate_chat_id(changes["chat_id"])

        pref_changes = {k: bool(v) for k, v in changes.items() if k in PREFERENCE_FIELDS}
        if pref_changes:
            if staff.preferences is None:
                staff.preferences = StaffPreferences()
            for key, value in pref_changes.items():
                setattr(staff.preferences, key, value)

        session.flush()
        after = row_to_dict(staff)
        after["preferences"] = row_to_dict(staff.preferences)
        log_admin_action(
            session,
            actor_id=actor.id,
            action_type=AdminActionType.UPDATE,
            target_table="staff_members",
            target_id=staff_id,
            before=before,
            after=after,
        )
        session.commit()
        staff = _load(session, staff_id)
        session.expunge_all()

    logger.info("Staff %d updated by %d: %s", staff_id, actor.id, ", ".join(sorted(changes)))
    return staff


def set_status(engine: Engine, staff_id: int, status: str, *, actor: Actor) -> StaffMember:
    """Activate, park or deactivate an account (admin-only)."""
    require_admin(actor)
    new_status = StaffStatus(status)
    with Session(engine, expire_on_commit=False) as session:
        staff = _load(session, staff_id)
        before = row_to_dict(staff)
        staff.status = new_status.value
        session.flush()
        log_admin_action(
            session,
            actor_id=actor.id,
            action_type=AdminActionType.UPDATE,
            target_table="staff_members",
            target_id=staff_id,
            before=before,
            after=row_to_dict(staff),
        )
        session.commit()
        session.expunge_all()

    logger.info("Admin %d set staff %d to %s", actor.id, staff_id, new_status)
    return staff


def delete_staff(engine: Engine, staff_id: int, *, actor: Actor) -> None:
    """Remove a staff record that never earned or lost points (admin-only).

    Sign-ups and preferences go with the record.  Anyone with ledger
    entries is refused; deactivate them with :func:`set_status` instead.
    """
    require_admin(actor)
    with Session(engine) as session:
        staff = _load(session, staff_id)
        entries = session.scalar(
            select(func.count())
            .select_from(PointAdjustment)
            .where(PointAdjustment.staff_id == staff_id)
        )
        if entries:
            raise StaffHasHistory(
                f"Staff member {staff_id} has {entries} ledger entries; "
                "set the account inactive instead"
            )
        log_admin_action(
            session,
            actor_id=actor.id,
            action_type=AdminActionType.DELETE,
            target_table="staff_members",
            target_id=staff_id,
            before=row_to_dict(staff),
            after=None,
        )
        session.delete(staff)
        session.commit()

    logger.info("Admin %d deleted staff %d", actor.id, staff_id)


# ---------------------------------------------------------------------------
# Test message
# ---------------------------------------------------------------------------
def send_test_message(
    engine: Engine,
    ctx: EngineContext,
    staff_id: int,
    *,
    actor: Actor,
    dispatcher: NotificationDispatcher | None,
    channel: Channel = Channel.CHAT,
) -> DispatchReport:
    """Send a test notification to one staff member on one channel.

    Goes through the normal eligibility rules, so a disconnected chat
    integration or a missing chat id shows up as ``skipped``.
    """
    require_admin(actor)
    with Session(engine) as session:
        recipient = Recipient.from_staff(_load(session, staff_id))

    if dispatcher is None or channel not in dispatcher.channels:
        logger.info("No %s channel configured; test message to staff %d skipped",
                    channel, staff_id)
        return DispatchReport(skipped=[(staff_id, channel.value)])
    return dispatcher.fan_out(
        [recipient], NotificationKind.TEST, {"staff_name": recipient.name}, ctx, only=channel,
    )
