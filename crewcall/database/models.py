"""
crewcall.database.models — SQLAlchemy 2.0 Data Models
======================================================

Tables:
- levels              — The Level Ladder (rank 0 = most prestigious)
- staff_members       — Staff profiles with materialised points/level
- staff_preferences   — Per-staff notification opt-outs
- events              — Scheduled events and their lifecycle status
- event_signups       — Sign-ups with confirmed / points-awarded flags
- point_adjustments   — Append-only points ledger
- admin_log           — Append-only audit trail
- settings            — Admin-configurable key-value store
"""

from __future__ import annotations

import enum
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Crewcall ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class EventStatus(enum.StrEnum):
    """Lifecycle states of an event."""
    DRAFT = "draft"
    OPEN = "open"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class StaffStatus(enum.StrEnum):
    """Account status of a staff member."""
    ACTIVE = "active"
    PENDING = "pending"
    INACTIVE = "inactive"


class AdjustmentKind(enum.StrEnum):
    """Where a ledger entry came from."""
    EVENT_PARTICIPATION = "EVENT_PARTICIPATION"
    MANUAL = "MANUAL"


class AdminActionType(enum.StrEnum):
    """Categories of admin mutations recorded in admin_log."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    TRANSITION = "TRANSITION"
    REORDER = "REORDER"
    BULK_SIGNUP = "BULK_SIGNUP"


# ---------------------------------------------------------------------------
# Level — one rung of the ladder
# ---------------------------------------------------------------------------
class Level(Base):
    __tablename__ = "levels"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    min_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("min_points >= 0", name="ck_levels_min_points_nonneg"),
        CheckConstraint("rank >= 0", name="ck_levels_rank_nonneg"),
        Index("ix_levels_rank", "rank"),
    )

    def __repr__(self) -> str:
        return f"<Level id={self.id} name={self.name!r} rank={self.rank}>"


# ---------------------------------------------------------------------------
# StaffMember — one row per part-time staff member
# ---------------------------------------------------------------------------
class StaffMember(Base):
    __tablename__ = "staff_members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    phone: Mapped[str | None] = mapped_column(String(50), default=None)
    chat_id: Mapped[str | None] = mapped_column(String(64), default=None)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=StaffStatus.PENDING.value
    )

    # Materialised from the ledger — written only by ledger_service.recompute_staff
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    level_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("levels.id", ondelete="RESTRICT"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    level: Mapped[Level | None] = relationship()
    preferences: Mapped[StaffPreferences | None] = relationship(
        back_populates="staff", uselist=False, cascade="all, delete-orphan"
    )
    signups: Mapped[list[EventSignup]] = relationship(
        back_populates="staff", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("points >= 0", name="ck_staff_points_nonneg"),
        Index("ix_staff_points_desc", "points"),
    )

    @property
    def level_name(self) -> str | None:
        return self.level.name if self.level else None

    def __repr__(self) -> str:
        return f"<StaffMember id={self.id} name={self.name!r} pts={self.points}>"


# ---------------------------------------------------------------------------
# StaffPreferences — per-staff notification opt-outs
# ---------------------------------------------------------------------------
class StaffPreferences(Base):
    __tablename__ = "staff_preferences"

    staff_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("staff_members.id", ondelete="CASCADE"), primary_key=True
    )
    notify_new_events: Mapped[bool] = mapped_column(Boolean, default=True)
    notify_points: Mapped[bool] = mapped_column(Boolean, default=True)
    notify_level_up: Mapped[bool] = mapped_column(Boolean, default=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    staff: Mapped[StaffMember] = relationship(back_populates="preferences")

    def __repr__(self) -> str:
        return f"<StaffPreferences staff={self.staff_id}>"


# ---------------------------------------------------------------------------
# Event — a scheduled shift/event staff can sign up for
# ---------------------------------------------------------------------------
class Event(Base):
    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, default=None)
    time: Mapped[str] = mapped_column(String(20), nullable=False)
    duration: Mapped[str | None] = mapped_column(String(100), default=None)
    location: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    notes: Mapped[str | None] = mapped_column(Text, default=None)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    required_level_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("levels.id", ondelete="RESTRICT"), nullable=False
    )
    signup_deadline: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=EventStatus.DRAFT.value
    )
    created_by: Mapped[int | None] = mapped_column(Integer, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    required_level: Mapped[Level] = relationship()
    signups: Mapped[list[EventSignup]] = relationship(
        back_populates="event",
        cascade="all, delete-orphan",
        order_by="EventSignup.signed_up_at",
    )

    __table_args__ = (
        CheckConstraint("points >= 0", name="ck_events_points_nonneg"),
        Index("ix_events_status_date", "status", "start_date"),
    )

    # Convenience views over the signup rows ---------------------------
    @property
    def signed_up(self) -> set[int]:
        return {s.staff_id for s in self.signups}

    @property
    def confirmed(self) -> set[int]:
        return {s.staff_id for s in self.signups if s.is_confirmed}

    @property
    def points_awarded(self) -> set[int]:
        return {s.staff_id for s in self.signups if s.points_awarded}

    @property
    def signup_timestamps(self) -> dict[int, datetime]:
        return {s.staff_id: s.signed_up_at for s in self.signups}

    def __repr__(self) -> str:
        return f"<Event id={self.id} name={self.name!r} status={self.status}>"


# ---------------------------------------------------------------------------
# EventSignup — (event, staff) pair; the composite PK forbids duplicates
# ---------------------------------------------------------------------------
class EventSignup(Base):
    __tablename__ = "event_signups"

    event_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("events.id", ondelete="CASCADE"), primary_key=True
    )
    staff_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("staff_members.id", ondelete="CASCADE"), primary_key=True
    )
    signed_up_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    is_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    points_awarded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    added_by_admin: Mapped[int | None] = mapped_column(Integer, default=None)

    event: Mapped[Event] = relationship(back_populates="signups")
    staff: Mapped[StaffMember] = relationship(back_populates="signups")

    __table_args__ = (
        # points-awarded ⊆ confirmed
        CheckConstraint(
            "NOT points_awarded OR is_confirmed",
            name="ck_signups_awarded_implies_confirmed",
        ),
        Index("ix_event_signups_confirmed", "event_id", "is_confirmed"),
    )

    def __repr__(self) -> str:
        return (
            f"<EventSignup event={self.event_id} staff={self.staff_id} "
            f"confirmed={self.is_confirmed} awarded={self.points_awarded}>"
        )


# ---------------------------------------------------------------------------
# PointAdjustment — append-only ledger
# ---------------------------------------------------------------------------
class PointAdjustment(Base):
    __tablename__ = "point_adjustments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    staff_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("staff_members.id", ondelete="CASCADE"), nullable=False
    )
    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    kind: Mapped[str] = mapped_column(
        String(30), nullable=False, default=AdjustmentKind.MANUAL.value
    )
    actor_id: Mapped[int] = mapped_column(Integer, nullable=False)
    event_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("events.id", ondelete="SET NULL"), nullable=True
    )
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("length(trim(reason)) > 0", name="ck_adjustments_reason"),
        # One participation award per (staff, event); manual rows have no event
        Index(
            "ix_adjustments_participation_once",
            "staff_id",
            "event_id",
            "kind",
            unique=True,
            postgresql_where=event_id.isnot(None),
            sqlite_where=event_id.isnot(None),
        ),
        Index("ix_adjustments_staff_time", "staff_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return (
            f"<PointAdjustment id={self.id} staff={self.staff_id} "
            f"delta={self.delta:+d}>"
        )


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[int] = mapped_column(Integer, nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_actor_time", "actor_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id} action={self.action_type}>"


# ---------------------------------------------------------------------------
# Setting — admin-configurable key-value store
# ---------------------------------------------------------------------------
class Setting(Base):
    """Key-value configuration store.

    Integration toggles (chat bot connected, bot name) and display
    overrides live here so admins can change them without redeploying.
    Values are stored as JSON strings.
    """
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value_json: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    description: Mapped[str | None] = mapped_column(Text, default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_settings_category", "category"),
    )

    def __repr__(self) -> str:
        return f"<Setting key={self.key!r} category={self.category!r}>"
