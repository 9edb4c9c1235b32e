"""
tests/test_signup_service.py — Sign-up Persistence
===================================================
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import insert, select
from sqlalchemy.orm import Session, object_session

from crewcall.database.models import AdminLog, EventSignup, EventStatus
from crewcall.engine.admission import AdmissionDecision
from crewcall.engine.context import Actor
from crewcall.engine.errors import (
    AlreadySignedUp,
    DeadlinePassed,
    EventNotOpen,
    Forbidden,
    LevelNotMet,
    NotFound,
    NotSignedUp,
)
from crewcall.services import signup_service
from crewcall.services.ledger_service import adjust_points
from crewcall.services.selection_service import get_participation
from crewcall.services.signup_service import (
    admin_sign_up,
    cancel_sign_up,
    check_sign_up,
    sign_up,
)


class TestSignUp:
    def test_sign_up(self, engine, ctx, make_staff, make_event, now):
        staff_id = make_staff()
        event_id = make_event()

        signup = sign_up(engine, ctx, event_id, actor=Actor(id=staff_id), now=now)

        assert signup.staff_id == staff_id
        assert get_participation(engine, event_id)["signed_up"] == [staff_id]

    def test_duplicate_rejected(self, engine, ctx, make_staff, make_event, now):
        staff_id = make_staff()
        event_id = make_event(signed_up=[staff_id])
        with pytest.raises(AlreadySignedUp):
            sign_up(engine, ctx, event_id, actor=Actor(id=staff_id), now=now)

    def test_concurrent_duplicate_caught_at_insert(self, engine, ctx, make_staff, make_event,
                                                   now, monkeypatch):
        staff_id = make_staff()
        event_id = make_event()

        def allow_but_race(event, staff, at, context):
            # the same sign-up lands from another request after the check passed
            object_session(event).execute(
                insert(EventSignup).values(
                    event_id=event.id, staff_id=staff.id, signed_up_at=at,
                )
            )
            return AdmissionDecision.allow()

        monkeypatch.setattr(signup_service, "can_sign_up", allow_but_race)

        with pytest.raises(AlreadySignedUp):
            sign_up(engine, ctx, event_id, actor=Actor(id=staff_id), now=now)

    def test_draft_event_not_open(self, engine, ctx, make_staff, make_event, now):
        staff_id = make_staff()
        event_id = make_event(status=EventStatus.DRAFT)
        with pytest.raises(EventNotOpen):
            sign_up(engine, ctx, event_id, actor=Actor(id=staff_id), now=now)

    def test_deadline(self, engine, ctx, make_staff, make_event, now):
        staff_id = make_staff()
        event_id = make_event(signup_deadline=now - timedelta(hours=1))
        with pytest.raises(DeadlinePassed):
            sign_up(engine, ctx, event_id, actor=Actor(id=staff_id), now=now)

    def test_level_gate_opens_after_level_up(self, engine, ctx, admin, make_staff,
                                             make_event, now):
        staff_id = make_staff()
        event_id = make_event(required_level="Silver")
        assert check_sign_up(engine, ctx, event_id, staff_id, now).to_dict() == {
            "allowed": False, "reason": "LevelNotMet",
        }
        with pytest.raises(LevelNotMet):
            sign_up(engine, ctx, event_id, actor=Actor(id=staff_id), now=now)

        adjust_points(engine, ctx, staff_id=staff_id, delta=500, reason="bonus", actor=admin)
        assert check_sign_up(engine, ctx, event_id, staff_id, now).allowed
        sign_up(engine, ctx, event_id, actor=Actor(id=staff_id), now=now)

    def test_unknown_event(self, engine, ctx, make_staff, now):
        staff_id = make_staff()
        with pytest.raises(NotFound):
            sign_up(engine, ctx, 999, actor=Actor(id=staff_id), now=now)


class TestCancelSignUp:
    def test_cancel(self, engine, ctx, make_staff, make_event, now):
        staff_id = make_staff()
        event_id = make_event(signed_up=[staff_id])
        cancel_sign_up(engine, ctx, event_id, actor=Actor(id=staff_id), now=now)
        assert get_participation(engine, event_id)["signed_up"] == []

    def test_cancel_without_sign_up(self, engine, ctx, make_staff, make_event, now):
        staff_id = make_staff()
        event_id = make_event()
        with pytest.raises(NotSignedUp):
            cancel_sign_up(engine, ctx, event_id, actor=Actor(id=staff_id), now=now)

    def test_cancel_on_closed_event(self, engine, ctx, make_staff, make_event, now):
        staff_id = make_staff()
        event_id = make_event(status=EventStatus.CLOSED, signed_up=[staff_id])
        with pytest.raises(EventNotOpen):
            cancel_sign_up(engine, ctx, event_id, actor=Actor(id=staff_id), now=now)

    def test_cancel_on_event_day_blocked(self, engine, ctx, make_staff, make_event, now):
        staff_id = make_staff()
        event_id = make_event(start_date=now.date(), signed_up=[staff_id])
        with pytest.raises(DeadlinePassed):
            cancel_sign_up(engine, ctx, event_id, actor=Actor(id=staff_id), now=now)


class TestAdminSignUp:
    def test_bypasses_level_and_deadline(self, engine, admin, make_staff, make_event, now):
        bronze = make_staff()
        present = make_staff()
        event_id = make_event(
            required_level="Gold",
            signup_deadline=now - timedelta(days=1),
            signed_up=[present],
        )

        result = admin_sign_up(engine, event_id, [bronze, present, 777, bronze],
                               actor=admin, now=now)

        assert result.added == [bronze]
        assert result.already_present == [present]
        assert result.unknown == [777]
        assert get_participation(engine, event_id)["signed_up"] == sorted([bronze, present])
        with Session(engine) as session:
            log = session.scalars(
                select(AdminLog).where(AdminLog.action_type == "BULK_SIGNUP")
            ).one()
            assert log.target_id == str(event_id)

    def test_requires_open_event(self, engine, admin, make_staff, make_event, now):
        staff_id = make_staff()
        event_id = make_event(status=EventStatus.CANCELLED)
        with pytest.raises(EventNotOpen):
            admin_sign_up(engine, event_id, [staff_id], actor=admin, now=now)

    def test_admin_only(self, engine, make_staff, make_event, now):
        staff_id = make_staff()
        event_id = make_event()
        with pytest.raises(Forbidden):
            admin_sign_up(engine, event_id, [staff_id], actor=Actor(id=staff_id), now=now)
