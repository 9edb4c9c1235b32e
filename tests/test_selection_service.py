"""
tests/test_selection_service.py — Confirmation, Awards & Closing
=================================================================
"""

from __future__ import annotations

import pytest
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from crewcall.constants import Channel, NotificationKind
from crewcall.database.models import (
    AdjustmentKind,
    Event,
    EventSignup,
    EventStatus,
    PointAdjustment,
    StaffMember,
)
from crewcall.engine.context import Actor
from crewcall.engine.errors import (
    EventNotOpen,
    Forbidden,
    InvalidReason,
    InvalidTransition,
    NotSignedUp,
)
from crewcall.services import selection_service, signup_service
from crewcall.services.ledger_service import adjust_points
from crewcall.services.selection_service import (
    close_event,
    confirm_all,
    confirm_one,
    get_participation,
)


def _entries(engine, staff_id) -> list[PointAdjustment]:
    with Session(engine) as session:
        rows = session.scalars(
            select(PointAdjustment)
            .where(PointAdjustment.staff_id == staff_id)
            .order_by(PointAdjustment.id)
        ).all()
        session.expunge_all()
        return list(rows)


def _points(engine, staff_id) -> int:
    with Session(engine) as session:
        return session.get(StaffMember, staff_id).points


def _status(engine, event_id) -> str:
    with Session(engine) as session:
        return session.get(Event, event_id).status


def _mail_to(channels, email) -> list[str]:
    return [c.args[1] for c in channels[Channel.PRIMARY].send.call_args_list
            if c.args[0] == email]


class TestConfirmOne:
    def test_confirm_awards_points_once(self, engine, ctx, admin, make_staff, make_event):
        staff_id = make_staff()
        event_id = make_event(points=50, signed_up=[staff_id])

        result = confirm_one(engine, ctx, event_id, staff_id, actor=admin)

        assert result.awarded
        assert not result.already_awarded
        assert result.ledger.new_points == 50
        assert get_participation(engine, event_id) == {
            "signed_up": [staff_id],
            "confirmed": [staff_id],
            "points_awarded": [staff_id],
        }
        [entry] = _entries(engine, staff_id)
        assert entry.delta == 50
        assert entry.kind == AdjustmentKind.EVENT_PARTICIPATION
        assert entry.event_id == event_id
        assert entry.reason == "event participation: Harbor Festival"

    def test_confirm_is_idempotent(self, engine, ctx, admin, make_staff, make_event):
        staff_id = make_staff()
        event_id = make_event(points=50, signed_up=[staff_id])
        confirm_one(engine, ctx, event_id, staff_id, actor=admin)

        again = confirm_one(engine, ctx, event_id, staff_id, actor=admin)

        assert again.already_awarded
        assert not again.awarded
        assert _points(engine, staff_id) == 50
        assert len(_entries(engine, staff_id)) == 1

    def test_confirm_reports_level_up(self, engine, ctx, admin, make_staff, make_event,
                                      dispatcher, channels):
        """480 points + a 50-point event reaches Silver."""
        staff_id = make_staff(email="ana@example.com")
        adjust_points(engine, ctx, staff_id=staff_id, delta=480, reason="history", actor=admin)
        event_id = make_event(points=50, signed_up=[staff_id])

        result = confirm_one(engine, ctx, event_id, staff_id, actor=admin, dispatcher=dispatcher)

        assert result.leveled_up
        assert result.ledger.new_level == "Silver"
        assert _mail_to(channels, "ana@example.com") == [
            NotificationKind.SELECTED,
            NotificationKind.POINTS_AWARDED,
            NotificationKind.LEVEL_UP,
        ]

    def test_not_signed_up(self, engine, ctx, admin, make_staff, make_event):
        staff_id = make_staff()
        event_id = make_event()
        with pytest.raises(NotSignedUp):
            confirm_one(engine, ctx, event_id, staff_id, actor=admin)

    @pytest.mark.parametrize("status", [EventStatus.DRAFT, EventStatus.CANCELLED])
    def test_event_must_be_open_or_closed(self, engine, ctx, admin, make_staff,
                                           make_event, status):
        staff_id = make_staff()
        event_id = make_event(status=status, signed_up=[staff_id])
        with pytest.raises(EventNotOpen):
            confirm_one(engine, ctx, event_id, staff_id, actor=admin)

    def test_late_confirmation_on_closed_event(self, engine, ctx, admin, make_staff, make_event):
        staff_id = make_staff()
        event_id = make_event(status=EventStatus.CLOSED, signed_up=[staff_id])
        assert confirm_one(engine, ctx, event_id, staff_id, actor=admin).awarded

    def test_staff_cannot_confirm(self, engine, ctx, make_staff, make_event):
        staff_id = make_staff()
        event_id = make_event(signed_up=[staff_id])
        with pytest.raises(Forbidden):
            confirm_one(engine, ctx, event_id, staff_id, actor=Actor(id=staff_id))

    def test_resignup_after_payment_is_not_paid_twice(
        self, engine, ctx, admin, make_staff, make_event, now,
    ):
        staff_id = make_staff()
        event_id = make_event(points=50, signed_up=[staff_id])
        confirm_one(engine, ctx, event_id, staff_id, actor=admin)

        staff = Actor(id=staff_id)
        signup_service.cancel_sign_up(engine, ctx, event_id, actor=staff, now=now)
        signup_service.sign_up(engine, ctx, event_id, actor=staff, now=now)
        result = confirm_one(engine, ctx, event_id, staff_id, actor=admin)

        assert not result.awarded
        assert _points(engine, staff_id) == 50
        assert len(_entries(engine, staff_id)) == 1
        assert get_participation(engine, event_id)["points_awarded"] == [staff_id]

    def test_losing_the_claim_is_a_noop(self, engine, ctx, admin, make_staff, make_event,
                                        monkeypatch):
        staff_id = make_staff()
        event_id = make_event(points=50, signed_up=[staff_id])
        real_load = selection_service.load_event

        def load_then_claim_elsewhere(session, eid, **kwargs):
            event = real_load(session, eid, **kwargs)
            # a second confirmer flips the row after this one has read it
            session.execute(
                update(EventSignup)
                .where(EventSignup.event_id == eid, EventSignup.staff_id == staff_id)
                .values(is_confirmed=True, points_awarded=True)
                .execution_options(synchronize_session=False)
            )
            return event

        monkeypatch.setattr(selection_service, "load_event", load_then_claim_elsewhere)

        result = confirm_one(engine, ctx, event_id, staff_id, actor=admin)

        assert result.already_awarded
        assert not result.awarded
        assert result.ledger is None
        assert _entries(engine, staff_id) == []
        assert _points(engine, staff_id) == 0


class TestConfirmAll:
    def test_confirms_unpaid_and_skips_paid(self, engine, ctx, admin, make_staff, make_event):
        a, b, c = make_staff(), make_staff(), make_staff()
        event_id = make_event(points=20, signed_up=[a, b, c])
        confirm_one(engine, ctx, event_id, a, actor=admin)

        result = confirm_all(engine, ctx, event_id, actor=admin)

        assert sorted(result.confirmed) == [b, c]
        assert result.skipped == [a]
        assert result.failures == {}
        assert [_points(engine, s) for s in (a, b, c)] == [20, 20, 20]


class TestCloseEvent:
    def test_close_confirms_approved_and_rejects_the_rest(
        self, engine, ctx, admin, make_staff, make_event, dispatcher, channels,
    ):
        a = make_staff("A", email="a@example.com")
        b = make_staff("B", email="b@example.com")
        c = make_staff("C", email="c@example.com")
        outsider = make_staff("D")
        event_id = make_event(points=40, signed_up=[a, b, c])

        result = close_event(
            engine, ctx, event_id, [a, b, outsider], actor=admin, dispatcher=dispatcher,
        )

        assert result.closed
        assert sorted(result.confirmed) == [a, b]
        assert result.rejected == [c]
        assert result.ignored == [outsider]
        assert _status(engine, event_id) == EventStatus.CLOSED
        assert _points(engine, a) == 40
        assert _points(engine, b) == 40
        assert _entries(engine, c) == []
        assert _mail_to(channels, "c@example.com") == [NotificationKind.REJECTED]
        assert NotificationKind.SELECTED in _mail_to(channels, "a@example.com")

    def test_participation_sets_stay_nested(self, engine, ctx, admin, make_staff, make_event):
        ids = [make_staff() for _ in range(4)]
        event_id = make_event(signed_up=ids)
        close_event(engine, ctx, event_id, ids[:2], actor=admin)

        sets = get_participation(engine, event_id)
        assert set(sets["points_awarded"]) <= set(sets["confirmed"]) <= set(sets["signed_up"])
        assert sets["confirmed"] == sorted(ids[:2])

    def test_failure_keeps_event_open(
        self, engine, ctx, admin, make_staff, make_event, dispatcher, channels, monkeypatch,
    ):
        a = make_staff("A")
        b = make_staff("B")
        c = make_staff("C", email="c@example.com")
        event_id = make_event(points=10, signed_up=[a, b, c])

        real_append = selection_service.append_entry

        def flaky_append(session, staff, ladder, **kwargs):
            if staff.id == b:
                raise InvalidReason("ledger rejected the entry")
            return real_append(session, staff, ladder, **kwargs)

        monkeypatch.setattr(selection_service, "append_entry", flaky_append)

        result = close_event(engine, ctx, event_id, [a, b], actor=admin, dispatcher=dispatcher)

        assert not result.closed
        assert result.confirmed == [a]
        assert result.failures == {b: "InvalidReason"}
        assert result.rejected == []
        assert _status(engine, event_id) == EventStatus.OPEN
        # b's claim was rolled back with the failed transaction
        assert get_participation(engine, event_id)["confirmed"] == [a]
        assert _mail_to(channels, "c@example.com") == []

    def test_staff_paid_before_closing_are_not_rejected(
        self, engine, ctx, admin, make_staff, make_event, dispatcher, channels,
    ):
        a = make_staff("A", email="a@example.com")
        c = make_staff("C", email="c@example.com")
        event_id = make_event(points=40, signed_up=[a, c])
        confirm_one(engine, ctx, event_id, c, actor=admin, dispatcher=dispatcher)

        result = close_event(engine, ctx, event_id, [a], actor=admin, dispatcher=dispatcher)

        assert result.closed
        assert result.confirmed == [a]
        assert result.rejected == []
        assert _points(engine, c) == 40
        assert _mail_to(channels, "c@example.com") == [
            NotificationKind.SELECTED,
            NotificationKind.POINTS_AWARDED,
        ]

    def test_status_change_while_confirming_returns_partial_result(
        self, engine, ctx, admin, make_staff, make_event, dispatcher, channels, monkeypatch,
    ):
        a = make_staff("A")
        b = make_staff("B", email="b@example.com")
        event_id = make_event(points=10, signed_up=[a, b])
        real_append = selection_service.append_entry

        def append_then_cancel(session, staff, ladder, **kwargs):
            # another admin cancels the event mid-close
            session.execute(
                update(Event)
                .where(Event.id == event_id)
                .values(status=EventStatus.CANCELLED.value)
                .execution_options(synchronize_session=False)
            )
            return real_append(session, staff, ladder, **kwargs)

        monkeypatch.setattr(selection_service, "append_entry", append_then_cancel)

        result = close_event(engine, ctx, event_id, [a], actor=admin, dispatcher=dispatcher)

        assert not result.closed
        assert result.confirmed == [a]
        assert result.rejected == []
        assert _status(engine, event_id) == EventStatus.CANCELLED
        assert _points(engine, a) == 10
        assert _mail_to(channels, "b@example.com") == []

    def test_close_requires_open(self, engine, ctx, admin, make_event):
        event_id = make_event(status=EventStatus.DRAFT)
        with pytest.raises(InvalidTransition):
            close_event(engine, ctx, event_id, [], actor=admin)

    def test_close_with_nobody_approved(self, engine, ctx, admin, make_staff, make_event):
        a = make_staff()
        event_id = make_event(signed_up=[a])
        result = close_event(engine, ctx, event_id, [], actor=admin)
        assert result.closed
        assert result.rejected == [a]
        assert _points(engine, a) == 0
