"""
tests/test_staff_service.py — Staff Records & Preferences
==========================================================
"""

from __future__ import annotations

from dataclasses import replace

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from crewcall.constants import Channel, NotificationKind
from crewcall.database.models import AdminLog, EventSignup, StaffMember, StaffStatus
from crewcall.engine.context import Actor
from crewcall.engine.errors import (
    DuplicateEmail,
    Forbidden,
    InvalidChatId,
    InvalidStaffRecord,
    NotFound,
    StaffHasHistory,
)
from crewcall.services import staff_service
from crewcall.services.ledger_service import adjust_points
from crewcall.services.notification_service import NotificationDispatcher


class TestCreateStaff:
    def test_new_staff_start_at_zero_on_lowest_level(self, engine, ctx, admin):
        staff = staff_service.create_staff(
            engine, ctx, name=" Mia ", email="Mia@Example.com", actor=admin,
        )
        assert staff.name == "Mia"
        assert staff.email == "mia@example.com"
        assert staff.points == 0
        assert staff.level_name == "Bronze"
        assert staff.status == StaffStatus.PENDING
        assert staff.preferences.notify_points is True

    def test_duplicate_email(self, engine, ctx, admin, make_staff):
        make_staff(email="taken@example.com")
        with pytest.raises(DuplicateEmail):
            staff_service.create_staff(
                engine, ctx, name="Other", email="TAKEN@example.com", actor=admin,
            )

    @pytest.mark.parametrize("email", ["", "not-an-email", "a@b"])
    def test_invalid_email(self, engine, ctx, admin, email):
        with pytest.raises(InvalidStaffRecord):
            staff_service.create_staff(engine, ctx, name="X", email=email, actor=admin)

    def test_non_numeric_chat_id(self, engine, ctx, admin):
        with pytest.raises(InvalidChatId):
            staff_service.create_staff(
                engine, ctx, name="X", email="x@example.com", chat_id="@mia", actor=admin,
            )

    def test_admin_only(self, engine, ctx):
        with pytest.raises(Forbidden):
            staff_service.create_staff(
                engine, ctx, name="X", email="x@example.com", actor=Actor(id=1),
            )


class TestUpdateStaff:
    def test_staff_edit_own_contact_and_preferences(self, engine, make_staff):
        staff_id = make_staff()
        me = Actor(id=staff_id)
        staff = staff_service.update_staff(
            engine, staff_id,
            {"phone": " 555-0100 ", "chat_id": " 123456 ", "notify_points": False},
            actor=me,
        )
        assert staff.phone == "555-0100"
        assert staff.chat_id == "123456"
        assert staff.preferences.notify_points is False
        assert staff.preferences.notify_level_up is True

    def test_blank_chat_id_clears(self, engine, make_staff):
        staff_id = make_staff(chat_id="42")
        staff = staff_service.update_staff(
            engine, staff_id, {"chat_id": "  "}, actor=Actor(id=staff_id),
        )
        assert staff.chat_id is None

    def test_invalid_chat_id(self, engine, make_staff):
        staff_id = make_staff()
        with pytest.raises(InvalidChatId):
            staff_service.update_staff(
                engine, staff_id, {"chat_id": "mia_bot"}, actor=Actor(id=staff_id),
            )

    @pytest.mark.parametrize("field", ["points", "level_id", "status"])
    def test_ledger_and_status_fields_not_editable(self, engine, make_staff, admin, field):
        staff_id = make_staff()
        with pytest.raises(Forbidden):
            staff_service.update_staff(engine, staff_id, {field: 1}, actor=admin)

    def test_cannot_edit_someone_else(self, engine, make_staff):
        alice = make_staff()
        bob = make_staff()
        with pytest.raises(Forbidden):
            staff_service.update_staff(engine, bob, {"name": "Hacked"}, actor=Actor(id=alice))

    def test_email_collision(self, engine, make_staff, admin):
        make_staff(email="first@example.com")
        second = make_staff(email="second@example.com")
        with pytest.raises(DuplicateEmail):
            staff_service.update_staff(
                engine, second, {"email": "first@example.com"}, actor=admin,
            )


class TestReadsAndStatus:
    def test_progress(self, engine, ctx, admin, make_staff):
        staff_id = make_staff()
        adjust_points(engine, ctx, staff_id=staff_id, delta=480, reason="history", actor=admin)
        staff = staff_service.get_staff(engine, staff_id, actor=Actor(id=staff_id))
        assert staff_service.progress(staff, ctx) == {
            "points": 480,
            "level": "Bronze",
            "next_level": "Silver",
            "points_to_next": 20,
        }

    def test_get_other_staff_forbidden(self, engine, make_staff):
        alice = make_staff()
        bob = make_staff()
        with pytest.raises(Forbidden):
            staff_service.get_staff(engine, bob, actor=Actor(id=alice))

    def test_get_unknown(self, engine, admin):
        with pytest.raises(NotFound):
            staff_service.get_staff(engine, 321, actor=admin)

    def test_set_status_and_filter(self, engine, admin, make_staff):
        staff_id = make_staff()
        make_staff()
        staff_service.set_status(engine, staff_id, "inactive", actor=admin)
        inactive = staff_service.list_staff(engine, actor=admin, status="inactive")
        assert [s.id for s in inactive] == [staff_id]

    def test_set_status_admin_only(self, engine, make_staff):
        staff_id = make_staff()
        with pytest.raises(Forbidden):
            staff_service.set_status(engine, staff_id, "active", actor=Actor(id=staff_id))


class TestDeleteStaff:
    def test_delete_without_history(self, engine, admin, make_staff, make_event):
        staff_id = make_staff()
        make_event(signed_up=[staff_id])

        staff_service.delete_staff(engine, staff_id, actor=admin)

        with Session(engine) as session:
            assert session.get(StaffMember, staff_id) is None
            assert session.scalars(
                select(EventSignup).where(EventSignup.staff_id == staff_id)
            ).all() == []
            log = session.scalars(select(AdminLog).order_by(AdminLog.id.desc())).first()
            assert log.action_type == "DELETE"
            assert log.target_id == str(staff_id)
            assert log.after_snapshot is None

    def test_ledger_history_blocks_delete(self, engine, ctx, admin, make_staff):
        staff_id = make_staff()
        adjust_points(engine, ctx, staff_id=staff_id, delta=10, reason="bonus", actor=admin)
        adjust_points(engine, ctx, staff_id=staff_id, delta=-10, reason="undo", actor=admin)

        with pytest.raises(StaffHasHistory):
            staff_service.delete_staff(engine, staff_id, actor=admin)
        assert staff_service.get_staff(engine, staff_id, actor=admin).id == staff_id

    def test_admin_only(self, engine, make_staff):
        staff_id = make_staff()
        with pytest.raises(Forbidden):
            staff_service.delete_staff(engine, staff_id, actor=Actor(id=staff_id))

    def test_unknown(self, engine, admin):
        with pytest.raises(NotFound):
            staff_service.delete_staff(engine, 404, actor=admin)


class TestSendTestMessage:
    def test_sent_on_chat_only(self, engine, ctx, admin, make_staff, dispatcher, channels):
        staff_id = make_staff("Mia", chat_id="4242")
        connected = replace(ctx, chat_connected=True)

        report = staff_service.send_test_message(
            engine, connected, staff_id, actor=admin, dispatcher=dispatcher,
        )

        assert report.sent == [(staff_id, "chat")]
        contact, kind, payload = channels[Channel.CHAT].send.call_args.args
        assert contact == "4242"
        assert kind == NotificationKind.TEST
        assert payload["staff_name"] == "Mia"
        channels[Channel.PRIMARY].send.assert_not_called()

    def test_disconnected_chat_is_skipped(self, engine, ctx, admin, make_staff, dispatcher,
                                          channels):
        staff_id = make_staff(chat_id="4242")
        report = staff_service.send_test_message(
            engine, ctx, staff_id, actor=admin, dispatcher=dispatcher,
        )
        assert report.skipped == [(staff_id, "chat")]
        channels[Channel.CHAT].send.assert_not_called()

    def test_unconfigured_channel_is_skipped(self, engine, ctx, admin, make_staff, channels):
        staff_id = make_staff(chat_id="4242")
        mail_only = NotificationDispatcher({Channel.PRIMARY: channels[Channel.PRIMARY]})
        report = staff_service.send_test_message(
            engine, replace(ctx, chat_connected=True), staff_id,
            actor=admin, dispatcher=mail_only,
        )
        assert report.skipped == [(staff_id, "chat")]

    def test_mail_channel_can_be_chosen(self, engine, ctx, admin, make_staff, dispatcher,
                                        channels):
        staff_id = make_staff(email="mia@example.com")
        report = staff_service.send_test_message(
            engine, ctx, staff_id, actor=admin, dispatcher=dispatcher, channel=Channel.PRIMARY,
        )
        assert report.sent == [(staff_id, "primary")]
        assert channels[Channel.PRIMARY].send.call_args.args[0] == "mia@example.com"

    def test_admin_only(self, engine, ctx, make_staff, dispatcher):
        staff_id = make_staff()
        with pytest.raises(Forbidden):
            staff_service.send_test_message(
                engine, ctx, staff_id, actor=Actor(id=staff_id), dispatcher=dispatcher,
            )
