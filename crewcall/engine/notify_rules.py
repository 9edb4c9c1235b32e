"""
crewcall.engine.notify_rules — Notification Eligibility Resolver
=================================================================

Decides *whether* a notification should be attempted for one staff
member on one channel.  Never sends anything; a ``False`` answer is not
an error.
"""

from __future__ import annotations

from crewcall.constants import (
    LIFECYCLE_KINDS,
    Channel,
    NotificationKind,
    is_numeric_chat_id,
    is_valid_email,
)
from crewcall.database.models import StaffStatus
from crewcall.engine.context import EngineContext
from crewcall.engine.errors import InvalidChatId


def is_notifiable(staff, channel: Channel | str, ctx: EngineContext) -> bool:
    """Channel-level eligibility for *staff*.

    * ``primary`` — active account with a valid email address.
    * ``chat`` — integration connected, active account, numeric chat id.
    """
    if staff.status != StaffStatus.ACTIVE:
        return False
    if channel == Channel.PRIMARY:
        return is_valid_email(staff.email)
    if channel == Channel.CHAT:
        return ctx.chat_connected and is_numeric_chat_id(staff.chat_id)
    return False


def wants(preferences, kind: NotificationKind | str, channel: Channel | str) -> bool:
    """Per-staff opt-outs.  Missing preferences mean "send everything".

    Lifecycle kinds always go out on the primary channel.
    """
    if preferences is None:
        return True
    if channel == Channel.PRIMARY and kind in LIFECYCLE_KINDS:
        return True
    if kind == NotificationKind.CREATED:
        return preferences.notify_new_events
    if kind == NotificationKind.POINTS_AWARDED:
        return preferences.notify_points
    if kind == NotificationKind.LEVEL_UP:
        return preferences.notify_level_up
    return True


def should_notify(staff, kind: NotificationKind | str, channel: Channel | str,
                  ctx: EngineContext) -> bool:
    return is_notifiable(staff, channel, ctx) and wants(
        getattr(staff, "preferences", None), kind, channel
    )


def validate_chat_id(value: str | None) -> str | None:
    """Boundary check for chat ids entered by admins or staff.

    Blank clears the id; anything non-numeric raises :class:`InvalidChatId`.
    """
    if value is None:
        return None
    cleaned = value.strip()
    if not cleaned:
        return None
    if not is_numeric_chat_id(cleaned):
        raise InvalidChatId(
            f"'{cleaned}' is not a valid chat id. Chat ids must be numeric."
        )
    return cleaned
