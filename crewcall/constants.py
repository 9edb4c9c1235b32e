"""
crewcall.constants — Shared Constants & Helpers
================================================

Single source of truth for notification kinds, dispatch channels and
the small text helpers shared by services and templates.
"""

from __future__ import annotations

import enum
import re


# ---------------------------------------------------------------------------
# Notification vocabulary
# ---------------------------------------------------------------------------
class NotificationKind(enum.StrEnum):
    """Template kinds handed to the dispatch collaborator."""
    CREATED = "created"
    CANCELLED = "cancelled"
    REINSTATED = "reinstated"
    SELECTED = "selected"
    REJECTED = "rejected"
    POINTS_AWARDED = "points-awarded"
    LEVEL_UP = "level-up"
    TEST = "test"


class Channel(enum.StrEnum):
    """Outbound notification channels."""
    PRIMARY = "primary"  # mail
    CHAT = "chat"        # Telegram bot


# Kinds that are part of an event's lifecycle; the primary channel ignores
# per-staff opt-outs for these.
LIFECYCLE_KINDS: frozenset[NotificationKind] = frozenset({
    NotificationKind.CREATED,
    NotificationKind.CANCELLED,
    NotificationKind.REINSTATED,
    NotificationKind.SELECTED,
    NotificationKind.REJECTED,
})


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------
PARTICIPATION_REASON_PREFIX = "event participation: "


def participation_reason(event_name: str) -> str:
    """Reason text written on an event participation award."""
    return f"{PARTICIPATION_REASON_PREFIX}{event_name}"


# ---------------------------------------------------------------------------
# Contact validation
# ---------------------------------------------------------------------------
_EMAIL_REGEX = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_CHAT_ID_REGEX = re.compile(r"^\d+$")


def is_valid_email(value: str | None) -> bool:
    """Cheap syntactic check; deliverability is the mail provider's job."""
    return bool(value) and _EMAIL_REGEX.match(value.strip()) is not None


def is_numeric_chat_id(value: str | None) -> bool:
    """Telegram chat ids are digits only; usernames are not accepted."""
    return bool(value) and _CHAT_ID_REGEX.match(value) is not None
