"""
crewcall.services.templates — Notification text builders
=========================================================

All message wording lives here so the dispatcher and the channels only
need to supply data — no layout concerns.
"""

from __future__ import annotations

from typing import Any

from crewcall.constants import NotificationKind


def _event_line(payload: dict[str, Any]) -> str:
    parts = [payload.get("event_date"), payload.get("event_time")]
    when = " at ".join(str(p) for p in parts if p)
    where = payload.get("location")
    line = f"\U0001f4c5 {when}" if when else ""
    if where:
        line += f"\n\U0001f4cd {where}"
    return line


def _footer(payload: dict[str, Any]) -> str:
    url = payload.get("app_url")
    return f"\n\n{url}" if url else ""


def build_created(payload: dict[str, Any]) -> tuple[str, str]:
    name = payload.get("event_name", "New event")
    points = payload.get("points", 0)
    body = (
        f"New event open for sign-up: {name}\n"
        f"{_event_line(payload)}\n"
        f"⭐ {points} points for participating"
    )
    return f"New event: {name}", body + _footer(payload)


def build_cancelled(payload: dict[str, Any]) -> tuple[str, str]:
    name = payload.get("event_name", "An event")
    body = (
        f"❌ {name} has been cancelled.\n"
        f"{_event_line(payload)}\n"
        "Your sign-up is kept in case the event is reinstated."
    )
    return f"Cancelled: {name}", body + _footer(payload)


def build_reinstated(payload: dict[str, Any]) -> tuple[str, str]:
    name = payload.get("event_name", "An event")
    body = (
        f"✅ {name} is back on.\n"
        f"{_event_line(payload)}\n"
        "You are still signed up."
    )
    return f"Reinstated: {name}", body + _footer(payload)


def build_selected(payload: dict[str, Any]) -> tuple[str, str]:
    name = payload.get("event_name", "the event")
    body = f"\U0001f389 You have been selected for {name}.\n{_event_line(payload)}"
    return f"Selected: {name}", body + _footer(payload)


def build_rejected(payload: dict[str, Any]) -> tuple[str, str]:
    name = payload.get("event_name", "the event")
    body = (
        f"Thanks for signing up for {name}. "
        "You were not selected this time — keep an eye out for the next one."
    )
    return f"Not selected: {name}", body + _footer(payload)


def build_points_awarded(payload: dict[str, Any]) -> tuple[str, str]:
    delta = payload.get("delta", 0)
    total = payload.get("total", 0)
    reason = payload.get("reason", "")
    body = f"⭐ +{delta} points ({reason}).\nYour total is now {total}."
    return f"+{delta} points", body + _footer(payload)


def build_level_up(payload: dict[str, Any]) -> tuple[str, str]:
    level = payload.get("level", "a new level")
    body = (
        f"⚡ Level up! You reached {level}.\n"
        "New events are now available to you."
    )
    return f"Level up: {level}", body + _footer(payload)


def build_test(payload: dict[str, Any]) -> tuple[str, str]:
    name = payload.get("staff_name", "there")
    body = f"\U0001f44b Hi {name}, this is a test message. Notifications reach you here."
    return "Test message", body + _footer(payload)


_BUILDERS = {
    NotificationKind.CREATED: build_created,
    NotificationKind.CANCELLED: build_cancelled,
    NotificationKind.REINSTATED: build_reinstated,
    NotificationKind.SELECTED: build_selected,
    NotificationKind.REJECTED: build_rejected,
    NotificationKind.POINTS_AWARDED: build_points_awarded,
    NotificationKind.LEVEL_UP: build_level_up,
    NotificationKind.TEST: build_test,
}


def render(kind: NotificationKind | str, payload: dict[str, Any]) -> tuple[str, str]:
    """Return ``(subject, text)`` for *kind*."""
    return _BUILDERS[NotificationKind(kind)](payload)


def event_payload(event) -> dict[str, Any]:
    """Common payload fields describing an event."""
    return {
        "event_id": event.id,
        "event_name": event.name,
        "event_date": event.start_date.isoformat() if event.start_date else None,
        "event_time": event.time,
        "location": event.location,
        "points": event.points,
    }
