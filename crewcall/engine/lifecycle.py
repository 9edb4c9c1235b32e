"""
crewcall.engine.lifecycle — Event Status Transition Table
==========================================================

::

    draft ──► open ──► closed
               │ ▲
               ▼ │
            cancelled

``closed`` is terminal.  Closing always requires the event to be ``open``
at the moment of the call.
"""

from __future__ import annotations

from crewcall.database.models import EventStatus
from crewcall.engine.errors import InvalidTransition

__all__ = [
    "EDITABLE_STATUSES",
    "TRANSITIONS",
    "VISIBLE_TO_STAFF",
    "assert_transition",
    "can_transition",
]

TRANSITIONS: dict[EventStatus, frozenset[EventStatus]] = {
    EventStatus.DRAFT: frozenset({EventStatus.OPEN}),
    EventStatus.OPEN: frozenset({EventStatus.CLOSED, EventStatus.CANCELLED}),
    EventStatus.CANCELLED: frozenset({EventStatus.OPEN}),
    EventStatus.CLOSED: frozenset(),
}

# Full-field updates are allowed everywhere except the terminal state
EDITABLE_STATUSES: frozenset[EventStatus] = frozenset({
    EventStatus.DRAFT,
    EventStatus.OPEN,
    EventStatus.CANCELLED,
})

INITIAL_STATUSES: frozenset[EventStatus] = frozenset({
    EventStatus.DRAFT,
    EventStatus.OPEN,
})

VISIBLE_TO_STAFF: frozenset[EventStatus] = frozenset({
    EventStatus.OPEN,
    EventStatus.CLOSED,
})


def can_transition(current: str, requested: str) -> bool:
    try:
        return EventStatus(requested) in TRANSITIONS[EventStatus(current)]
    except ValueError:
        return False


def assert_transition(current: str, requested: str) -> None:
    """Raise :class:`InvalidTransition` naming both states if illegal."""
    if not can_transition(current, requested):
        raise InvalidTransition(str(current), str(requested))


def assert_editable(current: str) -> None:
    if EventStatus(current) not in EDITABLE_STATUSES:
        raise InvalidTransition(str(current), "updated")
