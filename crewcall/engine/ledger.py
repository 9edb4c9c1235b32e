"""
crewcall.engine.ledger — Ledger Arithmetic
===========================================

Pure functions turning a staff member's ledger into their displayed
total and level.  The ledger is the source of truth; the total on the
staff row is only ever a copy of :func:`derive_total`.

Negative totals: the raw sum of deltas may go below zero after heavy
penalties, but the derived total is floored at zero on every read.  The
floor is applied to the sum, not to each step, so a later bonus first
has to pay back the negative balance.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from crewcall.engine.errors import InvalidReason
from crewcall.engine.ladder import LevelLadder, LevelRung


def raw_sum(deltas: Iterable[int]) -> int:
    return sum(deltas)


def derive_total(deltas: Iterable[int]) -> int:
    """``max(0, Σ deltas)``."""
    return max(0, raw_sum(deltas))


def validate_reason(reason: str | None) -> str:
    """Return the stripped reason or raise :class:`InvalidReason`."""
    cleaned = (reason or "").strip()
    if not cleaned:
        raise InvalidReason("A reason is required for every point adjustment")
    return cleaned


@dataclass(frozen=True, slots=True)
class Standing:
    """Derived total and level for one staff member."""

    points: int
    level: LevelRung | None


def derive_standing(deltas: Iterable[int], ladder: LevelLadder) -> Standing:
    total = derive_total(deltas)
    return Standing(points=total, level=ladder.level_for(total))


@dataclass
class LedgerResult:
    """Outcome of appending one entry to a staff member's ledger."""

    staff_id: int
    adjustment_id: int | None
    delta: int
    old_points: int
    new_points: int
    old_level: str | None
    new_level: str | None
    leveled_up: bool = False
    leveled_down: bool = False

    @property
    def level_changed(self) -> bool:
        return self.old_level != self.new_level
