"""
crewcall.engine.ladder — Level Ladder Lookup & Eligibility
===========================================================

Pure lookup structure, no DB or network I/O.  Rank 0 is the most
prestigious rung; a higher rank number is a lower tier.

Two rules drive everything else:

* :meth:`LevelLadder.level_for` — walk from rank 0 downward and return
  the first rung whose ``min_points`` the total reaches.
* :func:`is_eligible` — a staff member may join events that require
  their own tier or any less prestigious (numerically higher) tier.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from crewcall.engine.errors import InvalidLadder

logger = logging.getLogger(__name__)

__all__ = ["LevelRung", "LevelLadder", "is_eligible"]


@dataclass(frozen=True, slots=True)
class LevelRung:
    """Immutable snapshot of one ``levels`` row."""

    id: int
    name: str
    min_points: int
    rank: int

    @classmethod
    def from_row(cls, row) -> LevelRung:
        return cls(id=row.id, name=row.name, min_points=row.min_points, rank=row.rank)


@dataclass(frozen=True)
class LevelLadder:
    """Ordered, immutable set of rungs (rank ascending)."""

    levels: tuple[LevelRung, ...] = ()
    _by_name: dict[str, LevelRung] = field(init=False, repr=False, compare=False)
    _by_id: dict[int, LevelRung] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        ordered = tuple(sorted(self.levels, key=lambda lvl: lvl.rank))
        object.__setattr__(self, "levels", ordered)
        object.__setattr__(self, "_by_name", {lvl.name: lvl for lvl in ordered})
        object.__setattr__(self, "_by_id", {lvl.id: lvl for lvl in ordered})

    @classmethod
    def from_rows(cls, rows: Iterable) -> LevelLadder:
        return cls(tuple(LevelRung.from_row(r) for r in rows))

    def __len__(self) -> int:
        return len(self.levels)

    def __bool__(self) -> bool:
        return bool(self.levels)

    # -------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------
    def by_name(self, name: str | None) -> LevelRung | None:
        return self._by_name.get(name) if name else None

    def by_id(self, level_id: int | None) -> LevelRung | None:
        return self._by_id.get(level_id) if level_id is not None else None

    def resolve(self, level: LevelRung | str | int | None) -> LevelRung | None:
        """Accept a rung, a level name or a level id."""
        if level is None or isinstance(level, LevelRung):
            return level
        if isinstance(level, int):
            return self.by_id(level)
        return self.by_name(level)

    def rank_of(self, level: LevelRung | str | int | None) -> int | None:
        rung = self.resolve(level)
        return rung.rank if rung else None

    @property
    def lowest(self) -> LevelRung | None:
        return self.levels[-1] if self.levels else None

    def level_for(self, points: int) -> LevelRung | None:
        """Return the rung a point total maps to.

        Falls back to the lowest-ranked rung when nothing matches (a ladder
        whose bottom rung has ``min_points > 0``).  Returns ``None`` only
        for an empty ladder.
        """
        for rung in self.levels:
            if rung.min_points <= points:
                return rung
        return self.lowest

    def next_level(self, level: LevelRung | str | int | None) -> LevelRung | None:
        """The next more prestigious rung, or ``None`` at the top."""
        rung = self.resolve(level)
        if rung is None:
            return None
        position = self.levels.index(rung)
        return self.levels[position - 1] if position > 0 else None

    def points_to_next(self, points: int) -> int:
        """Points still missing to reach the next rung (0 at the top)."""
        current = self.level_for(points)
        nxt = self.next_level(current)
        if nxt is None:
            return 0
        return max(0, nxt.min_points - points)

    def is_level_up(
        self,
        old: LevelRung | str | int | None,
        new: LevelRung | str | int | None,
    ) -> bool:
        """True if *new* is strictly more prestigious than *old*."""
        new_rank = self.rank_of(new)
        if new_rank is None:
            return False
        old_rank = self.rank_of(old)
        return old_rank is None or new_rank < old_rank

    # -------------------------------------------------------------------
    # Invariants
    # -------------------------------------------------------------------
    def validate(self) -> None:
        """Raise :class:`InvalidLadder` unless ranks are dense, names unique
        and thresholds non-increasing as rank increases."""
        ranks = [lvl.rank for lvl in self.levels]
        if ranks != list(range(len(ranks))):
            raise InvalidLadder(f"Level ranks must be 0..{len(ranks) - 1}, got {ranks}")
        names = [lvl.name for lvl in self.levels]
        if len(set(names)) != len(names):
            raise InvalidLadder("Level names must be unique")
        for upper, lower in zip(self.levels, self.levels[1:]):
            if lower.min_points > upper.min_points:
                raise InvalidLadder(
                    f"'{lower.name}' (rank {lower.rank}) needs more points than "
                    f"'{upper.name}' (rank {upper.rank})"
                )


def is_eligible(
    ladder: LevelLadder,
    staff_level: LevelRung | str | int | None,
    required_level: LevelRung | str | int | None,
) -> bool:
    """True iff ``rank(staff_level) <= rank(required_level)``.

    Unknown or missing levels are never eligible.
    """
    staff_rank = ladder.rank_of(staff_level)
    required_rank = ladder.rank_of(required_level)
    if staff_rank is None or required_rank is None:
        return False
    return staff_rank <= required_rank
