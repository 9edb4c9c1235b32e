"""
tests/test_ladder.py — Level Ladder Unit Tests
===============================================
Pure tests for level lookup, eligibility and ladder validation.
No database required.
"""

from __future__ import annotations

import pytest

from crewcall.engine.errors import InvalidLadder, InvalidReason
from crewcall.engine.ladder import LevelLadder, LevelRung, is_eligible
from crewcall.engine.ledger import derive_standing, derive_total, validate_reason

GOLD = LevelRung(id=1, name="Gold", min_points=1000, rank=0)
SILVER = LevelRung(id=2, name="Silver", min_points=500, rank=1)
BRONZE = LevelRung(id=3, name="Bronze", min_points=0, rank=2)


@pytest.fixture
def ladder() -> LevelLadder:
    # Deliberately unsorted input
    return LevelLadder((BRONZE, GOLD, SILVER))


class TestLevelFor:
    def test_levels_sorted_by_rank(self, ladder):
        assert [lvl.name for lvl in ladder.levels] == ["Gold", "Silver", "Bronze"]

    @pytest.mark.parametrize("points,expected", [
        (0, "Bronze"),
        (499, "Bronze"),
        (500, "Silver"),
        (999, "Silver"),
        (1000, "Gold"),
        (25_000, "Gold"),
    ])
    def test_thresholds(self, ladder, points, expected):
        assert ladder.level_for(points).name == expected

    def test_scenario_480_plus_50_reaches_silver(self, ladder):
        assert ladder.level_for(480).name == "Bronze"
        assert ladder.level_for(530).name == "Silver"
        assert ladder.is_level_up("Bronze", "Silver")

    def test_monotonic_in_points(self, ladder):
        """More points never yields a less prestigious level."""
        ranks = [ladder.level_for(p).rank for p in range(0, 1500, 10)]
        assert ranks == sorted(ranks, reverse=True)

    def test_total_for_every_non_negative_total(self, ladder):
        assert all(ladder.level_for(p) is not None for p in range(0, 2000, 37))

    def test_fallback_to_lowest_when_nothing_matches(self):
        ladder = LevelLadder((
            LevelRung(1, "Pro", 100, 0),
            LevelRung(2, "Rookie", 10, 1),
        ))
        assert ladder.level_for(3).name == "Rookie"

    def test_empty_ladder_returns_none(self):
        assert LevelLadder().level_for(100) is None


class TestNavigation:
    def test_next_level(self, ladder):
        assert ladder.next_level("Bronze") == SILVER
        assert ladder.next_level("Silver") == GOLD
        assert ladder.next_level("Gold") is None

    def test_points_to_next(self, ladder):
        assert ladder.points_to_next(480) == 20
        assert ladder.points_to_next(700) == 300
        assert ladder.points_to_next(1500) == 0

    def test_resolve_by_name_id_or_rung(self, ladder):
        assert ladder.resolve("Silver") == SILVER
        assert ladder.resolve(2) == SILVER
        assert ladder.resolve(SILVER) == SILVER
        assert ladder.resolve("Platinum") is None

    def test_level_down_is_not_level_up(self, ladder):
        assert not ladder.is_level_up("Silver", "Bronze")
        assert not ladder.is_level_up("Silver", "Silver")
        assert ladder.is_level_up(None, "Bronze")


class TestEligibility:
    def test_reflexive(self, ladder):
        for rung in ladder.levels:
            assert is_eligible(ladder, rung, rung)

    def test_higher_tier_may_join_lower_tier_events(self, ladder):
        assert is_eligible(ladder, "Gold", "Bronze")
        assert is_eligible(ladder, "Silver", "Bronze")

    def test_lower_tier_excluded_from_higher_tier_events(self, ladder):
        assert not is_eligible(ladder, "Bronze", "Silver")
        assert not is_eligible(ladder, "Silver", "Gold")

    def test_monotone_in_staff_level(self, ladder):
        """If a level qualifies, every more prestigious level does too."""
        for required in ladder.levels:
            flags = [is_eligible(ladder, staff, required) for staff in ladder.levels]
            # levels are ordered top → bottom, so once False it stays False
            assert flags == sorted(flags, reverse=True)

    def test_unknown_or_missing_level_never_eligible(self, ladder):
        assert not is_eligible(ladder, None, "Bronze")
        assert not is_eligible(ladder, "Ghost", "Bronze")
        assert not is_eligible(ladder, "Gold", None)


class TestValidate:
    def test_valid_ladder_passes(self, ladder):
        ladder.validate()

    def test_gap_in_ranks_rejected(self):
        ladder = LevelLadder((LevelRung(1, "A", 10, 0), LevelRung(2, "B", 0, 2)))
        with pytest.raises(InvalidLadder):
            ladder.validate()

    def test_non_monotonic_thresholds_rejected(self):
        ladder = LevelLadder((LevelRung(1, "A", 10, 0), LevelRung(2, "B", 50, 1)))
        with pytest.raises(InvalidLadder):
            ladder.validate()

    def test_equal_thresholds_allowed(self):
        LevelLadder((LevelRung(1, "A", 10, 0), LevelRung(2, "B", 10, 1))).validate()


class TestLedgerArithmetic:
    def test_total_is_sum_of_deltas(self):
        assert derive_total([100, 50, -30]) == 120

    def test_total_floored_at_zero(self):
        assert derive_total([20, -50]) == 0

    def test_floor_applies_to_sum_not_each_step(self):
        # -50 then +40: the raw sum is still negative
        assert derive_total([20, -50, 40]) == 10
        assert derive_total([-50, 40]) == 0

    def test_standing_follows_ladder(self, ladder):
        standing = derive_standing([480, 50], ladder)
        assert standing.points == 530
        assert standing.level == SILVER

    @pytest.mark.parametrize("reason", ["", "   ", None])
    def test_blank_reason_rejected(self, reason):
        with pytest.raises(InvalidReason):
            validate_reason(reason)

    def test_reason_is_stripped(self):
        assert validate_reason("  bonus ") == "bonus"
