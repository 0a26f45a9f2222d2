"""Rank tier table tests: lookup boundaries, progress and validation."""

import pytest

from learnrank.exceptions import ConfigurationError, TierTableError
from learnrank.gamification.rank_tiers import (
    DEFAULT_TIER_TABLE,
    RANK_TIERS,
    RankTier,
    RankTierTable,
    validate_tiers,
)


def _tier(number: int, low: int, high: int | None, group: str = "novice") -> RankTier:
    return RankTier(tier_number=number, name=f"T{number}", min_points=low, max_points=high, tier_group=group)


class TestTierForPoints:
    """Lookup is inclusive on the floor and exclusive on the ceiling."""

    @pytest.mark.parametrize(
        ("points", "expected"),
        [
            (0, 1),
            (999, 1),
            (1000, 2),
            (2499, 2),
            (2500, 3),
            (9999, 4),
            (10000, 5),
            (349_999, 13),
            (350_000, 14),
            (10_000_000, 14),
        ],
    )
    def test_boundaries(self, points, expected):
        assert DEFAULT_TIER_TABLE.tier_for_points(points).tier_number == expected

    def test_negative_balance_maps_to_first_tier(self):
        assert DEFAULT_TIER_TABLE.tier_for_points(-50).tier_number == 1

    def test_fourteen_tiers_top_is_unbounded(self):
        assert len(DEFAULT_TIER_TABLE) == 14
        assert DEFAULT_TIER_TABLE.top.max_points is None
        assert DEFAULT_TIER_TABLE.top.tier_group == "legendary"

    def test_tier_groups(self):
        groups = [t.tier_group for t in DEFAULT_TIER_TABLE]
        assert groups[:3] == ["novice"] * 3
        assert groups[3:6] == ["intermediate"] * 3
        assert groups[12:] == ["legendary"] * 2


class TestNavigation:
    def test_get_clamps(self):
        assert DEFAULT_TIER_TABLE.get(0).tier_number == 1
        assert DEFAULT_TIER_TABLE.get(99).tier_number == 14

    def test_next_tier(self):
        assert DEFAULT_TIER_TABLE.next_tier(1).tier_number == 2
        assert DEFAULT_TIER_TABLE.next_tier(14) is None


class TestProgress:
    def test_halfway(self):
        assert DEFAULT_TIER_TABLE.progress(1, 500) == 0.5

    def test_clamped_below_and_above(self):
        assert DEFAULT_TIER_TABLE.progress(2, 10) == 0.0
        assert DEFAULT_TIER_TABLE.progress(1, 5000) == 1.0

    def test_top_tier_is_complete(self):
        assert DEFAULT_TIER_TABLE.progress(14, 350_000) == 1.0


class TestValidation:
    """A malformed table is refused at construction time."""

    def test_default_table_is_valid(self):
        validate_tiers(RANK_TIERS)

    def test_empty_table(self):
        with pytest.raises(TierTableError):
            validate_tiers([])

    def test_first_tier_must_start_at_zero(self):
        with pytest.raises(TierTableError):
            validate_tiers([_tier(1, 10, None)])

    def test_gap(self):
        with pytest.raises(TierTableError):
            RankTierTable([_tier(1, 0, 1000), _tier(2, 1200, None)])

    def test_overlap(self):
        with pytest.raises(TierTableError):
            RankTierTable([_tier(1, 0, 1000), _tier(2, 900, None)])

    def test_unbounded_tier_must_be_last(self):
        with pytest.raises(TierTableError):
            RankTierTable([_tier(1, 0, None), _tier(2, 1000, None)])

    def test_tier_numbers_must_be_dense(self):
        with pytest.raises(TierTableError):
            RankTierTable([_tier(1, 0, 1000), _tier(3, 1000, None)])

    def test_unknown_group(self):
        with pytest.raises(TierTableError):
            RankTierTable([_tier(1, 0, None, group="mythic")])

    def test_tier_table_error_is_configuration_error(self):
        assert issubclass(TierTableError, ConfigurationError)
