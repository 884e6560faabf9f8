# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for taxonomy levels and mastery labels."""

import pytest

from mastery_engine.domains.taxonomy import (
    ORDERED_LEVELS,
    MasteryLabel,
    TaxonomyLevel,
    determine_demonstrated_level,
    highest_level,
    level_at_or_above,
    level_index,
    lowest_level,
    mastery_label_for,
    parse_level,
)


class TestTaxonomyOrdering:
    """Tests for the ordering of taxonomy levels."""

    def test_levels_are_ordered_lowest_to_highest(self) -> None:
        """Test the declared order of the six levels."""
        assert [level.value for level in ORDERED_LEVELS] == [
            "remember",
            "understand",
            "apply",
            "analyze",
            "evaluate",
            "create",
        ]

    def test_comparison_follows_order(self) -> None:
        """Test rich comparisons use the taxonomy order, not the string value."""
        assert TaxonomyLevel.REMEMBER < TaxonomyLevel.UNDERSTAND
        assert TaxonomyLevel.CREATE > TaxonomyLevel.EVALUATE
        assert TaxonomyLevel.APPLY >= TaxonomyLevel.APPLY
        # "analyze" sorts before "apply" alphabetically but ranks above it
        assert TaxonomyLevel.ANALYZE > TaxonomyLevel.APPLY
        assert max(ORDERED_LEVELS) == TaxonomyLevel.CREATE

    def test_level_index(self) -> None:
        """Test 0-based positions."""
        assert level_index(TaxonomyLevel.REMEMBER) == 0
        assert level_index(TaxonomyLevel.CREATE) == 5
        assert TaxonomyLevel.ANALYZE.rank == 3

    def test_lowest_and_highest(self) -> None:
        assert lowest_level() == TaxonomyLevel.REMEMBER
        assert highest_level() == TaxonomyLevel.CREATE

    @pytest.mark.parametrize(
        ("index", "expected"),
        [
            (-3, TaxonomyLevel.REMEMBER),
            (0, TaxonomyLevel.REMEMBER),
            (2, TaxonomyLevel.APPLY),
            (5, TaxonomyLevel.CREATE),
            (42, TaxonomyLevel.CREATE),
        ],
    )
    def test_level_at_or_above_clamps(self, index: int, expected: TaxonomyLevel) -> None:
        """Test out-of-range indices clamp into the valid range."""
        assert level_at_or_above(index) == expected


class TestParseLevel:
    """Tests for parse_level."""

    def test_parses_case_insensitively(self) -> None:
        assert parse_level(" Apply ") == TaxonomyLevel.APPLY
        assert parse_level("CREATE") == TaxonomyLevel.CREATE

    def test_passes_levels_through(self) -> None:
        assert parse_level(TaxonomyLevel.EVALUATE) is TaxonomyLevel.EVALUATE

    def test_unknown_level_raises(self) -> None:
        with pytest.raises(ValueError, match="Unknown taxonomy level"):
            parse_level("synthesize")


class TestDetermineDemonstratedLevel:
    """Tests for determine_demonstrated_level."""

    def test_highest_level_reaching_threshold_wins(self) -> None:
        """Test the highest qualifying level is returned, not the best score."""
        scores = {
            TaxonomyLevel.REMEMBER: 99.0,
            TaxonomyLevel.APPLY: 75.0,
            TaxonomyLevel.EVALUATE: 61.0,
            TaxonomyLevel.CREATE: 40.0,
        }

        assert determine_demonstrated_level(scores) == TaxonomyLevel.EVALUATE

    def test_threshold_is_inclusive(self) -> None:
        assert determine_demonstrated_level({TaxonomyLevel.ANALYZE: 60.0}) == TaxonomyLevel.ANALYZE

    def test_falls_back_to_lowest_present_level(self) -> None:
        """Test a map with no qualifying level returns its lowest key."""
        scores = {TaxonomyLevel.EVALUATE: 10.0, TaxonomyLevel.UNDERSTAND: 59.9}

        assert determine_demonstrated_level(scores) == TaxonomyLevel.UNDERSTAND

    def test_custom_threshold(self) -> None:
        scores = {TaxonomyLevel.APPLY: 70.0, TaxonomyLevel.CREATE: 75.0}

        assert determine_demonstrated_level(scores, threshold=80.0) == TaxonomyLevel.APPLY
        assert determine_demonstrated_level(scores, threshold=75.0) == TaxonomyLevel.CREATE

    def test_raising_a_sub_score_never_lowers_the_level(self) -> None:
        """Test monotonicity: improving any sub-score cannot demote the result."""
        base = {level: 50.0 for level in ORDERED_LEVELS}
        before = determine_demonstrated_level(base)

        for level in ORDERED_LEVELS:
            improved = dict(base)
            improved[level] = 100.0
            assert determine_demonstrated_level(improved) >= before

    def test_empty_map_raises(self) -> None:
        with pytest.raises(ValueError):
            determine_demonstrated_level({})


class TestMasteryLabel:
    """Tests for mastery_label_for."""

    @pytest.mark.parametrize(
        ("percentage", "expected"),
        [
            (100.0, MasteryLabel.MASTERED),
            (90.0, MasteryLabel.MASTERED),
            (89.99, MasteryLabel.PROFICIENT),
            (80.0, MasteryLabel.PROFICIENT),
            (75.0, MasteryLabel.DEVELOPING),
            (70.0, MasteryLabel.DEVELOPING),
            (60.0, MasteryLabel.EMERGING),
            (59.99, MasteryLabel.BEGINNER),
            (0.0, MasteryLabel.BEGINNER),
        ],
    )
    def test_band_boundaries(self, percentage: float, expected: MasteryLabel) -> None:
        """Test lower bounds are inclusive."""
        assert mastery_label_for(percentage) == expected
