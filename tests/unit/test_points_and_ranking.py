# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for point rules, student levels and leaderboard ordering."""

from datetime import datetime, timedelta, timezone

import pytest

from mastery_engine.domains.rewards.points import (
    ACHIEVEMENT_POINTS,
    StudentLevel,
    achievement_description,
    derive_student_level,
    grade_description,
    grade_points,
)
from mastery_engine.domains.rewards.ranking import (
    Standing,
    percentile_for,
    rank_standings,
)

T0 = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)


class TestGradePoints:
    """Tests for grade_points."""

    @pytest.mark.parametrize(
        ("percentage", "score", "max_score", "expected"),
        [
            (95.0, 95, 100, 15),
            (90.0, 90, 100, 15),
            (85.0, 85, 100, 12),
            (80.0, 80, 100, 12),
            (75.0, 75, 100, 8),
            (65.0, 65, 100, 5),
            (59.0, 59, 100, 2),
            (0.0, 0, 100, 2),
            (100.0, 100, 100, 20),
            (100.0, 10, 10, 20),
        ],
    )
    def test_bands_and_perfect_bonus(
        self, percentage: float, score: float, max_score: float, expected: int
    ) -> None:
        """Test band points and the +5 bonus for a perfect raw score."""
        assert grade_points(percentage, score, max_score) == expected

    def test_clamped_overscore_gets_no_bonus(self) -> None:
        """Test the bonus requires score == max score, not a 100% percentage."""
        assert grade_points(100.0, 120, 100) == 15

    def test_achievement_award_is_flat(self) -> None:
        assert ACHIEVEMENT_POINTS == 25

    def test_descriptions(self) -> None:
        assert grade_description("act-1", 87.456) == "Activity act-1 graded at 87.5%"
        assert achievement_description("ach-1", "First Steps") == "Achievement unlocked: First Steps"
        assert achievement_description("ach-1", None) == "Achievement unlocked: ach-1"


class TestDeriveStudentLevel:
    """Tests for derive_student_level."""

    @pytest.mark.parametrize(
        ("total", "level", "label", "to_next"),
        [
            (0, 1, "Beginner", 50),
            (49, 1, "Beginner", 1),
            (50, 2, "Novice", 50),
            (120, 3, "Intermediate", 80),
            (200, 4, "Proficient", 100),
            (399, 5, "Advanced", 1),
            (400, 6, "Expert", 100),
            (500, 7, "Master", 0),
            (1250, 7, "Master", 0),
        ],
    )
    def test_thresholds(self, total: int, level: int, label: str, to_next: int) -> None:
        result = derive_student_level(total)

        assert result == StudentLevel(
            level=level, label=label, total_points=total, points_to_next_level=to_next
        )

    def test_max_level(self) -> None:
        assert derive_student_level(500).is_max_level
        assert not derive_student_level(499).is_max_level

    def test_to_dict(self) -> None:
        assert derive_student_level(75).to_dict() == {
            "level": 2,
            "label": "Novice",
            "total_points": 75,
            "points_to_next_level": 25,
        }


class TestPercentile:
    """Tests for percentile_for."""

    @pytest.mark.parametrize(
        ("rank", "population", "expected"),
        [
            (1, 1, 100),
            (1, 2, 100),
            (2, 2, 50),
            (1, 3, 100),
            (2, 3, 67),
            (3, 3, 33),
            (8, 8, 13),
            (5, 8, 50),
            (7, 8, 25),
        ],
    )
    def test_round_half_up(self, rank: int, population: int, expected: int) -> None:
        """Test 100 * (N - rank + 1) / N rounded half up."""
        assert percentile_for(rank, population) == expected

    def test_empty_population_raises(self) -> None:
        with pytest.raises(ValueError):
            percentile_for(1, 0)


class TestRankStandings:
    """Tests for rank_standings."""

    def test_two_students(self) -> None:
        """Test 120 and 80 points rank 1 and 2 with percentiles 100 and 50."""
        ranked = rank_standings(
            [
                Standing("student-b", 80, T0 + timedelta(hours=2)),
                Standing("student-a", 120, T0 + timedelta(hours=1)),
            ]
        )

        assert [(r.student_id, r.rank, r.percentile) for r in ranked] == [
            ("student-a", 1, 100),
            ("student-b", 2, 50),
        ]

    def test_earlier_last_earned_breaks_ties(self) -> None:
        """Test a third 80-point student who got there first takes rank 2."""
        ranked = rank_standings(
            [
                Standing("student-a", 120, T0 + timedelta(hours=1)),
                Standing("student-b", 80, T0 + timedelta(hours=2)),
                Standing("student-c", 80, T0),
            ]
        )

        assert [(r.student_id, r.rank, r.percentile) for r in ranked] == [
            ("student-a", 1, 100),
            ("student-c", 2, 67),
            ("student-b", 3, 33),
        ]

    def test_student_id_settles_full_ties(self) -> None:
        ranked = rank_standings(
            [
                Standing("student-z", 40, T0),
                Standing("student-m", 40, T0),
            ]
        )

        assert [r.student_id for r in ranked] == ["student-m", "student-z"]

    def test_never_earned_sorts_last_among_equals(self) -> None:
        ranked = rank_standings(
            [
                Standing("student-a", 0, None),
                Standing("student-b", 0, T0),
            ]
        )

        assert [r.student_id for r in ranked] == ["student-b", "student-a"]

    def test_naive_and_aware_timestamps_compare(self) -> None:
        """Test values read back without tzinfo are treated as UTC."""
        ranked = rank_standings(
            [
                Standing("student-a", 10, (T0 + timedelta(minutes=5)).replace(tzinfo=None)),
                Standing("student-b", 10, T0),
            ]
        )

        assert [r.student_id for r in ranked] == ["student-b", "student-a"]
        assert ranked[1].last_earned_at.tzinfo == timezone.utc

    def test_ranks_are_dense_and_independent_of_input_order(self) -> None:
        standings = [
            Standing(f"student-{i:02d}", (i * 7) % 5 * 10, T0 + timedelta(minutes=i % 3))
            for i in range(12)
        ]

        forward = rank_standings(standings)
        backward = rank_standings(reversed(standings))

        assert [r.rank for r in forward] == list(range(1, 13))
        assert forward == backward

    def test_empty(self) -> None:
        assert rank_standings([]) == []

    def test_to_dict(self) -> None:
        ranked = rank_standings([Standing("student-a", 30, T0)])

        assert ranked[0].to_dict() == {
            "student_id": "student-a",
            "total_points": 30,
            "last_earned_at": T0.isoformat(),
            "rank": 1,
            "percentile": 100,
        }
