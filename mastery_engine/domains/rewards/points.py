# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Point award rules and student levels.

Pure functions only; the ledger applies them to stored entries.

Example:
    >>> grade_points(95.0, score=100, max_score=100)
    20
    >>> derive_student_level(120).label
    'Intermediate'
"""

from dataclasses import dataclass
from enum import Enum

ACHIEVEMENT_POINTS = 25
PERFECT_SCORE_BONUS = 5

# (lower bound of percentage, points), checked highest first.
GRADE_POINT_BANDS: tuple[tuple[float, int], ...] = (
    (90.0, 15),
    (80.0, 12),
    (70.0, 8),
    (60.0, 5),
)
BELOW_PASSING_POINTS = 2

# (level, label, points needed to reach the level)
LEVEL_THRESHOLDS: tuple[tuple[int, str, int], ...] = (
    (1, "Beginner", 0),
    (2, "Novice", 50),
    (3, "Intermediate", 100),
    (4, "Proficient", 200),
    (5, "Advanced", 300),
    (6, "Expert", 400),
    (7, "Master", 500),
)


class PointsSourceType(str, Enum):
    ACTIVITY_GRADE = "activity_grade"
    ACHIEVEMENT = "achievement"


@dataclass(frozen=True)
class StudentLevel:
    """Gamified level for a points total."""

    level: int
    label: str
    total_points: int
    points_to_next_level: int

    @property
    def is_max_level(self) -> bool:
        return self.level == LEVEL_THRESHOLDS[-1][0]

    def to_dict(self) -> dict[str, object]:
        return {
            "level": self.level,
            "label": self.label,
            "total_points": self.total_points,
            "points_to_next_level": self.points_to_next_level,
        }


def grade_points(percentage: float, score: float, max_score: float) -> int:
    """Points for a graded activity.

    Args:
        percentage: Clamped percentage of the submission.
        score: Raw score, used for the perfect-score bonus.
        max_score: Raw maximum score.

    Returns:
        Band points plus the bonus when score equals max_score.
    """
    points = BELOW_PASSING_POINTS
    for lower_bound, band_points in GRADE_POINT_BANDS:
        if percentage >= lower_bound:
            points = band_points
            break

    if score == max_score:
        points += PERFECT_SCORE_BONUS
    return points


def derive_student_level(total_points: int) -> StudentLevel:
    """Map a points total to its level and the distance to the next one."""
    current = LEVEL_THRESHOLDS[0]
    next_threshold: int | None = None

    for position, threshold in enumerate(LEVEL_THRESHOLDS):
        if total_points >= threshold[2]:
            current = threshold
            following = LEVEL_THRESHOLDS[position + 1] if position + 1 < len(LEVEL_THRESHOLDS) else None
            next_threshold = following[2] if following else None

    level, label, _ = current
    points_to_next = 0 if next_threshold is None else next_threshold - total_points
    return StudentLevel(
        level=level,
        label=label,
        total_points=total_points,
        points_to_next_level=points_to_next,
    )


def grade_description(activity_id: str, percentage: float) -> str:
    return f"Activity {activity_id} graded at {percentage:.1f}%"


def achievement_description(achievement_id: str, title: str | None) -> str:
    return f"Achievement unlocked: {title or achievement_id}"
