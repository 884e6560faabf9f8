# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Cognitive taxonomy levels and the rules built on them.

Six ordered tiers classify how deeply a submission shows understanding.
Everything that needs to compare levels or decide which level a set of
sub-scores demonstrates goes through this module.

Example:
    >>> determine_demonstrated_level({TaxonomyLevel.APPLY: 95.0})
    <TaxonomyLevel.APPLY: 'apply'>
    >>> mastery_label_for(75.0)
    <MasteryLabel.DEVELOPING: 'developing'>
"""

from collections.abc import Mapping
from enum import Enum

DEFAULT_DEMONSTRATION_THRESHOLD = 60.0


class TaxonomyLevel(str, Enum):
    """Cognitive level, declared lowest to highest."""

    REMEMBER = "remember"
    UNDERSTAND = "understand"
    APPLY = "apply"
    ANALYZE = "analyze"
    EVALUATE = "evaluate"
    CREATE = "create"

    @property
    def rank(self) -> int:
        """0-based position in the ordering."""
        return ORDERED_LEVELS.index(self)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, TaxonomyLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, TaxonomyLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, TaxonomyLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, TaxonomyLevel):
            return NotImplemented
        return self.rank >= other.rank


class MasteryLabel(str, Enum):
    """Qualitative band for a mastery percentage."""

    BEGINNER = "beginner"
    EMERGING = "emerging"
    DEVELOPING = "developing"
    PROFICIENT = "proficient"
    MASTERED = "mastered"


ORDERED_LEVELS: tuple[TaxonomyLevel, ...] = tuple(TaxonomyLevel)

# Lower bounds, checked highest first.
MASTERY_BANDS: tuple[tuple[float, MasteryLabel], ...] = (
    (90.0, MasteryLabel.MASTERED),
    (80.0, MasteryLabel.PROFICIENT),
    (70.0, MasteryLabel.DEVELOPING),
    (60.0, MasteryLabel.EMERGING),
)


def level_index(level: TaxonomyLevel) -> int:
    """Return the 0-based position of a level."""
    return ORDERED_LEVELS.index(level)


def level_at_or_above(threshold_index: int) -> TaxonomyLevel:
    """Return the level at the given index, clamped into the valid range."""
    clamped = max(0, min(threshold_index, len(ORDERED_LEVELS) - 1))
    return ORDERED_LEVELS[clamped]


def lowest_level() -> TaxonomyLevel:
    return ORDERED_LEVELS[0]


def highest_level() -> TaxonomyLevel:
    return ORDERED_LEVELS[-1]


def parse_level(value: str | TaxonomyLevel) -> TaxonomyLevel:
    """Parse a level name case-insensitively.

    Raises:
        ValueError: If the value names no level.
    """
    if isinstance(value, TaxonomyLevel):
        return value
    try:
        return TaxonomyLevel(value.strip().lower())
    except ValueError as e:
        raise ValueError(f"Unknown taxonomy level: {value!r}") from e


def determine_demonstrated_level(
    level_scores: Mapping[TaxonomyLevel, float],
    threshold: float = DEFAULT_DEMONSTRATION_THRESHOLD,
) -> TaxonomyLevel:
    """Decide which level a set of per-level sub-scores demonstrates.

    The result is the highest level whose sub-score reaches the threshold.
    When no level reaches it, the lowest level present in the map is
    returned so that every scored submission maps to some level.

    Args:
        level_scores: Sub-score in [0, 100] per level. Must not be empty.
        threshold: Minimum sub-score for a level to count as demonstrated.

    Returns:
        The demonstrated level.

    Raises:
        ValueError: If level_scores is empty.
    """
    if not level_scores:
        raise ValueError("level_scores must contain at least one level")

    for level in reversed(ORDERED_LEVELS):
        score = level_scores.get(level)
        if score is not None and score >= threshold:
            return level

    return min(level_scores, key=level_index)


def mastery_label_for(percentage: float) -> MasteryLabel:
    """Map a mastery percentage to its label."""
    for lower_bound, label in MASTERY_BANDS:
        if percentage >= lower_bound:
            return label
    return MasteryLabel.BEGINNER
