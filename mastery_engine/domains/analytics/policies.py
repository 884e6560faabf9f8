# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pluggable scoring policies used by the record builder.

The engagement score and the level used for untagged submissions are
business decisions that change independently of the pipeline, so both are
expressed as small protocols with a deterministic default. Deployments swap
them by passing another implementation to PerformanceRecordBuilder.
"""

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from mastery_engine.domains.analytics.events import SubmissionGraded
from mastery_engine.domains.taxonomy import TaxonomyLevel


def clamp(value: float, lower: float = 0.0, upper: float = 100.0) -> float:
    return max(lower, min(upper, value))


@runtime_checkable
class EngagementPolicy(Protocol):
    """Computes an engagement score in [0, 100] for one submission."""

    def score(self, event: SubmissionGraded, percentage: float) -> float:
        ...


@runtime_checkable
class LevelTaggingPolicy(Protocol):
    """Chooses the taxonomy level for a submission without explicit sub-scores."""

    def level_for(self, event: SubmissionGraded, percentage: float) -> TaxonomyLevel:
        ...


@dataclass(frozen=True)
class ParticipationEngagementPolicy:
    """Percentage shifted by a bounded participation term.

    The participation term peaks at +max_adjustment when the time spent
    equals the expected duration and falls linearly to -max_adjustment when
    the student spent no time or at least twice the expected time. Without a
    time measurement the term is zero.

    Attributes:
        expected_duration_minutes: Fallback when the event carries none.
        max_adjustment: Bound on the participation term, in points.
    """

    expected_duration_minutes: float = 30.0
    max_adjustment: float = 10.0

    def participation_term(self, event: SubmissionGraded) -> float:
        if event.time_spent_minutes is None:
            return 0.0
        expected = event.expected_duration_minutes or self.expected_duration_minutes
        if expected <= 0:
            return 0.0
        deviation = min(abs(event.time_spent_minutes / expected - 1.0), 1.0)
        return self.max_adjustment * (1.0 - 2.0 * deviation)

    def score(self, event: SubmissionGraded, percentage: float) -> float:
        return round(clamp(percentage + self.participation_term(event)), 2)


@dataclass(frozen=True)
class TaggedLevelPolicy:
    """Uses the submission's tagged level, or a configured default."""

    default_level: TaxonomyLevel = TaxonomyLevel.REMEMBER

    def level_for(self, event: SubmissionGraded, percentage: float) -> TaxonomyLevel:
        return event.tagged_level or self.default_level
