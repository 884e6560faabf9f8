# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Rewards domain: points ledger, student levels and leaderboards."""

from mastery_engine.domains.rewards.ledger import PointsHistoryItem, PointsLedger, PointsSummary
from mastery_engine.domains.rewards.points import (
    ACHIEVEMENT_POINTS,
    PointsSourceType,
    StudentLevel,
    derive_student_level,
    grade_points,
)
from mastery_engine.domains.rewards.ranking import (
    RankedStanding,
    RankingService,
    Standing,
    percentile_for,
    rank_standings,
)

__all__ = [
    "ACHIEVEMENT_POINTS",
    "PointsSourceType",
    "StudentLevel",
    "derive_student_level",
    "grade_points",
    "PointsLedger",
    "PointsHistoryItem",
    "PointsSummary",
    "RankingService",
    "RankedStanding",
    "Standing",
    "percentile_for",
    "rank_standings",
]
