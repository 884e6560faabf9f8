# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Taxonomy domain: ordered cognitive levels and mastery labels."""

from mastery_engine.domains.taxonomy.levels import (
    DEFAULT_DEMONSTRATION_THRESHOLD,
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

__all__ = [
    "DEFAULT_DEMONSTRATION_THRESHOLD",
    "ORDERED_LEVELS",
    "MasteryLabel",
    "TaxonomyLevel",
    "determine_demonstrated_level",
    "highest_level",
    "level_at_or_above",
    "level_index",
    "lowest_level",
    "mastery_label_for",
    "parse_level",
]
