"""Learning Mastery & Ranking Engine.

Turns graded submissions into taxonomy-level competency classifications,
a gamified points ledger and continuously re-ranked leaderboards, and
pushes the results to live dashboards.

Copyright (C) 2025 Global Digital Labs (gdlabs.io)
SPDX-License-Identifier: LGPL-3.0-or-later
"""

__version__ = "1.0.0"
