# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Analytics domain: performance records, topic mastery and subject progression.

The query service and the rebuilder live in their own modules
(mastery_engine.domains.analytics.service, .rebuild) because they depend
on the rewards domain, which in turn imports records from here.
"""

from mastery_engine.domains.analytics.alerts import PerformanceAlertDetector, detect_alerts
from mastery_engine.domains.analytics.events import (
    AchievementUnlocked,
    AlertType,
    BloomsProgressionUpdated,
    DashboardType,
    DashboardUpdateRequired,
    PerformanceAlertTriggered,
    RealtimeMetricsUpdated,
    RecentActivity,
    SubmissionGraded,
)
from mastery_engine.domains.analytics.exceptions import (
    AnalyticsDelayed,
    AnalyticsError,
    ConcurrencyConflict,
    MalformedSubmission,
    NotificationDeliveryFailure,
    TransientStoreFailure,
)
from mastery_engine.domains.analytics.mastery import (
    TopicMasteryAggregator,
    TopicMasterySnapshot,
    compute_level_distribution,
    compute_topic_mastery,
)
from mastery_engine.domains.analytics.policies import (
    EngagementPolicy,
    LevelTaggingPolicy,
    ParticipationEngagementPolicy,
    TaggedLevelPolicy,
)
from mastery_engine.domains.analytics.progression import (
    ProgressionSnapshot,
    SubjectProgressionAggregator,
    compute_progression,
    detect_progression_change,
)
from mastery_engine.domains.analytics.records import (
    PerformanceRecordBuilder,
    RecordDraft,
    UpsertOutcome,
    compute_percentage,
)

__all__ = [
    # Events
    "SubmissionGraded",
    "AchievementUnlocked",
    "DashboardType",
    "DashboardUpdateRequired",
    "RecentActivity",
    "RealtimeMetricsUpdated",
    "BloomsProgressionUpdated",
    "AlertType",
    "PerformanceAlertTriggered",
    # Exceptions
    "AnalyticsError",
    "MalformedSubmission",
    "TransientStoreFailure",
    "ConcurrencyConflict",
    "AnalyticsDelayed",
    "NotificationDeliveryFailure",
    # Records
    "PerformanceRecordBuilder",
    "RecordDraft",
    "UpsertOutcome",
    "compute_percentage",
    "EngagementPolicy",
    "LevelTaggingPolicy",
    "ParticipationEngagementPolicy",
    "TaggedLevelPolicy",
    # Aggregates
    "TopicMasteryAggregator",
    "TopicMasterySnapshot",
    "compute_level_distribution",
    "compute_topic_mastery",
    "SubjectProgressionAggregator",
    "ProgressionSnapshot",
    "compute_progression",
    "detect_progression_change",
    "PerformanceAlertDetector",
    "detect_alerts",
]
