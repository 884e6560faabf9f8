# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Analytics API endpoints.

This module provides endpoints for mastery analytics:
- POST /events/submission-graded - Ingest a graded submission
- POST /events/achievement-unlocked - Ingest an unlocked achievement
- GET /students/{student_id}/topics/{topic_id}/mastery - Topic mastery
- GET /students/{student_id}/subjects/{subject_id}/progression - Level distribution
- GET /students/{student_id}/level - Gamified level
- GET /students/{student_id}/points - Points summary and history
- GET /classes/{class_id}/leaderboard - Class standings

Events are processed inline by default; ``?background=true`` hands them
to the Dramatiq workers instead.

Example:
    POST /api/v1/analytics/events/submission-graded
"""

import logging
from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field

from mastery_engine.api.dependencies import get_dispatcher, get_query_service
from mastery_engine.domains.analytics.events import AchievementUnlocked, SubmissionGraded
from mastery_engine.domains.analytics.service import AnalyticsQueryService
from mastery_engine.domains.realtime import DispatchResult, RealtimeDispatcher

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================================
# Response Models
# ============================================================================


class DispatchResponse(BaseModel):
    """Outcome of processing one inbound event."""

    source_id: str = Field(description="Submission or achievement ID")
    student_id: str = Field(description="Student ID")
    state: str = Field(description="Terminal pipeline state")
    completed_steps: list[str] = Field(description="States passed through")
    error: str | None = Field(description="Failure reason, if any")
    delayed: bool = Field(description="Aggregates will catch up later")
    retryable: bool = Field(description="Redelivering the event may succeed")
    total_points: int | None = Field(description="Student total after the event")
    class_rank: int | None = Field(description="Rank in the event's class")
    alerts: int = Field(description="Performance alerts raised")


class QueuedResponse(BaseModel):
    """Acknowledgement of an event handed to the workers."""

    queued: bool = Field(default=True)
    message_id: str = Field(description="Dramatiq message ID")


class TopicMasteryResponse(BaseModel):
    student_id: str
    topic_id: str
    mastery_percentage: float = Field(ge=0.0, le=100.0)
    mastery_label: str
    level_distribution: dict[str, float]
    highest_demonstrated_level: str
    activities_completed: int
    total_time_spent_minutes: float
    last_activity_at: datetime | None


class ProgressionResponse(BaseModel):
    student_id: str
    subject_id: str
    level_counts: dict[str, int]
    last_demonstrated_level: str
    total_records: int
    last_activity_at: datetime | None


class StudentLevelResponse(BaseModel):
    student_id: str
    level: int = Field(ge=1, le=7)
    label: str
    total_points: int
    points_to_next_level: int


class PointsHistoryEntry(BaseModel):
    source_type: str
    source_id: str
    points: int
    description: str
    earned_at: datetime | None


class PointsResponse(BaseModel):
    student_id: str
    total: int
    today: int
    this_week: int
    this_month: int
    level: dict[str, Any]
    history: list[PointsHistoryEntry]


class LeaderboardEntry(BaseModel):
    student_id: str
    total_points: int
    last_earned_at: datetime | None
    rank: int = Field(ge=1)
    percentile: int = Field(ge=0, le=100)


class LeaderboardResponse(BaseModel):
    class_id: str
    total_students: int
    entries: list[LeaderboardEntry]


def _dispatch_response(result: DispatchResult) -> DispatchResponse:
    return DispatchResponse(**result.to_dict())


# ============================================================================
# Ingestion
# ============================================================================


@router.post(
    "/events/submission-graded",
    response_model=DispatchResponse | QueuedResponse,
    summary="Ingest graded submission",
    responses={422: {"description": "Malformed submission"}},
)
async def ingest_submission_graded(
    event: SubmissionGraded,
    response: Response,
    background: Annotated[bool, Query(description="Process on the worker queue")] = False,
    dispatcher: RealtimeDispatcher = Depends(get_dispatcher),
) -> DispatchResponse | QueuedResponse:
    """Run a graded submission through the pipeline.

    Raises:
        HTTPException: 422 if the submission is malformed.
    """
    if background:
        from mastery_engine.infrastructure.background.tasks import process_submission_graded

        message = process_submission_graded.send(event.model_dump(mode="json"))
        response.status_code = status.HTTP_202_ACCEPTED
        return QueuedResponse(message_id=message.message_id)

    result = await dispatcher.handle_submission_graded(event)
    if result.error and result.error.startswith("malformed_submission"):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=result.to_dict(),
        )
    if not result.succeeded:
        response.status_code = status.HTTP_202_ACCEPTED
    return _dispatch_response(result)


@router.post(
    "/events/achievement-unlocked",
    response_model=DispatchResponse | QueuedResponse,
    summary="Ingest unlocked achievement",
)
async def ingest_achievement_unlocked(
    event: AchievementUnlocked,
    response: Response,
    background: Annotated[bool, Query(description="Process on the worker queue")] = False,
    dispatcher: RealtimeDispatcher = Depends(get_dispatcher),
) -> DispatchResponse | QueuedResponse:
    """Award achievement points and re-rank the student's classes."""
    if background:
        from mastery_engine.infrastructure.background.tasks import process_achievement_unlocked

        message = process_achievement_unlocked.send(event.model_dump(mode="json"))
        response.status_code = status.HTTP_202_ACCEPTED
        return QueuedResponse(message_id=message.message_id)

    result = await dispatcher.handle_achievement_unlocked(event)
    if not result.succeeded:
        response.status_code = status.HTTP_202_ACCEPTED
    return _dispatch_response(result)


# ============================================================================
# Queries
# ============================================================================


@router.get(
    "/students/{student_id}/topics/{topic_id}/mastery",
    response_model=TopicMasteryResponse,
    summary="Get topic mastery",
)
async def get_topic_mastery(
    student_id: str,
    topic_id: str,
    service: AnalyticsQueryService = Depends(get_query_service),
) -> TopicMasteryResponse:
    """Get mastery of one topic.

    Raises:
        HTTPException: 404 if the student has no records in the topic.
    """
    snapshot = await service.get_topic_mastery(student_id, topic_id)
    if snapshot is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No mastery for student {student_id} in topic {topic_id}",
        )
    return TopicMasteryResponse(**snapshot.to_dict())


@router.get(
    "/students/{student_id}/subjects/{subject_id}/progression",
    response_model=ProgressionResponse,
    summary="Get subject progression",
)
async def get_subject_progression(
    student_id: str,
    subject_id: str,
    service: AnalyticsQueryService = Depends(get_query_service),
) -> ProgressionResponse:
    """Get the demonstrated-level distribution in a subject.

    Raises:
        HTTPException: 404 if the student has no progression in the subject.
    """
    snapshot = await service.get_subject_progression(student_id, subject_id)
    if snapshot is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No progression for student {student_id} in subject {subject_id}",
        )
    return ProgressionResponse(**snapshot.to_dict())


@router.get(
    "/students/{student_id}/level",
    response_model=StudentLevelResponse,
    summary="Get student level",
)
async def get_student_level(
    student_id: str,
    service: AnalyticsQueryService = Depends(get_query_service),
) -> StudentLevelResponse:
    level = await service.get_student_level(student_id)
    return StudentLevelResponse(student_id=student_id, **level.to_dict())


@router.get(
    "/students/{student_id}/points",
    response_model=PointsResponse,
    summary="Get points summary and history",
)
async def get_student_points(
    student_id: str,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    service: AnalyticsQueryService = Depends(get_query_service),
) -> PointsResponse:
    summary = await service.get_point_summary(student_id)
    history = await service.get_point_history(student_id, limit=limit)
    return PointsResponse(
        **summary.to_dict(),
        history=[PointsHistoryEntry(**item.to_dict()) for item in history],
    )


@router.get(
    "/classes/{class_id}/leaderboard",
    response_model=LeaderboardResponse,
    summary="Get class leaderboard",
)
async def get_class_leaderboard(
    class_id: str,
    limit: Annotated[int | None, Query(ge=1, le=500)] = None,
    service: AnalyticsQueryService = Depends(get_query_service),
) -> LeaderboardResponse:
    """Get class standings ordered by rank."""
    standings = await service.get_class_leaderboard(class_id)
    entries = standings[:limit] if limit is not None else standings
    return LeaderboardResponse(
        class_id=class_id,
        total_students=len(standings),
        entries=[LeaderboardEntry(**standing.to_dict()) for standing in entries],
    )
