# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Integration tests for the analytics API against a SQLite store."""

import time
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient
from starlette.websockets import WebSocketDisconnect

from mastery_engine.api.app import create_app
from mastery_engine.api.dependencies import EngineRuntime
from mastery_engine.domains.realtime import LiveBroadcaster, RealtimeDispatcher
from mastery_engine.infrastructure.cache import InMemoryTTLCache
from mastery_engine.infrastructure.concurrency import student_key
from mastery_engine.infrastructure.events import EventBus
from mastery_engine.infrastructure.notifications import DashboardNotifier, EventBusChannel

pytestmark = pytest.mark.integration

PREFIX = "/api/v1/analytics"


def eventually(predicate, timeout: float = 2.0) -> bool:
    """Poll a condition set by the app thread behind TestClient."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def submission_body(**overrides) -> dict:
    body = {
        "submission_id": "sub-1",
        "student_id": "student-1",
        "activity_id": "activity-1",
        "topic_id": "topic-1",
        "subject_id": "subject-1",
        "class_id": "class-1",
        "score": 95,
        "max_score": 100,
        "tagged_level": "apply",
        "submitted_at": "2025-03-10T09:00:00Z",
        "graded_at": "2025-03-10T09:01:00Z",
    }
    body.update(overrides)
    return body


@pytest.fixture
def runtime(session_factory, analytics_settings, no_sleep) -> EngineRuntime:
    bus = EventBus()
    cache = InMemoryTTLCache()
    broadcaster = LiveBroadcaster()
    dispatcher = RealtimeDispatcher(
        session_factory,
        notifier=DashboardNotifier([EventBusChannel(bus)]),
        broadcaster=broadcaster,
        settings=analytics_settings,
        cache=cache,
        sleep=no_sleep,
    )
    return EngineRuntime(
        session_factory=session_factory,
        dispatcher=dispatcher,
        broadcaster=broadcaster,
        cache=cache,
        bus=bus,
    )


@pytest.fixture
async def client(runtime):
    app = create_app(runtime=runtime)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http


@pytest.fixture
async def school(seed_school) -> None:
    await seed_school(
        classes={"class-1": "campus-1"},
        enrollments={"class-1": ["student-1", "student-2"]},
        teachers={"class-1": ["teacher-1"]},
    )


class TestEventIngestion:
    """Tests for the event endpoints."""

    async def test_submission_graded(self, client, school) -> None:
        response = await client.post(f"{PREFIX}/events/submission-graded", json=submission_body())

        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "success"
        assert data["total_points"] == 15
        assert data["class_rank"] == 1
        assert data["completed_steps"][-1] == "success"

    async def test_malformed_submission_returns_422(self, client) -> None:
        response = await client.post(
            f"{PREFIX}/events/submission-graded", json=submission_body(max_score=0)
        )

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["state"] == "failed_but_graded"
        assert detail["error"] == "malformed_submission: max_score must be positive"

    async def test_invalid_body_returns_422(self, client) -> None:
        body = submission_body()
        del body["student_id"]

        response = await client.post(f"{PREFIX}/events/submission-graded", json=body)

        assert response.status_code == 422

    async def test_delayed_submission_returns_202(self, client, runtime, school) -> None:
        runtime.dispatcher.locks.timeout = 0.01
        async with runtime.dispatcher.locks.hold(student_key("student-1")):
            response = await client.post(
                f"{PREFIX}/events/submission-graded", json=submission_body()
            )

        assert response.status_code == 202
        assert response.json()["delayed"] is True

    async def test_background_submission_is_queued(self, client) -> None:
        with patch(
            "mastery_engine.infrastructure.background.tasks.process_submission_graded"
        ) as actor:
            actor.send.return_value = MagicMock(message_id="msg-1")
            response = await client.post(
                f"{PREFIX}/events/submission-graded",
                params={"background": "true"},
                json=submission_body(),
            )

        assert response.status_code == 202
        assert response.json() == {"queued": True, "message_id": "msg-1"}
        payload = actor.send.call_args.args[0]
        assert payload["submission_id"] == "sub-1"
        assert payload["tagged_level"] == "apply"

    async def test_achievement_unlocked(self, client, school) -> None:
        body = {"student_id": "student-2", "achievement_id": "first-steps", "title": "First Steps"}

        first = await client.post(f"{PREFIX}/events/achievement-unlocked", json=body)
        second = await client.post(f"{PREFIX}/events/achievement-unlocked", json=body)

        assert first.status_code == 200
        assert first.json()["total_points"] == 25
        assert second.json()["total_points"] == 25


class TestQueries:
    """Tests for the read endpoints."""

    @pytest.fixture
    async def graded(self, client, school) -> None:
        await client.post(f"{PREFIX}/events/submission-graded", json=submission_body())
        await client.post(
            f"{PREFIX}/events/submission-graded",
            json=submission_body(submission_id="sub-2", score=55, graded_at="2025-03-10T09:05:00Z"),
        )
        await client.post(
            f"{PREFIX}/events/submission-graded",
            json=submission_body(submission_id="sub-3", student_id="student-2", score=100),
        )

    async def test_topic_mastery(self, client, graded) -> None:
        response = await client.get(f"{PREFIX}/students/student-1/topics/topic-1/mastery")

        assert response.status_code == 200
        data = response.json()
        assert data["mastery_percentage"] == 75.0
        assert data["mastery_label"] == "developing"
        assert data["activities_completed"] == 2

    async def test_topic_mastery_not_found(self, client) -> None:
        response = await client.get(f"{PREFIX}/students/nobody/topics/topic-1/mastery")

        assert response.status_code == 404

    async def test_subject_progression(self, client, graded) -> None:
        response = await client.get(f"{PREFIX}/students/student-1/subjects/subject-1/progression")
        missing = await client.get(f"{PREFIX}/students/student-1/subjects/subject-9/progression")

        assert response.status_code == 200
        assert response.json()["total_records"] == 2
        assert response.json()["level_counts"]["apply"] == 2
        assert missing.status_code == 404

    async def test_student_level(self, client, graded) -> None:
        response = await client.get(f"{PREFIX}/students/student-2/level")

        assert response.json() == {
            "student_id": "student-2",
            "level": 1,
            "label": "Beginner",
            "total_points": 20,
            "points_to_next_level": 30,
        }

    async def test_student_points(self, client, graded) -> None:
        response = await client.get(f"{PREFIX}/students/student-1/points", params={"limit": 1})

        data = response.json()
        assert data["total"] == 17
        assert [entry["source_id"] for entry in data["history"]] == ["sub-2"]

    async def test_class_leaderboard(self, client, graded) -> None:
        response = await client.get(f"{PREFIX}/classes/class-1/leaderboard", params={"limit": 1})

        data = response.json()
        assert data["total_students"] == 2
        assert [(e["student_id"], e["rank"], e["percentile"]) for e in data["entries"]] == [
            ("student-2", 1, 100)
        ]


class TestHealth:
    """Tests for health and readiness."""

    async def test_health(self, client) -> None:
        response = await client.get("/health")

        data = response.json()
        assert data["status"] == "healthy"
        assert data["components"]["database"]["status"] == "healthy"
        assert data["components"]["redis"]["status"] == "disabled"

    async def test_ready(self, client) -> None:
        response = await client.get("/ready")

        assert response.json()["ready"] is True

    async def test_queries_without_runtime_return_503(self) -> None:
        app = create_app()
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
            response = await http.get(f"{PREFIX}/students/student-1/level")

        assert response.status_code == 503


class TestLiveSocket:
    """Tests for the live dashboard WebSocket."""

    @pytest.fixture
    def broadcaster(self) -> LiveBroadcaster:
        return LiveBroadcaster()

    @pytest.fixture
    def socket_client(self, broadcaster) -> TestClient:
        runtime = EngineRuntime(
            session_factory=MagicMock(),
            dispatcher=MagicMock(),
            broadcaster=broadcaster,
            cache=InMemoryTTLCache(),
            bus=EventBus(),
        )
        return TestClient(create_app(runtime=runtime))

    def test_requires_a_filter(self, socket_client) -> None:
        with pytest.raises(WebSocketDisconnect) as excinfo:
            with socket_client.websocket_connect(f"{PREFIX}/live"):
                pass

        assert excinfo.value.code == 1008

    def test_subscription_lifecycle(self, socket_client, broadcaster) -> None:
        with socket_client.websocket_connect(f"{PREFIX}/live?class_id=class-1") as websocket:
            websocket.send_text("ping")
            assert eventually(lambda: broadcaster.subscriber_count == 1)

        assert eventually(lambda: broadcaster.subscriber_count == 0)
