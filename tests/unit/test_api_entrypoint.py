# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the API server entry point and route registration."""

import os
from unittest.mock import patch

from mastery_engine.api import create_app, run
from mastery_engine.core.config.settings import clear_settings_cache


class TestRun:
    """Tests for the mastery-engine-api entry point."""

    def test_uses_api_settings(self) -> None:
        clear_settings_cache()
        try:
            with patch.dict(os.environ, {"API_PORT": "8080", "API_WORKERS": "3"}):
                with patch("mastery_engine.api.uvicorn.run") as uvicorn_run:
                    run()
        finally:
            clear_settings_cache()

        uvicorn_run.assert_called_once()
        kwargs = uvicorn_run.call_args.kwargs
        assert uvicorn_run.call_args.args == ("mastery_engine.api:create_app",)
        assert kwargs["factory"] is True
        assert kwargs["port"] == 8080
        assert kwargs["workers"] == 3
        assert kwargs["reload"] is False

    def test_reload_runs_single_process(self) -> None:
        clear_settings_cache()
        try:
            with patch.dict(os.environ, {"API_RELOAD": "true"}):
                with patch("mastery_engine.api.uvicorn.run") as uvicorn_run:
                    run()
        finally:
            clear_settings_cache()

        assert uvicorn_run.call_args.kwargs["workers"] is None
        assert uvicorn_run.call_args.kwargs["reload"] is True


class TestRoutes:
    """Tests for route registration."""

    def test_routes_registered(self) -> None:
        routes = [route.path for route in create_app().routes]

        assert "/health" in routes
        assert "/ready" in routes
        assert "/api/v1/analytics/events/submission-graded" in routes
        assert "/api/v1/analytics/events/achievement-unlocked" in routes
        assert "/api/v1/analytics/students/{student_id}/topics/{topic_id}/mastery" in routes
        assert "/api/v1/analytics/students/{student_id}/subjects/{subject_id}/progression" in routes
        assert "/api/v1/analytics/students/{student_id}/level" in routes
        assert "/api/v1/analytics/students/{student_id}/points" in routes
        assert "/api/v1/analytics/classes/{class_id}/leaderboard" in routes
        assert "/api/v1/analytics/live" in routes
