# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the structured logging setup."""

import json
import logging

import pytest
import structlog

from mastery_engine.core.config.settings import Settings
from mastery_engine.utils import logging as engine_logging
from mastery_engine.utils.logging import event_context, setup_logging


@pytest.fixture
def json_logging(monkeypatch, capsys):
    """Configure JSON logging for one test and undo it afterwards."""
    root = logging.getLogger()
    level = root.level
    monkeypatch.setattr(engine_logging, "_handler", None)
    setup_logging(Settings(environment="staging", debug=False, log_level="INFO"))
    yield
    root.removeHandler(engine_logging._handler)
    root.setLevel(level)
    structlog.reset_defaults()


class TestEventContext:
    """Tests for event_context."""

    def test_binds_ids_and_restores_outer_context(self) -> None:
        structlog.contextvars.bind_contextvars(message_id="msg-1")
        try:
            with event_context(submission_id="sub-1", student_id="student-1"):
                inner = structlog.contextvars.get_contextvars()
            outer = structlog.contextvars.get_contextvars()
        finally:
            structlog.contextvars.clear_contextvars()

        assert inner == {"message_id": "msg-1", "submission_id": "sub-1", "student_id": "student-1"}
        assert outer == {"message_id": "msg-1"}


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_stdlib_records_carry_event_ids(self, json_logging, capsys) -> None:
        logger = logging.getLogger("mastery_engine.domains.realtime.dispatcher")

        with event_context(submission_id="sub-7", student_id="student-2"):
            logger.info("Retrying step %s", "aggregates_refreshed")

        line = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert line["event"] == "Retrying step aggregates_refreshed"
        assert line["submission_id"] == "sub-7"
        assert line["student_id"] == "student-2"
        assert line["level"] == "info"
        assert line["logger"] == "mastery_engine.domains.realtime.dispatcher"

    def test_second_call_keeps_the_first_handler(self, json_logging) -> None:
        handler = engine_logging._handler

        setup_logging(Settings(environment="staging", debug=False, log_level="DEBUG"))

        assert engine_logging._handler is handler
        assert logging.getLogger().handlers.count(handler) == 1
