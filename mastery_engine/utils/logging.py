# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Structured logging for the mastery engine.

The API process and the Dramatiq worker processes share one setup. Engine
modules log through ``logging.getLogger(__name__)``; their records are
handed to structlog's ProcessorFormatter, so they carry the same
timestamp, level and bound context as structlog loggers. Output is
colored console text in development and one JSON object per line
elsewhere.

While the dispatcher drives one event it binds the event's ids with
event_context(), so retries, lock conflicts and dropped notifications of
that submission can be correlated:

    {"event": "Retrying step aggregates_refreshed for sub-1 ...",
     "submission_id": "sub-1", "student_id": "student-1",
     "level": "info", "logger": "mastery_engine.domains.realtime.dispatcher", ...}

Example:
    >>> from mastery_engine.utils.logging import event_context, setup_logging
    >>> setup_logging(get_settings())
    >>> with event_context(submission_id="sub-1", student_id="student-1"):
    ...     logging.getLogger(__name__).info("Aggregates refreshed")
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

import structlog
from structlog.types import Processor

if TYPE_CHECKING:
    from mastery_engine.core.config.settings import Settings

# Chatty at INFO during normal operation; the engine's own lines are enough.
NOISY_LOGGERS = (
    "uvicorn",
    "uvicorn.access",
    "uvicorn.error",
    "httpx",
    "httpcore",
    "sqlalchemy",
    "asyncio",
    "aiosqlite",
    "apscheduler",
    "dramatiq",
)

_handler: logging.Handler | None = None


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def setup_logging(settings: "Settings", force: bool = False) -> None:
    """Configure logging for an API or worker process.

    The API lifespan calls this at startup and the worker runtime calls it
    before building its first dispatcher. Later calls are no-ops unless
    force is set, so worker threads can call it freely.

    Args:
        settings: Application settings; log_level, environment and debug
            choose the level and the renderer.
        force: Reconfigure even if logging was already set up.
    """
    global _handler
    if _handler is not None and not force:
        return

    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    shared_processors = _shared_processors()

    renderer: Processor
    if settings.is_development or settings.debug:
        renderer = structlog.dev.ConsoleRenderer(colors=True)
    else:
        # JSON lines carry the traceback as a string
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    if _handler is not None:
        root.removeHandler(_handler)
    root.addHandler(handler)
    root.setLevel(log_level)
    _handler = handler

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    logging.getLogger("mastery_engine").setLevel(log_level)


@contextmanager
def event_context(**ids: object) -> Iterator[None]:
    """Bind event ids to every log line emitted inside the block.

    Context bound by the caller, such as a worker's message id, is kept
    and restored when the block exits.

    Args:
        **ids: Identifiers of the event being processed.
    """
    with structlog.contextvars.bound_contextvars(**ids):
        yield
