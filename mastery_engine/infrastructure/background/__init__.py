# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Background task infrastructure for the mastery engine.

Quick Start:
    # Setup broker (call once at startup)
    from mastery_engine.infrastructure.background import setup_dramatiq
    setup_dramatiq()

    # Send tasks
    from mastery_engine.infrastructure.background.tasks import process_submission_graded
    process_submission_graded.send(event.model_dump(mode="json"))

Running Workers:
    dramatiq mastery_engine.infrastructure.background.tasks --processes 2 --threads 4

Actors are not re-exported here: importing the tasks package declares them
against the configured broker.
"""

from mastery_engine.infrastructure.background.broker import (
    BrokerManager,
    Priority,
    Queues,
    WorkerRuntimeMiddleware,
    get_broker,
    get_broker_manager,
    setup_dramatiq,
    shutdown_dramatiq,
)
from mastery_engine.infrastructure.background.scheduler import (
    DramatiqScheduler,
    ScheduledTask,
    get_scheduler,
    get_scheduler_or_none,
    start_scheduler,
    stop_scheduler,
)

__all__ = [
    "BrokerManager",
    "Priority",
    "Queues",
    "WorkerRuntimeMiddleware",
    "get_broker",
    "get_broker_manager",
    "setup_dramatiq",
    "shutdown_dramatiq",
    "DramatiqScheduler",
    "ScheduledTask",
    "get_scheduler",
    "get_scheduler_or_none",
    "start_scheduler",
    "stop_scheduler",
]
