# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Dramatiq broker for the mastery engine workers.

Inbound events can be handed to workers instead of being dispatched in
the API request. Three queues keep the traffic apart:

- analytics: SubmissionGraded and AchievementUnlocked events, one
  dispatcher pipeline run per message
- ranking: the periodic class re-rank sent by the scheduler
- maintenance: full aggregate rebuilds

Each worker thread owns a runtime (engine, Redis pool, dispatcher) bound
to its event loop; WorkerRuntimeMiddleware disposes it when the thread
shuts down. With DRAMATIQ_TEST_MODE=true a StubBroker replaces Redis.

Example:
    from mastery_engine.infrastructure.background.broker import setup_dramatiq

    broker = setup_dramatiq()
    broker.get_declared_queues()  # {"analytics", "ranking", "maintenance"}
"""

import logging
import threading

import dramatiq
from dramatiq.brokers.redis import RedisBroker
from dramatiq.brokers.stub import StubBroker
from dramatiq.middleware import Middleware

from mastery_engine.core.config import get_settings

logger = logging.getLogger(__name__)


class Queues:
    """Queue names, one per kind of engine work."""

    ANALYTICS = "analytics"
    RANKING = "ranking"
    MAINTENANCE = "maintenance"


class Priority:
    """Actor priorities; lower runs first. Grading events beat maintenance."""

    HIGH = 1
    NORMAL = 3
    LOW = 5


class WorkerRuntimeMiddleware(Middleware):
    """Disposes a worker thread's runtime when the thread stops.

    The hook runs on the worker thread itself, which is the only thread
    allowed to touch the runtime's event loop.
    """

    def before_worker_thread_shutdown(self, broker: dramatiq.Broker, thread: threading.Thread) -> None:
        # Imported here: the tasks package declares actors against this broker.
        from mastery_engine.infrastructure.background.tasks.base import close_thread_runtime

        try:
            close_thread_runtime()
        except Exception as e:
            logger.warning("Worker runtime did not close cleanly on %s: %s", thread.name, e)


class BrokerManager:
    """Creates the broker once per process.

    Attributes:
        _broker: The Dramatiq broker instance.
        _initialized: Whether the broker has been created.
    """

    def __init__(self) -> None:
        self._broker: dramatiq.Broker | None = None
        self._initialized = False

    @property
    def broker(self) -> dramatiq.Broker:
        """The configured broker.

        Raises:
            RuntimeError: If setup() has not run.
        """
        if self._broker is None:
            raise RuntimeError("Broker not initialized. Call setup() first.")
        return self._broker

    def setup(self) -> dramatiq.Broker:
        """Create the Redis broker, or the StubBroker in test mode."""
        if self._initialized:
            return self._broker  # type: ignore

        settings = get_settings()

        if settings.worker.test_mode:
            self._broker = StubBroker()
            self._broker.emit_after("process_boot")
            logger.info("Using StubBroker for engine tasks")
        else:
            redis_url = settings.redis.url
            self._broker = RedisBroker(url=redis_url)
            logger.info("Redis broker initialized (url: %s)", redis_url.split("@")[-1])

        self._broker.add_middleware(WorkerRuntimeMiddleware())
        dramatiq.set_broker(self._broker)
        self._initialized = True

        return self._broker

    def shutdown(self) -> None:
        if self._broker is not None:
            self._broker.close()
            self._broker = None
            self._initialized = False
            logger.info("Broker shutdown complete")


_broker_manager: BrokerManager | None = None


def get_broker_manager() -> BrokerManager:
    global _broker_manager
    if _broker_manager is None:
        _broker_manager = BrokerManager()
    return _broker_manager


def setup_dramatiq() -> dramatiq.Broker:
    """Configure the broker from settings.

    The API lifespan calls this before enqueuing ``?background=true``
    events; the tasks package calls it before declaring its actors.
    """
    return get_broker_manager().setup()


def get_broker() -> dramatiq.Broker:
    """The current broker.

    Raises:
        RuntimeError: If setup_dramatiq() has not run.
    """
    return get_broker_manager().broker


def shutdown_dramatiq() -> None:
    global _broker_manager
    if _broker_manager is not None:
        _broker_manager.shutdown()
        _broker_manager = None
