# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""HTTP and WebSocket surface for the mastery engine.

Run the server with the ``mastery-engine-api`` script, or point uvicorn
at the factory directly:

    uvicorn mastery_engine.api:create_app --factory --port 34100
"""

import uvicorn

from mastery_engine.api.app import create_app
from mastery_engine.core.config import get_settings


def run() -> None:
    """Serve the API with host, port and workers from APISettings."""
    settings = get_settings()
    uvicorn.run(
        "mastery_engine.api:create_app",
        factory=True,
        host=settings.api.host,
        port=settings.api.port,
        workers=None if settings.api.reload else settings.api.workers,
        reload=settings.api.reload,
        log_config=None,
    )


__all__ = ["create_app", "run"]
