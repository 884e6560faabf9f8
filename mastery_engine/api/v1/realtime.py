# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Live dashboard WebSocket endpoint.

This module provides:
- WebSocket /live - RealtimeMetricsUpdated stream for a student or a class

Usage (JavaScript client):
    const ws = new WebSocket("wss://api.example.com/api/v1/analytics/live?class_id=class-1");
    ws.onmessage = (event) => render(JSON.parse(event.data));

The socket only pushes. Messages the client sends are read and ignored so
that disconnects are noticed.
"""

import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from mastery_engine.api.dependencies import EngineRuntime

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/live")
async def live_metrics(
    websocket: WebSocket,
    student_id: str | None = Query(None),
    class_id: str | None = Query(None),
) -> None:
    """Stream live metrics for a student and/or a class.

    Closes with 1008 when neither filter is given and with 1011 when the
    engine is not initialized.
    """
    if student_id is None and class_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    runtime: EngineRuntime | None = getattr(websocket.app.state, "runtime", None)
    if runtime is None:
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    await websocket.accept()
    subscription = runtime.broadcaster.subscribe(
        websocket.send_json, student_id=student_id, class_id=class_id
    )
    logger.info(
        "Live dashboard connected: subscriber=%s, student=%s, class=%s",
        subscription.subscriber_id,
        student_id,
        class_id,
    )

    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("Live dashboard disconnected: subscriber=%s", subscription.subscriber_id)
    finally:
        runtime.broadcaster.unsubscribe(subscription.subscriber_id)
