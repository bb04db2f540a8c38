"""
telemetry.py — Sensor snapshot, leak alert and escalation routes.

Routes:
  GET  /api/v1/telemetry/nodes/{node_id}   — latest reading for one node
  GET  /api/v1/telemetry/alert             — classify the current node pair
  POST /api/v1/telemetry/alert/escalate    — email maintenance + record a pending report
  WS   /api/v1/telemetry/stream            — push {alert, node_a, node_b} on every change

HOW THE DATA FLOWS
──────────────────
1. The dashboard opens the WebSocket (or polls GET /alert).
2. Each new snapshot pair runs through the classifier; the result (alert or
   null) is pushed as-is. Alerts are never stored at this point.
3. If the user presses "send alert", the client posts the alert it holds,
   together with the two readings, to /alert/escalate.
"""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect

from hydrozen.core.config import settings
from hydrozen.core.security import CurrentUserId
from hydrozen.models.telemetry import (
    AlertCheckResponse,
    EscalationRequest,
    EscalationResponse,
    SensorSnapshot,
)
from hydrozen.routes.deps import get_escalator, get_telemetry_store
from hydrozen.services.anomaly import classify_snapshots
from hydrozen.services.escalation import AlertEscalator
from hydrozen.services.telemetry_store import TelemetryStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/telemetry", tags=["telemetry"])


@router.get("/nodes/{node_id}", response_model=SensorSnapshot)
async def get_node(node_id: str, store: TelemetryStore = Depends(get_telemetry_store)):
    """Latest reading for a single node."""
    snapshot = await store.read_node(node_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"No reading for node {node_id!r}")
    return snapshot


@router.get("/alert", response_model=AlertCheckResponse)
async def check_alert(store: TelemetryStore = Depends(get_telemetry_store)):
    """Read both nodes and classify. `alert` is null when the readings agree."""
    node_a, node_b = await store.read_pair()
    alert = classify_snapshots(node_a, node_b, settings.telemetry_variant)
    return AlertCheckResponse(
        variant=settings.telemetry_variant,
        alert=alert,
        node_a=node_a,
        node_b=node_b,
    )


@router.post("/alert/escalate", response_model=EscalationResponse)
async def escalate_alert(
    payload: EscalationRequest,
    user_id: CurrentUserId,
    escalator: AlertEscalator = Depends(get_escalator),
):
    """Send the alert to maintenance. success=false means nothing was sent or stored."""
    return await escalator.escalate(payload.alert, payload.node_a, payload.node_b, user_id=user_id)


@router.websocket("/stream")
async def telemetry_stream(websocket: WebSocket):
    """
    Live classification feed.

    One subscription per connection; it is cancelled when the client goes away.
    """
    await websocket.accept()
    store: TelemetryStore = websocket.app.state.telemetry_store

    async def push(node_a, node_b) -> None:
        alert = classify_snapshots(node_a, node_b, settings.telemetry_variant)
        message = AlertCheckResponse(
            variant=settings.telemetry_variant,
            alert=alert,
            node_a=node_a,
            node_b=node_b,
        )
        await websocket.send_text(json.dumps(message.model_dump(mode="json")))

    subscription = store.subscribe(push, interval=settings.telemetry_poll_seconds)
    try:
        while True:
            # Clients don't send anything meaningful; this just waits for the close frame
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("Telemetry WebSocket client disconnected")
    finally:
        subscription.cancel()
