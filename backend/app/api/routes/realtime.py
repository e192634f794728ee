"""Real-time WebSocket endpoint - streams an itinerary's sync events."""

import asyncio
import logging
from typing import Annotated

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from backend.app.api.deps import ServiceContainer
from backend.app.realtime.hub import Subscription, SyncHub, VersionGate

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


async def _forward(websocket: WebSocket, subscription: Subscription, gate: VersionGate) -> None:
    while True:
        event = await subscription.get()
        if not gate.accept(event):
            logger.debug(f"Dropped stale {event.type} v{event.version} for {event.itinerary_id}")
            continue
        await websocket.send_json(event.model_dump(mode="json", by_alias=True))


async def _drain_client(websocket: WebSocket) -> None:
    """Read until the client goes away; "ping" gets a "pong"."""
    while True:
        message = await websocket.receive_text()
        if message == "ping":
            await websocket.send_text("pong")


@router.websocket("/ws/itineraries/{itinerary_id}")
async def itinerary_events(
    websocket: WebSocket,
    itinerary_id: str,
    since_version: Annotated[int | None, Query(alias="sinceVersion", ge=0)] = None,
) -> None:
    """Push itinerary_updated, agent_progress, chat_response, day_completed and
    phase_transition events.

    Delivery is best-effort: a client that falls behind loses its oldest
    queued events and should re-fetch the itinerary on reconnect.
    """
    container: ServiceContainer = websocket.app.state.container
    hub: SyncHub = container.hub
    # Subscribe before accepting so nothing published right after the handshake is missed
    subscription = hub.subscribe(itinerary_id)
    gate = VersionGate(since_version or 0)
    await websocket.accept()
    logger.info(f"WebSocket subscribed to {itinerary_id} (since v{gate.version})")

    tasks = [
        asyncio.create_task(_forward(websocket, subscription, gate)),
        asyncio.create_task(_drain_client(websocket)),
    ]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                logger.warning(f"WebSocket for {itinerary_id} closed: {error!r}")
    finally:
        for task in tasks:
            task.cancel()
        hub.unsubscribe(subscription)
        logger.info(
            f"WebSocket unsubscribed from {itinerary_id} ({subscription.dropped} dropped)"
        )
