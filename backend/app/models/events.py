"""Real-time event models - what subscribers of an itinerary receive."""

from datetime import datetime
from typing import Any, Literal

from pydantic import Field

from backend.app.models.common import WireModel

EventType = Literal[
    "itinerary_updated",
    "agent_progress",
    "chat_response",
    "day_completed",
    "phase_transition",
]

Phase = Literal[
    "classifying",
    "proposing",
    "awaiting_selection",
    "preview",
    "applied",
]


class SyncEvent(WireModel):
    """Event pushed to every subscriber of an itinerary.

    `version` is the itinerary's version at publish time, letting receivers
    discard stale or out-of-order deliveries.
    """

    type: EventType
    itinerary_id: str
    version: int | None = Field(None, ge=0)
    timestamp: datetime
    payload: dict[str, Any] = Field(default_factory=dict)
