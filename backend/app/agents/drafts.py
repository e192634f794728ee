"""Structured-generation schemas for agents and their conversion to nodes."""

import uuid

from pydantic import BaseModel, Field

from backend.app.adapters.places import PlaceLookupClient
from backend.app.models.common import NodeType
from backend.app.models.itinerary import (
    HHMM_PATTERN,
    Node,
    NodeDetails,
    NodeLocation,
    NodeTiming,
)

DEFAULT_DURATION_MIN: dict[NodeType, int] = {
    NodeType.meal: 90,
    NodeType.attraction: 120,
    NodeType.activity: 120,
    NodeType.transport: 60,
    NodeType.accommodation: 60,
}

SYSTEM_PROMPT = """You edit travel itineraries. Answer only with JSON matching the schema.

CRITICAL CONSTRAINTS:
- Times are local 24-hour HH:MM.
- Do NOT invent bookings, prices or addresses you are not given.
- Keep titles short (under 60 characters) and specific."""


class NodeDraft(BaseModel):
    """One itinerary item as drafted by the language model."""

    title: str = Field(..., min_length=1, max_length=120)
    type: NodeType = NodeType.activity
    start_time: str | None = Field(None, pattern=HHMM_PATTERN)
    end_time: str | None = Field(None, pattern=HHMM_PATTERN)
    place_query: str | None = Field(None, description="Text to look the place up by")
    description: str | None = None
    category: str | None = None


class DayPlanDraft(BaseModel):
    """A replanned day."""

    nodes: list[NodeDraft] = Field(default_factory=list, max_length=12)


class EditDraft(BaseModel):
    """Field edits for one node; unset fields stay as they are."""

    title: str | None = None
    start_time: str | None = Field(None, pattern=HHMM_PATTERN)
    end_time: str | None = Field(None, pattern=HHMM_PATTERN)
    duration_min: int | None = Field(None, ge=0)
    description: str | None = None
    labels: list[str] | None = None

    def to_changes(self) -> dict[str, object]:
        changes: dict[str, object] = {}
        if self.title:
            changes["title"] = self.title
        timing = {
            k: v
            for k, v in (
                ("startTime", self.start_time),
                ("endTime", self.end_time),
                ("durationMin", self.duration_min),
            )
            if v is not None
        }
        if timing:
            changes["timing"] = timing
        if self.description:
            changes["details"] = {"description": self.description}
        if self.labels is not None:
            changes["labels"] = self.labels
        return changes


def new_node_id() -> str:
    return f"n_{uuid.uuid4().hex[:10]}"


def to_minutes(hhmm: str) -> int:
    hours, minutes = hhmm.split(":")
    return int(hours) * 60 + int(minutes)


def from_minutes(total: int) -> str:
    total = max(0, min(total, 23 * 60 + 59))
    return f"{total // 60:02d}:{total % 60:02d}"


def shifted_timing(timing: NodeTiming, start_time: str) -> dict[str, object]:
    """Timing changes that move a node to `start_time`, keeping its duration."""
    duration = timing.duration_min
    if duration is None and timing.start_time and timing.end_time:
        duration = to_minutes(timing.end_time) - to_minutes(timing.start_time)
    changes: dict[str, object] = {"startTime": start_time}
    if duration is not None and duration >= 0:
        changes["endTime"] = from_minutes(to_minutes(start_time) + duration)
    elif timing.end_time:
        changes["endTime"] = None
    return changes


def chronological_index(nodes: list[Node], start_time: str, skip_id: str | None = None) -> int:
    """Index at which a node starting at `start_time` keeps the day in time order.

    Computed over `nodes` with `skip_id` removed; untimed nodes don't move.
    """
    others = [n for n in nodes if n.id != skip_id]
    for index, node in enumerate(others):
        if node.timing.start_time and node.timing.start_time > start_time:
            return index
    return len(others)


def draft_to_node(draft: NodeDraft, location: NodeLocation | None = None) -> Node:
    duration = DEFAULT_DURATION_MIN.get(draft.type)
    end_time = draft.end_time
    if draft.start_time and end_time:
        duration = max(0, to_minutes(end_time) - to_minutes(draft.start_time))
    elif draft.start_time and duration:
        end_time = from_minutes(to_minutes(draft.start_time) + duration)
    details = None
    if draft.description or draft.category:
        details = NodeDetails(description=draft.description, category=draft.category)
    return Node(
        id=new_node_id(),
        type=draft.type,
        title=draft.title,
        location=location or NodeLocation(name=draft.place_query or draft.title),
        timing=NodeTiming(start_time=draft.start_time, end_time=end_time, duration_min=duration),
        details=details,
    )


async def locate(
    places: PlaceLookupClient | None, query: str, near: str | None = None
) -> tuple[NodeLocation, bool]:
    """Look a place up; on any failure fall back to a name-only location.

    Returns the location and whether the lookup succeeded.
    """
    if places is None:
        return NodeLocation(name=query), False
    place = await places.resolve(f"{query}, {near}" if near else query)
    if place is None:
        return NodeLocation(name=query), False
    return (
        NodeLocation(
            name=place.name or query,
            address=place.address,
            place_id=place.place_id,
            coordinates=place.coordinates,
        ),
        True,
    )
