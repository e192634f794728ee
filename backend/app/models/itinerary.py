"""Itinerary models - the versioned, authoritative trip document."""

from collections.abc import Iterator
from datetime import datetime

from pydantic import Field, field_validator, model_validator

from backend.app.models.common import Coordinates, NodeStatus, NodeType, WireModel

HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class NodeLocation(WireModel):
    """Where a node takes place."""

    name: str | None = None
    address: str | None = None
    place_id: str | None = None
    coordinates: Coordinates | None = None


class NodeTiming(WireModel):
    """Local wall-clock timing, HH:MM."""

    start_time: str | None = Field(None, pattern=HHMM_PATTERN)
    end_time: str | None = Field(None, pattern=HHMM_PATTERN)
    duration_min: int | None = Field(None, ge=0)


class NodeCost(WireModel):
    """Estimated cost."""

    amount: float = Field(..., ge=0)
    currency: str = "EUR"
    per: str = "person"


class NodeDetails(WireModel):
    """Descriptive details."""

    category: str | None = None
    rating: float | None = Field(None, ge=0, le=5)
    description: str | None = None
    tags: list[str] = Field(default_factory=list)


class Node(WireModel):
    """Atomic itinerary item (activity, meal, transport, accommodation)."""

    id: str = Field(..., min_length=1)
    type: NodeType
    title: str
    location: NodeLocation | None = None
    timing: NodeTiming = Field(default_factory=NodeTiming)
    cost: NodeCost | None = None
    details: NodeDetails | None = None
    labels: list[str] = Field(default_factory=list)
    locked: bool = False
    booking_ref: str | None = None
    status: NodeStatus = NodeStatus.planned
    updated_by: str | None = None
    updated_at: datetime | None = None


class Day(WireModel):
    """One day of the trip; node order is display and travel order."""

    day_number: int = Field(..., ge=1)
    date: str | None = Field(None, description="ISO date, e.g. '2025-06-10'")
    location: str | None = None
    nodes: list[Node] = Field(default_factory=list)


class Itinerary(WireModel):
    """Versioned itinerary. Mutated only through ChangeSet application."""

    id: str = Field(..., min_length=1)
    version: int = Field(1, ge=0)
    title: str = ""
    summary: str | None = None
    currency: str = "EUR"
    start_date: str | None = None
    end_date: str | None = None
    days: list[Day] = Field(default_factory=list)
    updated_at: datetime | None = None

    @field_validator("days")
    @classmethod
    def validate_unique_day_numbers(cls, v: list[Day]) -> list[Day]:
        """Ensure each day number appears once."""
        numbers = [d.day_number for d in v]
        if len(numbers) != len(set(numbers)):
            raise ValueError("day numbers must be unique")
        return v

    @model_validator(mode="after")
    def validate_unique_node_ids(self) -> "Itinerary":
        """Ensure node ids are unique across the itinerary."""
        seen: set[str] = set()
        for node in self.iter_nodes():
            if node.id in seen:
                raise ValueError(f"duplicate node id: {node.id}")
            seen.add(node.id)
        return self

    def iter_nodes(self) -> Iterator[Node]:
        """Yield every node in day order."""
        for day in self.days:
            yield from day.nodes

    def get_day(self, day_number: int) -> Day | None:
        """Find a day by its number."""
        for day in self.days:
            if day.day_number == day_number:
                return day
        return None

    def locate_node(self, node_id: str) -> tuple[Day, int, Node] | None:
        """Find a node by id, returning (day, index, node)."""
        for day in self.days:
            for index, node in enumerate(day.nodes):
                if node.id == node_id:
                    return day, index, node
        return None

    def get_node(self, node_id: str) -> Node | None:
        """Find a node by id."""
        located = self.locate_node(node_id)
        return located[2] if located else None
