"""Common types and enums shared across all models."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base model serialized with camelCase keys on the wire.

    Python code uses snake_case attributes; input accepts either form.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Coordinates(WireModel):
    """Geographic coordinates (WGS84)."""

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class NodeType(str, Enum):
    """Kind of itinerary item."""

    activity = "activity"
    attraction = "attraction"
    meal = "meal"
    transport = "transport"
    accommodation = "accommodation"


class NodeStatus(str, Enum):
    """Lifecycle status of a node."""

    planned = "planned"
    in_progress = "in_progress"
    completed = "completed"
    skipped = "skipped"
    cancelled = "cancelled"


class ChangeScope(str, Enum):
    """What part of the itinerary an operation addresses."""

    trip = "trip"
    day = "day"
    node = "node"
    metadata = "metadata"


class ChatScope(str, Enum):
    """Scope the user is looking at when sending a chat message."""

    trip = "trip"
    day = "day"
    node = "node"


class TaskType(str, Enum):
    """Classified task for a chat turn."""

    move_time = "move_time"
    move_node = "move_node"
    insert_place = "insert_place"
    delete_node = "delete_node"
    replace_node = "replace_node"
    edit = "edit"
    book_node = "book_node"
    enrich_node = "enrich_node"
    replan_day = "replan_day"
    undo = "undo"
    explain = "explain"
    unknown = "unknown"


class ErrorCode(str, Enum):
    """User-facing outcome codes for chat turns and applies."""

    LOW_CONFIDENCE_CLASSIFICATION = "LOW_CONFIDENCE_CLASSIFICATION"
    NO_CAPABLE_AGENT = "NO_CAPABLE_AGENT"
    AMBIGUOUS_TARGET = "AMBIGUOUS_TARGET"
    STALE_VERSION_CONFLICT = "STALE_VERSION_CONFLICT"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    EXTERNAL_SERVICE_FAILURE = "EXTERNAL_SERVICE_FAILURE"
    TRANSPORT_FAILURE = "TRANSPORT_FAILURE"
    DISAMBIGUATION_EXPIRED = "DISAMBIGUATION_EXPIRED"
    INTERNAL_ERROR = "INTERNAL_ERROR"
