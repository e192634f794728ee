"""Models package - re-exports for convenience."""

from backend.app.models.changes import (
    ChangeOperation,
    ChangeSet,
    DeleteOp,
    DiffEntry,
    InsertOp,
    ItineraryDiff,
    MoveOp,
    NodeCandidate,
    OpTarget,
    ReplaceOp,
    RevisionInfo,
    UpdateOp,
)
from backend.app.models.chat import (
    ApplyRequest,
    ApplyResponse,
    ChatMessage,
    ChatRequest,
    ChatResponse,
    DisambiguateRequest,
)
from backend.app.models.common import (
    ChangeScope,
    ChatScope,
    Coordinates,
    ErrorCode,
    NodeStatus,
    NodeType,
    TaskType,
    WireModel,
)
from backend.app.models.events import SyncEvent
from backend.app.models.intent import IntentEntities, IntentResult
from backend.app.models.itinerary import (
    Day,
    Itinerary,
    Node,
    NodeCost,
    NodeDetails,
    NodeLocation,
    NodeTiming,
)

__all__ = [
    # Common
    "WireModel",
    "Coordinates",
    "NodeType",
    "NodeStatus",
    "ChangeScope",
    "ChatScope",
    "TaskType",
    "ErrorCode",
    # Itinerary
    "Itinerary",
    "Day",
    "Node",
    "NodeLocation",
    "NodeTiming",
    "NodeCost",
    "NodeDetails",
    # Changes
    "OpTarget",
    "InsertOp",
    "UpdateOp",
    "DeleteOp",
    "MoveOp",
    "ReplaceOp",
    "ChangeOperation",
    "ChangeSet",
    "DiffEntry",
    "ItineraryDiff",
    "NodeCandidate",
    "RevisionInfo",
    # Intent
    "IntentResult",
    "IntentEntities",
    # Chat
    "ChatRequest",
    "DisambiguateRequest",
    "ApplyRequest",
    "ChatResponse",
    "ApplyResponse",
    "ChatMessage",
    # Events
    "SyncEvent",
]
