"""Chat API models - requests, responses and the chat log."""

from datetime import datetime
from typing import Literal

from pydantic import Field

from backend.app.models.changes import ChangeSet, ItineraryDiff, NodeCandidate
from backend.app.models.common import ChatScope, ErrorCode, WireModel


class ChatRequest(WireModel):
    """Body for POST /chat."""

    itinerary_id: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1)
    scope: ChatScope = ChatScope.trip
    day: int | None = Field(None, ge=1)
    selected_node_id: str | None = None
    auto_apply: bool | None = None
    conversation_id: str | None = Field(
        None, description="Defaults to the itinerary id (one conversation per itinerary)"
    )
    user_id: str = "user"

    @property
    def conversation_key(self) -> str:
        return self.conversation_id or self.itinerary_id


class DisambiguateRequest(WireModel):
    """Body for POST /chat/disambiguate."""

    itinerary_id: str = Field(..., min_length=1)
    original_text: str
    selected_candidate: NodeCandidate | str = Field(
        ..., description="Candidate object or its node id"
    )
    scope: ChatScope = ChatScope.trip
    auto_apply: bool | None = None
    conversation_id: str | None = None
    user_id: str = "user"

    @property
    def conversation_key(self) -> str:
        return self.conversation_id or self.itinerary_id

    @property
    def selected_node_id(self) -> str:
        if isinstance(self.selected_candidate, NodeCandidate):
            return self.selected_candidate.id
        return self.selected_candidate


class ApplyRequest(WireModel):
    """Body for POST /chat/apply."""

    itinerary_id: str = Field(..., min_length=1)
    change_set: ChangeSet
    user_id: str = "user"


class ChatResponse(WireModel):
    """Exactly one of these is produced per chat turn."""

    message: str
    intent: str | None = None
    change_set: ChangeSet | None = None
    diff: ItineraryDiff | None = None
    applied: bool = False
    needs_disambiguation: bool = False
    candidates: list[NodeCandidate] | None = None
    error_code: ErrorCode | None = None
    version: int | None = None


class ApplyResponse(WireModel):
    """Response for POST /chat/apply."""

    success: bool
    message: str
    version: int | None = None
    error_code: ErrorCode | None = None
    diff: ItineraryDiff | None = None


class ChatMessage(WireModel):
    """Chat log entry. Not part of the itinerary's authoritative state."""

    id: str
    itinerary_id: str
    sender: Literal["user", "assistant"]
    text: str
    timestamp: datetime
    intent: str | None = None
    change_set: ChangeSet | None = None
    diff: ItineraryDiff | None = None
    applied: bool | None = None
    candidates: list[NodeCandidate] | None = None
