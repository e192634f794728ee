"""Repository protocol interfaces for data access."""

from typing import Protocol

from backend.app.models.changes import RevisionInfo
from backend.app.models.chat import ChatMessage
from backend.app.models.itinerary import Itinerary


class ItineraryNotFoundError(LookupError):
    """Raised when an itinerary id does not exist."""

    def __init__(self, itinerary_id: str) -> None:
        super().__init__(f"Itinerary not found: {itinerary_id}")
        self.itinerary_id = itinerary_id


class ItineraryRepository(Protocol):
    """Load/save of the authoritative itinerary document by id."""

    async def get(self, itinerary_id: str) -> Itinerary | None:
        """Get the current itinerary, or None if unknown."""
        ...

    async def save(self, itinerary: Itinerary) -> None:
        """Insert or overwrite the itinerary document."""
        ...


class RevisionRepository(Protocol):
    """Append-only revision history.

    There is deliberately no update or delete.
    """

    async def append(self, revision: RevisionInfo, snapshot: Itinerary) -> None:
        """Append a revision together with the itinerary content it produced."""
        ...

    async def list_for(self, itinerary_id: str) -> list[RevisionInfo]:
        """List revisions in creation order (oldest first)."""
        ...

    async def get(self, revision_id: str) -> RevisionInfo | None:
        """Get a revision by id."""
        ...

    async def get_snapshot(self, revision_id: str) -> Itinerary | None:
        """Get the itinerary content a revision produced."""
        ...


class ChatHistoryRepository(Protocol):
    """Chat log per itinerary."""

    async def append(self, message: ChatMessage) -> None:
        """Append a message to the itinerary's log."""
        ...

    async def list_for(self, itinerary_id: str, limit: int | None = None) -> list[ChatMessage]:
        """List messages oldest first; `limit` keeps only the most recent ones."""
        ...

    async def clear(self, itinerary_id: str) -> int:
        """Delete the itinerary's log, returning how many messages were removed."""
        ...


class RevisionNotFoundError(LookupError):
    """Raised when a revision id does not exist for the itinerary."""

    def __init__(self, revision_id: str) -> None:
        super().__init__(f"Revision not found: {revision_id}")
        self.revision_id = revision_id
