"""In-memory implementations of repository interfaces."""

from backend.app.models.changes import RevisionInfo
from backend.app.models.chat import ChatMessage
from backend.app.models.itinerary import Itinerary


class InMemoryItineraryRepository:
    """In-memory implementation of ItineraryRepository.

    Stores deep copies so callers can never mutate the stored document.
    """

    def __init__(self) -> None:
        self._itineraries: dict[str, Itinerary] = {}

    async def get(self, itinerary_id: str) -> Itinerary | None:
        """Get the current itinerary."""
        itinerary = self._itineraries.get(itinerary_id)
        if itinerary is None:
            return None
        return itinerary.model_copy(deep=True)

    async def save(self, itinerary: Itinerary) -> None:
        """Insert or overwrite the itinerary document."""
        self._itineraries[itinerary.id] = itinerary.model_copy(deep=True)


class InMemoryRevisionRepository:
    """In-memory implementation of RevisionRepository (append-only)."""

    def __init__(self) -> None:
        self._by_itinerary: dict[str, list[RevisionInfo]] = {}
        self._by_id: dict[str, RevisionInfo] = {}
        self._snapshots: dict[str, Itinerary] = {}

    async def append(self, revision: RevisionInfo, snapshot: Itinerary) -> None:
        """Append a revision and its snapshot."""
        if revision.id in self._by_id:
            raise ValueError(f"revision {revision.id} already exists")
        self._by_itinerary.setdefault(revision.itinerary_id, []).append(revision)
        self._by_id[revision.id] = revision
        self._snapshots[revision.id] = snapshot.model_copy(deep=True)

    async def list_for(self, itinerary_id: str) -> list[RevisionInfo]:
        """List revisions oldest first."""
        return list(self._by_itinerary.get(itinerary_id, []))

    async def get(self, revision_id: str) -> RevisionInfo | None:
        """Get a revision by id."""
        return self._by_id.get(revision_id)

    async def get_snapshot(self, revision_id: str) -> Itinerary | None:
        """Get the snapshot a revision produced."""
        snapshot = self._snapshots.get(revision_id)
        return snapshot.model_copy(deep=True) if snapshot else None


class InMemoryChatHistoryRepository:
    """In-memory implementation of ChatHistoryRepository."""

    def __init__(self) -> None:
        self._messages: dict[str, list[ChatMessage]] = {}

    async def append(self, message: ChatMessage) -> None:
        """Append a message."""
        self._messages.setdefault(message.itinerary_id, []).append(message)

    async def list_for(self, itinerary_id: str, limit: int | None = None) -> list[ChatMessage]:
        """List messages oldest first."""
        messages = self._messages.get(itinerary_id, [])
        if limit is not None:
            messages = messages[-limit:] if limit > 0 else []
        return list(messages)

    async def clear(self, itinerary_id: str) -> int:
        """Clear the log."""
        return len(self._messages.pop(itinerary_id, []))
