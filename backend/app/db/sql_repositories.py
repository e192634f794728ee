"""SQL implementations of repository interfaces."""

from datetime import UTC, datetime

from pydantic import TypeAdapter
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.db.models import ChatMessageRow, ItineraryRow, RevisionRow
from backend.app.models.changes import ChangeOperation, RevisionInfo
from backend.app.models.chat import ChatMessage
from backend.app.models.itinerary import Itinerary

_operations_adapter = TypeAdapter(list[ChangeOperation])


class SqlItineraryRepository:
    """SQL implementation of ItineraryRepository."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, itinerary_id: str) -> Itinerary | None:
        """Get the current itinerary."""
        async with self._session_factory() as session:
            row = await session.get(ItineraryRow, itinerary_id)
            if row is None:
                return None
            return Itinerary.model_validate(row.data)

    async def save(self, itinerary: Itinerary) -> None:
        """Insert or overwrite the itinerary document."""
        data = itinerary.model_dump(mode="json")
        async with self._session_factory() as session:
            row = await session.get(ItineraryRow, itinerary.id)
            if row is None:
                session.add(
                    ItineraryRow(itinerary_id=itinerary.id, version=itinerary.version, data=data)
                )
            else:
                row.version = itinerary.version
                row.data = data
            await session.commit()


class SqlRevisionRepository:
    """SQL implementation of RevisionRepository (append-only)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def append(self, revision: RevisionInfo, snapshot: Itinerary) -> None:
        """Append a revision and its snapshot."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.coalesce(func.max(RevisionRow.seq), 0)).where(
                    RevisionRow.itinerary_id == revision.itinerary_id
                )
            )
            seq = int(result.scalar_one()) + 1
            session.add(
                RevisionRow(
                    revision_id=revision.id,
                    itinerary_id=revision.itinerary_id,
                    seq=seq,
                    version=revision.version,
                    description=revision.description,
                    author=revision.author,
                    created_at=revision.created_at,
                    operations=_operations_adapter.dump_python(
                        revision.operations, mode="json"
                    ),
                    snapshot=snapshot.model_dump(mode="json"),
                )
            )
            await session.commit()

    async def list_for(self, itinerary_id: str) -> list[RevisionInfo]:
        """List revisions oldest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(RevisionRow)
                .where(RevisionRow.itinerary_id == itinerary_id)
                .order_by(RevisionRow.seq)
            )
            return [_to_revision(row) for row in result.scalars()]

    async def get(self, revision_id: str) -> RevisionInfo | None:
        """Get a revision by id."""
        async with self._session_factory() as session:
            row = await session.get(RevisionRow, revision_id)
            return _to_revision(row) if row else None

    async def get_snapshot(self, revision_id: str) -> Itinerary | None:
        """Get the snapshot a revision produced."""
        async with self._session_factory() as session:
            row = await session.get(RevisionRow, revision_id)
            return Itinerary.model_validate(row.snapshot) if row else None


def _to_revision(row: RevisionRow) -> RevisionInfo:
    created_at = row.created_at
    # SQLite drops tzinfo
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=UTC)
    return RevisionInfo(
        id=row.revision_id,
        itinerary_id=row.itinerary_id,
        version=row.version,
        description=row.description,
        author=row.author,
        created_at=created_at,
        operations=_operations_adapter.validate_python(row.operations),
    )


class SqlChatHistoryRepository:
    """SQL implementation of ChatHistoryRepository."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def append(self, message: ChatMessage) -> None:
        """Append a message."""
        async with self._session_factory() as session:
            session.add(
                ChatMessageRow(
                    message_id=message.id,
                    itinerary_id=message.itinerary_id,
                    data=message.model_dump(mode="json"),
                    created_at=message.timestamp or datetime.now(UTC),
                )
            )
            await session.commit()

    async def list_for(self, itinerary_id: str, limit: int | None = None) -> list[ChatMessage]:
        """List messages oldest first."""
        if limit is not None and limit <= 0:
            return []
        async with self._session_factory() as session:
            query = (
                select(ChatMessageRow)
                .where(ChatMessageRow.itinerary_id == itinerary_id)
                .order_by(ChatMessageRow.seq.desc())
            )
            if limit is not None:
                query = query.limit(limit)
            result = await session.execute(query)
            rows = list(result.scalars())
        return [ChatMessage.model_validate(row.data) for row in reversed(rows)]

    async def clear(self, itinerary_id: str) -> int:
        """Clear the log."""
        async with self._session_factory() as session:
            result = await session.execute(
                delete(ChatMessageRow).where(ChatMessageRow.itinerary_id == itinerary_id)
            )
            await session.commit()
            return result.rowcount or 0
