"""SQLAlchemy ORM models for itineraries, revisions and chat history."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class ItineraryRow(Base):
    """Itinerary table - current authoritative document per id."""

    __tablename__ = "itinerary"

    itinerary_id: Mapped[str] = mapped_column(Text, primary_key=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class RevisionRow(Base):
    """Revision table - append-only, one row per applied ChangeSet."""

    __tablename__ = "revision"
    __table_args__ = (
        UniqueConstraint("itinerary_id", "seq", name="uq_revision_itinerary_seq"),
        Index("idx_revision_itinerary", "itinerary_id", "seq"),
    )

    revision_id: Mapped[str] = mapped_column(Text, primary_key=True)
    itinerary_id: Mapped[str] = mapped_column(
        Text, ForeignKey("itinerary.itinerary_id"), nullable=False
    )
    # Append order; versions can repeat content but never order
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    author: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    operations: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False)
    snapshot: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)


class ChatMessageRow(Base):
    """Chat message table - conversation log per itinerary."""

    __tablename__ = "chat_message"
    __table_args__ = (Index("idx_chat_message_itinerary", "itinerary_id", "seq"),)

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    message_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    itinerary_id: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
