"""Change service - the single writer for itinerary state.

Applies for one itinerary id are serialized by a per-itinerary asyncio lock;
read-only work (classification, proposals, previews) never takes it.
"""

import asyncio
import logging
import time
import weakref
from dataclasses import dataclass
from datetime import UTC, datetime

from backend.app.changes.engine import (
    Applied,
    ApplyResult,
    ChangeEngine,
    ValidationFailed,
    ValidationResult,
    VersionConflict,
)
from backend.app.changes.revisions import RevisionStore
from backend.app.db.repositories import (
    ItineraryNotFoundError,
    ItineraryRepository,
    RevisionNotFoundError,
)
from backend.app.models.changes import ChangeSet, ItineraryDiff, RevisionInfo
from backend.app.models.common import ChangeScope, TaskType
from backend.app.models.itinerary import Itinerary
from backend.app.realtime.hub import SyncHub
from backend.app.utils.logging import StructuredChatLogger
from backend.app.utils.metrics import PrometheusChatMetrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Committed:
    """A ChangeSet was applied, persisted and recorded as a revision."""

    itinerary: Itinerary
    diff: ItineraryDiff
    revision: RevisionInfo


CommitResult = Committed | VersionConflict | ValidationFailed


def _result_label(result: object) -> str:
    if isinstance(result, Committed):
        return "applied"
    if isinstance(result, VersionConflict):
        return "conflict"
    return "invalid"


class ChangeService:
    """Loads, validates, applies and records ChangeSets, then broadcasts."""

    def __init__(
        self,
        itineraries: ItineraryRepository,
        revisions: RevisionStore,
        hub: SyncHub,
        engine: ChangeEngine | None = None,
        metrics: PrometheusChatMetrics | None = None,
        structured_logger: StructuredChatLogger | None = None,
    ) -> None:
        self.itineraries = itineraries
        self.revisions = revisions
        self.hub = hub
        self.engine = engine or ChangeEngine()
        self.metrics = metrics or PrometheusChatMetrics()
        self.structured_logger = structured_logger or StructuredChatLogger()
        # An entry lives only while a caller holds or awaits its lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, itinerary_id: str) -> asyncio.Lock:
        lock = self._locks.get(itinerary_id)
        if lock is None:
            lock = self._locks[itinerary_id] = asyncio.Lock()
        return lock

    async def get_itinerary(self, itinerary_id: str) -> Itinerary:
        itinerary = await self.itineraries.get(itinerary_id)
        if itinerary is None:
            raise ItineraryNotFoundError(itinerary_id)
        return itinerary

    async def create_itinerary(
        self, itinerary: Itinerary, *, author: str = "user"
    ) -> tuple[Itinerary, RevisionInfo]:
        """Store a new itinerary and record its baseline revision."""
        async with self._lock_for(itinerary.id):
            if await self.itineraries.get(itinerary.id) is not None:
                raise ValueError(f"itinerary {itinerary.id} already exists")
            stored = itinerary.model_copy(update={"updated_at": datetime.now(UTC)})
            await self.itineraries.save(stored)
            revision = await self.revisions.create_revision(
                stored,
                ChangeSet(base_version=stored.version),
                author=author,
                description="Itinerary created",
            )
        logger.info(f"Itinerary {stored.id} created at version {stored.version}")
        return stored, revision

    async def validate(self, itinerary_id: str, change_set: ChangeSet) -> ValidationResult:
        return self.engine.validate(change_set, await self.get_itinerary(itinerary_id))

    async def preview(self, itinerary_id: str, change_set: ChangeSet) -> ApplyResult:
        """Dry-run apply for a diff preview. Nothing is stored."""
        return self.engine.preview(change_set, await self.get_itinerary(itinerary_id))

    async def apply(
        self,
        itinerary_id: str,
        change_set: ChangeSet,
        *,
        author: str = "user",
        description: str | None = None,
    ) -> CommitResult:
        """Validate and apply under the itinerary's lock, record, then broadcast."""
        start = time.perf_counter()
        async with self._lock_for(itinerary_id):
            current = await self.get_itinerary(itinerary_id)
            result = self.engine.apply(change_set, current, author=author)
            if isinstance(result, Applied):
                await self.itineraries.save(result.itinerary)
                revision = await self.revisions.create_revision(
                    result.itinerary, change_set, author=author, description=description
                )
                outcome: CommitResult = Committed(
                    itinerary=result.itinerary, diff=result.diff, revision=revision
                )
            else:
                outcome = result

        latency_ms = (time.perf_counter() - start) * 1000
        label = _result_label(outcome)
        self.metrics.record_apply(label, latency_ms)
        self.structured_logger.log_apply(
            itinerary_id,
            base_version=change_set.base_version,
            result=label,
            new_version=outcome.itinerary.version if isinstance(outcome, Committed) else None,
            author=author,
            reason=None if isinstance(outcome, Committed) else outcome.message,
        )

        if isinstance(outcome, Committed):
            self._broadcast(outcome, change_set, author)
        return outcome

    async def rollback_to_revision(
        self, itinerary_id: str, revision_id: str, *, author: str = "user"
    ) -> CommitResult:
        """Restore a revision's content as a new version (history is never rewritten)."""
        revision = await self.revisions.get_revision(revision_id)
        if revision is None or revision.itinerary_id != itinerary_id:
            raise RevisionNotFoundError(revision_id)
        snapshot = await self.revisions.get_snapshot(revision_id)
        if snapshot is None:
            raise RevisionNotFoundError(revision_id)

        current = await self.get_itinerary(itinerary_id)
        change_set = RevisionStore.rollback_change_set(current, snapshot, revision)
        return await self.apply(itinerary_id, change_set, author=author)

    async def undo(self, itinerary_id: str, *, author: str = "user") -> CommitResult | None:
        """Roll back to the state of the previous version; None if there is none."""
        current = await self.get_itinerary(itinerary_id)
        previous = await self.revisions.find_by_version(itinerary_id, current.version - 1)
        if previous is None:
            return None
        return await self.rollback_to_revision(itinerary_id, previous.id, author=author)

    def _broadcast(self, committed: Committed, change_set: ChangeSet, author: str) -> None:
        itinerary = committed.itinerary
        self.hub.emit(
            "itinerary_updated",
            itinerary.id,
            version=itinerary.version,
            payload={
                "revisionId": committed.revision.id,
                "description": committed.revision.description,
                "author": author,
                "diff": committed.diff.model_dump(mode="json", by_alias=True),
            },
        )
        if change_set.intent == TaskType.replan_day:
            days = {
                op.target.day_number
                for op in change_set.ops
                if op.scope == ChangeScope.day and op.target.day_number is not None
            }
            for day_number in sorted(days):
                self.hub.emit(
                    "day_completed",
                    itinerary.id,
                    version=itinerary.version,
                    payload={"dayNumber": day_number},
                )
