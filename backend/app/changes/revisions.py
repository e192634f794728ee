"""Revision store - append-only history of applied ChangeSets."""

import logging
import uuid
from datetime import UTC, datetime

from backend.app.changes.diff import METADATA_FIELDS
from backend.app.db.repositories import RevisionRepository
from backend.app.models.changes import ChangeSet, ReplaceOp, RevisionInfo, UpdateOp
from backend.app.models.common import ChangeScope
from backend.app.models.itinerary import Itinerary

logger = logging.getLogger(__name__)


def describe_change_set(change_set: ChangeSet) -> str:
    """Human description of a ChangeSet when its agent gave none."""
    if change_set.description:
        return change_set.description
    if not change_set.ops:
        return "No changes"
    kinds = sorted({op.op for op in change_set.ops})
    count = len(change_set.ops)
    noun = "operation" if count == 1 else "operations"
    return f"{count} {noun} ({', '.join(kinds)})"


class RevisionStore:
    """Records one RevisionInfo per applied ChangeSet and builds rollbacks.

    History is never rewritten: rolling back produces a ChangeSet that is
    applied like any other, yielding a new version and a new revision.
    """

    def __init__(self, repository: RevisionRepository) -> None:
        self.repository = repository

    async def create_revision(
        self,
        itinerary: Itinerary,
        change_set: ChangeSet,
        *,
        author: str,
        description: str | None = None,
        now: datetime | None = None,
    ) -> RevisionInfo:
        """Append a revision for `itinerary`, the state `change_set` produced."""
        revision = RevisionInfo(
            id=f"rev_{uuid.uuid4().hex[:12]}",
            itinerary_id=itinerary.id,
            version=itinerary.version,
            description=description or describe_change_set(change_set),
            author=author,
            created_at=now or datetime.now(UTC),
            operations=list(change_set.ops),
        )
        await self.repository.append(revision, itinerary)
        logger.info(
            f"Revision {revision.id} recorded for {itinerary.id} at version {revision.version}"
        )
        return revision

    async def list_revisions(self, itinerary_id: str) -> list[RevisionInfo]:
        return await self.repository.list_for(itinerary_id)

    async def get_revision(self, revision_id: str) -> RevisionInfo | None:
        return await self.repository.get(revision_id)

    async def get_snapshot(self, revision_id: str) -> Itinerary | None:
        return await self.repository.get_snapshot(revision_id)

    async def find_by_version(self, itinerary_id: str, version: int) -> RevisionInfo | None:
        """Latest revision that produced `version` (None if history doesn't reach it)."""
        for revision in reversed(await self.repository.list_for(itinerary_id)):
            if revision.version == version:
                return revision
        return None

    @staticmethod
    def rollback_change_set(
        current: Itinerary, target: Itinerary, revision: RevisionInfo
    ) -> ChangeSet:
        """ChangeSet that restores `target`'s content on top of `current`.

        Restoring is an explicit user action, so locked nodes are overridden.
        """
        metadata = {field: getattr(target, field) for field in METADATA_FIELDS}
        return ChangeSet(
            base_version=current.version,
            ops=[
                ReplaceOp(
                    scope=ChangeScope.trip,
                    days=[day.model_copy(deep=True) for day in target.days],
                    override_lock=True,
                ),
                UpdateOp(scope=ChangeScope.metadata, changes=metadata, override_lock=True),
            ],
            description=f"Rolled back to version {revision.version}",
        )
