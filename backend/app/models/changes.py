"""Change models - operations, change sets, diffs and revisions."""

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import ConfigDict, Field

from backend.app.models.common import ChangeScope, TaskType, WireModel
from backend.app.models.itinerary import Day, Node


class OpTarget(WireModel):
    """Reference to the entity an operation addresses."""

    node_id: str | None = None
    day_number: int | None = None


class _OperationBase(WireModel):
    scope: ChangeScope = ChangeScope.node
    target: OpTarget = Field(default_factory=OpTarget)
    override_lock: bool = Field(False, description="Allow mutating locked nodes")


class InsertOp(_OperationBase):
    """Splice a new node into a day (default: append), or add a new day."""

    op: Literal["insert"] = "insert"
    node: Node | None = None
    day: Day | None = None
    position: int | None = Field(None, ge=0)


class UpdateOp(_OperationBase):
    """Merge field changes into a node, a day, or the itinerary metadata."""

    op: Literal["update"] = "update"
    changes: dict[str, Any] = Field(default_factory=dict)


class DeleteOp(_OperationBase):
    """Remove a node (or a day) by reference."""

    op: Literal["delete"] = "delete"


class MoveOp(_OperationBase):
    """Move a node to a (possibly different) day at an index (default: append)."""

    op: Literal["move"] = "move"
    to_day: int = Field(..., ge=1)
    to_index: int | None = Field(None, ge=0)


class ReplaceOp(_OperationBase):
    """Wholesale replace a node (id preserved), a day's nodes, or all days."""

    op: Literal["replace"] = "replace"
    node: Node | None = None
    nodes: list[Node] | None = None
    days: list[Day] | None = None


ChangeOperation = Annotated[
    InsertOp | UpdateOp | DeleteOp | MoveOp | ReplaceOp,
    Field(discriminator="op"),
]


class ChangeSet(WireModel):
    """Ordered operations computed against a base version. Transient."""

    base_version: int = Field(..., ge=0)
    ops: list[ChangeOperation] = Field(default_factory=list)
    intent: TaskType | None = None
    confidence: float | None = Field(None, ge=0, le=1)
    agent: str | None = None
    description: str | None = None


EntityKind = Literal["node", "day", "metadata"]
ChangeKind = Literal["added", "removed", "updated", "moved"]


class DiffEntry(WireModel):
    """Before/after pair for one touched entity (wire-form dicts)."""

    entity: EntityKind
    ref: str
    change: ChangeKind
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    changed_fields: list[str] = Field(default_factory=list)


class ItineraryDiff(WireModel):
    """Preview of what a ChangeSet does to an itinerary."""

    from_version: int
    to_version: int
    entries: list[DiffEntry] = Field(default_factory=list)

    def refs(self, change: ChangeKind, entity: EntityKind = "node") -> list[str]:
        """References of entries with the given change kind."""
        return [e.ref for e in self.entries if e.change == change and e.entity == entity]

    def for_node(self, node_id: str) -> DiffEntry | None:
        """Diff entry for a node, if it was touched."""
        for entry in self.entries:
            if entry.entity == "node" and entry.ref == node_id:
                return entry
        return None

    @property
    def is_empty(self) -> bool:
        return not self.entries


class NodeCandidate(WireModel):
    """Possible target of an ambiguous reference. Never persisted."""

    id: str
    title: str
    score: float = Field(..., ge=0, le=1)
    day_number: int
    type: str
    start_time: str | None = None


class RevisionInfo(WireModel):
    """Immutable record of one applied ChangeSet."""

    id: str
    itinerary_id: str
    version: int
    description: str
    author: str
    created_at: datetime
    operations: list[ChangeOperation] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)
