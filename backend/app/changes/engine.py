"""Change engine - validates and atomically applies ChangeSets.

Expected outcomes are returned as values:
- ValidationOk / Applied: the ChangeSet is (or was) applied
- VersionConflict: the ChangeSet was computed against a stale version
- ValidationFailed: an operation references a missing entity, targets a locked
  node without override, or carries an invalid payload

Application works on a deep copy of the itinerary, so a rejected ChangeSet
leaves the input untouched (all-or-nothing).
"""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError
from pydantic.alias_generators import to_snake

from backend.app.changes.diff import METADATA_FIELDS, TouchedRefs, diff
from backend.app.models.changes import (
    ChangeSet,
    DeleteOp,
    InsertOp,
    ItineraryDiff,
    MoveOp,
    ReplaceOp,
    UpdateOp,
)
from backend.app.models.common import ChangeScope
from backend.app.models.itinerary import Day, Itinerary, Node

logger = logging.getLogger(__name__)

DAY_UPDATABLE_FIELDS = frozenset({"date", "location"})
_AUDIT_EXCLUDE = {"updated_at", "updated_by"}

_M = TypeVar("_M", bound=BaseModel)


@dataclass(frozen=True)
class ValidationIssue:
    """Why a ChangeSet was rejected."""

    code: str
    message: str
    op_index: int | None = None


@dataclass(frozen=True)
class ValidationOk:
    """The ChangeSet can be applied to the current version."""


@dataclass(frozen=True)
class VersionConflict:
    """The ChangeSet's base version is not the current version."""

    base_version: int
    current_version: int

    @property
    def message(self) -> str:
        return (
            f"The itinerary changed while this edit was prepared (version {self.base_version} "
            f"is now {self.current_version}). Refresh and try again."
        )


@dataclass(frozen=True)
class ValidationFailed:
    """One or more operations violate a constraint."""

    issues: tuple[ValidationIssue, ...]

    @property
    def message(self) -> str:
        return "; ".join(issue.message for issue in self.issues)

    @property
    def codes(self) -> list[str]:
        return [issue.code for issue in self.issues]


@dataclass(frozen=True)
class Applied:
    """The ChangeSet committed; `itinerary` is the new state."""

    itinerary: Itinerary
    diff: ItineraryDiff
    touched: TouchedRefs = field(default_factory=TouchedRefs)


ValidationResult = ValidationOk | VersionConflict | ValidationFailed
ApplyResult = Applied | VersionConflict | ValidationFailed


class _Rejected(Exception):
    """Internal signal that an operation cannot be applied."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.op_index: int | None = None


def normalize_keys(value: Any) -> Any:
    """Convert camelCase dict keys (from the wire) to snake_case, recursively."""
    if isinstance(value, dict):
        return {to_snake(k): normalize_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [normalize_keys(v) for v in value]
    return value


def deep_merge(base: dict[str, Any], changes: dict[str, Any]) -> dict[str, Any]:
    """Merge `changes` into a copy of `base`; nested dicts merge, anything else replaces."""
    merged = dict(base)
    for key, value in changes.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _content(node: Node) -> dict[str, Any]:
    return node.model_dump(mode="json", exclude=_AUDIT_EXCLUDE)


class ChangeEngine:
    """Stateless validator/applier. Safe to share across requests."""

    def validate(self, change_set: ChangeSet, itinerary: Itinerary) -> ValidationResult:
        """Check a ChangeSet against the current itinerary without mutating it."""
        if change_set.base_version != itinerary.version:
            return VersionConflict(
                base_version=change_set.base_version, current_version=itinerary.version
            )
        try:
            self._run(change_set, itinerary, author="validator", now=datetime.now(UTC))
        except _Rejected as e:
            return ValidationFailed(issues=(self._issue(e),))
        return ValidationOk()

    def apply(
        self,
        change_set: ChangeSet,
        itinerary: Itinerary,
        *,
        author: str = "user",
        now: datetime | None = None,
    ) -> ApplyResult:
        """Apply every operation in order, or none of them.

        On success the returned itinerary's version is exactly one higher.
        """
        if change_set.base_version != itinerary.version:
            return VersionConflict(
                base_version=change_set.base_version, current_version=itinerary.version
            )

        now = now or datetime.now(UTC)
        try:
            updated, touched = self._run(change_set, itinerary, author=author, now=now)
        except _Rejected as e:
            issue = self._issue(e)
            logger.info(f"ChangeSet rejected for {itinerary.id}: {issue.code} - {issue.message}")
            return ValidationFailed(issues=(issue,))

        updated.version = itinerary.version + 1
        updated.updated_at = now
        return Applied(itinerary=updated, diff=diff(itinerary, updated, touched), touched=touched)

    def preview(
        self, change_set: ChangeSet, itinerary: Itinerary, *, author: str = "agent"
    ) -> ApplyResult:
        """Same as apply, for showing a diff before the user commits."""
        return self.apply(change_set, itinerary, author=author)

    @staticmethod
    def diff(
        before: Itinerary, after: Itinerary, touched: TouchedRefs | None = None
    ) -> ItineraryDiff:
        return diff(before, after, touched)

    @staticmethod
    def _issue(e: "_Rejected") -> ValidationIssue:
        return ValidationIssue(code=e.code, message=e.message, op_index=e.op_index)

    def _run(
        self, change_set: ChangeSet, itinerary: Itinerary, *, author: str, now: datetime
    ) -> tuple[Itinerary, TouchedRefs]:
        if not change_set.ops:
            raise _Rejected("empty_change_set", "The change contains no operations")

        working = itinerary.model_copy(deep=True)
        touched = TouchedRefs()
        for index, op in enumerate(change_set.ops):
            try:
                if isinstance(op, InsertOp):
                    self._insert(working, op, touched, author, now)
                elif isinstance(op, UpdateOp):
                    self._update(working, op, touched, author, now)
                elif isinstance(op, DeleteOp):
                    self._delete(working, op, touched)
                elif isinstance(op, MoveOp):
                    self._move(working, op, touched, author, now)
                elif isinstance(op, ReplaceOp):
                    self._replace(working, op, touched, author, now)
            except _Rejected as e:
                e.op_index = index
                e.message = f"Operation {index + 1} ({op.op}): {e.message}"
                raise
        return working, touched

    # -- guards -----------------------------------------------------------

    @staticmethod
    def _require_day(itinerary: Itinerary, day_number: int | None) -> Day:
        if day_number is None:
            raise _Rejected("missing_target", "no day number given")
        day = itinerary.get_day(day_number)
        if day is None:
            raise _Rejected("day_not_found", f"day {day_number} does not exist")
        return day

    @staticmethod
    def _require_node(itinerary: Itinerary, node_id: str | None) -> tuple[Day, int, Node]:
        if not node_id:
            raise _Rejected("missing_target", "no node id given")
        located = itinerary.locate_node(node_id)
        if located is None:
            raise _Rejected("node_not_found", f"node '{node_id}' does not exist")
        return located

    @staticmethod
    def _check_unlocked(node: Node, override: bool) -> None:
        if node.locked and not override:
            raise _Rejected("node_locked", f"'{node.title}' is locked")

    @staticmethod
    def _check_locked_kept(old_nodes: list[Node], new_nodes: list[Node], override: bool) -> None:
        if override:
            return
        new_by_id = {n.id: n for n in new_nodes}
        for node in old_nodes:
            if not node.locked:
                continue
            kept = new_by_id.get(node.id)
            if kept is None or _content(kept) != _content(node):
                raise _Rejected("node_locked", f"'{node.title}' is locked")

    @staticmethod
    def _check_unique(itinerary: Itinerary, new_nodes: list[Node], ignore: set[str]) -> None:
        existing = {n.id for n in itinerary.iter_nodes()} - ignore
        seen: set[str] = set()
        for node in new_nodes:
            if node.id in existing or node.id in seen:
                raise _Rejected("duplicate_node_id", f"node id '{node.id}' already exists")
            seen.add(node.id)

    @staticmethod
    def _check_text_values(changes: dict[str, Any]) -> None:
        for key, value in changes.items():
            if value is not None and not isinstance(value, str):
                raise _Rejected("invalid_payload", f"'{key}' must be text")

    @staticmethod
    def _revalidate(
        model: type[_M], current: dict[str, Any], changes: dict[str, Any], what: str
    ) -> _M:
        try:
            return model.model_validate({**current, **changes})
        except ValidationError as e:
            raise _Rejected(
                "invalid_payload", f"invalid {what} fields ({e.error_count()} errors)"
            ) from e

    @staticmethod
    def _stamp(node: Node, author: str, now: datetime) -> Node:
        return node.model_copy(update={"updated_by": author, "updated_at": now})

    # -- operations -------------------------------------------------------

    def _insert(
        self, itinerary: Itinerary, op: InsertOp, touched: TouchedRefs, author: str, now: datetime
    ) -> None:
        if op.scope == ChangeScope.day:
            if op.day is None:
                raise _Rejected("invalid_payload", "insert day requires a day")
            if itinerary.get_day(op.day.day_number) is not None:
                raise _Rejected("duplicate_day", f"day {op.day.day_number} already exists")
            self._check_unique(itinerary, op.day.nodes, ignore=set())
            new_day = op.day.model_copy(
                update={"nodes": [self._stamp(n, author, now) for n in op.day.nodes]}
            )
            itinerary.days.append(new_day)
            itinerary.days.sort(key=lambda d: d.day_number)
            touched.add_day(new_day.day_number)
            for node in new_day.nodes:
                touched.add_node(node.id)
            return

        if op.scope != ChangeScope.node:
            raise _Rejected(
                "unsupported_operation", f"insert is not supported for {op.scope.value}"
            )
        if op.node is None:
            raise _Rejected("invalid_payload", "insert requires a node")
        day = self._require_day(itinerary, op.target.day_number)
        self._check_unique(itinerary, [op.node], ignore=set())
        position = len(day.nodes) if op.position is None else op.position
        if position > len(day.nodes):
            raise _Rejected(
                "invalid_position",
                f"position {position} is outside day {day.day_number} (0-{len(day.nodes)})",
            )
        day.nodes.insert(position, self._stamp(op.node, author, now))
        touched.add_node(op.node.id)

    def _update(
        self, itinerary: Itinerary, op: UpdateOp, touched: TouchedRefs, author: str, now: datetime
    ) -> None:
        changes = normalize_keys(op.changes)
        if not changes:
            raise _Rejected("invalid_payload", "update has no changes")

        if op.scope == ChangeScope.metadata:
            unknown = set(changes) - set(METADATA_FIELDS)
            if unknown:
                raise _Rejected("invalid_payload", f"cannot update {sorted(unknown)} on the trip")
            self._check_text_values(changes)
            merged = self._revalidate(Itinerary, itinerary.model_dump(), changes, "trip")
            for key in changes:
                setattr(itinerary, key, getattr(merged, key))
            touched.metadata = True
            return

        if op.scope == ChangeScope.day:
            day = self._require_day(itinerary, op.target.day_number)
            unknown = set(changes) - DAY_UPDATABLE_FIELDS
            if unknown:
                raise _Rejected("invalid_payload", f"cannot update {sorted(unknown)} on a day")
            self._check_text_values(changes)
            merged_day = self._revalidate(Day, day.model_dump(), changes, "day")
            for key in changes:
                setattr(day, key, getattr(merged_day, key))
            touched.add_day(day.day_number)
            return

        if op.scope != ChangeScope.node:
            raise _Rejected(
                "unsupported_operation", f"update is not supported for {op.scope.value}"
            )

        day, index, node = self._require_node(itinerary, op.target.node_id)
        self._check_unlocked(node, op.override_lock)
        if "id" in changes and changes["id"] != node.id:
            raise _Rejected("invalid_payload", "a node's id cannot be changed")
        try:
            updated = Node.model_validate(deep_merge(node.model_dump(), changes))
        except ValidationError as e:
            raise _Rejected(
                "invalid_payload", f"invalid node fields ({e.error_count()} errors)"
            ) from e
        day.nodes[index] = self._stamp(updated, author, now)
        touched.add_node(node.id)

    def _delete(self, itinerary: Itinerary, op: DeleteOp, touched: TouchedRefs) -> None:
        if op.scope == ChangeScope.day:
            day = self._require_day(itinerary, op.target.day_number)
            self._check_locked_kept(day.nodes, [], op.override_lock)
            itinerary.days.remove(day)
            touched.add_day(day.day_number)
            for node in day.nodes:
                touched.add_node(node.id)
            return

        if op.scope != ChangeScope.node:
            raise _Rejected(
                "unsupported_operation", f"delete is not supported for {op.scope.value}"
            )
        day, index, node = self._require_node(itinerary, op.target.node_id)
        self._check_unlocked(node, op.override_lock)
        del day.nodes[index]
        touched.add_node(node.id)

    def _move(
        self, itinerary: Itinerary, op: MoveOp, touched: TouchedRefs, author: str, now: datetime
    ) -> None:
        if op.scope != ChangeScope.node:
            raise _Rejected(
                "unsupported_operation", f"move is not supported for {op.scope.value}"
            )
        source, index, node = self._require_node(itinerary, op.target.node_id)
        self._check_unlocked(node, op.override_lock)
        target = self._require_day(itinerary, op.to_day)

        del source.nodes[index]
        position = len(target.nodes) if op.to_index is None else op.to_index
        if position > len(target.nodes):
            raise _Rejected(
                "invalid_position",
                f"index {position} is outside day {target.day_number} (0-{len(target.nodes)})",
            )
        target.nodes.insert(position, self._stamp(node, author, now))
        touched.add_node(node.id)

    def _replace(
        self, itinerary: Itinerary, op: ReplaceOp, touched: TouchedRefs, author: str, now: datetime
    ) -> None:
        if op.scope == ChangeScope.trip:
            if op.days is None:
                raise _Rejected("invalid_payload", "replace trip requires days")
            old_nodes = list(itinerary.iter_nodes())
            new_nodes = [n for d in op.days for n in d.nodes]
            self._check_locked_kept(old_nodes, new_nodes, op.override_lock)
            numbers = [d.day_number for d in op.days]
            if len(numbers) != len(set(numbers)):
                raise _Rejected("duplicate_day", "day numbers must be unique")
            self._check_unique(itinerary, new_nodes, ignore={n.id for n in old_nodes})
            for day in itinerary.days:
                touched.add_day(day.day_number)
            itinerary.days = sorted(
                (d.model_copy(deep=True) for d in op.days), key=lambda d: d.day_number
            )
            for day in itinerary.days:
                touched.add_day(day.day_number)
            for node in old_nodes + new_nodes:
                touched.add_node(node.id)
            return

        if op.scope == ChangeScope.day:
            if op.nodes is None:
                raise _Rejected("invalid_payload", "replace day requires nodes")
            day = self._require_day(itinerary, op.target.day_number)
            old_ids = {n.id for n in day.nodes}
            self._check_locked_kept(day.nodes, op.nodes, op.override_lock)
            self._check_unique(itinerary, op.nodes, ignore=old_ids)
            previous = day.nodes
            day.nodes = [
                n if n.id in old_ids else self._stamp(n, author, now)
                for n in op.nodes
            ]
            touched.add_day(day.day_number)
            for node in previous + day.nodes:
                touched.add_node(node.id)
            return

        if op.scope != ChangeScope.node:
            raise _Rejected(
                "unsupported_operation", f"replace is not supported for {op.scope.value}"
            )
        if op.node is None:
            raise _Rejected("invalid_payload", "replace requires a node")
        day, index, node = self._require_node(itinerary, op.target.node_id)
        self._check_unlocked(node, op.override_lock)
        replacement = op.node.model_copy(update={"id": node.id})
        day.nodes[index] = self._stamp(replacement, author, now)
        touched.add_node(node.id)
