"""Pure before/after diffing of itineraries."""

from dataclasses import dataclass, field
from typing import Any

from backend.app.models.changes import DiffEntry, ItineraryDiff
from backend.app.models.itinerary import Day, Itinerary, Node

# Audit stamps change on every write; they are not user-visible edits.
AUDIT_FIELDS = frozenset({"updatedAt", "updatedBy"})
POSITION_FIELDS = frozenset({"dayNumber", "position"})
METADATA_FIELDS = ("title", "summary", "currency", "start_date", "end_date")


@dataclass
class TouchedRefs:
    """Entities addressed by a ChangeSet, in first-touched order."""

    node_ids: dict[str, None] = field(default_factory=dict)
    day_numbers: dict[int, None] = field(default_factory=dict)
    metadata: bool = False

    def add_node(self, node_id: str) -> None:
        self.node_ids.setdefault(node_id, None)

    def add_day(self, day_number: int) -> None:
        self.day_numbers.setdefault(day_number, None)


def node_wire(node: Node, day_number: int, position: int) -> dict[str, Any]:
    """Wire form of a node including where it sits."""
    data = node.model_dump(mode="json", by_alias=True)
    data["dayNumber"] = day_number
    data["position"] = position
    return data


def day_wire(day: Day) -> dict[str, Any]:
    """Wire form of a day with node ids instead of nested nodes."""
    data = day.model_dump(mode="json", by_alias=True, exclude={"nodes"})
    data["nodeIds"] = [n.id for n in day.nodes]
    return data


def metadata_wire(itinerary: Itinerary) -> dict[str, Any]:
    """Wire form of the itinerary-level fields."""
    return itinerary.model_dump(mode="json", by_alias=True, include=set(METADATA_FIELDS))


def changed_fields(before: dict[str, Any], after: dict[str, Any]) -> list[str]:
    """Top-level keys whose values differ, audit stamps excluded."""
    keys = (set(before) | set(after)) - AUDIT_FIELDS
    return sorted(k for k in keys if before.get(k) != after.get(k))


def _node_entry(node_id: str, before: Itinerary, after: Itinerary) -> DiffEntry | None:
    old = before.locate_node(node_id)
    new = after.locate_node(node_id)
    if old is None and new is None:
        return None
    if old is None:
        day, index, node = new  # type: ignore[misc]
        return DiffEntry(
            entity="node", ref=node_id, change="added", after=node_wire(node, day.day_number, index)
        )
    if new is None:
        day, index, node = old
        return DiffEntry(
            entity="node",
            ref=node_id,
            change="removed",
            before=node_wire(node, day.day_number, index),
        )

    before_data = node_wire(old[2], old[0].day_number, old[1])
    after_data = node_wire(new[2], new[0].day_number, new[1])
    fields = changed_fields(before_data, after_data)
    if not fields:
        return None
    content_changed = any(f not in POSITION_FIELDS for f in fields)
    return DiffEntry(
        entity="node",
        ref=node_id,
        change="updated" if content_changed else "moved",
        before=before_data,
        after=after_data,
        changed_fields=fields,
    )


def _day_entry(day_number: int, before: Itinerary, after: Itinerary) -> DiffEntry | None:
    old = before.get_day(day_number)
    new = after.get_day(day_number)
    if old is None and new is None:
        return None
    if old is None:
        return DiffEntry(entity="day", ref=str(day_number), change="added", after=day_wire(new))
    if new is None:
        return DiffEntry(entity="day", ref=str(day_number), change="removed", before=day_wire(old))

    before_data = day_wire(old)
    after_data = day_wire(new)
    fields = changed_fields(before_data, after_data)
    if not fields:
        return None
    return DiffEntry(
        entity="day",
        ref=str(day_number),
        change="updated",
        before=before_data,
        after=after_data,
        changed_fields=fields,
    )


def _all_refs(before: Itinerary, after: Itinerary) -> TouchedRefs:
    refs = TouchedRefs(metadata=True)
    for itinerary in (after, before):
        for day in itinerary.days:
            refs.add_day(day.day_number)
            for node in day.nodes:
                refs.add_node(node.id)
    return refs


def diff(before: Itinerary, after: Itinerary, touched: TouchedRefs | None = None) -> ItineraryDiff:
    """Compute before/after pairs for touched entities.

    Without `touched`, every entity is compared; nodes whose only change is an
    index shift within their day (caused by neighbours moving) are left out.
    """
    compare_all = touched is None
    refs = touched if touched is not None else _all_refs(before, after)
    entries: list[DiffEntry] = []

    if refs.metadata:
        before_meta = metadata_wire(before)
        after_meta = metadata_wire(after)
        fields = changed_fields(before_meta, after_meta)
        if fields:
            entries.append(
                DiffEntry(
                    entity="metadata",
                    ref=after.id,
                    change="updated",
                    before=before_meta,
                    after=after_meta,
                    changed_fields=fields,
                )
            )

    for day_number in refs.day_numbers:
        day_entry = _day_entry(day_number, before, after)
        if day_entry is not None:
            if compare_all and day_entry.changed_fields == ["nodeIds"]:
                continue
            entries.append(day_entry)

    for node_id in refs.node_ids:
        node_entry = _node_entry(node_id, before, after)
        if node_entry is None:
            continue
        if compare_all and node_entry.changed_fields == ["position"]:
            continue
        entries.append(node_entry)

    return ItineraryDiff(from_version=before.version, to_version=after.version, entries=entries)
