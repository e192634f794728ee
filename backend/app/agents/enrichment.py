"""Enrichment agent - fills in addresses and coordinates via place lookup."""

import logging

from backend.app.adapters.places import PlaceLookupClient
from backend.app.agents.base import (
    Agent,
    AgentCapabilities,
    AgentOutcome,
    AgentRequest,
    Declined,
    Failed,
    NeedsDisambiguation,
)
from backend.app.agents.targeting import disambiguation_message, find_nodes
from backend.app.changes.engine import ChangeEngine
from backend.app.models.changes import ChangeOperation, OpTarget, UpdateOp
from backend.app.models.common import TaskType
from backend.app.models.itinerary import Day, Node

logger = logging.getLogger(__name__)


class EnrichmentAgent(Agent):
    """Resolves node locations; nodes that can't be resolved are skipped."""

    name = "enrichment"
    CAPABILITIES = AgentCapabilities(
        supported_tasks=frozenset({TaskType.enrich_node}),
        priority=30,
    )

    def __init__(self, places: PlaceLookupClient, engine: ChangeEngine | None = None) -> None:
        super().__init__(engine)
        self.places = places

    async def execute(self, request: AgentRequest) -> AgentOutcome:
        if not self.places.enabled:
            return Failed("Place lookup isn't available right now, so I can't add details.")

        targets = self._targets(request)
        if isinstance(targets, NeedsDisambiguation | Declined):
            return targets
        if not targets:
            return Declined("Everything in scope already has location details.")

        ops: list[ChangeOperation] = []
        skipped: list[str] = []
        for i, (day, node) in enumerate(targets, start=1):
            await request.report(int(90 * i / len(targets)), f"Looking up '{node.title}'")
            query = node.location.name if node.location and node.location.name else node.title
            full_query = f"{query}, {day.location}" if day.location else query
            place = await self.places.resolve(full_query)
            if place is None:
                skipped.append(node.title)
                continue
            changes: dict[str, object] = {
                "location": {
                    "name": place.name or query,
                    "address": place.address,
                    "placeId": place.place_id,
                    "coordinates": (
                        place.coordinates.model_dump(by_alias=True) if place.coordinates else None
                    ),
                }
            }
            if place.rating is not None:
                changes["details"] = {"rating": place.rating}
            ops.append(UpdateOp(target=OpTarget(node_id=node.id), changes=changes))

        if not ops:
            return Declined(f"I couldn't find location details for {', '.join(skipped)}.")

        count = len(ops)
        message = f"Added location details to {count} item{'s' if count != 1 else ''}."
        if skipped:
            message += f" Skipped {', '.join(skipped)} (not found)."
        return self.propose(request, ops, message)

    def _targets(
        self, request: AgentRequest
    ) -> list[tuple[Day, Node]] | NeedsDisambiguation | Declined:
        """Referenced node, or every unlocked node lacking coordinates in scope."""
        reference = request.entities.reference
        day_number = request.entities.day or request.day
        if reference or request.selected_node_id:
            resolution = find_nodes(
                request.itinerary,
                reference,
                day_number=day_number,
                selected_node_id=request.selected_node_id,
            )
            if resolution.ambiguous:
                return NeedsDisambiguation(
                    candidates=resolution.candidates,
                    message=disambiguation_message(reference, resolution.candidates),
                )
            if resolution.single is not None:
                day, _, node = resolution.single
                if node.locked:
                    return Declined(f"'{node.title}' is locked, so I left it as it is.")
                return [(day, node)]
            what = f"'{reference}'" if reference else "the selected item"
            return Declined(f"I couldn't find {what} in this itinerary.")

        return [
            (day, node)
            for day in request.itinerary.days
            if day_number is None or day.day_number == day_number
            for node in day.nodes
            if not node.locked and (node.location is None or node.location.coordinates is None)
        ]
