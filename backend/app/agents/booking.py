"""Booking agent - attaches a booking request to a node and locks it.

Payment and provider hand-off happen outside this service; the reference
recorded here is what the booking flow picks up.
"""

import uuid

from backend.app.agents.base import (
    Agent,
    AgentCapabilities,
    AgentOutcome,
    AgentRequest,
    Declined,
    NeedsDisambiguation,
)
from backend.app.agents.targeting import disambiguation_message, find_nodes
from backend.app.models.changes import OpTarget, UpdateOp
from backend.app.models.common import TaskType

BOOKED_LABEL = "booked"


def booking_reference() -> str:
    return f"REQ-{uuid.uuid4().hex[:8].upper()}"


class BookingAgent(Agent):
    name = "booking"
    CAPABILITIES = AgentCapabilities(
        supported_tasks=frozenset({TaskType.book_node}),
        priority=10,
    )

    async def execute(self, request: AgentRequest) -> AgentOutcome:
        reference = request.entities.reference
        resolution = find_nodes(
            request.itinerary,
            reference,
            day_number=request.entities.day or request.day,
            selected_node_id=request.selected_node_id,
        )
        if resolution.ambiguous:
            return NeedsDisambiguation(
                candidates=resolution.candidates,
                message=disambiguation_message(reference, resolution.candidates),
            )
        if resolution.single is None:
            return Declined("Which item would you like to book? Select it or use its title.")

        _, _, node = resolution.single
        if node.booking_ref:
            return Declined(f"'{node.title}' is already booked ({node.booking_ref}).")

        ref = booking_reference()
        labels = node.labels if BOOKED_LABEL in node.labels else [*node.labels, BOOKED_LABEL]
        return self.propose(
            request,
            [
                UpdateOp(
                    target=OpTarget(node_id=node.id),
                    changes={"bookingRef": ref, "locked": True, "labels": labels},
                    # Booking a node the user already locked is still an explicit request
                    override_lock=node.locked,
                )
            ],
            f"Requested a booking for '{node.title}' (reference {ref}). "
            "It will be locked so later edits don't move it.",
        )
