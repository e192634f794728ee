"""Editor agent - moves, deletes, replaces and edits existing nodes."""

import logging
import re

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
from backend.app.agents.drafts import (
    SYSTEM_PROMPT,
    EditDraft,
    NodeDraft,
    chronological_index,
    locate,
    shifted_timing,
)
from backend.app.agents.targeting import disambiguation_message, find_nodes
from backend.app.changes.engine import ChangeEngine
from backend.app.llm.client import LLMError, StructuredGenerationClient, generate_structured
from backend.app.models.changes import (
    ChangeOperation,
    DeleteOp,
    MoveOp,
    OpTarget,
    ReplaceOp,
    UpdateOp,
)
from backend.app.models.common import ErrorCode, TaskType
from backend.app.models.itinerary import Day, Node

logger = logging.getLogger(__name__)

RENAME_RE = re.compile(
    r"\brename\s+(?:the\s+)?(?P<ref>.+?)\s+(?:to|as)\s+(?P<title>.+?)[.!]?$", re.I
)


class EditorAgent(Agent):
    """Targets one existing node and proposes a change to it.

    Time moves, day moves and deletes are deterministic; replacements and
    free-form edits are drafted by the language model.
    """

    name = "editor"
    CAPABILITIES = AgentCapabilities(
        supported_tasks=frozenset(
            {
                TaskType.move_time,
                TaskType.move_node,
                TaskType.delete_node,
                TaskType.replace_node,
                TaskType.edit,
            }
        ),
        priority=10,
    )

    def __init__(
        self,
        llm: StructuredGenerationClient,
        places: PlaceLookupClient | None = None,
        engine: ChangeEngine | None = None,
    ) -> None:
        super().__init__(engine)
        self.llm = llm
        self.places = places

    async def execute(self, request: AgentRequest) -> AgentOutcome:
        reference = request.entities.reference
        rename = RENAME_RE.search(request.text) if request.task == TaskType.edit else None
        if rename and not request.selected_node_id:
            reference = rename.group("ref")

        # For day moves the day in the text is the destination, not a filter
        day_filter = request.day
        if request.task != TaskType.move_node and request.entities.day is not None:
            day_filter = request.entities.day

        resolution = find_nodes(
            request.itinerary,
            reference,
            day_number=day_filter,
            selected_node_id=request.selected_node_id,
        )
        if resolution.ambiguous:
            return NeedsDisambiguation(
                candidates=resolution.candidates,
                message=disambiguation_message(reference, resolution.candidates),
            )
        target = resolution.single
        if target is None:
            what = f"'{reference}'" if reference else "the item you mean"
            return Declined(
                f"I couldn't find {what} in this itinerary. "
                "Try selecting it or using its title."
            )

        day, index, node = target
        if node.locked:
            return Declined(
                f"'{node.title}' is locked. Unlock it first if you want to change it.",
                error_code=ErrorCode.VALIDATION_ERROR,
            )

        await request.report(30, f"Preparing a change to '{node.title}'")

        if request.task == TaskType.move_time:
            return self._move_time(request, day, index, node)
        if request.task == TaskType.move_node:
            return self._move_node(request, day, node)
        if request.task == TaskType.delete_node:
            return self.propose(
                request,
                [DeleteOp(target=OpTarget(node_id=node.id))],
                f"Removed '{node.title}' from day {day.day_number}.",
            )
        if request.task == TaskType.replace_node:
            return await self._replace(request, day, node)
        if rename:
            title = rename.group("title").strip().strip("'\"")
            return self.propose(
                request,
                [UpdateOp(target=OpTarget(node_id=node.id), changes={"title": title})],
                f"Renamed '{node.title}' to '{title}'.",
            )
        return await self._edit(request, node)

    def _move_time(self, request: AgentRequest, day: Day, index: int, node: Node) -> AgentOutcome:
        time = request.entities.time
        if not time:
            return Declined(f"What time should '{node.title}' start?")
        if node.timing.start_time == time:
            return Declined(f"'{node.title}' already starts at {time}.")

        ops: list[ChangeOperation] = [
            UpdateOp(
                target=OpTarget(node_id=node.id),
                changes={"timing": shifted_timing(node.timing, time)},
            )
        ]
        new_index = chronological_index(day.nodes, time, skip_id=node.id)
        if new_index != index:
            ops.append(
                MoveOp(target=OpTarget(node_id=node.id), to_day=day.day_number, to_index=new_index)
            )
        return self.propose(request, ops, f"Moved '{node.title}' to {time}.")

    def _move_node(self, request: AgentRequest, day: Day, node: Node) -> AgentOutcome:
        to_day = request.entities.day
        if to_day is None:
            return Declined(f"Which day should '{node.title}' move to?")
        destination = request.itinerary.get_day(to_day)
        if destination is None:
            return Declined(
                f"This trip has no day {to_day}.", error_code=ErrorCode.VALIDATION_ERROR
            )
        if destination.day_number == day.day_number:
            return Declined(f"'{node.title}' is already on day {to_day}.")

        start = request.entities.time or node.timing.start_time
        to_index = chronological_index(destination.nodes, start) if start else None
        ops: list[ChangeOperation] = [
            MoveOp(target=OpTarget(node_id=node.id), to_day=to_day, to_index=to_index)
        ]
        if request.entities.time and request.entities.time != node.timing.start_time:
            ops.insert(
                0,
                UpdateOp(
                    target=OpTarget(node_id=node.id),
                    changes={"timing": shifted_timing(node.timing, request.entities.time)},
                ),
            )
        return self.propose(request, ops, f"Moved '{node.title}' to day {to_day}.")

    async def _replace(self, request: AgentRequest, day: Day, node: Node) -> AgentOutcome:
        place = request.entities.place
        if place:
            title = place[:1].upper() + place[1:]
            draft = NodeDraft(title=title, type=node.type, place_query=place)
        else:
            prompt = (
                f"Suggest one replacement for this itinerary item on day {day.day_number}"
                f"{' in ' + day.location if day.location else ''}.\n"
                f"Current item: {node.model_dump_json(exclude={'updated_at', 'updated_by'})}\n"
                f"User request: {request.text}"
            )
            try:
                draft = await generate_structured(
                    self.llm, prompt, NodeDraft, system_prompt=SYSTEM_PROMPT
                )
            except LLMError as e:
                logger.warning(f"Replacement draft failed: {e}")
                return Failed("I couldn't come up with a replacement right now. Try naming one.")

        await request.report(60, f"Looking up '{draft.title}'")
        location, found = await locate(self.places, draft.place_query or draft.title, day.location)
        replacement = Node(
            id=node.id,
            type=draft.type,
            title=draft.title,
            location=location,
            timing=node.timing,
            labels=node.labels,
        )
        message = f"Replaced '{node.title}' with '{replacement.title}'."
        if not found:
            message += " I couldn't look up its address, so location details are missing."
        return self.propose(
            request, [ReplaceOp(target=OpTarget(node_id=node.id), node=replacement)], message
        )

    async def _edit(self, request: AgentRequest, node: Node) -> AgentOutcome:
        prompt = (
            "Apply the user's request to this itinerary item. Only set fields that change.\n"
            f"Item: {node.model_dump_json(exclude={'updated_at', 'updated_by'})}\n"
            f"User request: {request.text}"
        )
        try:
            draft = await generate_structured(
                self.llm, prompt, EditDraft, system_prompt=SYSTEM_PROMPT
            )
        except LLMError as e:
            logger.warning(f"Edit draft failed: {e}")
            return Failed("I couldn't work out that edit right now. Please try rephrasing it.")

        changes = draft.to_changes()
        if not changes:
            return Declined(f"I didn't find anything to change on '{node.title}'.")
        return self.propose(
            request,
            [UpdateOp(target=OpTarget(node_id=node.id), changes=changes)],
            f"Updated '{node.title}' ({', '.join(sorted(changes))}).",
        )

