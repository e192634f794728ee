"""Planner agent - adds places and replans whole days."""

import logging

from backend.app.adapters.places import PlaceLookupClient
from backend.app.agents.base import (
    Agent,
    AgentCapabilities,
    AgentOutcome,
    AgentRequest,
    Declined,
    Failed,
)
from backend.app.agents.drafts import (
    SYSTEM_PROMPT,
    DayPlanDraft,
    NodeDraft,
    chronological_index,
    draft_to_node,
    locate,
)
from backend.app.changes.engine import ChangeEngine
from backend.app.llm.client import LLMError, StructuredGenerationClient, generate_structured
from backend.app.models.changes import InsertOp, OpTarget, ReplaceOp
from backend.app.models.common import ChangeScope, ErrorCode, NodeType, TaskType
from backend.app.models.itinerary import Day, Node

logger = logging.getLogger(__name__)


def _target_day(request: AgentRequest) -> Day | None:
    """Day named in the text, else the request's day, else the selected node's day."""
    itinerary = request.itinerary
    for number in (request.entities.day, request.day):
        if number is not None:
            return itinerary.get_day(number)
    if request.selected_node_id:
        located = itinerary.locate_node(request.selected_node_id)
        if located is not None:
            return located[0]
    if len(itinerary.days) == 1:
        return itinerary.days[0]
    return None


def _node_type(category: str | None) -> NodeType:
    try:
        return NodeType(category) if category else NodeType.activity
    except ValueError:
        return NodeType.activity


def _sort_by_start(nodes: list[Node]) -> list[Node]:
    """Timed nodes in time order; untimed ones keep their relative order at the end."""
    timed = sorted(
        (n for n in nodes if n.timing.start_time), key=lambda n: n.timing.start_time or ""
    )
    return timed + [n for n in nodes if not n.timing.start_time]


class PlannerAgent(Agent):
    """Creates new nodes: a single place, or a fresh plan for one day."""

    name = "planner"
    CAPABILITIES = AgentCapabilities(
        supported_tasks=frozenset({TaskType.insert_place, TaskType.replan_day}),
        priority=20,
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
        day = _target_day(request)
        if day is None:
            wanted = request.entities.day or request.day
            if wanted is not None:
                return Declined(
                    f"This trip has no day {wanted}.", error_code=ErrorCode.VALIDATION_ERROR
                )
            return Declined("Which day should I plan that for? Mention it like 'on day 2'.")

        if request.task == TaskType.replan_day:
            return await self._replan(request, day)
        return await self._insert(request, day)

    async def _insert(self, request: AgentRequest, day: Day) -> AgentOutcome:
        await request.report(10, "Drafting the new stop")
        place = request.entities.place
        if place:
            draft = NodeDraft(
                title=place[:1].upper() + place[1:],
                type=_node_type(request.entities.category),
                start_time=request.entities.time,
                place_query=place,
            )
        else:
            prompt = (
                f"Draft one new itinerary item for day {day.day_number}"
                f"{' in ' + day.location if day.location else ''}.\n"
                f"Existing items: {', '.join(n.title for n in day.nodes) or 'none'}\n"
                f"User request: {request.text}"
            )
            try:
                draft = await generate_structured(
                    self.llm, prompt, NodeDraft, system_prompt=SYSTEM_PROMPT
                )
            except LLMError as e:
                logger.warning(f"Insert draft failed: {e}")
                return Failed("I couldn't draft that right now. Try naming the place to add.")
            if request.entities.time:
                draft = draft.model_copy(update={"start_time": request.entities.time})

        await request.report(50, f"Looking up '{draft.title}'")
        query = draft.place_query or draft.title
        location, found = await locate(self.places, query, day.location)
        node = draft_to_node(draft, location)

        position = None
        if node.timing.start_time:
            position = chronological_index(day.nodes, node.timing.start_time)

        message = f"Added '{node.title}' to day {day.day_number}"
        message += f" at {node.timing.start_time}." if node.timing.start_time else "."
        if not found:
            message += " I couldn't look up its address, so location details are missing."
        await request.report(90, "Preparing preview")
        return self.propose(
            request,
            [InsertOp(target=OpTarget(day_number=day.day_number), node=node, position=position)],
            message,
        )

    async def _replan(self, request: AgentRequest, day: Day) -> AgentOutcome:
        locked = [n for n in day.nodes if n.locked]
        fixed = ", ".join(f"{n.title} ({n.timing.start_time or 'untimed'})" for n in locked)
        await request.report(10, f"Replanning day {day.day_number}")
        prompt = (
            f"Plan day {day.day_number}{' in ' + day.location if day.location else ''} again.\n"
            f"Current items: {', '.join(n.title for n in day.nodes) or 'none'}\n"
            f"These items are fixed and must not be repeated: {fixed or 'none'}\n"
            f"User request: {request.text}"
        )
        try:
            plan = await generate_structured(
                self.llm, prompt, DayPlanDraft, system_prompt=SYSTEM_PROMPT
            )
        except LLMError as e:
            logger.warning(f"Day plan draft failed: {e}")
            return Failed(
                f"I couldn't replan day {day.day_number} right now. Please try again later."
            )
        if not plan.nodes:
            return Declined(f"I didn't come up with anything new for day {day.day_number}.")

        nodes: list[Node] = []
        total = len(plan.nodes)
        for i, draft in enumerate(plan.nodes, start=1):
            await request.report(10 + int(80 * i / total), f"Placing '{draft.title}'")
            query = draft.place_query or draft.title
            location, _ = await locate(self.places, query, day.location)
            nodes.append(draft_to_node(draft, location))

        return self.propose(
            request,
            [
                ReplaceOp(
                    scope=ChangeScope.day,
                    target=OpTarget(day_number=day.day_number),
                    nodes=_sort_by_start(locked + nodes),
                )
            ],
            f"Replanned day {day.day_number} with {len(nodes)} new stops"
            + (f", keeping {len(locked)} locked." if locked else "."),
        )
