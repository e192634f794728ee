"""Chat orchestrator - classify, route, propose, and optionally apply.

Every chat turn produces exactly one assistant reply: it is returned to the
caller, appended to the chat log and published as a `chat_response` event.
Expected outcomes (unknown intent, ambiguity, conflicts, declines) are
handled as values; anything unexpected is logged here and turned into a
generic reply.
"""

import logging
import time
import uuid
from dataclasses import dataclass, replace
from datetime import UTC, datetime

from backend.app.agents.base import (
    Agent,
    AgentOutcome,
    AgentRequest,
    Declined,
    Failed,
    NeedsDisambiguation,
    Proposed,
)
from backend.app.agents.targeting import find_nodes
from backend.app.changes.engine import VersionConflict
from backend.app.changes.service import ChangeService, Committed, CommitResult
from backend.app.config import Settings, get_settings
from backend.app.db.repositories import ChatHistoryRepository
from backend.app.models.changes import ChangeSet
from backend.app.models.chat import (
    ApplyRequest,
    ApplyResponse,
    ChatMessage,
    ChatRequest,
    ChatResponse,
    DisambiguateRequest,
)
from backend.app.models.common import ChatScope, ErrorCode, TaskType
from backend.app.models.events import Phase
from backend.app.models.intent import IntentEntities, IntentResult
from backend.app.models.itinerary import Day, Itinerary, Node
from backend.app.orchestration.classifier import IntentClassifier
from backend.app.orchestration.disambiguation import (
    DisambiguationResolver,
    PendingDisambiguation,
    match_reply,
)
from backend.app.orchestration.registry import AgentRegistry
from backend.app.realtime.hub import SyncHub
from backend.app.utils.logging import StructuredChatLogger
from backend.app.utils.metrics import PrometheusChatMetrics

logger = logging.getLogger(__name__)

HELP_MESSAGE = (
    "Hi! I can move, add, remove, replace, book or look up items in your itinerary, "
    "replan a day, explain the plan, or undo the last change. What would you like to do?"
)
CLARIFY_MESSAGE = (
    "I'm not sure what you'd like me to change. Could you rephrase? "
    "For example: 'move lunch to 2pm' or 'add the Louvre on day 2'."
)
FAILURE_MESSAGE = "Something went wrong on our side while handling that. Please try again."

TASK_PHRASES: dict[TaskType, str] = {
    TaskType.move_time: "change when something happens",
    TaskType.move_node: "move something to another day",
    TaskType.insert_place: "add a new stop",
    TaskType.delete_node: "remove something",
    TaskType.replace_node: "swap something for another place",
    TaskType.edit: "edit an item",
    TaskType.book_node: "book something",
    TaskType.enrich_node: "look up location details",
    TaskType.replan_day: "replan a day",
    TaskType.undo: "undo the last change",
    TaskType.explain: "hear about the plan",
}


@dataclass
class _Turn:
    """What a turn did, for metrics and the structured log."""

    task: str = TaskType.unknown.value
    outcome: str = "error"
    agent: str | None = None
    confidence: float | None = None


def _message_id() -> str:
    return f"msg_{uuid.uuid4().hex[:12]}"


def _normalized(text: str) -> str:
    return " ".join(text.split()).casefold()


def _describe_node(day: Day, node: Node) -> str:
    text = f"'{node.title}' is a {node.type.value} on day {day.day_number}"
    if node.timing.start_time:
        text += f" at {node.timing.start_time}"
        if node.timing.end_time:
            text += f"-{node.timing.end_time}"
    if node.location and (node.location.address or node.location.name):
        text += f", at {node.location.address or node.location.name}"
    text += "."
    if node.booking_ref:
        text += f" It's booked ({node.booking_ref})."
    elif node.locked:
        text += " It's locked."
    if node.details and node.details.description:
        text += f" {node.details.description}"
    return text


def _describe_day(day: Day) -> str:
    where = f" in {day.location}" if day.location else ""
    if not day.nodes:
        return f"Day {day.day_number}{where} has nothing planned yet."
    stops = ", ".join(
        f"{n.title} ({n.timing.start_time})" if n.timing.start_time else n.title
        for n in day.nodes
    )
    return f"Day {day.day_number}{where}: {stops}."


class ChatOrchestrator:
    """Runs chat turns, disambiguation selections and explicit applies."""

    def __init__(
        self,
        service: ChangeService,
        classifier: IntentClassifier,
        registry: AgentRegistry,
        resolver: DisambiguationResolver,
        chat_history: ChatHistoryRepository,
        settings: Settings | None = None,
        metrics: PrometheusChatMetrics | None = None,
        structured_logger: StructuredChatLogger | None = None,
    ) -> None:
        self.service = service
        self.classifier = classifier
        self.registry = registry
        self.resolver = resolver
        self.chat_history = chat_history
        self.settings = settings or get_settings()
        self.metrics = metrics or PrometheusChatMetrics()
        self.structured_logger = structured_logger or StructuredChatLogger()

    @property
    def hub(self) -> SyncHub:
        return self.service.hub

    async def handle_chat(self, request: ChatRequest) -> ChatResponse:
        """Run one chat turn.

        Raises ItineraryNotFoundError before anything is logged if the
        itinerary doesn't exist.
        """
        start = time.perf_counter()
        itinerary = await self.service.get_itinerary(request.itinerary_id)
        turn = _Turn()
        try:
            response = await self._chat_turn(request, itinerary, turn)
        except Exception:
            logger.exception(
                f"Chat turn failed for itinerary {request.itinerary_id}: {request.text!r}"
            )
            response = ChatResponse(
                message=FAILURE_MESSAGE,
                intent=turn.task,
                error_code=ErrorCode.INTERNAL_ERROR,
                version=itinerary.version,
            )
        await self._finish(request.itinerary_id, response, turn, start)
        return response

    async def handle_disambiguation(self, request: DisambiguateRequest) -> ChatResponse:
        """Re-invoke the agent that asked, with the chosen node as its target."""
        start = time.perf_counter()
        itinerary = await self.service.get_itinerary(request.itinerary_id)
        turn = _Turn()
        try:
            response = await self._selection_turn(request, itinerary, turn)
        except Exception:
            logger.exception(f"Disambiguation failed for itinerary {request.itinerary_id}")
            response = ChatResponse(
                message=FAILURE_MESSAGE,
                intent=turn.task,
                error_code=ErrorCode.INTERNAL_ERROR,
                version=itinerary.version,
            )
        await self._finish(request.itinerary_id, response, turn, start)
        return response

    async def apply_change_set(self, request: ApplyRequest) -> ApplyResponse:
        """Apply a previously previewed ChangeSet (the explicit "apply" step)."""
        result = await self.service.apply(
            request.itinerary_id, request.change_set, author=request.user_id
        )
        if isinstance(result, Committed):
            version = result.itinerary.version
            self._phase(request.itinerary_id, "applied", version)
            return ApplyResponse(
                success=True,
                message=f"Applied. The itinerary is now at version {version}.",
                version=version,
                diff=result.diff,
            )
        if isinstance(result, VersionConflict):
            return ApplyResponse(
                success=False,
                message=result.message,
                version=result.current_version,
                error_code=ErrorCode.STALE_VERSION_CONFLICT,
            )
        return ApplyResponse(
            success=False,
            message=f"The change wasn't applied: {result.message}",
            version=request.change_set.base_version,
            error_code=ErrorCode.VALIDATION_ERROR,
        )

    async def _chat_turn(
        self, request: ChatRequest, itinerary: Itinerary, turn: _Turn
    ) -> ChatResponse:
        history = await self.chat_history.list_for(
            request.itinerary_id, limit=self.settings.chat_context_messages
        )
        await self._append(
            ChatMessage(
                id=_message_id(),
                itinerary_id=request.itinerary_id,
                sender="user",
                text=request.text,
                timestamp=datetime.now(UTC),
            )
        )
        self._phase(itinerary.id, "classifying", itinerary.version)

        conversation = request.conversation_key
        pending = self.resolver.pending(conversation)
        if pending is not None:
            candidate = None
            if pending.itinerary_id == itinerary.id:
                candidate = match_reply(pending, request.text)
            if candidate is not None:
                resolution = self.resolver.resolve(conversation, candidate.id)
                if resolution.status == "resolved" and resolution.pending is not None:
                    return await self._resume(
                        resolution.pending,
                        candidate.id,
                        itinerary,
                        request.auto_apply,
                        turn,
                        user_id=request.user_id,
                    )
            else:
                self.resolver.cancel(conversation)

        intent = await self.classifier.classify(
            request.text,
            request.scope,
            request.selected_node_id,
            request.day,
            history=[f"{m.sender}: {m.text}" for m in history],
        )
        turn.task = (intent.raw_task or intent.task).value
        turn.confidence = intent.confidence

        if intent.source == "conversational":
            turn.outcome = "clarify"
            return ChatResponse(
                message=HELP_MESSAGE, intent=intent.task.value, version=itinerary.version
            )
        if intent.is_unknown:
            turn.outcome = "clarify"
            message = CLARIFY_MESSAGE
            if intent.raw_task in TASK_PHRASES:
                message = (
                    f"Did you want to {TASK_PHRASES[intent.raw_task]}? "
                    "Please say it a little more specifically so I get it right."
                )
            return ChatResponse(
                message=message,
                intent=intent.task.value,
                error_code=ErrorCode.LOW_CONFIDENCE_CLASSIFICATION,
                version=itinerary.version,
            )
        if intent.task == TaskType.undo:
            return await self._undo(itinerary, request.user_id, turn)
        if intent.task == TaskType.explain:
            turn.outcome = "answered"
            return ChatResponse(
                message=self._explain(itinerary, request, intent),
                intent=intent.task.value,
                version=itinerary.version,
            )

        agent = self.registry.route(intent.task)
        if agent is None:
            turn.outcome = "declined"
            return ChatResponse(
                message="I can't help with that kind of change yet.",
                intent=intent.task.value,
                error_code=ErrorCode.NO_CAPABLE_AGENT,
                version=itinerary.version,
            )

        agent_request = AgentRequest(
            itinerary=itinerary,
            text=request.text,
            task=intent.task,
            scope=request.scope,
            day=request.day,
            selected_node_id=request.selected_node_id,
            entities=intent.entities,
            confidence=intent.confidence,
        )
        return await self._dispatch(
            agent, agent_request, conversation, request.auto_apply, request.user_id, turn
        )

    async def _selection_turn(
        self, request: DisambiguateRequest, itinerary: Itinerary, turn: _Turn
    ) -> ChatResponse:
        conversation = request.conversation_key
        pending = self.resolver.pending(conversation)
        if pending is not None and (
            pending.itinerary_id != itinerary.id
            or _normalized(pending.original_text) != _normalized(request.original_text)
        ):
            # A selection for some other request; the current one stays pending
            pending = None
        if pending is None:
            return self._expired(itinerary, turn)

        turn.task = pending.task.value
        turn.confidence = pending.confidence
        resolution = self.resolver.resolve(conversation, request.selected_node_id)
        if resolution.status == "invalid_selection":
            turn.outcome = "needs_disambiguation"
            return ChatResponse(
                message="That isn't one of the options. Please pick one of the listed items.",
                intent=pending.task.value,
                needs_disambiguation=True,
                candidates=pending.candidates,
                error_code=ErrorCode.AMBIGUOUS_TARGET,
                version=itinerary.version,
            )
        if resolution.status != "resolved" or resolution.candidate is None:
            return self._expired(itinerary, turn)

        await self._append(
            ChatMessage(
                id=_message_id(),
                itinerary_id=itinerary.id,
                sender="user",
                text=resolution.candidate.title,
                timestamp=datetime.now(UTC),
            )
        )
        auto_apply = request.auto_apply if request.auto_apply is not None else pending.auto_apply
        return await self._resume(
            pending, resolution.candidate.id, itinerary, auto_apply, turn, user_id=request.user_id
        )

    def _expired(self, itinerary: Itinerary, turn: _Turn) -> ChatResponse:
        turn.outcome = "expired"
        return ChatResponse(
            message="That choice is no longer pending. Please send your request again.",
            error_code=ErrorCode.DISAMBIGUATION_EXPIRED,
            version=itinerary.version,
        )

    async def _resume(
        self,
        pending: PendingDisambiguation,
        node_id: str,
        itinerary: Itinerary,
        auto_apply: bool | None,
        turn: _Turn,
        user_id: str = "user",
    ) -> ChatResponse:
        """Re-run the originating agent on the chosen node; no reclassification."""
        turn.task = pending.task.value
        turn.confidence = pending.confidence
        agent = self.registry.get(pending.agent_name)
        if agent is None:
            turn.outcome = "declined"
            return ChatResponse(
                message="I can't help with that kind of change yet.",
                intent=pending.task.value,
                error_code=ErrorCode.NO_CAPABLE_AGENT,
                version=itinerary.version,
            )
        agent_request = AgentRequest(
            itinerary=itinerary,
            text=pending.original_text,
            task=pending.task,
            scope=pending.scope,
            day=pending.day,
            selected_node_id=node_id,
            entities=pending.entities.model_copy(update={"reference": None}),
            confidence=pending.confidence,
        )
        return await self._dispatch(
            agent, agent_request, pending.conversation_id, auto_apply, user_id, turn
        )

    async def _dispatch(
        self,
        agent: Agent,
        agent_request: AgentRequest,
        conversation_id: str,
        auto_apply: bool | None,
        user_id: str,
        turn: _Turn,
    ) -> ChatResponse:
        itinerary = agent_request.itinerary
        task = agent_request.task.value
        turn.agent = agent.name
        self._phase(itinerary.id, "proposing", itinerary.version)

        async def progress(percent: int, message: str) -> None:
            self.hub.emit(
                "agent_progress",
                itinerary.id,
                version=itinerary.version,
                payload={"agent": agent.name, "percent": percent, "message": message},
            )

        outcome: AgentOutcome = await agent.execute(replace(agent_request, progress=progress))

        if isinstance(outcome, NeedsDisambiguation):
            self.resolver.begin(
                PendingDisambiguation(
                    conversation_id=conversation_id,
                    itinerary_id=itinerary.id,
                    agent_name=agent.name,
                    task=agent_request.task,
                    original_text=agent_request.text,
                    candidates=outcome.candidates,
                    scope=agent_request.scope,
                    day=agent_request.day,
                    entities=agent_request.entities,
                    confidence=agent_request.confidence,
                    auto_apply=auto_apply,
                )
            )
            self._phase(itinerary.id, "awaiting_selection", itinerary.version)
            turn.outcome = "needs_disambiguation"
            return ChatResponse(
                message=outcome.message,
                intent=task,
                needs_disambiguation=True,
                candidates=outcome.candidates,
                error_code=ErrorCode.AMBIGUOUS_TARGET,
                version=itinerary.version,
            )
        if isinstance(outcome, Declined):
            turn.outcome = "declined"
            return ChatResponse(
                message=outcome.message,
                intent=task,
                error_code=outcome.error_code,
                version=itinerary.version,
            )
        if isinstance(outcome, Failed):
            turn.outcome = "failed"
            return ChatResponse(
                message=outcome.reason,
                intent=task,
                error_code=outcome.error_code,
                version=itinerary.version,
            )
        return await self._proposed(outcome, itinerary, auto_apply, user_id, turn)

    async def _proposed(
        self,
        outcome: Proposed,
        itinerary: Itinerary,
        auto_apply: bool | None,
        user_id: str,
        turn: _Turn,
    ) -> ChatResponse:
        task = outcome.change_set.intent.value if outcome.change_set.intent else turn.task
        if auto_apply is None:
            auto_apply = self.settings.chat_auto_apply_default
        if not auto_apply:
            self._phase(itinerary.id, "preview", itinerary.version)
            turn.outcome = "proposed"
            return ChatResponse(
                message=outcome.message,
                intent=task,
                change_set=outcome.change_set,
                diff=outcome.diff,
                version=itinerary.version,
            )

        result = await self.service.apply(itinerary.id, outcome.change_set, author=user_id)
        return self._committed_response(
            result, outcome.message, task, outcome.change_set, itinerary, turn
        )

    async def _undo(self, itinerary: Itinerary, user_id: str, turn: _Turn) -> ChatResponse:
        result = await self.service.undo(itinerary.id, author=user_id)
        if result is None:
            turn.outcome = "declined"
            return ChatResponse(
                message="There's nothing to undo yet.",
                intent=TaskType.undo.value,
                version=itinerary.version,
            )
        return self._committed_response(
            result, "Undid the last change.", TaskType.undo.value, None, itinerary, turn
        )

    def _committed_response(
        self,
        result: CommitResult,
        message: str,
        task: str,
        change_set: ChangeSet | None,
        itinerary: Itinerary,
        turn: _Turn,
    ) -> ChatResponse:
        if isinstance(result, Committed):
            version = result.itinerary.version
            self._phase(itinerary.id, "applied", version)
            turn.outcome = "applied"
            return ChatResponse(
                message=message,
                intent=task,
                change_set=change_set,
                diff=result.diff,
                applied=True,
                version=version,
            )
        if isinstance(result, VersionConflict):
            turn.outcome = "conflict"
            return ChatResponse(
                message=result.message,
                intent=task,
                change_set=change_set,
                error_code=ErrorCode.STALE_VERSION_CONFLICT,
                version=result.current_version,
            )
        turn.outcome = "invalid"
        return ChatResponse(
            message=f"I couldn't apply that: {result.message}",
            intent=task,
            change_set=change_set,
            error_code=ErrorCode.VALIDATION_ERROR,
            version=itinerary.version,
        )

    def _explain(self, itinerary: Itinerary, request: ChatRequest, intent: IntentResult) -> str:
        entities: IntentEntities = intent.entities
        day_number = entities.day or request.day
        if request.selected_node_id or entities.reference:
            resolution = find_nodes(
                itinerary,
                entities.reference,
                day_number=day_number,
                selected_node_id=request.selected_node_id,
            )
            if resolution.single is not None:
                day, _, node = resolution.single
                return _describe_node(day, node)
            if resolution.ambiguous:
                return " ".join(_describe_node(day, node) for day, _, node in resolution.matches)

        if day_number is not None:
            day = itinerary.get_day(day_number)
            if day is None:
                return f"This trip has no day {day_number}."
            return _describe_day(day)
        if request.scope == ChatScope.day and len(itinerary.days) == 1:
            return _describe_day(itinerary.days[0])

        if not itinerary.days:
            return f"'{itinerary.title or itinerary.id}' has no days planned yet."
        header = f"{itinerary.title or 'Your trip'} has {len(itinerary.days)} day(s)."
        return " ".join([header, *(_describe_day(d) for d in itinerary.days)])

    def _phase(self, itinerary_id: str, phase: Phase, version: int) -> None:
        self.hub.emit("phase_transition", itinerary_id, version=version, payload={"phase": phase})

    async def _append(self, message: ChatMessage) -> None:
        await self.chat_history.append(message)

    async def _finish(
        self, itinerary_id: str, response: ChatResponse, turn: _Turn, start: float
    ) -> None:
        """Log, publish and measure the turn's single reply."""
        try:
            await self._append(
                ChatMessage(
                    id=_message_id(),
                    itinerary_id=itinerary_id,
                    sender="assistant",
                    text=response.message,
                    timestamp=datetime.now(UTC),
                    intent=response.intent,
                    change_set=response.change_set,
                    diff=response.diff,
                    applied=response.applied,
                    candidates=response.candidates,
                )
            )
        except Exception:
            logger.exception(f"Failed to record assistant reply for itinerary {itinerary_id}")

        self.hub.emit(
            "chat_response",
            itinerary_id,
            version=response.version,
            payload=response.model_dump(mode="json", by_alias=True, exclude_none=True),
        )
        latency_ms = (time.perf_counter() - start) * 1000
        self.metrics.record_turn(turn.task, turn.outcome, latency_ms)
        self.structured_logger.log_turn(
            itinerary_id,
            task=turn.task,
            outcome=turn.outcome,
            latency_ms=latency_ms,
            confidence=turn.confidence,
            agent=turn.agent,
            error_code=response.error_code.value if response.error_code else None,
        )
