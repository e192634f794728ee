"""Agent contract - capabilities, requests and outcomes.

Agents are stateless: everything they need arrives on the AgentRequest, and
they never call each other. Expected results (including "can't help" and
"which one did you mean?") are returned as outcome values.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from backend.app.changes.engine import ChangeEngine, ValidationFailed, VersionConflict
from backend.app.models.changes import ChangeOperation, ChangeSet, ItineraryDiff, NodeCandidate
from backend.app.models.common import ChatScope, ErrorCode, TaskType
from backend.app.models.intent import IntentEntities
from backend.app.models.itinerary import Itinerary

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], Awaitable[None]]


@dataclass(frozen=True)
class AgentCapabilities:
    """What an agent handles; lower priority wins."""

    supported_tasks: frozenset[TaskType]
    priority: int
    chat_enabled: bool = True


@dataclass(frozen=True)
class AgentRequest:
    """Everything an agent may use for one invocation."""

    itinerary: Itinerary
    text: str
    task: TaskType
    scope: ChatScope = ChatScope.trip
    day: int | None = None
    selected_node_id: str | None = None
    entities: IntentEntities = field(default_factory=IntentEntities)
    confidence: float | None = None
    progress: ProgressCallback | None = None

    async def report(self, percent: int, message: str) -> None:
        """Send a progress tick, if anyone is listening."""
        if self.progress is not None:
            await self.progress(percent, message)


@dataclass(frozen=True)
class Proposed:
    """A concrete ChangeSet with its preview diff."""

    change_set: ChangeSet
    diff: ItineraryDiff
    message: str


@dataclass(frozen=True)
class NeedsDisambiguation:
    """The reference matched several nodes; the user must choose."""

    candidates: list[NodeCandidate]
    message: str


@dataclass(frozen=True)
class Declined:
    """The agent can't act on this request (not an error)."""

    message: str
    error_code: ErrorCode | None = None


@dataclass(frozen=True)
class Failed:
    """An external dependency failed; the turn still gets a message."""

    reason: str
    error_code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_FAILURE


AgentOutcome = Proposed | NeedsDisambiguation | Declined | Failed


class Agent(ABC):
    """Base class for the fixed set of specialized agents."""

    name: str = "agent"
    CAPABILITIES: AgentCapabilities

    def __init__(self, engine: ChangeEngine | None = None) -> None:
        self.engine = engine or ChangeEngine()

    def capabilities(self) -> AgentCapabilities:
        return self.CAPABILITIES

    def supports(self, task: TaskType) -> bool:
        return task in self.CAPABILITIES.supported_tasks

    @abstractmethod
    async def execute(self, request: AgentRequest) -> AgentOutcome:
        """Produce a proposal, ask for disambiguation, decline, or fail."""
        ...

    def propose(
        self,
        request: AgentRequest,
        ops: Sequence[ChangeOperation],
        message: str,
        description: str | None = None,
    ) -> AgentOutcome:
        """Wrap operations in a ChangeSet and preview it against the snapshot."""
        change_set = ChangeSet(
            base_version=request.itinerary.version,
            ops=list(ops),
            intent=request.task,
            confidence=request.confidence,
            agent=self.name,
            description=description or message,
        )
        result = self.engine.preview(change_set, request.itinerary, author=self.name)
        if isinstance(result, VersionConflict | ValidationFailed):
            logger.info(f"{self.name} proposal rejected on preview: {result.message}")
            return Declined(
                f"I can't make that change: {result.message}",
                error_code=ErrorCode.VALIDATION_ERROR,
            )
        return Proposed(change_set=change_set, diff=result.diff, message=message)
