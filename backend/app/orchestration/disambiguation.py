"""Disambiguation resolver - pending "which one did you mean?" requests.

One pending request per conversation. The state machine is
idle -> awaiting_selection -> (resolved | cancelled | expired) -> idle;
nothing survives the transition back to idle.
"""

import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Literal

from backend.app.models.changes import NodeCandidate
from backend.app.models.common import ChatScope, TaskType
from backend.app.models.intent import IntentEntities

logger = logging.getLogger(__name__)

ORDINALS = {
    "first": 1,
    "1st": 1,
    "second": 2,
    "2nd": 2,
    "third": 3,
    "3rd": 3,
    "fourth": 4,
    "4th": 4,
    "fifth": 5,
    "5th": 5,
    "last": -1,
}

_NUMBER_RE = re.compile(r"^\s*(?:#|no\.?\s*|number\s+|option\s+)?(\d{1,2})\s*[.)!]*\s*$", re.I)
_ORDINAL_RE = re.compile(
    r"^\s*(?:the\s+)?(" + "|".join(ORDINALS) + r")(?:\s+(?:one|option|item))?\s*[.!]*\s*$",
    re.I,
)


@dataclass(frozen=True)
class PendingDisambiguation:
    """The original request, held until the user picks a candidate."""

    conversation_id: str
    itinerary_id: str
    agent_name: str
    task: TaskType
    original_text: str
    candidates: list[NodeCandidate]
    scope: ChatScope = ChatScope.trip
    day: int | None = None
    entities: IntentEntities = field(default_factory=IntentEntities)
    confidence: float | None = None
    auto_apply: bool | None = None
    created_at: float = 0.0

    def candidate(self, node_id: str) -> NodeCandidate | None:
        return next((c for c in self.candidates if c.id == node_id), None)


ResolutionStatus = Literal["resolved", "expired", "none", "invalid_selection"]


@dataclass(frozen=True)
class Resolution:
    status: ResolutionStatus
    pending: PendingDisambiguation | None = None
    candidate: NodeCandidate | None = None


def match_reply(pending: PendingDisambiguation, text: str) -> NodeCandidate | None:
    """Candidate picked by a chat reply: "2", "the second one", or an exact title.

    Titles only count when they name exactly one candidate, since the
    candidates usually share a title.
    """
    position = None
    if number := _NUMBER_RE.match(text):
        position = int(number.group(1))
    elif ordinal := _ORDINAL_RE.match(text):
        position = ORDINALS[ordinal.group(1).lower()]
    if position is not None:
        if position == -1:
            return pending.candidates[-1] if pending.candidates else None
        if 1 <= position <= len(pending.candidates):
            return pending.candidates[position - 1]
        return None

    wanted = text.strip().strip(".!").lower()
    titled = [c for c in pending.candidates if c.title.lower() == wanted]
    return titled[0] if len(titled) == 1 else None


class DisambiguationResolver:
    """Per-conversation pending disambiguations with an idle timeout.

    Expired entries are purged whenever the resolver is accessed, so
    abandoned conversations don't accumulate.
    """

    def __init__(
        self,
        idle_timeout_seconds: float = 900,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.idle_timeout_seconds = idle_timeout_seconds
        self._clock = clock
        self._pending: dict[str, PendingDisambiguation] = {}

    def begin(self, pending: PendingDisambiguation) -> PendingDisambiguation:
        """Enter awaiting_selection, replacing any earlier pending request."""
        stored = replace(pending, created_at=self._clock())
        if pending.conversation_id in self._pending:
            logger.info(f"Replacing pending disambiguation for {pending.conversation_id}")
        self._pending[pending.conversation_id] = stored
        return stored

    def _expired(self, pending: PendingDisambiguation) -> bool:
        return self._clock() - pending.created_at > self.idle_timeout_seconds

    def purge_expired(self) -> int:
        expired = [k for k, p in self._pending.items() if self._expired(p)]
        for key in expired:
            del self._pending[key]
        if expired:
            logger.info(f"Purged {len(expired)} expired disambiguation(s)")
        return len(expired)

    def pending(self, conversation_id: str) -> PendingDisambiguation | None:
        self.purge_expired()
        return self._pending.get(conversation_id)

    def state(self, conversation_id: str) -> Literal["idle", "awaiting_selection"]:
        return "awaiting_selection" if self.pending(conversation_id) else "idle"

    def cancel(self, conversation_id: str) -> bool:
        """Drop the pending request, if any. Returns whether one was cancelled."""
        cancelled = self._pending.pop(conversation_id, None) is not None
        if cancelled:
            logger.info(f"Cancelled pending disambiguation for {conversation_id}")
        return cancelled

    def resolve(self, conversation_id: str, node_id: str) -> Resolution:
        """Consume the pending request if `node_id` is one of its candidates.

        An unknown selection leaves the request pending.
        """
        pending = self._pending.get(conversation_id)
        if pending is None:
            return Resolution("none")
        if self._expired(pending):
            del self._pending[conversation_id]
            return Resolution("expired", pending)
        candidate = pending.candidate(node_id)
        if candidate is None:
            return Resolution("invalid_selection", pending)
        del self._pending[conversation_id]
        return Resolution("resolved", pending, candidate)
