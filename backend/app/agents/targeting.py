"""Resolving free-text node references ("the lunch") to itinerary nodes.

More than one plausible match is never auto-picked: the caller gets every
candidate, ranked by text similarity, then recency, then itinerary order.
"""

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from difflib import SequenceMatcher

from backend.app.models.changes import NodeCandidate
from backend.app.models.itinerary import Day, Itinerary, Node

STOPWORDS = frozenset(
    {
        "a", "an", "the", "my", "our", "this", "that", "it", "one", "at", "to", "of", "in",
        "on", "for", "and", "with", "from", "visit", "trip", "activity", "place", "stop",
        "thing", "item", "please", "day",
    }
)  # fmt: skip

# Reference words that name a node type rather than a title
TYPE_WORDS: dict[str, str] = {
    "meal": "meal",
    "restaurant": "meal",
    "food": "meal",
    "hotel": "accommodation",
    "accommodation": "accommodation",
    "hostel": "accommodation",
    "transport": "transport",
    "transfer": "transport",
    "attraction": "attraction",
    "sight": "attraction",
}

_WORD_RE = re.compile(r"[a-z0-9']+")
_EPOCH = datetime.min.replace(tzinfo=UTC)


def tokens(text: str) -> set[str]:
    return {w for w in _WORD_RE.findall(text.lower()) if w not in STOPWORDS}


@dataclass(frozen=True)
class _Match:
    node: Node
    day: Day
    index: int
    score: float


@dataclass(frozen=True)
class TargetResolution:
    """Outcome of resolving a reference: zero, one or several nodes."""

    matches: list[tuple[Day, int, Node]] = field(default_factory=list)
    candidates: list[NodeCandidate] = field(default_factory=list)

    @property
    def single(self) -> tuple[Day, int, Node] | None:
        return self.matches[0] if len(self.matches) == 1 else None

    @property
    def ambiguous(self) -> bool:
        return len(self.matches) > 1

    @property
    def empty(self) -> bool:
        return not self.matches


def _score(reference: str, ref_tokens: set[str], node: Node) -> float:
    title = node.title.lower()
    title_tokens = tokens(node.title)
    type_hits = {t for t in ref_tokens if TYPE_WORDS.get(t) == node.type.value}
    overlap = len((ref_tokens & title_tokens) | type_hits) / max(len(ref_tokens), 1)
    similarity = SequenceMatcher(None, reference.lower(), title).ratio()
    return round(min(1.0, 0.6 * overlap + 0.4 * similarity), 3)


def _candidate(match: _Match) -> NodeCandidate:
    return NodeCandidate(
        id=match.node.id,
        title=match.node.title,
        score=match.score,
        day_number=match.day.day_number,
        type=match.node.type.value,
        start_time=match.node.timing.start_time,
    )


def find_nodes(
    itinerary: Itinerary,
    reference: str | None,
    *,
    day_number: int | None = None,
    selected_node_id: str | None = None,
) -> TargetResolution:
    """Resolve a reference to nodes.

    A selected node id wins outright. Otherwise every node whose title or
    type shares a meaningful word with the reference is a match. An exact
    title ranks first but never excludes the other matches.
    """
    if selected_node_id:
        located = itinerary.locate_node(selected_node_id)
        if located is None:
            return TargetResolution()
        day, index, node = located
        return TargetResolution(
            matches=[located],
            candidates=[_candidate(_Match(node=node, day=day, index=index, score=1.0))],
        )

    ref_tokens = tokens(reference or "")
    if not ref_tokens:
        return TargetResolution()

    matches: list[_Match] = []
    for day in itinerary.days:
        if day_number is not None and day.day_number != day_number:
            continue
        for index, node in enumerate(day.nodes):
            title_tokens = tokens(node.title)
            type_hit = any(TYPE_WORDS.get(t) == node.type.value for t in ref_tokens)
            if ref_tokens & title_tokens or type_hit:
                score = _score(reference or "", ref_tokens, node)
                matches.append(_Match(node=node, day=day, index=index, score=score))

    matches.sort(
        key=lambda m: (
            -m.score,
            -(m.node.updated_at or _EPOCH).timestamp(),
            m.day.day_number,
            m.index,
        )
    )
    return TargetResolution(
        matches=[(m.day, m.index, m.node) for m in matches],
        candidates=[_candidate(m) for m in matches],
    )


def disambiguation_message(reference: str | None, candidates: list[NodeCandidate]) -> str:
    options = "; ".join(
        f"{i}. {c.title} (day {c.day_number}{', ' + c.start_time if c.start_time else ''})"
        for i, c in enumerate(candidates, start=1)
    )
    what = f"'{reference}'" if reference else "that"
    return f"I found {len(candidates)} matches for {what}. Which one do you mean? {options}"
