"""Intent classifier - deterministic pre-router with an optional LLM fallback.

Common requests are matched by regex before any model call. Results below
the confidence threshold come back as UNKNOWN (with `raw_task` recording the
guess) so the orchestrator asks a clarifying question instead of acting.
"""

import logging
import re

from pydantic import BaseModel, Field

from backend.app.llm.client import LLMError, StructuredGenerationClient, generate_structured
from backend.app.models.common import ChatScope, TaskType
from backend.app.models.intent import IntentEntities, IntentResult

logger = logging.getLogger(__name__)

_I = re.IGNORECASE

CONVERSATIONAL_RE = re.compile(
    r"^\s*(hi|hello|hey|hiya|howdy|yo|good (morning|afternoon|evening)|thanks|thank you|thx|"
    r"cheers|bye|goodbye|see you|ok|okay|cool|great|nice|awesome)"
    r"(\s+(there|so much|a lot|again|you|all))*[\s!.,:)]*$",
    _I,
)

# Ordered by specificity; first match wins.
RULES: list[tuple[TaskType, re.Pattern[str], float]] = [
    (
        TaskType.undo,
        re.compile(r"\b(undo|revert|roll\s*back)\b|\bgo back to the previous\b", _I),
        0.95,
    ),
    (
        TaskType.replan_day,
        re.compile(
            r"\b(replan|re-plan|redo (the |this |my )?day|plan (the |this |my )?(whole )?day again|"
            r"reschedule (the |this |my )?(whole )?day|start (the day )?over)\b",
            _I,
        ),
        0.9,
    ),
    (
        TaskType.book_node,
        re.compile(r"\b(book|reserve)\b|\bmake a reservation\b|\bbuy tickets?\b", _I),
        0.9,
    ),
    (
        TaskType.enrich_node,
        re.compile(
            r"\b(enrich|look up|lookup|find (the )?(address|location)|"
            r"add (the )?(address(es)?|coordinates|location details|details))\b",
            _I,
        ),
        0.85,
    ),
    (
        TaskType.delete_node,
        re.compile(r"\b(remove|delete|drop|cancel|skip|get rid of)\b", _I),
        0.9,
    ),
    (
        TaskType.replace_node,
        re.compile(r"\b(replace|swap|substitute|instead of|something (else|different))\b", _I),
        0.85,
    ),
]

MOVE_VERB_RE = re.compile(r"\b(move|shift|push|put|switch|reschedule|bring)\b", _I)
TIME_VERB_RE = re.compile(
    r"\b(move|shift|push|reschedule|change|make|start|set|put|bring|delay|postpone)\b", _I
)
QUESTION_RE = re.compile(
    r"^\s*((what|why|when|where|which|who)\b|how\b(?!\s+about)|(tell me|explain|describe|show me|"
    r"summari[sz]e|give me (a |an )?(summary|overview))\b|(is|are|does|do)\s)",
    _I,
)
INSERT_RE = re.compile(
    r"\b(add|insert|include|visit|go to|see|squeeze in|fit in|schedule|plan a)\b", _I
)
EDIT_RE = re.compile(r"\b(rename|change|update|edit|set|make|adjust|modify)\b", _I)

# Entities
TIME_RE = re.compile(
    r"\b(?P<h>\d{1,2})(?::(?P<m>[0-5]\d))?\s*(?P<mer>a\.?m\.?|p\.?m\.?)(?![a-z])"
    r"|\b(?P<h2>\d{1,2}):(?P<m2>[0-5]\d)\b"
    r"|\b(?P<word>noon|midday|midnight)\b",
    _I,
)
BARE_HOUR_RE = re.compile(
    r"\b(?:at|to|for|until|by|around)\s+(?P<h>\d{1,2})\b"
    r"(?!\s*(?:st|nd|rd|th|days?|hours?|hrs?|h\b|mins?|minutes?|people|persons?|guests?))",
    _I,
)
DAY_RE = re.compile(r"\bday\s*(\d{1,2})\b", _I)
DAY_TARGET_RE = re.compile(r"\b(?:to|onto|into)\s+day\s*(\d{1,2})\b", _I)
REFERENCE_RE = re.compile(
    r"\b(?:move|shift|push|reschedule|change|put|bring|delete|remove|drop|cancel|skip|"
    r"get rid of|replace|swap|substitute|book|reserve|enrich|look up|rename|update|edit|make|"
    r"set|adjust|modify|explain|describe|delay|postpone)\s+"
    r"(?!(?:to|at|on|by|for|in|into|onto|around|until)\b)"
    r"(?P<ref>.+?)"
    r"(?=\s+(?:to|at|from|with|by|until|on|for|into|onto|in|instead|around|as)\b|[,.!?]|$)",
    _I,
)
ABOUT_RE = re.compile(r"\babout\s+(?P<ref>.+?)[?.!]*$", _I)
FOR_RE = re.compile(r"\bfor\s+(?P<ref>.+?)[?.!]*$", _I)
INSTEAD_RE = re.compile(r"^(?P<place>.+?)\s+instead of\s+(?P<ref>.+?)[.!?]*$", _I)
WITH_RE = re.compile(r"\b(?:with|by)\s+(?P<place>.+?)[.!?]*$", _I)
PLACE_RE = re.compile(
    r"\b(?:add|insert|include|visit|go to|see|squeeze in|fit in|schedule|plan a)\s+(?P<place>.+)$",
    _I,
)
TRAILING_RE = re.compile(
    r"\s+(?:on|to|for|in|into|at|around|by|before|after|during)\s+"
    r"(?:day\s*\d+|the\s+(?:morning|afternoon|evening)|\d{1,2}(?::\d{2})?\s*(?:[ap]\.?m\.?)?|"
    r"noon|midday|midnight|tomorrow|today|(?:my|the|our)\s+(?:trip|itinerary|plan))\b.*$",
    _I,
)
LEADING_RE = re.compile(
    r"^(?:(?:let's|lets|please|i want to|i'd like to|we want to|go to|visit|do)\s+)*"
    r"(?:a\s+(?:visit|trip)\s+to\s+|the\s+|a\s+|an\s+|some\s+|my\s+|our\s+|this\s+|that\s+)?",
    _I,
)

GENERIC_REFERENCES = frozenset(
    {"it", "this", "that", "them", "everything", "all", "all of them", "places", "items",
     "stops", "details", "addresses", "the day", "day", "plan", "trip", "itinerary",
     "reservation", "booking", "tickets", "address", "location", "coordinates"}
)  # fmt: skip

CATEGORY_WORDS: list[tuple[str, tuple[str, ...]]] = [
    ("meal", ("restaurant", "lunch", "dinner", "breakfast", "brunch", "cafe", "café", "coffee",
              "eat", "food", "bistro", "bar", "tapas", "pizza", "sushi")),
    ("attraction", ("museum", "gallery", "sight", "monument", "cathedral", "church", "castle",
                    "palace", "tower", "park", "temple", "ruins", "attraction", "viewpoint")),
    ("accommodation", ("hotel", "hostel", "stay", "accommodation", "check-in", "check in",
                       "airbnb")),
    ("transport", ("train", "flight", "bus", "taxi", "transfer", "ferry", "airport")),
]  # fmt: skip


class _LLMIntent(BaseModel):
    task: TaskType
    confidence: float = Field(..., ge=0, le=1)


LLM_SYSTEM_PROMPT = """You classify chat messages sent to a travel itinerary editor.
Tasks: move_time, move_node, insert_place, delete_node, replace_node, edit, book_node,
enrich_node, replan_day, undo, explain, unknown.
Answer with the single best task and your confidence between 0 and 1."""


def _to_hhmm(hour: int, minute: int, meridiem: str | None, *, assume_pm: bool) -> str | None:
    if meridiem:
        if not 1 <= hour <= 12:
            return None
        if meridiem == "p" and hour != 12:
            hour += 12
        elif meridiem == "a" and hour == 12:
            hour = 0
    elif assume_pm and 1 <= hour <= 6:
        hour += 12
    if hour > 23:
        return None
    return f"{hour:02d}:{minute:02d}"


def normalize_time(text: str) -> str | None:
    """First time mentioned in `text` as HH:MM ("2pm" -> "14:00").

    Bare hours from 1 to 6 ("at 3", "2:30") are read as afternoon times.
    """
    match = TIME_RE.search(text)
    if match:
        if match.group("word"):
            return "00:00" if match.group("word").lower() == "midnight" else "12:00"
        if match.group("h"):
            meridiem = match.group("mer")[0].lower()
            hour, minute = int(match.group("h")), int(match.group("m") or 0)
            return _to_hhmm(hour, minute, meridiem, assume_pm=False)
        hour_text = match.group("h2")
        return _to_hhmm(
            int(hour_text), int(match.group("m2")), None, assume_pm=len(hour_text) == 1
        )
    bare = BARE_HOUR_RE.search(text)
    if bare:
        return _to_hhmm(int(bare.group("h")), 0, None, assume_pm=True)
    return None


def _clean_phrase(phrase: str) -> str | None:
    phrase = TRAILING_RE.sub("", phrase.strip())
    phrase = LEADING_RE.sub("", phrase).strip(" \t'\".,!?")
    if not phrase or phrase.lower() in GENERIC_REFERENCES or DAY_RE.fullmatch(phrase):
        return None
    return phrase


def _category(text: str) -> str | None:
    lowered = text.lower()
    for category, words in CATEGORY_WORDS:
        if any(re.search(rf"\b{re.escape(w)}\b", lowered) for w in words):
            return category
    return None


def extract_entities(text: str, task: TaskType | None = None) -> IntentEntities:
    """Pull time, day, place, category and node reference out of `text`."""
    day = None
    if task == TaskType.move_node:
        target = DAY_TARGET_RE.search(text)
        day = int(target.group(1)) if target else None
    if day is None:
        mention = DAY_RE.search(text)
        day = int(mention.group(1)) if mention else None

    reference = None
    place = None
    if task == TaskType.replace_node and (instead := INSTEAD_RE.search(text)):
        reference = _clean_phrase(instead.group("ref"))
        place = _clean_phrase(instead.group("place"))
    else:
        if ref_match := REFERENCE_RE.search(text):
            reference = _clean_phrase(ref_match.group("ref"))
        elif task == TaskType.explain and (about := ABOUT_RE.search(text)):
            reference = _clean_phrase(about.group("ref"))
        if reference is None and task in (TaskType.book_node, TaskType.enrich_node):
            if for_match := FOR_RE.search(text):
                reference = _clean_phrase(for_match.group("ref"))
        if task == TaskType.replace_node and (with_match := WITH_RE.search(text)):
            place = _clean_phrase(with_match.group("place"))
        elif task == TaskType.insert_place and (place_match := PLACE_RE.search(text)):
            place = _clean_phrase(place_match.group("place"))

    return IntentEntities(
        time=normalize_time(text),
        day=day if day and day >= 1 else None,
        place=place,
        category=(_category(place) if place else None) or _category(text),
        reference=reference,
    )


def pre_route(text: str) -> tuple[TaskType, float] | None:
    """Deterministic classification; None when no pattern applies."""
    for task, pattern, confidence in RULES:
        if pattern.search(text):
            return task, confidence

    if MOVE_VERB_RE.search(text) and DAY_TARGET_RE.search(text):
        return TaskType.move_node, 0.9
    if TIME_VERB_RE.search(text) and normalize_time(text):
        return TaskType.move_time, 0.9
    if QUESTION_RE.search(text):
        return TaskType.explain, 0.8
    if INSERT_RE.search(text):
        return TaskType.insert_place, 0.85
    if EDIT_RE.search(text):
        return TaskType.edit, 0.7
    if text.strip().endswith("?"):
        return TaskType.explain, 0.65
    return None


class IntentClassifier:
    """Maps free text (plus UI context) to a task and confidence."""

    def __init__(
        self, llm: StructuredGenerationClient | None = None, threshold: float = 0.6
    ) -> None:
        self.llm = llm
        self.threshold = threshold

    async def classify(
        self,
        text: str,
        scope: ChatScope = ChatScope.trip,
        selected_node_id: str | None = None,
        day: int | None = None,
        history: list[str] | None = None,
    ) -> IntentResult:
        """Classify one message. `history` is recent chat lines, oldest first."""
        if CONVERSATIONAL_RE.match(text):
            return IntentResult(task=TaskType.unknown, confidence=0.0, source="conversational")

        routed = pre_route(text)
        source = "rules"
        if routed is None:
            routed = await self._classify_with_llm(text, scope, selected_node_id, day, history)
            source = "llm"
        if routed is None:
            return IntentResult(
                task=TaskType.unknown,
                confidence=0.0,
                source="rules",
                entities=extract_entities(text),
            )

        task, confidence = routed
        entities = extract_entities(text, task)
        if task == TaskType.unknown or confidence < self.threshold:
            logger.info(f"Low-confidence intent {task.value} ({confidence:.2f}) for: {text!r}")
            return IntentResult(
                task=TaskType.unknown,
                confidence=confidence,
                raw_task=task,
                source=source,
                entities=entities,
            )
        return IntentResult(
            task=task, confidence=confidence, raw_task=task, source=source, entities=entities
        )

    async def _classify_with_llm(
        self,
        text: str,
        scope: ChatScope,
        selected_node_id: str | None,
        day: int | None,
        history: list[str] | None = None,
    ) -> tuple[TaskType, float] | None:
        if self.llm is None:
            return None
        context = "\n".join(history or [])
        prompt = (
            (f"Recent messages:\n{context}\n" if context else "")
            + f"Message: {text}\n"
            f"Scope: {scope.value}; day: {day or 'none'}; "
            f"selected item: {'yes' if selected_node_id else 'no'}"
        )
        try:
            result = await generate_structured(
                self.llm, prompt, _LLMIntent, system_prompt=LLM_SYSTEM_PROMPT
            )
        except LLMError as e:
            logger.info(f"LLM intent fallback unavailable: {e}")
            return None
        return result.task, result.confidence
