"""Intent models - classified task for a chat turn."""

from pydantic import Field

from backend.app.models.common import TaskType, WireModel


class IntentEntities(WireModel):
    """Entities extracted from the user's text."""

    time: str | None = Field(None, description="Normalized HH:MM")
    day: int | None = Field(None, ge=1)
    place: str | None = None
    category: str | None = None
    reference: str | None = Field(None, description="Free-text node reference, e.g. 'lunch'")


class IntentResult(WireModel):
    """Classification outcome.

    `task` is UNKNOWN whenever `confidence` fell below the threshold;
    `raw_task` keeps what the classifier would have guessed.
    """

    task: TaskType
    confidence: float = Field(..., ge=0, le=1)
    raw_task: TaskType | None = None
    source: str = "rules"
    entities: IntentEntities = Field(default_factory=IntentEntities)

    @property
    def is_unknown(self) -> bool:
        return self.task == TaskType.unknown
