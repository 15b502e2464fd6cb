"""Pydantic models for room questions."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

MAX_QUESTION_LENGTH = 500


class QuestionStatus(str, Enum):
    """Lifecycle status of a question. Purged questions have no status, they are gone."""
    PENDING = "pending"
    ANSWERED = "answered"
    REJECTED = "rejected"


# Status changes a client may expect from the server. Purge is removal, not a status.
ALLOWED_TRANSITIONS: dict[QuestionStatus, set[QuestionStatus]] = {
    QuestionStatus.PENDING: {QuestionStatus.ANSWERED, QuestionStatus.REJECTED},
    QuestionStatus.ANSWERED: set(),
    QuestionStatus.REJECTED: {QuestionStatus.PENDING},
}


def is_allowed_transition(current: QuestionStatus, target: QuestionStatus) -> bool:
    """True if `current -> target` is a transition of the question lifecycle.

    Staying in the same status always counts as allowed (idempotent re-delivery).
    """
    return current == target or target in ALLOWED_TRANSITIONS[current]


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Question(BaseModel):
    """A question in the local feed."""
    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    author_tag: str = ""
    upvotes: int = Field(default=0, ge=0)
    status: QuestionStatus = QuestionStatus.PENDING
    answer_text: Optional[str] = None
    is_reported: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    is_mine: bool = False

    @field_validator("created_at")
    @classmethod
    def _normalize_created_at(cls, value: datetime) -> datetime:
        return _as_utc(value)

    def with_status(self, status: QuestionStatus, answer_text: Optional[str] = None) -> "Question":
        """Copy with a new status. The answer only survives on answered questions."""
        if status == QuestionStatus.ANSWERED:
            answer = answer_text if answer_text is not None else self.answer_text
        else:
            answer = None
        return self.model_copy(update={"status": status, "answer_text": answer})


class QuestionRecord(BaseModel):
    """A question as the backend sends it, over REST or the event channel.

    Field names follow the backend (`_id`, `questionText`, `studentTag`, ...);
    canonical names are accepted too.
    """
    model_config = ConfigDict(extra="ignore")

    id: str = Field(validation_alias=AliasChoices("_id", "id", "questionId"))
    text: str = Field(validation_alias=AliasChoices("questionText", "text"))
    author_tag: Optional[str] = Field(default=None, validation_alias=AliasChoices("studentTag", "authorTag", "author_tag"))
    upvotes: Optional[int] = Field(default=0, ge=0)
    status: Optional[QuestionStatus] = QuestionStatus.PENDING
    answer_text: Optional[str] = Field(default=None, validation_alias=AliasChoices("answer", "answerText", "answer_text"))
    is_reported: Optional[bool] = Field(default=False, validation_alias=AliasChoices("isReported", "is_reported"))
    created_at: Optional[datetime] = Field(default=None, validation_alias=AliasChoices("createdAt", "created_at"))

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        # Backends hand out numeric ids too
        if isinstance(value, int):
            return str(value)
        return value

    def to_question(self, viewer_tag: Optional[str] = None) -> Question:
        """Normalize into the canonical Question, deriving `is_mine` from the viewer tag."""
        author = self.author_tag or ""
        status = self.status or QuestionStatus.PENDING
        return Question(
            id=self.id,
            text=self.text,
            author_tag=author,
            upvotes=self.upvotes or 0,
            status=status,
            answer_text=self.answer_text if status == QuestionStatus.ANSWERED else None,
            is_reported=bool(self.is_reported),
            created_at=self.created_at or datetime.now(timezone.utc),
            is_mine=bool(viewer_tag) and author == viewer_tag,
        )


def order_newest_first(questions: list[Question]) -> list[Question]:
    """Sort by creation time, newest first. Stable, so ties keep their current order."""
    return sorted(questions, key=lambda q: q.created_at, reverse=True)
