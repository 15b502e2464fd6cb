"""Inbound feed events and the parser that turns channel frames into them."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import ValidationError

from qbox.models.questions import QuestionRecord
from qbox.models.room import RoomVisibility


@dataclass
class FeedEvent:
    """A parsed push notification (or a confirmed local action) for one room."""
    kind: str
    payload: dict = field(default_factory=dict)
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    source: str = "remote"  # "remote" = event channel, "local" = confirmed dispatcher action
    raw_name: str = ""

    @property
    def question_id(self) -> Optional[str]:
        return self.payload.get("id")


QUESTION_CREATED = "question-created"
QUESTION_UPVOTED = "question-upvoted"
QUESTION_ANSWERED = "question-answered"
QUESTION_REPORTED = "question-reported"
QUESTION_SOFT_DELETED = "question-soft-deleted"
QUESTION_RESTORED = "question-restored"
QUESTION_PURGED = "question-purged"
VISIBILITY_CHANGED = "visibility-changed"
ROOM_CLOSED = "room-closed"

QUESTION_EVENTS = {
    QUESTION_CREATED, QUESTION_UPVOTED, QUESTION_ANSWERED, QUESTION_REPORTED,
    QUESTION_SOFT_DELETED, QUESTION_RESTORED, QUESTION_PURGED,
}
ROOM_EVENTS = {VISIBILITY_CHANGED, ROOM_CLOSED}
EVENT_KINDS = QUESTION_EVENTS | ROOM_EVENTS

# Names used by the deployed backend for the same events
EVENT_ALIASES = {
    "new-question": QUESTION_CREATED,
    "question-upvote-update": QUESTION_UPVOTED,
    "question-marked-answered": QUESTION_ANSWERED,
    "question-removed": QUESTION_SOFT_DELETED,
    "question-permanently-deleted": QUESTION_PURGED,
    "visibility-toggled": VISIBILITY_CHANGED,
}


def _question_id(data: dict) -> Optional[str]:
    for key in ("id", "questionId", "_id"):
        value = data.get(key)
        if value is not None and value != "":
            return str(value)
    return None


def _invalid(name: str, error: str) -> FeedEvent:
    return FeedEvent(kind="invalid", payload={"error": error}, raw_name=name)


def parse_event(name: str, data: Any) -> FeedEvent:
    """Parse an inbound channel frame into a FeedEvent.

    Payload shapes after parsing:
        question-created        {"id", "record": QuestionRecord}
        question-upvoted        {"id", "upvotes"}
        question-answered       {"id", "answer_text"}
        question-reported       {"id"}
        question-soft-deleted   {"id"}
        question-restored       {"id"}
        question-purged         {"id"}
        visibility-changed      {"room_code", "visibility"}
        room-closed             {"room_code"}

    Unrecognized names become kind "unknown"; malformed payloads become "invalid".
    """
    name = (name or "").strip()
    kind = EVENT_ALIASES.get(name, name)

    if kind not in EVENT_KINDS:
        return FeedEvent(kind="unknown", payload={"error": f"Unknown event: {name}"}, raw_name=name)

    if not isinstance(data, dict):
        return _invalid(name, f"{name} payload must be an object, got {type(data).__name__}")

    if kind == QUESTION_CREATED:
        try:
            record = QuestionRecord.model_validate(data)
        except ValidationError as e:
            return _invalid(name, f"Malformed question record: {e.error_count()} error(s)")
        return FeedEvent(kind=kind, payload={"id": record.id, "record": record}, raw_name=name)

    if kind in ROOM_EVENTS:
        room_code = data.get("roomCode") or data.get("room_code")
        if not room_code:
            return _invalid(name, f"{name} requires a room code")
        payload: dict = {"room_code": str(room_code)}
        if kind == VISIBILITY_CHANGED:
            mode = data.get("newMode") or data.get("visibility")
            if mode is None and "questionsVisible" in data:
                mode = RoomVisibility.PUBLIC if data["questionsVisible"] else RoomVisibility.PRIVATE
            try:
                payload["visibility"] = RoomVisibility(mode)
            except ValueError:
                return _invalid(name, f"Unknown visibility mode: {mode!r}")
        return FeedEvent(kind=kind, payload=payload, raw_name=name)

    question_id = _question_id(data)
    if question_id is None:
        return _invalid(name, f"{name} requires a question id")

    payload = {"id": question_id}

    if kind == QUESTION_UPVOTED:
        count = data.get("newCount", data.get("upvotes"))
        try:
            count = int(count)
        except (TypeError, ValueError):
            return _invalid(name, f"{name} requires an upvote count, got: {count!r}")
        if count < 0:
            return _invalid(name, f"Upvote count cannot be negative: {count}")
        payload["upvotes"] = count

    elif kind == QUESTION_ANSWERED:
        payload["answer_text"] = data.get("answer") or data.get("answerText")

    return FeedEvent(kind=kind, payload=payload, raw_name=name)
