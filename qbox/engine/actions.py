"""Merge nodes of the reconciliation graph.

Each function corresponds to a LangGraph node and merges one kind of event
into the feed state. Nodes are pure: they read the state and return the keys
they replace, so they can be exercised without building the graph.
"""

import logging
from typing import Optional

from qbox.engine.states import FeedState
from qbox.errors import StaleEventFailure
from qbox.models.events import (
    QUESTION_ANSWERED,
    QUESTION_CREATED,
    QUESTION_PURGED,
    QUESTION_REPORTED,
    QUESTION_RESTORED,
    QUESTION_SOFT_DELETED,
    QUESTION_UPVOTED,
    ROOM_CLOSED,
    VISIBILITY_CHANGED,
    FeedEvent,
)
from qbox.models.questions import Question, QuestionStatus, is_allowed_transition, order_newest_first
from qbox.models.room import RoomStatus

logger = logging.getLogger(__name__)

APPLIED = "applied"
DUPLICATE = "duplicate"
STALE = "stale"
TOMBSTONED = "tombstoned"
IGNORED = "ignored"

# Graph node handling each event kind
EVENT_NODES = {
    QUESTION_CREATED: "created",
    QUESTION_UPVOTED: "upvoted",
    QUESTION_ANSWERED: "answered",
    QUESTION_REPORTED: "reported",
    QUESTION_SOFT_DELETED: "soft_deleted",
    QUESTION_RESTORED: "restored",
    QUESTION_PURGED: "purged",
    VISIBILITY_CHANGED: "visibility_changed",
    ROOM_CLOSED: "room_closed",
}


def _done(outcome: str, **updates) -> dict:
    return {"last_outcome": outcome, "pending_event": None, **updates}


def _find(questions: list[Question], question_id: Optional[str]) -> Optional[int]:
    for index, q in enumerate(questions):
        if q.id == question_id:
            return index
    return None


def _locate(state: FeedState, event: FeedEvent) -> tuple[Optional[int], Optional[dict]]:
    """Find the event's question, or the result to return when it cannot be merged."""
    question_id = event.question_id
    if question_id in state["purged_ids"]:
        logger.debug(f"Ignoring {event.kind} for purged question {question_id}.")
        return None, _done(TOMBSTONED)

    index = _find(state["questions"], question_id)
    if index is None:
        failure = StaleEventFailure(event.kind, question_id)
        logger.info(f"Dropped stale event: {failure}")
        return None, _done(STALE)

    return index, None


def _replace(state: FeedState, index: int, updated: Question) -> dict:
    """Swap in the updated question, or report a duplicate if nothing changed."""
    if state["questions"][index] == updated:
        return _done(DUPLICATE)

    questions = list(state["questions"])
    questions[index] = updated
    touched = dict(state["touched"])
    touched[updated.id] = state["seq"]
    return _done(APPLIED, questions=questions, touched=touched)


def _transition(state: FeedState, status: QuestionStatus, answer_text: Optional[str] = None) -> dict:
    event = state["pending_event"]
    index, result = _locate(state, event)
    if result is not None:
        return result

    current = state["questions"][index]
    if not is_allowed_transition(current.status, status):
        # The server is authoritative; apply it anyway but leave a trace
        logger.warning(
            f"Question {current.id} moved {current.status.value} -> {status.value} "
            f"outside the lifecycle ({event.kind})."
        )

    return _replace(state, index, current.with_status(status, answer_text))


def route_event(state: FeedState) -> dict:
    """Router node: stamp the incoming event with the next sequence number."""
    event = state.get("pending_event")
    if event is None:
        return {"last_outcome": None}
    return {"seq": state["seq"] + 1, "last_outcome": None}


def decide_next_node(state: FeedState) -> str:
    """Conditional edge: pick the merge node for the pending event."""
    event = state.get("pending_event")
    if event is None:
        return "__end__"
    return EVENT_NODES.get(event.kind, "ignore")


def created_node(state: FeedState) -> dict:
    """Insert a question unless its id is already present or was purged."""
    event = state["pending_event"]
    question_id = event.question_id

    if question_id in state["purged_ids"]:
        logger.info(f"Question {question_id} was purged; not re-inserting it.")
        return _done(TOMBSTONED)

    if _find(state["questions"], question_id) is not None:
        logger.debug(f"Question {question_id} already present ({event.source} create).")
        return _done(DUPLICATE)

    question = event.payload["record"].to_question(state["viewer_tag"])
    touched = dict(state["touched"])
    touched[question.id] = state["seq"]
    logger.info(f"Question {question.id} added to the feed ({event.source}).")
    return _done(
        APPLIED,
        questions=order_newest_first([question] + list(state["questions"])),
        touched=touched,
    )


def upvoted_node(state: FeedState) -> dict:
    """Set the upvote count to the value carried by the event."""
    event = state["pending_event"]
    index, result = _locate(state, event)
    if result is not None:
        return result
    updated = state["questions"][index].model_copy(update={"upvotes": event.payload["upvotes"]})
    return _replace(state, index, updated)


def answered_node(state: FeedState) -> dict:
    return _transition(state, QuestionStatus.ANSWERED, state["pending_event"].payload.get("answer_text"))


def reported_node(state: FeedState) -> dict:
    """Flag a question as reported. Reports are never withdrawn."""
    event = state["pending_event"]
    index, result = _locate(state, event)
    if result is not None:
        return result
    updated = state["questions"][index].model_copy(update={"is_reported": True})
    return _replace(state, index, updated)


def soft_deleted_node(state: FeedState) -> dict:
    return _transition(state, QuestionStatus.REJECTED)


def restored_node(state: FeedState) -> dict:
    return _transition(state, QuestionStatus.PENDING)


def purged_node(state: FeedState) -> dict:
    """Remove a question for good and remember its id."""
    question_id = state["pending_event"].question_id
    if question_id in state["purged_ids"]:
        return _done(DUPLICATE)

    questions = [q for q in state["questions"] if q.id != question_id]
    touched = dict(state["touched"])
    touched.pop(question_id, None)
    logger.info(f"Question {question_id} purged from the feed.")
    return _done(
        APPLIED,
        questions=questions,
        touched=touched,
        purged_ids=state["purged_ids"] | {question_id},
    )


def _room_matches(state: FeedState, room_code: str) -> bool:
    room = state["room"]
    return room is not None and room.code.upper() == room_code.upper()


def visibility_changed_node(state: FeedState) -> dict:
    payload = state["pending_event"].payload
    if not _room_matches(state, payload["room_code"]):
        logger.debug(f"Visibility change for other room {payload['room_code']} ignored.")
        return _done(IGNORED)

    room = state["room"]
    if room.visibility == payload["visibility"]:
        return _done(DUPLICATE)
    logger.info(f"Room {room.code} is now {payload['visibility'].value}.")
    return _done(APPLIED, room=room.model_copy(update={"visibility": payload["visibility"]}))


def room_closed_node(state: FeedState) -> dict:
    payload = state["pending_event"].payload
    if not _room_matches(state, payload["room_code"]):
        logger.debug(f"Close of other room {payload['room_code']} ignored.")
        return _done(IGNORED)

    room = state["room"]
    if room.status == RoomStatus.CLOSED:
        return _done(DUPLICATE)
    logger.info(f"Room {room.code} closed.")
    return _done(APPLIED, room=room.model_copy(update={"status": RoomStatus.CLOSED}))


def ignore_node(state: FeedState) -> dict:
    """Unknown or malformed events are logged and otherwise left alone."""
    event = state["pending_event"]
    logger.warning(f"Ignoring {event.kind} event '{event.raw_name}': {event.payload.get('error', '')}")
    return _done(IGNORED)
