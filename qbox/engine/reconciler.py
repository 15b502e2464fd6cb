"""Reconciliation engine for a room's live question feed.

Merges snapshot loads and streamed events into one ordered, deduplicated
local view. Every change, remote or local, goes through `apply()`, keyed by
question id, so duplicate deliveries and races settle the same way.
"""

import logging
from collections import Counter
from typing import Iterable, Optional

from qbox.engine.graph import apply_event
from qbox.engine.states import FeedState, create_initial_state
from qbox.models.events import FeedEvent
from qbox.models.questions import Question, order_newest_first
from qbox.models.room import Room

logger = logging.getLogger(__name__)


def merge_snapshot(state: FeedState, snapshot: Iterable[Question], since_seq: int) -> FeedState:
    """Merge a point-in-time snapshot into the state.

    The snapshot is authoritative for every question no event has touched
    since the fetch began (`since_seq`). Questions touched after that keep
    their local version, whether or not the snapshot carries them. Purged
    ids are never re-inserted.
    """
    touched = state["touched"]
    purged = state["purged_ids"]
    local = {q.id: q for q in state["questions"]}

    def is_newer(question_id: str) -> bool:
        return touched.get(question_id, 0) > since_seq

    merged: list[Question] = []
    seen: set[str] = set()
    for question in snapshot:
        if question.id in purged or question.id in seen:
            continue
        seen.add(question.id)
        if question.id in local and is_newer(question.id):
            merged.append(local[question.id])
        else:
            merged.append(question)

    for question in state["questions"]:
        if question.id not in seen and is_newer(question.id):
            merged.append(question)

    new_touched = {qid: seq for qid, seq in touched.items() if qid in seen or is_newer(qid)}
    return FeedState(
        **{**state, "questions": order_newest_first(merged), "touched": new_touched, "last_outcome": "snapshot"}
    )


def retag(state: FeedState, viewer_tag: Optional[str]) -> FeedState:
    """Recompute `is_mine` for a new viewer tag."""
    questions = [
        q.model_copy(update={"is_mine": bool(viewer_tag) and q.author_tag == viewer_tag})
        for q in state["questions"]
    ]
    return FeedState(**{**state, "questions": questions, "viewer_tag": viewer_tag})


class ReconciliationEngine:
    """Holds the local view of one room and merges everything into it."""

    def __init__(self, viewer_tag: Optional[str] = None, room: Optional[Room] = None):
        self._state: FeedState = create_initial_state(viewer_tag=viewer_tag, room=room)
        self._stats: Counter = Counter()

    @property
    def state(self) -> FeedState:
        return self._state

    @property
    def questions(self) -> list[Question]:
        return list(self._state["questions"])

    @property
    def room(self) -> Optional[Room]:
        return self._state["room"]

    @property
    def viewer_tag(self) -> Optional[str]:
        return self._state["viewer_tag"]

    @property
    def purged_ids(self) -> frozenset[str]:
        return self._state["purged_ids"]

    @property
    def stats(self) -> dict[str, int]:
        """How many merges ended in each outcome (applied, duplicate, stale, ...)."""
        return dict(self._stats)

    def get_question(self, question_id: str) -> Optional[Question]:
        """Get a question by ID."""
        for q in self._state["questions"]:
            if q.id == question_id:
                return q
        return None

    def apply(self, event: FeedEvent) -> str:
        """Merge one event into the local view.

        Returns:
            The merge outcome: applied, duplicate, stale, tombstoned or ignored.
        """
        self._state = apply_event(self._state, event)
        outcome = self._state["last_outcome"] or "ignored"
        self._stats[outcome] += 1
        logger.debug(f"{event.source} {event.kind} {event.payload.get('id', '')} -> {outcome}")
        return outcome

    def begin_snapshot(self) -> int:
        """Mark the start of a snapshot fetch. Pass the token to `load_snapshot`."""
        return self._state["seq"]

    def load_snapshot(self, questions: Iterable[Question], since: Optional[int] = None):
        """Merge a fetched snapshot.

        Args:
            questions: Normalized questions from the snapshot loader.
            since: Token from `begin_snapshot()` taken before the fetch started.
                Defaults to now, i.e. the snapshot wins over every local change.
        """
        since_seq = self._state["seq"] if since is None else since
        self._state = merge_snapshot(self._state, questions, since_seq)
        self._stats["snapshot"] += 1
        logger.info(f"Snapshot merged: {len(self._state['questions'])} questions in feed.")

    def set_viewer_tag(self, viewer_tag: Optional[str]):
        """Switch the local identity. Questions under the old tag stop being 'mine'."""
        self._state = retag(self._state, viewer_tag)

    def set_room(self, room: Optional[Room]):
        """Replace the room metadata, e.g. after a fresh room fetch or a confirmed toggle."""
        self._state = FeedState(**{**self._state, "room": room})

    def clear(self):
        """Forget the whole feed, tombstones included (used when leaving a room)."""
        self._state = create_initial_state(viewer_tag=self._state["viewer_tag"])
        self._stats.clear()
