"""State definitions and typed dict for the feed reconciliation graph."""

from typing import Optional

from typing_extensions import TypedDict

from qbox.models.events import FeedEvent
from qbox.models.questions import Question
from qbox.models.room import Room


class FeedState(TypedDict):
    """The state that flows through the reconciliation graph.

    Nodes never mutate it; each returns the keys it replaces.
    """
    # Local view of the room's questions, newest first
    questions: list[Question]

    # Ids removed by a purge; never re-inserted
    purged_ids: frozenset[str]

    # Event sequence counter and the last sequence that touched each id
    seq: int
    touched: dict[str, int]

    # Viewer context
    viewer_tag: Optional[str]
    room: Optional[Room]

    # Event being merged
    pending_event: Optional[FeedEvent]

    # What the last merge did: applied, duplicate, stale, tombstoned, ignored
    last_outcome: Optional[str]


def create_initial_state(viewer_tag: Optional[str] = None, room: Optional[Room] = None) -> FeedState:
    """Create the empty state for a freshly joined room."""
    return FeedState(
        questions=[],
        purged_ids=frozenset(),
        seq=0,
        touched={},
        viewer_tag=viewer_tag,
        room=room,
        pending_event=None,
        last_outcome=None,
    )
