"""Visibility policy: which questions a viewer sees under which filter."""

from enum import Enum
from typing import Iterable, Optional

from qbox.models.questions import Question, QuestionStatus
from qbox.models.room import Room, RoomVisibility, ViewerRole


class FeedFilter(str, Enum):
    """Filter tabs offered in the feed."""
    ALL = "all"
    MINE = "mine"
    PENDING = "pending"
    ANSWERED = "answered"
    REJECTED = "rejected"  # "Deleted" bucket, instructors only


ROLE_FILTERS = {
    ViewerRole.PARTICIPANT: (FeedFilter.ALL, FeedFilter.MINE, FeedFilter.PENDING, FeedFilter.ANSWERED),
    ViewerRole.INSTRUCTOR: (FeedFilter.ALL, FeedFilter.PENDING, FeedFilter.ANSWERED, FeedFilter.REJECTED),
}


def available_filters(role: ViewerRole) -> tuple[FeedFilter, ...]:
    return ROLE_FILTERS[role]


def visible_questions(
    questions: Iterable[Question],
    room: Optional[Room],
    role: ViewerRole = ViewerRole.PARTICIPANT,
) -> list[Question]:
    """Questions the viewer may see at all, before any filter tab is applied.

    Instructors manage the room and see everything. Participants never see
    soft-deleted questions, and in a private room only see their own.
    """
    if role == ViewerRole.INSTRUCTOR:
        return list(questions)

    visible = [q for q in questions if q.status != QuestionStatus.REJECTED]
    if room is not None and room.visibility == RoomVisibility.PRIVATE:
        visible = [q for q in visible if q.is_mine]
    return visible


def filter_questions(
    questions: Iterable[Question],
    room: Optional[Room],
    feed_filter: FeedFilter = FeedFilter.ALL,
    role: ViewerRole = ViewerRole.PARTICIPANT,
) -> list[Question]:
    """Apply the visibility policy and then the selected filter tab.

    Raises:
        ValueError: If the filter is not offered to the role.
    """
    feed_filter = FeedFilter(feed_filter)
    if feed_filter not in ROLE_FILTERS[role]:
        raise ValueError(f"Filter '{feed_filter.value}' is not available to {role.value}s")

    visible = visible_questions(questions, room, role)

    if feed_filter == FeedFilter.ALL:
        # The deleted bucket is kept apart from "all"
        return [q for q in visible if q.status != QuestionStatus.REJECTED]
    if feed_filter == FeedFilter.MINE:
        return [q for q in visible if q.is_mine]
    return [q for q in visible if q.status.value == feed_filter.value]


def filter_counts(
    questions: Iterable[Question],
    room: Optional[Room],
    role: ViewerRole = ViewerRole.PARTICIPANT,
) -> dict[str, int]:
    """Badge count for every filter tab offered to the role."""
    questions = list(questions)
    return {
        f.value: len(filter_questions(questions, room, f, role))
        for f in ROLE_FILTERS[role]
    }
