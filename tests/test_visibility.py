"""Tests for the visibility policy and filter tabs."""

from datetime import datetime, timedelta, timezone

import pytest

from qbox.engine.visibility import (
    FeedFilter,
    available_filters,
    filter_counts,
    filter_questions,
    visible_questions,
)
from qbox.models.questions import Question, QuestionStatus
from qbox.models.room import Room, RoomVisibility, ViewerRole

NOW = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)


def q(qid, status=QuestionStatus.PENDING, mine=False, minutes=0) -> Question:
    return Question(
        id=qid,
        text=f"Question {qid}",
        author_tag="Fox#1111" if mine else "Owl#2222",
        status=status,
        created_at=NOW + timedelta(minutes=minutes),
        is_mine=mine,
    )


FEED = [
    q("p-mine", mine=True, minutes=5),
    q("p-other", minutes=4),
    q("a-other", QuestionStatus.ANSWERED, minutes=3),
    q("a-mine", QuestionStatus.ANSWERED, mine=True, minutes=2),
    q("r-mine", QuestionStatus.REJECTED, mine=True, minutes=1),
    q("r-other", QuestionStatus.REJECTED),
]

PUBLIC = Room(id="r1", code="ABC123")
PRIVATE = Room(id="r1", code="ABC123", visibility=RoomVisibility.PRIVATE)


def ids(questions):
    return [x.id for x in questions]


class TestVisibleQuestions:
    """Test which questions a viewer may see at all."""

    def test_participant_public_room(self):
        assert ids(visible_questions(FEED, PUBLIC)) == ["p-mine", "p-other", "a-other", "a-mine"]

    def test_participant_private_room_sees_only_own(self):
        assert ids(visible_questions(FEED, PRIVATE)) == ["p-mine", "a-mine"]

    def test_instructor_sees_everything(self):
        assert ids(visible_questions(FEED, PRIVATE, ViewerRole.INSTRUCTOR)) == ids(FEED)

    def test_unknown_room_treated_as_public(self):
        assert len(visible_questions(FEED, None)) == 4


class TestFilterQuestions:
    """Test the filter tabs."""

    @pytest.mark.parametrize("feed_filter,expected", [
        (FeedFilter.ALL, ["p-mine", "p-other", "a-other", "a-mine"]),
        (FeedFilter.MINE, ["p-mine", "a-mine"]),
        (FeedFilter.PENDING, ["p-mine", "p-other"]),
        (FeedFilter.ANSWERED, ["a-other", "a-mine"]),
    ])
    def test_participant_tabs(self, feed_filter, expected):
        assert ids(filter_questions(FEED, PUBLIC, feed_filter)) == expected

    @pytest.mark.parametrize("feed_filter,expected", [
        (FeedFilter.ALL, ["p-mine", "p-other", "a-other", "a-mine"]),
        (FeedFilter.PENDING, ["p-mine", "p-other"]),
        (FeedFilter.ANSWERED, ["a-other", "a-mine"]),
        (FeedFilter.REJECTED, ["r-mine", "r-other"]),
    ])
    def test_instructor_tabs(self, feed_filter, expected):
        assert ids(filter_questions(FEED, PRIVATE, feed_filter, ViewerRole.INSTRUCTOR)) == expected

    def test_rejected_tab_not_offered_to_participants(self):
        with pytest.raises(ValueError, match="not available"):
            filter_questions(FEED, PUBLIC, FeedFilter.REJECTED)

    def test_mine_tab_not_offered_to_instructors(self):
        with pytest.raises(ValueError):
            filter_questions(FEED, PUBLIC, FeedFilter.MINE, ViewerRole.INSTRUCTOR)

    def test_filter_by_string_value(self):
        assert ids(filter_questions(FEED, PUBLIC, "answered")) == ["a-other", "a-mine"]

    def test_order_preserved(self):
        shuffled = list(reversed(FEED))
        assert ids(filter_questions(shuffled, PUBLIC, FeedFilter.PENDING)) == ["p-other", "p-mine"]


class TestCounts:
    """Test badge counts and offered tabs."""

    def test_available_filters(self):
        assert FeedFilter.MINE in available_filters(ViewerRole.PARTICIPANT)
        assert FeedFilter.REJECTED not in available_filters(ViewerRole.PARTICIPANT)
        assert FeedFilter.REJECTED in available_filters(ViewerRole.INSTRUCTOR)

    def test_participant_counts_private_room(self):
        assert filter_counts(FEED, PRIVATE) == {"all": 2, "mine": 2, "pending": 1, "answered": 1}

    def test_instructor_counts(self):
        assert filter_counts(FEED, PUBLIC, ViewerRole.INSTRUCTOR) == {
            "all": 4, "pending": 2, "answered": 2, "rejected": 2,
        }
