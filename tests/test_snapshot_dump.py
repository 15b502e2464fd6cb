"""Tests for the snapshot dump tool."""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import yaml

from qbox.models.questions import Question, QuestionStatus
from qbox.models.room import Room, RoomVisibility, ViewerRole
from tools.snapshot_dump import dump, snapshot_report

CREATED = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)

QUESTIONS = [
    Question(id="q2", text="Mine", author_tag="Fox#1111", is_mine=True, upvotes=2, created_at=CREATED),
    Question(id="q1", text="Gone", author_tag="Owl#2222", status=QuestionStatus.REJECTED, created_at=CREATED),
]


class TestSnapshotReport:
    """Test the printable report."""

    def test_participant_report(self):
        report = snapshot_report(QUESTIONS, Room(id="r1", code="ABC123"), ViewerRole.PARTICIPANT)
        assert report["room"] == "r1"
        assert report["visibility"] == "public"
        assert report["counts"] == {"all": 1, "mine": 1, "pending": 1, "answered": 0}
        assert report["questions"] == [{
            "id": "q2",
            "status": "pending",
            "upvotes": 2,
            "author": "Fox#1111",
            "mine": True,
            "reported": False,
            "created_at": "2026-03-01T10:00:00+00:00",
            "text": "Mine",
        }]

    def test_instructor_report_includes_deleted(self):
        room = Room(id="r1", code="ABC123", visibility=RoomVisibility.PRIVATE)
        report = snapshot_report(QUESTIONS, room, ViewerRole.INSTRUCTOR)
        assert [q["id"] for q in report["questions"]] == ["q2", "q1"]
        assert report["counts"]["rejected"] == 1

    def test_report_is_yaml_safe(self):
        report = snapshot_report(QUESTIONS, Room(id="r1", code="ABC123"), ViewerRole.INSTRUCTOR)
        assert yaml.safe_load(yaml.safe_dump(report)) == report

    def test_dump_uses_loader(self):
        with patch("tools.snapshot_dump.load_snapshot", new=AsyncMock(return_value=QUESTIONS)) as loader:
            report = asyncio.run(dump("r1", tag="Fox#1111", instructor=False, private=True))

        assert loader.await_args.kwargs == {"viewer_tag": "Fox#1111", "include_rejected": False}
        assert report["visibility"] == "private"
        assert [q["id"] for q in report["questions"]] == ["q2"]
