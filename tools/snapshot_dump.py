"""Snapshot dump tool.

Fetches a room's current question set through the snapshot loader and prints
it as YAML, with per-filter counts. Handy for checking what a client should
converge to after a reconnect.

Usage:
    python tools/snapshot_dump.py ROOM_ID                      # participant view
    python tools/snapshot_dump.py ROOM_ID --instructor         # include deleted questions
    python tools/snapshot_dump.py ROOM_ID --tag "Fox#1234"     # mark that tag's questions as mine
    python tools/snapshot_dump.py ROOM_ID --private            # apply private-room visibility
"""

import argparse
import asyncio
import sys
from pathlib import Path

import yaml
from dotenv import load_dotenv

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))
load_dotenv(project_root / ".env")

from qbox.engine.visibility import filter_counts, visible_questions  # noqa: E402
from qbox.errors import LoadFailure  # noqa: E402
from qbox.models.questions import Question  # noqa: E402
from qbox.models.room import Room, RoomVisibility, ViewerRole  # noqa: E402
from qbox.services.api_client import QBoxClient  # noqa: E402
from qbox.services.snapshot_loader import load_snapshot  # noqa: E402


def snapshot_report(questions: list[Question], room: Room, role: ViewerRole) -> dict:
    """Build the printable report for a loaded snapshot."""
    shown = visible_questions(questions, room, role)
    return {
        "room": room.id,
        "visibility": room.visibility.value,
        "role": role.value,
        "counts": filter_counts(questions, room, role),
        "questions": [
            {
                "id": q.id,
                "status": q.status.value,
                "upvotes": q.upvotes,
                "author": q.author_tag,
                "mine": q.is_mine,
                "reported": q.is_reported,
                "created_at": q.created_at.isoformat(),
                "text": q.text,
            }
            for q in shown
        ],
    }


async def dump(room_id: str, tag: str | None, instructor: bool, private: bool) -> dict:
    role = ViewerRole.INSTRUCTOR if instructor else ViewerRole.PARTICIPANT
    room = Room(
        id=room_id,
        code=room_id,
        visibility=RoomVisibility.PRIVATE if private else RoomVisibility.PUBLIC,
    )
    async with QBoxClient() as client:
        questions = await load_snapshot(client, room_id, viewer_tag=tag, include_rejected=instructor)
    return snapshot_report(questions, room, role)


def main():
    parser = argparse.ArgumentParser(description="Print a room's question snapshot as YAML")
    parser.add_argument("room_id", help="Room id to load")
    parser.add_argument("--tag", default=None, help="Viewer tag used to mark questions as mine")
    parser.add_argument("--instructor", action="store_true", help="Instructor view (includes deleted)")
    parser.add_argument("--private", action="store_true", help="Apply private-room visibility")
    args = parser.parse_args()

    try:
        report = asyncio.run(dump(args.room_id, args.tag, args.instructor, args.private))
    except LoadFailure as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    print(yaml.safe_dump(report, sort_keys=False, allow_unicode=True))


if __name__ == "__main__":
    main()
