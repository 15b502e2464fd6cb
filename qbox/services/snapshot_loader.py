"""Snapshot loader: one REST fetch of a room's questions, normalized for the feed."""

import logging
from typing import Optional

from pydantic import ValidationError

from qbox.errors import ApiError, LoadFailure
from qbox.models.questions import Question, QuestionRecord, order_newest_first
from qbox.services.api_client import QBoxClient

logger = logging.getLogger(__name__)


def normalize_records(records: list[dict], viewer_tag: Optional[str]) -> list[Question]:
    """Turn raw backend records into Questions, newest first.

    Raises:
        LoadFailure: If any record is malformed.
    """
    questions = []
    for raw in records:
        try:
            questions.append(QuestionRecord.model_validate(raw).to_question(viewer_tag))
        except ValidationError as e:
            record_id = raw.get("_id") if isinstance(raw, dict) else None
            logger.error(f"Malformed question record {record_id}: {e}")
            raise LoadFailure(f"malformed question record {record_id}") from e
    return order_newest_first(questions)


async def load_snapshot(
    client: QBoxClient,
    room_id: str,
    viewer_tag: Optional[str],
    include_rejected: bool = False,
    author_tag: Optional[str] = None,
) -> list[Question]:
    """Fetch the current question set of a room.

    Args:
        client: REST client.
        room_id: Room to load.
        viewer_tag: Local anonymous tag, used to derive `is_mine`.
        include_rejected: Also return soft-deleted questions (instructor view).
        author_tag: Ask the server to filter by author. Participants pass their
            own tag so private rooms still return their questions.

    Returns:
        Questions ordered newest first.

    Raises:
        LoadFailure: On any network or server error. Not retried here.
    """
    try:
        records = await client.get_questions(room_id, author_tag=author_tag, include_rejected=include_rejected)
    except ApiError as e:
        logger.error(f"Snapshot for room {room_id} failed: {e.message}")
        raise LoadFailure(e.message) from e

    questions = normalize_records(records, viewer_tag)
    logger.info(f"Loaded {len(questions)} questions for room {room_id}.")
    return questions
