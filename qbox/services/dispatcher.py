"""Action dispatcher: user-initiated mutations against the backend.

Each action is two-phase. The request goes to the backend first; only when it
succeeds is the confirmed change merged locally, through the same engine entry
point that handles pushed events (so a later duplicate event is a no-op). When
the request fails nothing local changes and ActionFailure is raised.

Disruptive actions (delete, purge, close room, tag regeneration, logout) take a
`confirmed` flag; without it they return a "cancelled" result and do nothing.
"""

import logging
from typing import Optional

from pydantic import ValidationError

from qbox.engine.reconciler import ReconciliationEngine
from qbox.errors import ActionFailure, ApiError
from qbox.models.events import (
    QUESTION_ANSWERED,
    QUESTION_CREATED,
    QUESTION_PURGED,
    QUESTION_REPORTED,
    QUESTION_RESTORED,
    QUESTION_SOFT_DELETED,
    QUESTION_UPVOTED,
    FeedEvent,
)
from qbox.models.questions import MAX_QUESTION_LENGTH, Question, QuestionRecord, QuestionStatus
from qbox.models.room import Room, RoomStatus, RoomVisibility, ViewerRole
from qbox.services.api_client import QBoxClient
from qbox.services.event_channel import EventChannel
from qbox.services.identity import IdentityProvider

logger = logging.getLogger(__name__)

REPORT_REASONS = ("Spam", "Inappropriate", "Off-topic")


def _cancelled(action: str, question_id: Optional[str] = None) -> dict:
    logger.info(f"{action} not confirmed; nothing done.")
    result = {"status": "cancelled", "action": action}
    if question_id:
        result["question_id"] = question_id
    return result


class ActionDispatcher:
    """Issues actions for one viewer in one room and merges their confirmed results."""

    def __init__(
        self,
        client: QBoxClient,
        engine: ReconciliationEngine,
        identity: IdentityProvider,
        channel: Optional[EventChannel] = None,
        role: ViewerRole = ViewerRole.PARTICIPANT,
    ):
        self._client = client
        self._engine = engine
        self._identity = identity
        self._channel = channel
        self._role = role

    def _require_question(self, action: str, question_id: str) -> Question:
        question = self._engine.get_question(question_id)
        if question is None:
            raise ActionFailure(action, "question is not in the feed", question_id)
        return question

    def _require_status(self, action: str, question: Question, *allowed: QuestionStatus):
        if question.status not in allowed:
            raise ActionFailure(action, f"question is {question.status.value}", question.id)

    def _confirm(self, kind: str, question_id: str, **payload) -> str:
        return self._engine.apply(FeedEvent(kind=kind, payload={"id": question_id, **payload}, source="local"))

    async def _relay(self, msg_type: str, data: dict):
        """Tell other clients about a confirmed change, as the web client does."""
        if self._channel is not None:
            await self._channel.emit(msg_type, data)

    def _room_code(self) -> Optional[str]:
        room = self._engine.room
        return room.code if room else None

    # --- Participant actions ---

    async def ask(self, text: str, room_id: str) -> dict:
        """Post a new question under the local anonymous tag."""
        text = (text or "").strip()
        if not text:
            raise ActionFailure("ask", "question cannot be empty")
        if len(text) > MAX_QUESTION_LENGTH:
            raise ActionFailure("ask", f"question too long (max {MAX_QUESTION_LENGTH} characters)")
        room = self._engine.room
        if room is not None and room.status == RoomStatus.CLOSED:
            raise ActionFailure("ask", "room is closed")

        tag = self._identity.get_or_create_tag(self._role)
        try:
            data = await self._client.ask_question(text, room_id, tag)
        except ApiError as e:
            raise ActionFailure("ask", e.message) from e

        try:
            record = QuestionRecord.model_validate(data)
        except ValidationError:
            # Accepted by the server; the question-created event will bring it in
            logger.warning("Ask succeeded but the response carried no usable record.")
            return {"status": "ok", "action": "ask", "question_id": None}

        self._engine.apply(FeedEvent(
            kind=QUESTION_CREATED, payload={"id": record.id, "record": record}, source="local",
        ))
        logger.info(f"Question {record.id} asked as {tag}.")
        return {"status": "ok", "action": "ask", "question_id": record.id}

    async def upvote(self, question_id: str) -> dict:
        """Upvote a question and take over the server's confirmed count."""
        question = self._require_question("upvote", question_id)
        try:
            data = await self._client.upvote_question(question_id, self._identity.current_tag)
        except ApiError as e:
            raise ActionFailure("upvote", e.message, question_id) from e

        upvotes = data.get("upvotes") if isinstance(data, dict) else None
        if isinstance(upvotes, int) and upvotes >= 0:
            self._confirm(QUESTION_UPVOTED, question_id, upvotes=upvotes)
        else:
            logger.warning(f"Upvote of {question_id} returned no count; waiting for the event.")
            upvotes = question.upvotes
        return {"status": "ok", "action": "upvote", "question_id": question_id, "upvotes": upvotes}

    async def report(self, question_id: str, reason: str) -> dict:
        """Report a question (spam, inappropriate, off-topic, ...)."""
        self._require_question("report", question_id)
        if not (reason or "").strip():
            raise ActionFailure("report", "a reason is required", question_id)
        try:
            await self._client.report_question(question_id, self._identity.current_tag, reason.strip())
        except ApiError as e:
            raise ActionFailure("report", e.message, question_id) from e

        self._confirm(QUESTION_REPORTED, question_id)
        return {"status": "ok", "action": "report", "question_id": question_id, "reason": reason.strip()}

    # --- Instructor actions ---

    async def answer(self, question_id: str, answer_text: Optional[str] = None) -> dict:
        """Mark a pending question as answered."""
        question = self._require_question("answer", question_id)
        self._require_status("answer", question, QuestionStatus.PENDING, QuestionStatus.ANSWERED)
        try:
            await self._client.answer_question(question_id, answer_text)
        except ApiError as e:
            raise ActionFailure("answer", e.message, question_id) from e

        self._confirm(QUESTION_ANSWERED, question_id, answer_text=answer_text)
        await self._relay("question-answered", {"roomCode": self._room_code(), "questionId": question_id})
        return {"status": "ok", "action": "answer", "question_id": question_id}

    async def delete(self, question_id: str, confirmed: bool = False) -> dict:
        """Soft-delete a pending question into the Deleted bucket."""
        if not confirmed:
            return _cancelled("delete", question_id)
        question = self._require_question("delete", question_id)
        self._require_status("delete", question, QuestionStatus.PENDING, QuestionStatus.REJECTED)
        try:
            await self._client.delete_question(question_id)
        except ApiError as e:
            raise ActionFailure("delete", e.message, question_id) from e

        self._confirm(QUESTION_SOFT_DELETED, question_id)
        await self._relay("question-deleted", {"roomCode": self._room_code(), "questionId": question_id})
        return {"status": "ok", "action": "delete", "question_id": question_id}

    async def restore(self, question_id: str) -> dict:
        """Move a soft-deleted question back to pending."""
        question = self._require_question("restore", question_id)
        self._require_status("restore", question, QuestionStatus.REJECTED, QuestionStatus.PENDING)
        try:
            await self._client.restore_question(question_id)
        except ApiError as e:
            raise ActionFailure("restore", e.message, question_id) from e

        self._confirm(QUESTION_RESTORED, question_id)
        return {"status": "ok", "action": "restore", "question_id": question_id}

    async def purge(self, question_id: str, confirmed: bool = False) -> dict:
        """Permanently remove a soft-deleted question.

        Destructive, so nothing is previewed: the question only leaves the
        local feed once the backend has confirmed the deletion.
        """
        if not confirmed:
            return _cancelled("purge", question_id)
        question = self._require_question("purge", question_id)
        self._require_status("purge", question, QuestionStatus.REJECTED)
        try:
            await self._client.purge_question(question_id)
        except ApiError as e:
            raise ActionFailure("purge", e.message, question_id) from e

        self._confirm(QUESTION_PURGED, question_id)
        return {"status": "ok", "action": "purge", "question_id": question_id}

    async def toggle_visibility(self, room_id: str) -> dict:
        """Switch the room between public and private."""
        try:
            data = await self._client.toggle_visibility(room_id)
        except ApiError as e:
            raise ActionFailure("toggle_visibility", e.message) from e

        visible = data.get("questionsVisible") if isinstance(data, dict) else None
        if visible is None:
            raise ActionFailure("toggle_visibility", "response did not say the new visibility")
        visibility = RoomVisibility.PUBLIC if visible else RoomVisibility.PRIVATE

        current = self._engine.room
        if current is not None:
            room = current.model_copy(update={"visibility": visibility})
        else:
            try:
                room = Room.model_validate(data)
            except ValidationError as e:
                raise ActionFailure("toggle_visibility", "response carried no room") from e
        self._engine.set_room(room)
        await self._relay("visibility-toggled", {
            "roomCode": room.code,
            "questionsVisible": room.visibility == RoomVisibility.PUBLIC,
        })
        return {"status": "ok", "action": "toggle_visibility", "visibility": room.visibility.value}

    async def close_room(self, room_id: str, confirmed: bool = False) -> dict:
        """Close the room for good. Participants can no longer ask."""
        if not confirmed:
            return _cancelled("close_room")
        try:
            await self._client.close_room(room_id)
        except ApiError as e:
            raise ActionFailure("close_room", e.message) from e

        room = self._engine.room
        if room is not None:
            self._engine.set_room(room.model_copy(update={"status": RoomStatus.CLOSED}))
        await self._relay("room-closed", {"roomCode": self._room_code()})
        return {"status": "ok", "action": "close_room"}

    # --- Identity ---

    async def regenerate_tag(self, confirmed: bool = False) -> dict:
        """Switch to a fresh anonymous tag. Earlier questions stop being 'mine'."""
        if not confirmed:
            return _cancelled("regenerate_tag")
        tag = self._identity.regenerate_tag(confirmed=True)
        self._engine.set_viewer_tag(tag)
        return {"status": "ok", "action": "regenerate_tag", "tag": tag}

    async def logout(self, confirmed: bool = False) -> dict:
        """Drop the connection, the room and the anonymous tag."""
        if not confirmed:
            return _cancelled("logout")
        if self._channel is not None:
            await self._channel.dispose()
        self._identity.clear()
        self._engine.clear()
        self._engine.set_viewer_tag(None)
        return {"status": "ok", "action": "logout"}
