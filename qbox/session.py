"""Feed session: wires identity, snapshot loader, event channel, engine and dispatcher
together for one viewer in one room.

Startup order matters: handlers are subscribed before the channel connects,
and the snapshot token is taken before the fetch, so events that arrive while
the snapshot is in flight are neither lost nor overwritten.

Environment variables:
    QBOX_RESYNC_ON_RECONNECT — reload the snapshot after every reconnect (default true)
"""

import inspect
import logging
import os
from typing import Awaitable, Callable, Optional, Union

from dotenv import load_dotenv

from qbox.engine.reconciler import ReconciliationEngine
from qbox.engine.visibility import FeedFilter, filter_counts, filter_questions
from qbox.errors import ApiError, LoadFailure
from qbox.models.events import EVENT_KINDS, FeedEvent
from qbox.models.questions import Question
from qbox.models.room import Room, ViewerRole
from qbox.services.api_client import QBoxClient
from qbox.services.dispatcher import ActionDispatcher
from qbox.services.event_channel import EventChannel
from qbox.services.identity import IdentityProvider
from qbox.services.snapshot_loader import load_snapshot

load_dotenv()

logger = logging.getLogger(__name__)

RESYNC_ON_RECONNECT = os.getenv("QBOX_RESYNC_ON_RECONNECT", "true").lower() == "true"

Listener = Callable[[FeedEvent, str], Union[None, Awaitable[None]]]


class FeedSession:
    """One viewer's live view of one room."""

    def __init__(
        self,
        room_id: str,
        room_code: str,
        role: ViewerRole = ViewerRole.PARTICIPANT,
        client: Optional[QBoxClient] = None,
        channel: Optional[EventChannel] = None,
        identity: Optional[IdentityProvider] = None,
        resync_on_reconnect: Optional[bool] = None,
    ):
        self.room_id = room_id
        self.room_code = room_code
        self.role = role
        self.client = client or QBoxClient()
        self.channel = channel or EventChannel()
        self.identity = identity or IdentityProvider()
        self.engine = ReconciliationEngine()
        self.dispatcher = ActionDispatcher(self.client, self.engine, self.identity, self.channel, role=role)
        self._resync = RESYNC_ON_RECONNECT if resync_on_reconnect is None else resync_on_reconnect
        self._unsubscribe: list[Callable[[], None]] = []
        self._listeners: list[Listener] = []
        self._started = False

    @property
    def is_instructor(self) -> bool:
        return self.role == ViewerRole.INSTRUCTOR

    @property
    def is_active(self) -> bool:
        return self._started

    def add_listener(self, listener: Listener):
        """Be told about every merged event and its outcome (for UI refresh)."""
        self._listeners.append(listener)

    async def _on_event(self, event: FeedEvent):
        outcome = self.engine.apply(event)
        for listener in self._listeners:
            result = listener(event, outcome)
            if inspect.isawaitable(result):
                await result

    async def _on_reconnect(self):
        # The first connection is followed by start()'s own load
        if self.channel.connection_count > 1 and self._resync:
            logger.info(f"Reconnected; reloading snapshot for room {self.room_code}.")
            try:
                await self.refresh()
            except LoadFailure as e:
                logger.warning(f"Resync after reconnect failed: {e}")

    async def _load_room(self):
        try:
            data = await self.client.get_room(self.room_id)
            room = Room.model_validate(data)
        except (ApiError, ValueError) as e:
            logger.warning(f"Room details unavailable ({e}); assuming a public, active room.")
            room = Room(id=self.room_id, code=self.room_code)
        self.engine.set_room(room)

    async def start(self) -> list[Question]:
        """Join the room, start listening and load the first snapshot.

        Raises:
            LoadFailure: If the first snapshot cannot be loaded. The channel stays
                up; call `refresh()` to retry.
        """
        if self._started:
            return self.engine.questions
        self._started = True

        tag = self.identity.get_or_create_tag(self.role)
        self.engine.set_viewer_tag(tag)
        await self._load_room()

        for kind in EVENT_KINDS:
            self._unsubscribe.append(self.channel.subscribe(kind, self._on_event))
        self._unsubscribe.append(self.channel.on_connect(self._on_reconnect))

        await self.channel.join_room(self.room_code)
        await self.channel.connect()
        logger.info(f"Session started in room {self.room_code} as {tag} ({self.role.value}).")

        return await self.refresh()

    async def refresh(self) -> list[Question]:
        """Reload the snapshot and merge it. Safe to call at any time.

        Raises:
            LoadFailure: On network or server error.
        """
        since = self.engine.begin_snapshot()
        questions = await load_snapshot(
            self.client,
            self.room_id,
            viewer_tag=self.engine.viewer_tag,
            include_rejected=self.is_instructor,
            author_tag=None if self.is_instructor else self.engine.viewer_tag,
        )
        self.engine.load_snapshot(questions, since=since)
        return self.engine.questions

    def view(self, feed_filter: FeedFilter = FeedFilter.ALL) -> list[Question]:
        """Questions shown under a filter tab, with the visibility policy applied."""
        return filter_questions(self.engine.questions, self.engine.room, feed_filter, self.role)

    def counts(self) -> dict[str, int]:
        return filter_counts(self.engine.questions, self.engine.room, self.role)

    async def logout(self, confirmed: bool = False) -> dict:
        """Log out and shut the session down. A logged-out session takes no more commands."""
        result = await self.dispatcher.logout(confirmed=confirmed)
        if result["status"] == "ok":
            await self.close()
        return result

    async def close(self):
        """Leave the room: drop subscriptions and the connection, keep the identity."""
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()
        await self.channel.dispose()
        await self.client.close()
        self._started = False
        logger.info(f"Session in room {self.room_code} closed.")
