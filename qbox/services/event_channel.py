"""Live event channel: the one WebSocket connection this process keeps to the backend.

Room membership belongs to the connection, so it is lost on every reconnect.
The channel remembers the current room and re-sends `join-room` each time the
socket comes back, before running any reconnect hooks.

Frames in both directions are JSON objects `{"type": <name>, "data": {...}}`.

Environment variables:
    QBOX_SOCKET_URL        — WebSocket endpoint (default ws://localhost:3000/ws)
    QBOX_RECONNECT_DELAY   — seconds to wait before re-dialing (default 3)
"""

import asyncio
import inspect
import json
import logging
import os
from collections import defaultdict
from typing import Any, Awaitable, Callable, Optional, Union

import websockets
from dotenv import load_dotenv

from qbox.models.events import FeedEvent, parse_event

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_SOCKET_URL = os.getenv("QBOX_SOCKET_URL", "ws://localhost:3000/ws")
DEFAULT_RECONNECT_DELAY = float(os.getenv("QBOX_RECONNECT_DELAY", "3"))

ALL_EVENTS = "*"

EventHandler = Callable[[FeedEvent], Union[None, Awaitable[None]]]
ConnectHook = Callable[[], Union[None, Awaitable[None]]]


async def _call(handler: Callable, *args):
    result = handler(*args)
    if inspect.isawaitable(result):
        await result


class EventChannel:
    """Process-scoped connection with explicit connect / join_room / dispose lifecycle."""

    def __init__(
        self,
        url: Optional[str] = None,
        connector: Optional[Callable[[str], Awaitable[Any]]] = None,
        reconnect_delay: Optional[float] = None,
    ):
        self._url = url or DEFAULT_SOCKET_URL
        self._connector = connector or websockets.connect
        self._reconnect_delay = DEFAULT_RECONNECT_DELAY if reconnect_delay is None else reconnect_delay
        self._ws = None
        self._room_code: Optional[str] = None
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._connect_hooks: list[ConnectHook] = []
        self._listener_task: Optional[asyncio.Task] = None
        self._connection_count = 0
        self._closed = False

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    @property
    def room_code(self) -> Optional[str]:
        return self._room_code

    @property
    def connection_count(self) -> int:
        """How many times the socket has been (re)established."""
        return self._connection_count

    def subscribe(self, kind: str, handler: EventHandler) -> Callable[[], None]:
        """Register a handler for one event kind ("*" for all).

        Returns:
            A function that removes the handler again.
        """
        self._handlers[kind].append(handler)

        def unsubscribe():
            if handler in self._handlers.get(kind, []):
                self._handlers[kind].remove(handler)

        return unsubscribe

    def on_connect(self, hook: ConnectHook) -> Callable[[], None]:
        """Register a hook run after every (re)connection, once membership is re-sent."""
        self._connect_hooks.append(hook)

        def remove():
            if hook in self._connect_hooks:
                self._connect_hooks.remove(hook)

        return remove

    async def connect(self):
        """Start the background listener. Does nothing if it is already running."""
        if self._listener_task is not None and not self._listener_task.done():
            return
        self._closed = False
        self._listener_task = asyncio.create_task(self._listen())

    async def join_room(self, room_code: str):
        """Make `room_code` the current room. Sent now if connected, else on connect."""
        self._room_code = room_code
        if self._ws is not None:
            await self._send("join-room", {"roomCode": room_code})
        else:
            logger.info(f"Not connected yet; will join room {room_code} on connect.")

    async def emit(self, msg_type: str, data: dict) -> bool:
        """Send an outbound message, best effort. Returns False if the socket is down."""
        if self._ws is None:
            logger.warning(f"Cannot emit {msg_type}: event channel not connected.")
            return False
        try:
            await self._send(msg_type, data)
        except (websockets.ConnectionClosed, OSError) as e:
            logger.warning(f"Cannot emit {msg_type}: connection lost ({e}).")
            return False
        return True

    async def dispose(self):
        """Close the connection and drop room membership, handlers and hooks."""
        # The listener clears _ws on its way out, so grab the socket first
        self._closed = True
        ws = self._ws
        task = self._listener_task
        self._listener_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self._ws = None
        if ws is not None:
            await ws.close()

        self._room_code = None
        self._handlers.clear()
        self._connect_hooks.clear()
        logger.info("Event channel disposed.")

    async def _send(self, msg_type: str, data: dict):
        await self._ws.send(json.dumps({"type": msg_type, "data": data}))
        logger.debug(f"Sent {msg_type}: {data}")

    async def _listen(self):
        """Background task: dial, re-join, read frames; re-dial when the socket drops."""
        while not self._closed:
            try:
                ws = await self._connector(self._url)
            except (OSError, websockets.WebSocketException) as e:
                logger.warning(f"Event channel connect failed: {e}. Retrying in {self._reconnect_delay}s...")
                await asyncio.sleep(self._reconnect_delay)
                continue

            if self._closed:
                await ws.close()
                break

            self._ws = ws
            self._connection_count += 1
            logger.info(f"Event channel connected to {self._url} (connection #{self._connection_count}).")

            try:
                await self._on_open()
                while not self._closed:
                    message = await ws.recv()
                    await self._dispatch(message)
            except websockets.ConnectionClosed:
                if not self._closed:
                    logger.warning(f"Event channel closed. Reconnecting in {self._reconnect_delay}s...")
            except Exception as e:
                logger.error(f"Event channel listener error: {e}", exc_info=True)
            finally:
                self._ws = None

            # Disposed from inside a handler: do not re-dial
            if self._closed:
                break
            await asyncio.sleep(self._reconnect_delay)

        logger.debug("Event channel listener stopped.")

    async def _on_open(self):
        if self._room_code:
            await self._send("join-room", {"roomCode": self._room_code})
            logger.info(f"Joined room {self._room_code}.")

        for hook in list(self._connect_hooks):
            try:
                await _call(hook)
            except Exception as e:
                logger.error(f"Connect hook failed: {e}", exc_info=True)

    async def _dispatch(self, message: Union[str, bytes]):
        try:
            frame = json.loads(message)
        except ValueError:
            logger.warning(f"Discarding non-JSON frame: {message[:80]!r}")
            return

        if not isinstance(frame, dict):
            logger.warning(f"Discarding frame that is not an object: {frame!r}")
            return

        event = parse_event(frame.get("type", ""), frame.get("data", {}))
        if event.kind in ("unknown", "invalid"):
            logger.warning(f"Discarding {event.kind} frame '{event.raw_name}': {event.payload.get('error')}")
            return

        for handler in list(self._handlers.get(event.kind, [])) + list(self._handlers.get(ALL_EVENTS, [])):
            try:
                await _call(handler, event)
            except Exception as e:
                logger.error(f"Handler for {event.kind} failed: {e}", exc_info=True)
