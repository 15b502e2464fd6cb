"""Shared fixtures: in-memory stand-ins for the WebSocket connection."""

import asyncio
import json

import pytest
import websockets

_DROP = object()


class FakeSocket:
    """Stands in for a websockets client connection."""

    def __init__(self, *frames):
        self.incoming: asyncio.Queue = asyncio.Queue()
        for frame in frames:
            self.push(frame)
        self.sent: list[dict] = []
        self.closed = False

    def push(self, frame):
        self.incoming.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def drop(self):
        """Simulate the server going away."""
        self.incoming.put_nowait(_DROP)

    async def send(self, message: str):
        if self.closed:
            raise websockets.ConnectionClosed(None, None)
        self.sent.append(json.loads(message))

    async def recv(self) -> str:
        item = await self.incoming.get()
        if item is _DROP:
            raise websockets.ConnectionClosed(None, None)
        return item

    async def close(self):
        # A closed connection fails any pending recv, like the real one
        if not self.closed:
            self.closed = True
            self.drop()


def make_connector(*sockets):
    """Hand out the given sockets (or raise the given errors) in order, then hang."""
    pending = list(sockets)
    urls = []

    async def connector(url):
        urls.append(url)
        if not pending:
            await asyncio.Event().wait()
        item = pending.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    connector.urls = urls
    return connector


async def _until(predicate, attempts=500):
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


@pytest.fixture
def fake_socket():
    """The FakeSocket class; build one per simulated connection."""
    return FakeSocket


@pytest.fixture
def connector_for():
    return make_connector


@pytest.fixture
def until():
    """Async helper that spins the loop until a condition holds."""
    return _until
