"""Tests for the live event channel, using an in-memory socket."""

import asyncio
from unittest.mock import AsyncMock

from qbox.models.events import FeedEvent
from qbox.services.event_channel import ALL_EVENTS, EventChannel

JOIN = {"type": "join-room", "data": {"roomCode": "ABC123"}}


class TestConnection:
    """Test connect, room membership and reconnects."""

    def test_join_sent_on_connect(self, fake_socket, connector_for, until):
        async def _run():
            ws = fake_socket()
            channel = EventChannel(url="ws://qbox.test", connector=connector_for(ws), reconnect_delay=0)
            await channel.join_room("ABC123")
            assert channel.is_connected is False
            await channel.connect()
            await until(lambda: ws.sent)
            assert ws.sent == [JOIN]
            assert channel.is_connected is True
            assert channel.room_code == "ABC123"
            await channel.dispose()

        asyncio.run(_run())

    def test_join_while_connected_sent_immediately(self, fake_socket, connector_for, until):
        async def _run():
            ws = fake_socket()
            channel = EventChannel(connector=connector_for(ws), reconnect_delay=0)
            await channel.connect()
            await until(lambda: channel.is_connected)
            await channel.join_room("ABC123")
            assert ws.sent == [JOIN]
            await channel.dispose()

        asyncio.run(_run())

    def test_rejoin_after_reconnect(self, fake_socket, connector_for, until):
        async def _run():
            first, second = fake_socket(), fake_socket()
            connector = connector_for(first, second)
            channel = EventChannel(url="ws://qbox.test", connector=connector, reconnect_delay=0)
            await channel.join_room("ABC123")
            await channel.connect()
            await until(lambda: first.sent)

            first.drop()
            await until(lambda: second.sent)
            assert second.sent == [JOIN]
            assert channel.connection_count == 2
            assert connector.urls == ["ws://qbox.test", "ws://qbox.test"]
            await channel.dispose()

        asyncio.run(_run())

    def test_connect_failure_retried(self, fake_socket, connector_for, until):
        async def _run():
            ws = fake_socket()
            channel = EventChannel(connector=connector_for(OSError("refused"), ws), reconnect_delay=0)
            await channel.join_room("ABC123")
            await channel.connect()
            await until(lambda: ws.sent)
            assert channel.connection_count == 1
            await channel.dispose()

        asyncio.run(_run())

    def test_hooks_run_after_join(self, fake_socket, connector_for, until):
        async def _run():
            first, second = fake_socket(), fake_socket()
            channel = EventChannel(connector=connector_for(first, second), reconnect_delay=0)
            seen = []

            async def hook():
                seen.append((channel.connection_count, list(second.sent)))

            channel.on_connect(hook)
            await channel.join_room("ABC123")
            await channel.connect()
            await until(lambda: len(seen) == 1)
            first.drop()
            await until(lambda: len(seen) == 2)
            assert seen[1] == (2, [JOIN])
            await channel.dispose()

        asyncio.run(_run())

    def test_failing_hook_does_not_stop_listener(self, fake_socket, connector_for, until):
        async def _run():
            ws = fake_socket()
            channel = EventChannel(connector=connector_for(ws), reconnect_delay=0)
            received = []
            channel.on_connect(lambda: 1 / 0)
            channel.subscribe("question-purged", received.append)
            await channel.connect()
            ws.push({"type": "question-purged", "data": {"id": "q1"}})
            await until(lambda: received)
            await channel.dispose()

        asyncio.run(_run())

    def test_dispose(self, fake_socket, connector_for, until):
        async def _run():
            ws = fake_socket()
            channel = EventChannel(connector=connector_for(ws), reconnect_delay=0)
            channel.subscribe(ALL_EVENTS, lambda event: None)
            await channel.join_room("ABC123")
            await channel.connect()
            await until(lambda: channel.is_connected)

            await channel.dispose()
            assert ws.closed is True
            assert channel.is_connected is False
            assert channel.room_code is None
            assert await channel.emit("question-answered", {}) is False

        asyncio.run(_run())

    def test_emit(self, fake_socket, connector_for, until):
        async def _run():
            ws = fake_socket()
            channel = EventChannel(connector=connector_for(ws), reconnect_delay=0)
            assert await channel.emit("room-closed", {"roomCode": "ABC123"}) is False
            await channel.connect()
            await until(lambda: channel.is_connected)
            assert await channel.emit("room-closed", {"roomCode": "ABC123"}) is True
            assert ws.sent[-1] == {"type": "room-closed", "data": {"roomCode": "ABC123"}}
            await channel.dispose()

        asyncio.run(_run())


class TestDispatch:
    """Test frame parsing and handler fan-out."""

    def test_handlers_by_kind(self, fake_socket, connector_for, until):
        async def _run():
            ws = fake_socket(
                {"type": "question-upvote-update", "data": {"questionId": "q1", "upvotes": 3}},
                {"type": "question-purged", "data": {"id": "q2"}},
            )
            channel = EventChannel(connector=connector_for(ws), reconnect_delay=0)
            upvotes: list[FeedEvent] = []
            everything: list[FeedEvent] = []
            channel.subscribe("question-upvoted", upvotes.append)
            channel.subscribe(ALL_EVENTS, everything.append)
            await channel.connect()
            await until(lambda: len(everything) == 2)
            await channel.dispose()
            return upvotes, everything

        upvotes, everything = asyncio.run(_run())
        assert [e.payload for e in upvotes] == [{"id": "q1", "upvotes": 3}]
        assert [e.kind for e in everything] == ["question-upvoted", "question-purged"]

    def test_bad_frames_discarded(self, fake_socket, connector_for, until):
        async def _run():
            ws = fake_socket(
                "not json",
                "[1, 2]",
                {"type": "question-teleported", "data": {"id": "q1"}},
                {"type": "question-upvoted", "data": {"id": "q1"}},
                {"type": "question-restored", "data": {"id": "q1"}},
            )
            channel = EventChannel(connector=connector_for(ws), reconnect_delay=0)
            received = []
            channel.subscribe(ALL_EVENTS, received.append)
            await channel.connect()
            await until(lambda: received)
            await channel.dispose()
            return received

        received = asyncio.run(_run())
        assert [e.kind for e in received] == ["question-restored"]

    def test_async_handler_and_failing_handler(self, fake_socket, connector_for, until):
        async def _run():
            ws = fake_socket({"type": "question-reported", "data": {"id": "q1"}})
            channel = EventChannel(connector=connector_for(ws), reconnect_delay=0)
            received = []

            def broken(event):
                raise RuntimeError("boom")

            async def handler(event):
                received.append(event.question_id)

            channel.subscribe("question-reported", broken)
            channel.subscribe("question-reported", handler)
            await channel.connect()
            await until(lambda: received)
            await channel.dispose()
            return received

        assert asyncio.run(_run()) == ["q1"]

    def test_unsubscribe(self, fake_socket, connector_for, until):
        async def _run():
            ws = fake_socket()
            channel = EventChannel(connector=connector_for(ws), reconnect_delay=0)
            removed, kept = [], []
            unsubscribe = channel.subscribe("question-purged", removed.append)
            channel.subscribe("question-purged", kept.append)
            unsubscribe()
            unsubscribe()
            await channel.connect()
            ws.push({"type": "question-purged", "data": {"id": "q1"}})
            await until(lambda: kept)
            await channel.dispose()
            return removed

        assert asyncio.run(_run()) == []


class TestResilience:
    """Test failures inside the listener and around dispose."""

    def test_emit_on_dead_socket_returns_false(self, fake_socket, connector_for, until):
        async def _run():
            ws = fake_socket()
            channel = EventChannel(connector=connector_for(ws), reconnect_delay=0)
            await channel.connect()
            await until(lambda: channel.is_connected)
            ws.closed = True
            sent = await channel.emit("question-answered", {"questionId": "q1"})
            await channel.dispose()
            return sent

        assert asyncio.run(_run()) is False

    def test_unexpected_listener_error_redials(self, fake_socket, connector_for, until):
        async def _run():
            first, second = fake_socket(), fake_socket()
            first.recv = AsyncMock(side_effect=RuntimeError("bad frame decoder"))
            channel = EventChannel(connector=connector_for(first, second), reconnect_delay=0)
            await channel.join_room("ABC123")
            await channel.connect()
            await until(lambda: second.sent)
            count = channel.connection_count
            await channel.dispose()
            return second.sent, count

        sent, count = asyncio.run(_run())
        assert sent == [JOIN]
        assert count == 2

    def test_dispose_from_handler_stops_listener(self, fake_socket, connector_for, until):
        async def _run():
            ws = fake_socket()
            connector = connector_for(ws, fake_socket())
            channel = EventChannel(connector=connector, reconnect_delay=0)

            async def leave(event):
                await channel.dispose()

            channel.subscribe("room-closed", leave)
            await channel.join_room("ABC123")
            await channel.connect()
            task = channel._listener_task
            ws.push({"type": "room-closed", "data": {"roomCode": "ABC123"}})
            await until(task.done)
            return channel, connector, ws

        channel, connector, ws = asyncio.run(_run())
        assert ws.closed is True
        assert channel.is_connected is False
        assert channel.room_code is None
        assert len(connector.urls) == 1
