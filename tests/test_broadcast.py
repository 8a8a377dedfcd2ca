"""Tests for the real-time fan-out."""

import asyncio
import json

import pytest

from sovelogg.broadcast import Broadcaster, format_sse, snapshot_message, stream_channel


@pytest.fixture
def broadcaster():
    return Broadcaster(queue_size=4)


def drain(channel) -> list[dict]:
    messages = []
    while not channel.queue.empty():
        messages.append(channel.queue.get_nowait())
    return messages


class TestBroadcaster:
    """Tests for channel registry and delivery."""

    def test_new_channel_gets_initial_snapshot_only(self, broadcaster):
        """Test that a late joiner sees the current state, not a backlog."""
        broadcaster.broadcast(snapshot_message({"sequence": 1}))
        broadcaster.broadcast(snapshot_message({"sequence": 2}))

        channel = broadcaster.open_channel(snapshot_message({"sequence": 2}))

        assert drain(channel) == [{"state": {"sequence": 2}, "originDevice": None}]

    def test_broadcast_reaches_every_channel(self, broadcaster):
        channels = [broadcaster.open_channel() for _ in range(3)]

        delivered = broadcaster.broadcast(snapshot_message({"sequence": 5}, "phone-a"))

        assert delivered == 3
        for channel in channels:
            assert drain(channel) == [{"state": {"sequence": 5}, "originDevice": "phone-a"}]

    def test_full_queue_drops_oldest(self, broadcaster):
        channel = broadcaster.open_channel()

        for seq in range(6):
            broadcaster.broadcast(snapshot_message({"sequence": seq}))

        messages = drain(channel)
        assert [m["state"]["sequence"] for m in messages] == [2, 3, 4, 5]
        assert channel.dropped == 2

    def test_failing_channel_does_not_affect_others(self, broadcaster):
        """Test that one broken channel is closed and the rest still receive."""
        healthy = broadcaster.open_channel()
        broken = broadcaster.open_channel()

        def explode(message):
            raise RuntimeError("socket gone")

        broken.deliver = explode

        delivered = broadcaster.broadcast(snapshot_message({"sequence": 1}))

        assert delivered == 1
        assert broken.closed
        assert broadcaster.channel_count == 1
        assert len(drain(healthy)) == 1

    def test_closed_channel_not_delivered(self, broadcaster):
        channel = broadcaster.open_channel()
        broadcaster.close_channel(channel)

        assert broadcaster.broadcast(snapshot_message({})) == 0
        assert channel.queue.empty()

    def test_close_all(self, broadcaster):
        for _ in range(3):
            broadcaster.open_channel()

        broadcaster.close_all()

        assert broadcaster.channel_count == 0


class TestSSE:
    """Tests for Server-Sent Events framing and streaming."""

    def test_format_sse(self):
        frame = format_sse({"state": {"sequence": 1}, "originDevice": None})

        assert frame.startswith("event: snapshot\ndata: ")
        assert frame.endswith("\n\n")
        assert json.loads(frame.split("data: ", 1)[1]) == {
            "state": {"sequence": 1},
            "originDevice": None,
        }

    @pytest.mark.asyncio
    async def test_stream_yields_queued_messages(self, broadcaster):
        channel = broadcaster.open_channel(snapshot_message({"sequence": 1}))
        broadcaster.broadcast(snapshot_message({"sequence": 2}))

        async def connected():
            return False

        stream = stream_channel(broadcaster, channel, connected, keepalive_seconds=0.05)
        first = await stream.__anext__()
        second = await stream.__anext__()
        await stream.aclose()

        assert '"sequence": 1' in first
        assert '"sequence": 2' in second
        assert broadcaster.channel_count == 0

    @pytest.mark.asyncio
    async def test_stream_sends_keepalive_then_stops_on_disconnect(self, broadcaster):
        channel = broadcaster.open_channel()
        checks = iter([False, True])

        async def disconnected():
            return next(checks)

        frames = [
            frame
            async for frame in stream_channel(
                broadcaster, channel, disconnected, keepalive_seconds=0.01
            )
        ]

        assert frames == [": keepalive\n\n"]
        assert channel.closed
        assert broadcaster.channel_count == 0

    @pytest.mark.asyncio
    async def test_live_broadcast_wakes_stream(self, broadcaster):
        channel = broadcaster.open_channel()

        async def connected():
            return False

        stream = stream_channel(broadcaster, channel, connected, keepalive_seconds=5)
        pending = asyncio.ensure_future(stream.__anext__())
        await asyncio.sleep(0)
        broadcaster.broadcast(snapshot_message({"sequence": 9}))

        frame = await asyncio.wait_for(pending, timeout=1)
        await stream.aclose()

        assert '"sequence": 9' in frame
