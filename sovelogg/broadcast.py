"""Real-time fan-out of snapshots to connected push channels.

Each connected client owns a :class:`Channel` with its own bounded queue.
Delivery to one channel never blocks or fails delivery to another.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable

logger = logging.getLogger(__name__)

SNAPSHOT_EVENT = "snapshot"


@dataclass
class Channel:
    """One open push stream."""

    id: str
    queue: asyncio.Queue
    closed: bool = False
    delivered: int = 0
    dropped: int = 0

    def deliver(self, message: dict[str, Any]) -> None:
        """Queue a message, discarding the oldest one if the queue is full.

        Snapshots are full documents, so only the newest one matters to a
        slow reader.
        """
        if self.closed:
            raise RuntimeError(f"Channel {self.id} is closed")
        if self.queue.full():
            self.queue.get_nowait()
            self.dropped += 1
        self.queue.put_nowait(message)
        self.delivered += 1


def snapshot_message(state: dict[str, Any], origin_device: str | None = None) -> dict[str, Any]:
    """Payload pushed to clients whenever the state changes."""
    return {"state": state, "originDevice": origin_device}


def format_sse(data: dict[str, Any], event: str = SNAPSHOT_EVENT) -> str:
    """Frame a message as a Server-Sent Event."""
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


@dataclass
class Broadcaster:
    """Registry of open channels and the fan-out over them."""

    queue_size: int = 16
    _channels: dict[str, Channel] = field(default_factory=dict)

    @property
    def channel_count(self) -> int:
        return len(self._channels)

    def open_channel(self, initial: dict[str, Any] | None = None) -> Channel:
        """Register a channel. It starts with the current snapshot only, no backlog."""
        channel = Channel(id=str(uuid.uuid4()), queue=asyncio.Queue(maxsize=self.queue_size))
        if initial is not None:
            channel.deliver(initial)
        self._channels[channel.id] = channel
        logger.info(f"Push channel {channel.id} opened ({self.channel_count} open)")
        return channel

    def close_channel(self, channel: Channel) -> None:
        channel.closed = True
        if self._channels.pop(channel.id, None) is not None:
            logger.info(f"Push channel {channel.id} closed ({self.channel_count} open)")

    def broadcast(self, message: dict[str, Any]) -> int:
        """Deliver a message to every open channel.

        Returns:
            Number of channels the message was delivered to.
        """
        delivered = 0
        for channel in list(self._channels.values()):
            try:
                channel.deliver(message)
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping push channel {channel.id}: {e}")
                self.close_channel(channel)

        logger.debug(f"Broadcast delivered to {delivered} channel(s)")
        return delivered

    def close_all(self) -> None:
        for channel in list(self._channels.values()):
            self.close_channel(channel)


async def stream_channel(
    broadcaster: Broadcaster,
    channel: Channel,
    is_disconnected: Callable[[], Awaitable[bool]],
    keepalive_seconds: float = 15.0,
) -> AsyncIterator[str]:
    """Yield SSE frames for one channel until the client goes away.

    A comment line is sent after ``keepalive_seconds`` of silence so that
    proxies keep the connection open and disconnects are noticed.
    """
    try:
        while not channel.closed:
            try:
                message = await asyncio.wait_for(channel.queue.get(), timeout=keepalive_seconds)
            except asyncio.TimeoutError:
                if await is_disconnected():
                    break
                yield ": keepalive\n\n"
                continue
            yield format_sse(message)
    finally:
        broadcaster.close_channel(channel)
