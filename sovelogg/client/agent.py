"""Client sync agent for talking to a Sovelogg server.

Buffers mutations in a durable local queue, flushes them as one ordered
batch, caches the last known snapshot for offline reads and follows the
server's push stream with exponential reconnect backoff.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable

import httpx

from .storage import LocalStore, QueuedEvent

logger = logging.getLogger(__name__)


class FlushStatus(Enum):
    """Status of a flush."""

    SUCCESS = "success"
    OFFLINE = "offline"  # Server unreachable, queue kept
    REJECTED = "rejected"  # Server refused the batch, queue kept
    FAILED = "failed"


class ConnectionIndicator(Enum):
    """Connection state shown to the user."""

    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    OFFLINE = "offline"


@dataclass
class FlushResult:
    """Result of a flush."""

    status: FlushStatus
    flushed: int = 0
    state: dict[str, Any] | None = None
    error: str | None = None
    timestamp: datetime | None = None


class SyncAgent:
    """Offline-capable client of the event API.

    Delivery is at-least-once: a batch whose response is lost stays queued
    and is sent again. Each element carries ``clientId`` and ``localSeq``
    so the server can recognize the retry.
    """

    def __init__(
        self,
        store: LocalStore,
        server_url: str,
        suppression_window_seconds: float = 1.0,
        max_retries: int = 3,
        timeout: float = 10.0,
        reconnect_max_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the sync agent.

        Args:
            store: Durable local store for the queue and cached state.
            server_url: Base URL of the server (e.g., "http://127.0.0.1:3000").
            suppression_window_seconds: How long after a local mutation an
                incoming broadcast is cached without triggering a refresh.
            max_retries: Maximum retry attempts per request.
            timeout: Request timeout in seconds.
            reconnect_max_seconds: Upper bound of the stream reconnect backoff.
            clock: Monotonic clock in seconds (injectable for tests).
            transport: Optional httpx transport, e.g. an in-process app.
        """
        self.store = store
        self.server_url = server_url
        self.suppression_window_seconds = suppression_window_seconds
        self.max_retries = max_retries
        self.timeout = timeout
        self.reconnect_max_seconds = reconnect_max_seconds
        self._clock = clock
        self._transport = transport
        self._last_local_mutation: float | None = None
        self._flush_lock = asyncio.Lock()
        self._stream_connected = False
        self._reconnecting = False
        self._reachable = True
        self._last_flush: datetime | None = None

    @property
    def device_id(self) -> str:
        return self.store.device_id()

    @property
    def cached_state(self) -> dict[str, Any] | None:
        """Last snapshot received from the server, for offline reads."""
        return self.store.cached_state()

    @property
    def has_pending_events(self) -> bool:
        return self.store.pending_count() > 0

    @property
    def indicator(self) -> ConnectionIndicator:
        if self._stream_connected and self._reachable:
            return ConnectionIndicator.CONNECTED
        if self._reconnecting:
            return ConnectionIndicator.RECONNECTING
        return ConnectionIndicator.OFFLINE

    # ==================== HTTP ====================

    async def _request_with_retry(
        self,
        method: str,
        path: str,
        json_data: Any = None,
    ) -> tuple[Any, str | None]:
        """Make HTTP request with exponential backoff retry.

        Args:
            method: HTTP method (GET, POST).
            path: URL path to append to server_url.
            json_data: Optional JSON body.

        Returns:
            Tuple of (response_data, error_message).
        """
        url = f"{self.server_url.rstrip('/')}{path}"
        backoff = 1.0

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for attempt in range(self.max_retries):
                try:
                    if method == "GET":
                        response = await client.get(url)
                    elif method == "POST":
                        response = await client.post(url, json=json_data)
                    else:
                        return None, f"Unsupported method: {method}"

                    if response.status_code == 200:
                        self._reachable = True
                        return response.json(), None
                    elif response.status_code >= 500:
                        # Server error, retry
                        logger.warning(
                            f"Server error {response.status_code}, "
                            f"attempt {attempt + 1}/{self.max_retries}"
                        )
                    else:
                        # Client error, don't retry
                        self._reachable = True
                        return None, f"HTTP {response.status_code}: {response.text}"

                except httpx.ConnectError:
                    logger.warning(
                        f"Connection failed, attempt {attempt + 1}/{self.max_retries}"
                    )
                except httpx.TimeoutException:
                    logger.warning(
                        f"Request timeout, attempt {attempt + 1}/{self.max_retries}"
                    )
                except httpx.HTTPError as e:
                    logger.error(f"Request error: {e}")
                    return None, str(e)

                # Exponential backoff
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(backoff)
                    backoff *= 2

        self._reachable = False
        return None, f"Max retries ({self.max_retries}) exceeded"

    @staticmethod
    def _status_for_error(error: str) -> FlushStatus:
        if error.startswith("HTTP 4"):
            return FlushStatus.REJECTED
        if error.startswith("Max retries"):
            return FlushStatus.OFFLINE
        return FlushStatus.FAILED

    # ==================== Mutations ====================

    def enqueue(self, event_type: str, payload: dict[str, Any]) -> QueuedEvent:
        """Add a mutation to the durable queue."""
        return self.store.enqueue(event_type, payload)

    def mark_local_mutation(self) -> None:
        """Record that this device just changed something."""
        self._last_local_mutation = self._clock()

    async def flush(self) -> FlushResult:
        """Send the whole queue as one ordered batch.

        On success the sent entries leave the queue and the returned state
        becomes the cached state. On any failure the queue is untouched.
        """
        async with self._flush_lock:
            entries = self.store.pending()
            if not entries:
                return FlushResult(status=FlushStatus.SUCCESS, timestamp=datetime.now())

            device_id = self.device_id
            payload = {"events": [e.to_wire(device_id) for e in entries]}

            data, error = await self._request_with_retry("POST", "/events", payload)

            if error:
                status = self._status_for_error(error)
                if status == FlushStatus.REJECTED:
                    logger.warning(
                        f"Server rejected {len(entries)} queued event(s), keeping them: {error}"
                    )
                else:
                    logger.info(f"Flush deferred, {len(entries)} event(s) still queued: {error}")
                return FlushResult(status=status, error=error)

            self.store.remove([e.local_seq for e in entries])
            state = data.get("state")
            if state is not None:
                self.store.cache_state(state)
            self._last_flush = datetime.now()

            logger.info(f"Flushed {len(entries)} event(s)")
            return FlushResult(
                status=FlushStatus.SUCCESS,
                flushed=len(entries),
                state=state,
                timestamp=self._last_flush,
            )

    async def submit(self, event_type: str, payload: dict[str, Any]) -> FlushResult:
        """Record a user action: mark it, queue it, then try to send it."""
        self.mark_local_mutation()
        self.enqueue(event_type, payload)
        return await self.flush()

    def clear_pending(self) -> int:
        """Discard every queued mutation.

        This is the way out of a queue the server keeps rejecting.
        """
        removed = self.store.clear()
        if removed:
            logger.warning(f"Discarded {removed} queued event(s)")
        return removed

    # ==================== State ====================

    def handle_broadcast(self, message: dict[str, Any]) -> bool:
        """Take a pushed snapshot.

        The snapshot is always cached. Returns False when it arrives within
        the suppression window after a local mutation, meaning the caller
        should not refresh its view.
        """
        state = message.get("state")
        if state is None:
            return False
        self.store.cache_state(state)

        if self._last_local_mutation is not None:
            elapsed = self._clock() - self._last_local_mutation
            if elapsed < self.suppression_window_seconds:
                logger.debug(f"Suppressing refresh {elapsed:.2f}s after local mutation")
                return False
        return True

    async def check_server(self) -> tuple[dict[str, Any] | None, str | None]:
        """Query the server health endpoint.

        Returns:
            Tuple of (health, error_message).
        """
        return await self._request_with_retry("GET", "/health")

    async def refresh_state(self) -> dict[str, Any] | None:
        """Fetch the current snapshot, falling back to the cached one."""
        data, error = await self._request_with_retry("GET", "/state")
        if error:
            logger.info(f"Using cached state: {error}")
            return self.cached_state
        self.store.cache_state(data)
        return data

    # ==================== Push stream ====================

    async def listen(
        self,
        stop_event: asyncio.Event | None = None,
        on_snapshot: Callable[[dict[str, Any]], Any] | None = None,
    ) -> None:
        """Follow the server's push stream until ``stop_event`` is set.

        Each reconnect first flushes the offline queue. The delay between
        attempts doubles up to ``reconnect_max_seconds`` and resets once a
        connection is established.

        Args:
            stop_event: Event to signal the loop should stop.
            on_snapshot: Called with each snapshot that should refresh the view.
        """
        url = f"{self.server_url.rstrip('/')}/stream"
        backoff = 1.0
        logger.info(f"Listening for snapshots on {url}")

        while not (stop_event and stop_event.is_set()):
            try:
                async with httpx.AsyncClient(
                    timeout=httpx.Timeout(self.timeout, read=None),
                    transport=self._transport,
                ) as client:
                    async with client.stream("GET", url) as response:
                        response.raise_for_status()
                        self._stream_connected = True
                        self._reconnecting = False
                        self._reachable = True
                        backoff = 1.0

                        if self.has_pending_events:
                            await self.flush()

                        async for message in _iter_sse(response):
                            if self.handle_broadcast(message) and on_snapshot:
                                on_snapshot(message["state"])
                            if stop_event and stop_event.is_set():
                                break
            except httpx.HTTPError as e:
                logger.warning(f"Push stream lost: {e}")
                self._reachable = False
            finally:
                self._stream_connected = False

            if stop_event and stop_event.is_set():
                break

            self._reconnecting = True
            logger.debug(f"Reconnecting in {backoff:.0f}s")
            if await self._wait_before_reconnect(stop_event, backoff):
                break
            backoff = min(backoff * 2, self.reconnect_max_seconds)

        self._reconnecting = False
        logger.info("Stopped listening")

    async def _wait_before_reconnect(self, stop_event: asyncio.Event | None, delay: float) -> bool:
        """Sleep for ``delay`` seconds. Returns True if ``stop_event`` was set meanwhile."""
        if stop_event is None:
            await asyncio.sleep(delay)
            return False
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=delay)
            return True
        except asyncio.TimeoutError:
            return False

    def get_sync_status(self) -> dict[str, Any]:
        """Get current sync status.

        Returns:
            Dictionary with sync statistics.
        """
        return {
            "server_url": self.server_url,
            "device_id": self.device_id,
            "indicator": self.indicator.value,
            "pending_events": self.store.pending_count(),
            "last_flush": self._last_flush.isoformat() if self._last_flush else None,
            "has_cached_state": self.cached_state is not None,
        }


async def _iter_sse(response: httpx.Response):
    """Parse Server-Sent Events into decoded JSON messages.

    Comment lines (keep-alives) and events other than ``snapshot`` are
    skipped.
    """
    event_name = "message"
    data_lines: list[str] = []

    async for line in response.aiter_lines():
        if not line:
            if data_lines and event_name == "snapshot":
                try:
                    yield json.loads("\n".join(data_lines))
                except json.JSONDecodeError as e:
                    logger.warning(f"Ignoring malformed push message: {e}")
            event_name = "message"
            data_lines = []
        elif line.startswith(":"):
            continue
        elif line.startswith("event:"):
            event_name = line[len("event:"):].strip()
        elif line.startswith("data:"):
            data_lines.append(line[len("data:"):].lstrip())
