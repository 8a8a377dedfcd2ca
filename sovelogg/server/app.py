"""FastAPI application exposing the event log, snapshots and the push stream."""

import logging
from datetime import datetime
from typing import Any

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse

from ..broadcast import snapshot_message, stream_channel
from ..config import Config
from ..errors import BatchTooLargeError, DurabilityError, InvalidEventError, PayloadError
from ..service import IncomingEvent, SyncService
from ..timeutil import parse_timestamp

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def _parse_body(body: Any) -> list[IncomingEvent]:
    """Accept a single event object or ``{"events": [...]}``."""
    if isinstance(body, dict) and "events" in body:
        items = body["events"]
        if not isinstance(items, list):
            raise PayloadError("?", "'events' must be a list")
    else:
        items = [body]
    return [IncomingEvent.from_dict(item) for item in items]


def create_app(config: Config, service: SyncService) -> FastAPI:
    """Create the FastAPI application.

    Args:
        config: Application configuration.
        service: Started sync service; it owns the log and the state.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="Sovelogg",
        description="Event-sourced sleep and diaper log",
        version="0.1.0",
    )

    broadcaster = service.broadcaster
    if broadcaster is None:
        raise ValueError("SyncService needs a Broadcaster to serve /stream")

    # Store references for route handlers
    app.state.config = config
    app.state.service = service
    app.state.broadcaster = broadcaster

    # ==================== Events ====================

    @app.post("/events")
    async def post_events(request: Request):
        """Append one event or a batch and return the new snapshot."""
        try:
            body = await request.json()
        except ValueError:
            return _error(400, "Request body is not valid JSON")

        try:
            incoming = _parse_body(body)
            result = service.submit(incoming)
        except PayloadError as e:
            return _error(400, str(e))
        except BatchTooLargeError as e:
            return _error(413, str(e))
        except InvalidEventError as e:
            return _error(409, str(e), index=e.index)
        except DurabilityError as e:
            logger.error(f"Failed to persist events: {e}")
            return _error(503, "Event log unavailable, retry later")

        return result.to_dict()

    @app.get("/events")
    async def get_events(since: int | None = None) -> dict[str, Any]:
        """Raw events after ``since``, ascending by sequence."""
        events = service.read_events(since)
        return {
            "since": since,
            "count": len(events),
            "events": [e.to_dict() for e in events],
        }

    # ==================== State ====================

    @app.get("/state")
    async def get_state() -> dict[str, Any]:
        return service.snapshot().to_dict()

    @app.get("/sleeps")
    async def get_sleeps(
        start: str | None = Query(None, alias="from"),
        end: str | None = Query(None, alias="to"),
        limit: int = 50,
    ):
        """Sleep history of the active baby, newest first."""
        try:
            start_dt: datetime | None = parse_timestamp(start, service.tz) if start else None
            end_dt: datetime | None = parse_timestamp(end, service.tz) if end else None
        except ValueError as e:
            return _error(400, f"Invalid timestamp: {e}")

        sleeps = service.list_sleeps(start_dt, end_dt, limit)
        return {"count": len(sleeps), "sleeps": [s.to_dict() for s in sleeps]}

    @app.get("/diapers")
    async def get_diapers(limit: int = 50) -> dict[str, Any]:
        diapers = service.list_diapers(limit)
        return {"count": len(diapers), "diapers": [d.to_dict() for d in diapers]}

    @app.get("/stats")
    async def get_stats() -> dict[str, Any]:
        """Per-day sleep totals over the prediction history window."""
        return {"stats": service.week_stats()}

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Health check endpoint for monitoring and load balancers."""
        status = service.health()
        status["node_name"] = config.node.name
        status["timestamp"] = datetime.now().isoformat()
        return status

    # ==================== Push stream ====================

    @app.get("/stream")
    async def stream(request: Request):
        """Server-Sent Events: the current snapshot, then one per change."""
        initial = snapshot_message(service.snapshot().to_dict())
        channel = broadcaster.open_channel(initial)
        return StreamingResponse(
            stream_channel(
                broadcaster,
                channel,
                request.is_disconnected,
                config.server.keepalive_seconds,
            ),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    return app
