"""CLI entry point for Sovelogg."""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path

from .broadcast import Broadcaster
from .client import LocalStore, SyncAgent
from .config import Config, load_config
from .events import EventLog
from .service import SyncService
from .timeutil import resolve_timezone


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            log_data["message"] = str(log_data["message"])
            return json.dumps(log_data)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    logging.basicConfig(level=level, handlers=[handler])


def build_service(config: Config, broadcaster: Broadcaster | None = None) -> SyncService:
    """Open the event log and project it."""
    log = EventLog(config.server.db_path)
    log.connect()
    service = SyncService(
        log,
        resolve_timezone(config.server.timezone),
        broadcaster=broadcaster,
        history_days=config.prediction.history_days,
        deduplicate=config.server.deduplicate_retries,
        max_batch_size=config.server.max_batch_size,
    )
    service.start()
    return service


def build_agent(config: Config) -> SyncAgent:
    store = LocalStore(config.client.state_path)
    store.connect()
    return SyncAgent(
        store,
        config.client.server_url,
        suppression_window_seconds=config.client.suppression_window_seconds,
        max_retries=config.client.max_retries,
        timeout=config.client.timeout,
        reconnect_max_seconds=config.client.reconnect_max_seconds,
    )


async def cmd_serve(args: argparse.Namespace) -> int:
    """Run the HTTP server."""
    import uvicorn

    from .server import create_app

    config = load_config(args.config)
    host = args.host or config.server.host
    port = args.port or config.server.port

    broadcaster = Broadcaster(queue_size=config.server.channel_queue_size)
    service = build_service(config, broadcaster)

    print(f"Starting Sovelogg server: {config.node.name}")
    print(f"Event log: {config.server.db_path}")
    print(f"URL: http://{host}:{port}")

    app = create_app(config, service)

    try:
        verbose = getattr(args, "verbose", False)
        server = uvicorn.Server(
            uvicorn.Config(
                app,
                host=host,
                port=port,
                log_level="info" if verbose else "warning",
            )
        )
        await server.serve()
    finally:
        broadcaster.close_all()
        service.close()

    return 0


def cmd_rebuild(args: argparse.Namespace) -> int:
    """Replay the whole log and report the resulting state."""
    config = load_config(args.config)
    service = build_service(config)
    try:
        state = service.rebuild_all(notify=False)
        print(f"Replayed up to sequence {state.last_sequence}")
        print(f"  Subjects: {len(state.subjects)}")
        print(f"  Sleep sessions: {len(state.sessions)}")
        print(f"  Diaper entries: {len(state.diapers)}")
        stats = service.log_stats()
        print(f"  Events: {stats['total_events']} from {stats['devices']} device(s)")
        for event_type, count in sorted(stats["events_by_type"].items()):
            print(f"    {event_type}: {count}")
    finally:
        service.close()
    return 0


def cmd_events(args: argparse.Namespace) -> int:
    """Print raw events from the local log."""
    config = load_config(args.config)
    log = EventLog(config.server.db_path)
    log.connect()
    try:
        events = log.read(args.since)
        if args.limit:
            events = events[-args.limit:]
        for event in events:
            if args.json:
                print(json.dumps(event.to_dict()))
            else:
                print(f"{event.sequence:>6}  {event.appended_at}  {event.type:<16} {json.dumps(event.payload)}")
    finally:
        log.close()
    return 0


async def cmd_state(args: argparse.Namespace) -> int:
    """Print the current snapshot, from the server or the local log."""
    config = load_config(args.config)

    if args.remote:
        agent = build_agent(config)
        try:
            state = await agent.refresh_state()
        finally:
            agent.store.close()
        if state is None:
            print("No state available (server unreachable and nothing cached)", file=sys.stderr)
            return 1
    else:
        service = build_service(config)
        try:
            state = service.snapshot().to_dict()
        finally:
            service.close()

    print(json.dumps(state, indent=2))
    return 0


async def cmd_status(args: argparse.Namespace) -> int:
    """Check the server and the local offline queue."""
    config = load_config(args.config)
    agent = build_agent(config)

    try:
        health, error = await agent.check_server()
        status_data = {
            "timestamp": datetime.now().isoformat(),
            "node": {"name": config.node.name},
            "server": {
                "url": config.client.server_url,
                "reachable": error is None,
                "health": health,
                "error": error,
            },
            "client": agent.get_sync_status(),
        }
    finally:
        agent.store.close()

    if args.json:
        print(json.dumps(status_data, indent=2))
    else:
        server = status_data["server"]
        client = status_data["client"]
        print("Sovelogg Status Check")
        print("=====================")
        print(f"Node: {config.node.name}")
        print()
        print(f"Server ({server['url']}):")
        if server["reachable"]:
            print("  Status: Reachable")
            print(f"  Latest sequence: {server['health'].get('latestSequence')}")
            print(f"  Open push channels: {server['health'].get('channels')}")
        else:
            print("  Status: Not reachable")
            print(f"  Error: {server['error']}")
        print()
        print("Client:")
        print(f"  Device id: {client['device_id']}")
        print(f"  Pending events: {client['pending_events']}")
        print(f"  Cached state: {'Yes' if client['has_cached_state'] else 'No'}")

    return 0


async def cmd_flush(args: argparse.Namespace) -> int:
    """Send queued offline events to the server."""
    config = load_config(args.config)
    agent = build_agent(config)

    try:
        if args.discard:
            removed = agent.clear_pending()
            print(f"Discarded {removed} queued event(s)")
            return 0
        result = await agent.flush()
    finally:
        agent.store.close()

    print(f"Flush: {result.status.value}, flushed={result.flushed}")
    if result.error:
        print(f"Error: {result.error}", file=sys.stderr)
        return 1
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="sovelogg",
        description="Event-sourced baby sleep and diaper log with offline sync",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: built-in defaults)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP server")
    serve_parser.add_argument("-p", "--port", type=int, default=None, help="Port to listen on")
    serve_parser.add_argument("--host", type=str, default=None, help="Host to bind to")
    serve_parser.set_defaults(func=cmd_serve)

    # Rebuild command
    rebuild_parser = subparsers.add_parser("rebuild", help="Replay the event log")
    rebuild_parser.set_defaults(func=cmd_rebuild)

    # Events command
    events_parser = subparsers.add_parser("events", help="Print raw events")
    events_parser.add_argument("--since", type=int, default=None, help="Only events after this sequence")
    events_parser.add_argument("-n", "--limit", type=int, default=None, help="Only the last N events")
    events_parser.add_argument("--json", action="store_true", help="Output one JSON object per line")
    events_parser.set_defaults(func=cmd_events)

    # State command
    state_parser = subparsers.add_parser("state", help="Print the current snapshot")
    state_parser.add_argument(
        "--remote",
        action="store_true",
        help="Ask the configured server instead of reading the local log",
    )
    state_parser.set_defaults(func=cmd_state)

    # Status command
    status_parser = subparsers.add_parser("status", help="Check server and offline queue")
    status_parser.add_argument("--json", action="store_true", help="Output status as JSON")
    status_parser.set_defaults(func=cmd_status)

    # Flush command
    flush_parser = subparsers.add_parser("flush", help="Send queued offline events")
    flush_parser.add_argument(
        "--discard",
        action="store_true",
        help="Drop the queue instead of sending it",
    )
    flush_parser.set_defaults(func=cmd_flush)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    func = args.func
    if asyncio.iscoroutinefunction(func):
        return asyncio.run(func(args))
    return func(args)


if __name__ == "__main__":
    sys.exit(main())
