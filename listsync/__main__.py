"""CLI entry point for listsync."""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any

from .config import Config, load_config
from .errors import ListsyncError
from .events import MERGEABLE_FIELDS
from .projection import Item
from .replica import Replica
from .sync.engine import SyncOutcome


# Loggers that log every request at INFO; kept at WARNING unless debugging
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


class JSONFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging for a CLI run.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level = getattr(logging, log_level.upper())
    else:
        level = logging.DEBUG if verbose else logging.WARNING

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
                datefmt="%H:%M:%S",
            )
        )

    logging.basicConfig(level=level, handlers=[handler])

    if level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def _open_replica(args: argparse.Namespace) -> tuple[Config, Replica]:
    config = load_config(args.config)
    return config, Replica.open(config)


def _resolve_id(replica: Replica, prefix: str) -> str:
    """Resolve a full item id from a unique prefix."""
    matches = [item.id for item in replica.items() if item.id.startswith(prefix)]
    if not matches:
        raise KeyError(f"No item matches '{prefix}'")
    if len(matches) > 1:
        raise KeyError(f"'{prefix}' is ambiguous ({len(matches)} items)")
    return matches[0]


def _parse_value(raw: str) -> Any:
    """Parse a CLI field value as JSON, falling back to the raw string."""
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def _format_item(item: Item) -> str:
    mark = "x" if item.completed else " "
    flags = ""
    if item.important:
        flags += " !"
    if item.archived:
        flags += " (archived)"
    indent = "  " if item.indented or item.parent_id else ""
    if item.kind.value == "section":
        return f"{item.id[:8]}  {indent}## {item.text}{flags}"
    return f"{item.id[:8]}  {indent}[{mark}] {item.text}{flags}"


def cmd_add(args: argparse.Namespace) -> int:
    """Add an item."""
    _, replica = _open_replica(args)
    try:
        fields: dict[str, Any] = {}
        if args.important:
            fields["important"] = True
        if args.section:
            fields["kind"] = "section"

        before = _resolve_id(replica, args.after) if args.after else None
        item = replica.create_item(args.text, before=before, **fields)
        print(item.id)
    finally:
        replica.close()
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    """Print the current list."""
    _, replica = _open_replica(args)
    try:
        items = replica.items()
        if not args.all:
            items = [item for item in items if not item.archived]

        if args.json:
            print(json.dumps([item.to_dict() for item in items], indent=2))
        elif not items:
            print("(empty)")
        else:
            for item in items:
                print(_format_item(item))
    finally:
        replica.close()
    return 0


def cmd_set(args: argparse.Namespace) -> int:
    """Set one field of an item."""
    _, replica = _open_replica(args)
    try:
        item_id = _resolve_id(replica, args.item)
        item = replica.update_item(item_id, **{args.field: _parse_value(args.value)})
        print(_format_item(item))
    finally:
        replica.close()
    return 0


def cmd_move(args: argparse.Namespace) -> int:
    """Move an item between two neighbours."""
    _, replica = _open_replica(args)
    try:
        item_id = _resolve_id(replica, args.item)
        before = _resolve_id(replica, args.after) if args.after else None
        after = _resolve_id(replica, args.before) if args.before else None
        item = replica.move_item(item_id, before=before, after=after)
        print(f"{item.id[:8]} -> {item.position}")
    finally:
        replica.close()
    return 0


def cmd_delete(args: argparse.Namespace) -> int:
    """Delete an item."""
    _, replica = _open_replica(args)
    try:
        replica.delete_item(_resolve_id(replica, args.item))
    finally:
        replica.close()
    return 0


def cmd_compact(args: argparse.Namespace) -> int:
    """Compact the local event log."""
    _, replica = _open_replica(args)
    try:
        result = replica.compact()
        print(
            f"Compacted {result.before} -> {result.after} events "
            f"({result.snapshots} snapshots, {result.unacknowledged} unacknowledged)"
        )
    finally:
        replica.close()
    return 0


async def cmd_sync(args: argparse.Namespace) -> int:
    """Run a sync cycle, or keep syncing with --watch."""
    config, replica = _open_replica(args)
    try:
        if not config.sync.peer_url:
            print("Sync not configured: set sync.peer_url", file=sys.stderr)
            return 1

        result = await replica.engine.enable()
        print(
            f"{result.outcome.value}: pushed {result.entries_pushed}, "
            f"pulled {result.entries_pulled}"
            + (f" ({result.error})" if result.error else "")
        )

        if args.watch:
            await replica.engine.sync_loop(interval_seconds=args.watch)

        await replica.engine.close()
        return 0 if result.outcome is SyncOutcome.SUCCESS else 1
    finally:
        replica.close()


def cmd_status(args: argparse.Namespace) -> int:
    """Show replica and sync status."""
    config, replica = _open_replica(args)
    try:
        status_data = {
            "timestamp": datetime.now().isoformat(),
            "replica": {
                "name": config.replica.name,
                "id": replica.replica_id,
                "data_path": config.replica.data_path,
                "items": len(replica.items()),
            },
            "log": replica.log.stats(),
            "sync": {
                "peer_url": config.sync.peer_url or None,
                **replica.engine.get_sync_status(),
            },
        }
    finally:
        replica.close()

    if args.json:
        print(json.dumps(status_data, indent=2))
        return 0

    log_stats = status_data["log"]
    sync_status = status_data["sync"]

    print("listsync Status")
    print("===============")
    print(f"Replica: {config.replica.name} ({status_data['replica']['id']})")
    print(f"Data: {config.replica.data_path}")
    print(f"Items: {status_data['replica']['items']}")
    print()
    print("Event log:")
    print(f"  Events: {log_stats['total_events']}")
    print(f"  Unacknowledged: {log_stats['unacknowledged_events']}")
    print(f"  Max seq: {log_stats['max_seq']}")
    print()
    print(f"Sync ({sync_status['peer_url'] or 'no peer'}):")
    print(f"  State: {sync_status['state']}")
    print(f"  Cursor: {sync_status['cursor']}")
    if sync_status["message"]:
        print(f"  {sync_status['message']}")
    return 0


async def cmd_serve(args: argparse.Namespace) -> int:
    """Run the reference peer."""
    import uvicorn

    from .sync.peer_store import PeerStore
    from .sync.server import create_app

    config = load_config(args.config)
    host = args.host or config.server.host
    port = args.port or config.server.port
    db_path = args.db or config.server.db_path

    store = PeerStore(db_path)
    store.connect()

    print("Starting listsync peer")
    print(f"Store: {db_path}")
    print(f"URL: http://{host}:{port}")

    app = create_app(store)

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
        store.close()

    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="listsync",
        description="Offline-first replicated list",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file",
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

    add_parser = subparsers.add_parser("add", help="Add an item")
    add_parser.add_argument("text", help="Item text")
    add_parser.add_argument("--after", help="Id (or prefix) of the item to insert after")
    add_parser.add_argument("--important", action="store_true", help="Mark as important")
    add_parser.add_argument("--section", action="store_true", help="Create a section header")
    add_parser.set_defaults(func=cmd_add)

    list_parser = subparsers.add_parser("list", help="Show the list")
    list_parser.add_argument("--all", action="store_true", help="Include archived items")
    list_parser.add_argument("--json", action="store_true", help="Output items as JSON")
    list_parser.set_defaults(func=cmd_list)

    set_parser = subparsers.add_parser("set", help="Set a field of an item")
    set_parser.add_argument("item", help="Item id (or prefix)")
    set_parser.add_argument("field", choices=MERGEABLE_FIELDS, help="Field name")
    set_parser.add_argument("value", help="New value (JSON, or a plain string)")
    set_parser.set_defaults(func=cmd_set)

    move_parser = subparsers.add_parser("move", help="Move an item")
    move_parser.add_argument("item", help="Item id (or prefix)")
    move_parser.add_argument("--after", help="Place after this item")
    move_parser.add_argument("--before", help="Place before this item")
    move_parser.set_defaults(func=cmd_move)

    delete_parser = subparsers.add_parser("delete", help="Delete an item")
    delete_parser.add_argument("item", help="Item id (or prefix)")
    delete_parser.set_defaults(func=cmd_delete)

    compact_parser = subparsers.add_parser("compact", help="Compact the local event log")
    compact_parser.set_defaults(func=cmd_compact)

    sync_parser = subparsers.add_parser("sync", help="Sync with the peer")
    sync_parser.add_argument(
        "--watch",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Keep syncing at this interval",
    )
    sync_parser.set_defaults(func=cmd_sync)

    status_parser = subparsers.add_parser("status", help="Show replica and sync status")
    status_parser.add_argument("--json", action="store_true", help="Output status as JSON")
    status_parser.set_defaults(func=cmd_status)

    serve_parser = subparsers.add_parser("serve", help="Run the reference peer")
    serve_parser.add_argument("--host", type=str, default=None, help="Host to bind to")
    serve_parser.add_argument("-p", "--port", type=int, default=None, help="Port to listen on")
    serve_parser.add_argument("--db", type=str, default=None, help="Peer database path")
    serve_parser.set_defaults(func=cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    func = args.func
    try:
        if asyncio.iscoroutinefunction(func):
            return asyncio.run(func(args))
        return func(args)
    except KeyboardInterrupt:
        print("\nShutting down...")
        return 0
    except KeyError as e:
        print(f"Error: {e.args[0]}", file=sys.stderr)
        return 1
    except (ListsyncError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
