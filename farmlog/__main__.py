"""CLI entry point for farmlog."""

import argparse
import asyncio
import inspect
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path

from .config import Config, load_config
from .errors import FarmlogError
from .records.transcoder import to_persistence
from .store import LogDatabase, LogStore
from .sync import FarmClient, LogSync, SyncStatus

logger = logging.getLogger("farmlog")


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

        # Add exception info if present
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


def _open_store(config: Config) -> LogStore:
    database = LogDatabase(config.sync.db_path)
    database.connect()
    return LogStore.load(database)


async def _with_sync(config: Config, action) -> int:
    store = _open_store(config)
    try:
        async with FarmClient(config.farm.host, timeout=config.farm.timeout) as remote:
            sync = LogSync(store, remote, import_filters=config.sync.log_import_filters)
            return await action(sync)
    except FarmlogError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1
    finally:
        store.database.close()


async def cmd_pull(args: argparse.Namespace) -> int:
    """Fetch and merge logs from the server."""
    config = load_config(args.config)

    async def action(sync: LogSync) -> int:
        last_sync = sync.store.database.get_sync_date()
        commands = await sync.pull(last_sync=last_sync)
        if args.refresh:
            await sync.update_reference_data()
        print(f"Pulled {len(commands)} changes from {config.farm.host}")
        return 0

    return await _with_sync(config, action)


async def cmd_push(args: argparse.Namespace) -> int:
    """Send logs flagged ready to sync."""
    config = load_config(args.config)

    async def action(sync: LogSync) -> int:
        indices = args.indices or sync.ready_indices()
        outcomes = await sync.push(indices, config.farm.token, raise_on_error=False)
        for outcome in outcomes:
            if outcome.ok:
                print(f"  [{outcome.index}] pushed as {outcome.id} ({outcome.uri})")
            else:
                print(f"  [{outcome.index}] failed: {outcome.error}")
                if args.unready:
                    sync.unready(outcome.index)
        return 0 if all(o.ok for o in outcomes) else 1

    return await _with_sync(config, action)


async def cmd_sync(args: argparse.Namespace) -> int:
    """Run a full pull and push."""
    config = load_config(args.config)

    async def action(sync: LogSync) -> int:
        result = await sync.sync(token=config.farm.token)
        print(
            f"Sync: {result.status.value}, "
            f"pulled={result.logs_pulled}, pushed={result.logs_pushed}"
        )
        if result.failed_indices:
            print(f"Failed indices: {result.failed_indices}")
        return 0 if result.status == SyncStatus.SUCCESS else 1

    return await _with_sync(config, action)


def cmd_list(args: argparse.Namespace) -> int:
    """List locally stored logs."""
    config = load_config(args.config)
    store = _open_store(config)

    try:
        if args.json:
            print(json.dumps([to_persistence(log) for log in store], indent=2))
            return 0

        for index, log in enumerate(store):
            state = "pushed" if log.was_pushed_to_server else "local"
            if log.is_ready_to_sync:
                state += ", ready"
            print(
                f"[{index}] {log.value('type') or '-'} {log.value('name')!r} "
                f"id={log.id} local_id={log.local_id} ({state})"
            )
        return 0
    finally:
        store.database.close()


def cmd_status(args: argparse.Namespace) -> int:
    """Show local sync status."""
    config = load_config(args.config)
    database = LogDatabase(config.sync.db_path)
    database.connect()

    try:
        stats = database.get_stats()
        stats["host"] = config.farm.host
        if args.json:
            print(json.dumps(stats, indent=2))
            return 0

        sync_date = stats["sync_date"]
        print(f"farmOS host: {config.farm.host}")
        print(f"Logs stored: {stats['total_logs']}")
        print(f"  Not yet pushed: {stats['unpushed']}")
        print(f"  Ready to sync: {stats['ready_to_sync']}")
        print(
            "Last sync: "
            + (datetime.fromtimestamp(sync_date).isoformat() if sync_date else "never")
        )
        return 0
    finally:
        database.close()


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="farmlog",
        description="Synchronize farm activity logs with a farmOS server",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: none, use environment)",
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

    pull_parser = subparsers.add_parser("pull", help="Fetch and merge logs from the server")
    pull_parser.add_argument(
        "--refresh",
        action="store_true",
        help="Also refresh areas, assets, units, categories and equipment",
    )
    pull_parser.set_defaults(func=cmd_pull)

    push_parser = subparsers.add_parser("push", help="Send logs ready to sync")
    push_parser.add_argument(
        "indices",
        nargs="*",
        type=int,
        help="Store indices to push (default: all logs ready to sync)",
    )
    push_parser.add_argument(
        "--unready",
        action="store_true",
        help="Clear the ready flag of logs that fail to push",
    )
    push_parser.set_defaults(func=cmd_push)

    sync_parser = subparsers.add_parser("sync", help="Pull then push")
    sync_parser.set_defaults(func=cmd_sync)

    list_parser = subparsers.add_parser("list", help="List stored logs")
    list_parser.add_argument("--json", action="store_true", help="Output as JSON")
    list_parser.set_defaults(func=cmd_list)

    status_parser = subparsers.add_parser("status", help="Show sync status")
    status_parser.add_argument("--json", action="store_true", help="Output as JSON")
    status_parser.set_defaults(func=cmd_status)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    func = args.func
    if inspect.iscoroutinefunction(func):
        return asyncio.run(func(args))
    return func(args)


if __name__ == "__main__":
    sys.exit(main())
