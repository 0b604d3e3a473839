"""CLI: clashboard watch, serve, dump, close, logs, config validate."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Callable

from ..config import load_config, validate_config
from ..controller.client import ControllerClient
from ..controller.stream import LogStream
from ..core.formatting import format_bytes, format_connection, format_log
from ..core.ledger import ConnectionLedger
from ..types import LOG_LEVELS, ClashboardConfig, ControllerError, LogEntry


def _load(args) -> ClashboardConfig:
    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)
    if getattr(args, "url", None):
        config.controller.url = args.url.rstrip("/")
    if getattr(args, "secret", None):
        config.controller.secret = args.secret
    return config


def _setup_logging(config: ClashboardConfig) -> None:
    logging.basicConfig(
        level=getattr(logging, config.logging.level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def cmd_watch(args):
    """Live connection table in the terminal."""
    from ..tui.app import run_watch

    config = _load(args)
    run_watch(config)


def cmd_serve(args):
    """Start the web dashboard."""
    import uvicorn

    from ..dashboard import create_app

    config = _load(args)
    _setup_logging(config)

    class _SuppressEventsAccess(logging.Filter):
        """Hide access logs for the long-lived SSE endpoint."""
        def filter(self, record: logging.LogRecord) -> bool:
            return "GET /api/events" not in record.getMessage()

    logging.getLogger("uvicorn.access").addFilter(_SuppressEventsAccess())

    host = args.host or config.dashboard.host
    port = args.port or config.dashboard.port
    app = create_app(config)
    print(f"clashboard on http://{host}:{port} -> {config.controller.url}")
    uvicorn.run(
        app, host=host, port=port, log_level=config.logging.level.lower(),
        timeout_graceful_shutdown=2,
    )


async def _fetch(config: ClashboardConfig):
    async with ControllerClient.from_config(config.controller) as client:
        return await client.fetch_snapshot()


def cmd_dump(args):
    """Fetch one snapshot and print it."""
    config = _load(args)
    _setup_logging(config)
    try:
        records = asyncio.run(_fetch(config))
    except ControllerError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    ledger = ConnectionLedger()
    ledger.ingest(records)
    entries = ledger.values()

    if args.json:
        print(json.dumps([e.to_dict() for e in entries], indent=2, ensure_ascii=False))
        return

    if not entries:
        print("No open connections.")
        return

    rows = sorted((format_connection(e) for e in entries), key=lambda r: r.host)
    print(f"{'Host':<40} {'Process':<18} {'Rule':<24} {'Chains':<24} {'Upload':>12} {'Download':>12}")
    print("-" * 135)
    for r in rows:
        print(
            f"{r.host[:40]:<40} {r.process[:18]:<18} {r.rule[:24]:<24} "
            f"{r.chains[:24]:<24} {format_bytes(r.upload):>12} {format_bytes(r.download):>12}"
        )
    total_up = sum(r.upload for r in rows)
    total_down = sum(r.download for r in rows)
    print()
    print(f"{len(rows)} connections, {format_bytes(total_up)} up / {format_bytes(total_down)} down")


async def _close(config: ClashboardConfig, conn_id: str | None) -> None:
    async with ControllerClient.from_config(config.controller) as client:
        if conn_id is None:
            await client.close_all()
        else:
            await client.close_connection(conn_id)


def cmd_close(args):
    """Close one connection, or all of them."""
    if not args.all and not args.id:
        print("Specify a connection id or --all", file=sys.stderr)
        sys.exit(1)
    config = _load(args)
    _setup_logging(config)
    try:
        asyncio.run(_close(config, None if args.all else args.id))
    except ControllerError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    print("Closed all connections." if args.all else f"Closed {args.id}.")


async def _tail_logs(
    config: ClashboardConfig,
    level: str | None,
    on_entry: Callable[[LogEntry], None],
) -> None:
    stream = LogStream.from_config(config.controller, config.stream, config.logs, level=level)
    try:
        await stream.run(on_entry)
    finally:
        await stream.aclose()


def cmd_logs(args):
    """Follow the controller's log stream until interrupted."""
    config = _load(args)
    _setup_logging(config)

    def print_entry(entry: LogEntry) -> None:
        print(format_log(entry), flush=True)

    try:
        asyncio.run(_tail_logs(config, args.level, print_entry))
    except KeyboardInterrupt:
        pass


def cmd_config_validate(args):
    """Validate the config file."""
    config = _load(args)
    errors = validate_config(config)
    if errors:
        print("Config errors:")
        for err in errors:
            print(f"  - {err}")
        sys.exit(1)
    print("Config OK")
    print(f"  controller: {config.controller.url}")
    print(f"  keep closed connections: {'yes' if config.ledger.retain_closed else 'no'}")
    print(f"  log level: {config.logs.level or 'controller default'}")
    print(f"  dashboard: {config.dashboard.host}:{config.dashboard.port}")


def main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(
        prog="clashboard",
        description="Live connection dashboard for Clash-compatible proxies",
    )
    parser.add_argument("--config", "-c", help="Path to config file")
    parser.add_argument("--url", help="Controller URL (overrides config)")
    parser.add_argument("--secret", help="Controller secret (overrides config)")

    subparsers = parser.add_subparsers(dest="command")

    # watch
    subparsers.add_parser("watch", help="Live connection table in the terminal")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the web dashboard")
    serve_parser.add_argument("--host", help="Bind address")
    serve_parser.add_argument("--port", "-p", type=int, help="Bind port")

    # dump
    dump_parser = subparsers.add_parser("dump", help="Print the open connections once")
    dump_parser.add_argument("--json", action="store_true", help="Print JSON")

    # close
    close_parser = subparsers.add_parser("close", help="Close connections")
    close_parser.add_argument("id", nargs="?", help="Connection id")
    close_parser.add_argument("--all", action="store_true", help="Close every connection")

    # logs
    logs_parser = subparsers.add_parser("logs", help="Follow the controller log")
    logs_parser.add_argument(
        "--level", "-l", choices=LOG_LEVELS,
        help="Minimum level (default: logs.level from config)",
    )

    # config
    config_parser = subparsers.add_parser("config", help="Config operations")
    config_sub = config_parser.add_subparsers(dest="config_command")
    config_sub.add_parser("validate", help="Validate config file")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "watch":
        cmd_watch(args)
    elif args.command == "serve":
        cmd_serve(args)
    elif args.command == "dump":
        cmd_dump(args)
    elif args.command == "close":
        cmd_close(args)
    elif args.command == "logs":
        cmd_logs(args)
    elif args.command == "config":
        if args.config_command == "validate":
            cmd_config_validate(args)
        else:
            print("Usage: clashboard config validate")
            sys.exit(1)


if __name__ == "__main__":
    main()
