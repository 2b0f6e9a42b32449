"""Command line entry-point for the Forge interview engine."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional

from .config import AppSettings
from .progress import ProgressTracker
from .store import RecordNotFoundError, StoreUnavailableError, create_store
from .summarizer import render_progress


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="forge-interview",
        description="Run and inspect expert knowledge-capture interviews.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Start the HTTP API server.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8081)
    serve.add_argument(
        "--allow-origin",
        action="append",
        dest="allow_origin",
        help="CORS origin(s) to allow. Defaults to '*'.",
    )
    serve.add_argument("--log-level", default="info")
    serve.add_argument(
        "--tracing",
        action="store_true",
        help="Export OpenTelemetry traces to FORGE_OTLP_ENDPOINT.",
    )

    progress = commands.add_parser(
        "progress",
        help="Print the progress summary of a forge's current round.",
    )
    progress.add_argument("forge_id")
    progress.add_argument(
        "--redis-url",
        help="Override FORGE_REDIS_URL for this lookup.",
    )
    return parser.parse_args(argv)


def _print_progress(redis_url: Optional[str], forge_id: str) -> int:
    store = create_store(redis_url)
    tracker = ProgressTracker(store)
    try:
        store.get_forge(forge_id)
        text = render_progress(tracker.plan(forge_id))
    except RecordNotFoundError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    except StoreUnavailableError as exc:
        print(f"Store unavailable: {exc}", file=sys.stderr)
        return 2
    print(text)
    return 0


def run_cli(argv: Optional[list[str]] = None) -> None:
    """Entry-point invoked from ``python -m forge_interview``."""

    logging.basicConfig(level=logging.INFO)
    args = _parse_args(argv)

    if args.command == "progress":
        redis_url = args.redis_url
        if redis_url is None:
            try:
                redis_url = AppSettings.load().redis_url
            except RuntimeError as exc:
                logging.error("Failed to load AppSettings: %s", exc)
                raise SystemExit(1) from exc
        raise SystemExit(_print_progress(redis_url, args.forge_id))

    from .app import run_server

    try:
        settings = AppSettings.load()
    except RuntimeError as exc:
        logging.error("Failed to load AppSettings: %s", exc)
        raise SystemExit(1) from exc
    run_server(
        settings,
        host=args.host,
        port=args.port,
        allow_origins=args.allow_origin,
        log_level=args.log_level,
        tracing=args.tracing,
    )
