#!/usr/bin/env python3
"""Run the inbox processing engine without the HTTP API.

Watches the vault inbox, processes every arriving file and keeps the record
store up to date until interrupted. Paths and folders default to the
application settings but can be overridden on the command line.
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

from loguru import logger

from app.utils.config import get_settings
from domains.inbox import queries
from domains.inbox.service import InboxService


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments."""

    parser = argparse.ArgumentParser(
        description="Process files dropped into the vault inbox.",
    )
    parser.add_argument(
        "--vault",
        type=Path,
        default=None,
        help="Vault root directory (default: VAULT_PATH setting).",
    )
    parser.add_argument(
        "--records",
        type=Path,
        default=None,
        help="Where to keep the record store document.",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Number of files processed concurrently.",
    )
    parser.add_argument(
        "--poll",
        type=float,
        default=1.0,
        help="How often the main loop checks for shutdown (seconds).",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level (default: LOG_LEVEL setting).",
    )
    parser.add_argument(
        "--issues",
        action="store_true",
        help="Print the most recent issues and exit.",
    )

    return parser.parse_args(argv)


def print_issues(service: InboxService, limit: int = 20) -> None:
    service.store.load()
    issues = queries.recent_issues(service.store, limit)
    if not issues:
        print("No issues.")
        return
    for record in issues:
        stamp = record.latest_timestamp()
        print(f"{record.status.value:<9} {record.original_name:<40} {queries.issue_message(record)}"
              f"  ({stamp:%Y-%m-%d %H:%M})")


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for the CLI script."""

    args = parse_args(argv)

    overrides = {}
    if args.vault:
        overrides["vault_path"] = args.vault
    if args.records:
        overrides["record_store_path"] = args.records
    if args.workers:
        overrides["inbox_workers"] = args.workers
    settings = get_settings().model_copy(update=overrides)

    logger.remove()
    logger.add(
        sys.stderr,
        format="{time:YYYY-MM-DD HH:mm:ss} [{level}] {message}",
        level=(args.log_level or settings.log_level).upper(),
    )

    service = InboxService(settings)

    if args.issues:
        print_issues(service)
        return 0

    stop_event = threading.Event()

    def _signal_handler(signum, frame):  # noqa: D401
        logger.info(f"Received signal {signum}, shutting down.")
        stop_event.set()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    service.start()
    try:
        while not stop_event.is_set():
            stop_event.wait(args.poll)
    finally:
        service.stop()

    logger.info("Inbox watcher stopped.")
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI bridge
    sys.exit(main())
