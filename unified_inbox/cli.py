"""Command line entry point: ``unified-inbox``.

Subcommands:

- ``init-db``: create the inbox tables and indexes.
- ``add-connection EMAIL``: register a mailbox for the sync worker.
- ``sync``: run one mailbox sync pass and print the summary as JSON.
- ``enrich MESSAGE_ID``: re-run enrichment for a stored message.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
import uuid
from dataclasses import replace

from dotenv import load_dotenv
from sqlalchemy.orm import Session, sessionmaker

from .core.settings import Settings
from .main import build_services
from .messaging import schemas
from .messaging.errors import PipelineError
from .models.session import get_engine, get_sessionmaker, init_db

logger = logging.getLogger("unified_inbox.cli")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="unified-inbox", description="Unified inbox maintenance commands"
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Database URL (defaults to DATABASE_URL)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create inbox tables")

    add = sub.add_parser("add-connection", help="Register a mailbox to sync")
    add.add_argument("email", help="Mailbox address")
    add.add_argument(
        "--access-token",
        default=os.getenv("GMAIL_ACCESS_TOKEN"),
        help="OAuth access token (defaults to GMAIL_ACCESS_TOKEN)",
    )
    add.add_argument("--refresh-token", default=os.getenv("GMAIL_REFRESH_TOKEN"))

    sync = sub.add_parser("sync", help="Run one mailbox sync pass")
    sync.add_argument(
        "--timeout",
        type=float,
        default=None,
        help=(
            "Stop starting new messages, and stop waiting for enrichment, "
            "after this many seconds"
        ),
    )

    enrich = sub.add_parser("enrich", help="Re-run enrichment for a message")
    enrich.add_argument("message_id", help="Message UUID")
    return parser


def run_sync(
    settings: Settings,
    session_factory: sessionmaker[Session],
    *,
    timeout: float | None = None,
    reasoning_factory=None,
    mailbox_client_factory=None,
) -> schemas.SyncSummary:
    """Run one sync pass, then give enrichment until the deadline to finish.

    Enrichment runs on worker threads so a slow or failing reasoning service
    never holds up ingestion.  Jobs still running when the deadline passes are
    abandoned: their messages stay stored with empty AI fields.
    """

    settings = replace(
        settings, enrichment_max_workers=max(settings.enrichment_max_workers, 1)
    )
    _, _, dispatcher, worker = build_services(
        settings,
        session_factory,
        reasoning_factory=reasoning_factory,
        mailbox_client_factory=mailbox_client_factory,
    )
    deadline = time.monotonic() + timeout if timeout else None
    drained = False
    try:
        summary = worker.run(deadline=deadline)
        remaining = None if deadline is None else max(deadline - time.monotonic(), 0.0)
        drained = dispatcher.drain(timeout=remaining)
        if not drained:
            logger.warning(
                "Abandoning enrichment for %d message(s) at the sync deadline",
                len(list(dispatcher.pending())),
            )
    finally:
        dispatcher.shutdown(wait=drained, cancel_pending=not drained)
    return summary


def main(argv: list[str] | None = None) -> int:
    """Parse CLI arguments and execute the requested command."""

    load_dotenv()
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(message)s")
    settings = Settings.from_env()
    database_url = args.database_url or settings.database_url

    if args.command == "init-db":
        init_db(get_engine(database_url))
        return 0

    settings = replace(settings, database_url=database_url)
    if args.command == "sync":
        summary = run_sync(settings, get_sessionmaker(database_url), timeout=args.timeout)
        print(json.dumps(summary.model_dump(mode="json"), indent=2))
        return 1 if summary.errors else 0

    # The remaining commands never dispatch enrichment in the background.
    settings = replace(settings, enrichment_max_workers=0)
    pipeline, enrichment, dispatcher, _ = build_services(
        settings, get_sessionmaker(database_url)
    )
    try:
        if args.command == "add-connection":
            if not args.access_token:
                parser.error("--access-token is required (or set GMAIL_ACCESS_TOKEN)")
            connection = pipeline.repository.add_connection(
                args.email, args.access_token, args.refresh_token
            )
            logger.info("registered mailbox %s (%s)", connection.email_address, connection.id)
            return 0

        try:
            message_id = uuid.UUID(args.message_id)
        except ValueError:
            parser.error("message_id must be a valid UUID")
        try:
            result = enrichment.run(message_id)
        except PipelineError as exc:
            logger.error("enrichment failed: %s", exc)
            return 1
        if result is None:
            logger.error("enrichment skipped: OPENAI_API_KEY is not configured")
            return 1
        print(result.model_dump_json(indent=2))
        return 0
    finally:
        dispatcher.shutdown()


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
