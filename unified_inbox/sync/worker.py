"""Poll connected mailboxes and push unseen messages through the pipeline."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone
from threading import Event, Lock
from typing import Protocol
from uuid import UUID

from ..channels.gmail import GmailAdapter
from ..core.circuit import CircuitBreaker
from ..core.settings import Settings
from ..messaging import schemas
from ..messaging.errors import ConversationTouchError, PipelineError
from ..messaging.pipeline import IngestionPipeline
from ..messaging.repository import InboxRepository
from .gmail_client import GmailClient

logger = logging.getLogger(__name__)


class MailboxClient(Protocol):
    def list_unseen(self, after: datetime, max_results: int) -> list[str]: ...

    def get_message(self, message_id: str) -> dict: ...

    def mark_seen(self, message_id: str) -> None: ...


ClientFactory = Callable[[schemas.MailboxConnectionRecord], MailboxClient]

_locks_guard = Lock()
_connection_locks: dict[UUID, Lock] = {}


def _connection_lock(connection_id: UUID) -> Lock:
    with _locks_guard:
        return _connection_locks.setdefault(connection_id, Lock())


def gmail_client_factory(settings: Settings) -> ClientFactory:
    """Build one :class:`GmailClient` (and breaker) per connection per run."""

    def factory(connection: schemas.MailboxConnectionRecord) -> MailboxClient:
        return GmailClient(
            connection.access_token,
            base_url=settings.gmail_api_base_url,
            breaker=CircuitBreaker(f"gmail:{connection.email_address}", failure_threshold=3),
        )

    return factory


class MailboxSyncWorker:
    """Sequential, failure-isolated mailbox sync.

    One bad connection or message never aborts the run: failures are
    collected into ``SyncSummary.errors``.  A message is marked seen on the
    provider only after it has been ingested, so a crash in between leads to
    a re-fetch that the pipeline deduplicates by external id.
    """

    def __init__(
        self,
        repository: InboxRepository,
        pipeline: IngestionPipeline,
        settings: Settings,
        client_factory: ClientFactory | None = None,
        adapter: GmailAdapter | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.repository = repository
        self.pipeline = pipeline
        self.settings = settings
        self.client_factory = client_factory or gmail_client_factory(settings)
        self.adapter = adapter or GmailAdapter()
        self._clock = clock

    def run(
        self, cancel_event: Event | None = None, deadline: float | None = None
    ) -> schemas.SyncSummary:
        """Sync every active connection.

        ``deadline`` is compared against ``clock()`` (``time.monotonic`` by
        default).  Once it passes, or ``cancel_event`` is set, no new message
        is started; the message in flight finishes normally.
        """

        def should_stop() -> bool:
            if cancel_event is not None and cancel_event.is_set():
                return True
            return deadline is not None and self._clock() >= deadline

        summary = schemas.SyncSummary()
        try:
            connections = self.repository.list_active_connections()
        except PipelineError as exc:
            logger.error("Failed to load mailbox connections: %s", exc)
            summary.errors.append(f"Failed to load mailbox connections: {exc}")
            return summary

        logger.info("Starting mailbox sync for %d connection(s)", len(connections))
        for connection in connections:
            if should_stop():
                summary.cancelled = True
                break
            report = schemas.ConnectionSyncReport(email_address=connection.email_address)
            summary.connections.append(report)

            lock = _connection_lock(connection.id)
            if not lock.acquire(blocking=False):
                report.error = "sync already in progress"
                logger.info("Skipping %s: sync already in progress", connection.email_address)
                continue
            try:
                self._sync_connection(connection, report, summary, should_stop)
            except Exception as exc:
                logger.exception("Mailbox sync failed for %s", connection.email_address)
                report.error = str(exc)
                summary.errors.append(f"{connection.email_address}: {exc}")
            finally:
                lock.release()

        logger.info(
            "Mailbox sync finished: %d synced, %d error(s)%s",
            summary.total_synced,
            len(summary.errors),
            " (cancelled)" if summary.cancelled else "",
        )
        return summary

    def _sync_connection(
        self,
        connection: schemas.MailboxConnectionRecord,
        report: schemas.ConnectionSyncReport,
        summary: schemas.SyncSummary,
        should_stop: Callable[[], bool],
    ) -> None:
        email = connection.email_address
        started_at = datetime.now(timezone.utc)
        client = self.client_factory(connection)
        try:
            message_ids = client.list_unseen(
                started_at - self.settings.sync_lookback,
                self.settings.sync_max_messages_per_connection,
            )
        except PipelineError as exc:
            logger.warning("Could not list messages for %s: %s", email, exc)
            report.error = str(exc)
            summary.errors.append(f"{email}: failed to list messages: {exc}")
            return

        logger.info("Found %d unseen message(s) for %s", len(message_ids), email)
        for message_id in message_ids:
            if should_stop():
                summary.cancelled = True
                break
            stored = self._ingest_one(client, email, message_id, report, summary)
            if stored:
                self._acknowledge(client, email, message_id, summary)

        self.repository.mark_connection_synced(connection.id, started_at)

    def _ingest_one(
        self,
        client: MailboxClient,
        email: str,
        message_id: str,
        report: schemas.ConnectionSyncReport,
        summary: schemas.SyncSummary,
    ) -> bool:
        """Return ``True`` when the message is stored (new or duplicate)."""
        try:
            raw = client.get_message(message_id)
            normalized = self.adapter.to_normalized(raw)
            result = self.pipeline.save_normalized_message(normalized)
        except ConversationTouchError as exc:
            # Stored; only the recency marker is stale.
            logger.warning("Message %s from %s stored with errors: %s", message_id, email, exc)
            summary.errors.append(f"{email}: message {message_id}: {exc}")
            report.synced += 1
            summary.total_synced += 1
            return True
        except Exception as exc:
            logger.warning("Failed to ingest message %s from %s: %s", message_id, email, exc)
            report.failed += 1
            summary.errors.append(f"{email}: message {message_id}: {exc}")
            return False

        if result.duplicate:
            report.skipped += 1
        else:
            report.synced += 1
            summary.total_synced += 1
        return True

    def _acknowledge(
        self,
        client: MailboxClient,
        email: str,
        message_id: str,
        summary: schemas.SyncSummary,
    ) -> None:
        try:
            client.mark_seen(message_id)
        except PipelineError as exc:
            logger.warning("Failed to mark message %s as read for %s: %s", message_id, email, exc)
            summary.errors.append(f"{email}: ack {message_id}: {exc}")
