import threading
import time
from dataclasses import replace

from conftest import FakeMailbox, FakeReasoningClient, gmail_message
from unified_inbox.cli import run_sync
from unified_inbox.main import build_services


def test_failing_enrichment_does_not_hold_up_ingestion(settings, session_factory, repository):
    repository.add_connection("inbox@example.com", "token")
    mailbox = FakeMailbox([gmail_message("g1")])
    client = FakeReasoningClient(RuntimeError("reasoning service down"))
    threaded = replace(
        settings,
        enrichment_max_workers=1,
        enrichment_max_attempts=3,
        enrichment_backoff_seconds=0.5,
    )
    _, _, dispatcher, worker = build_services(
        threaded,
        session_factory,
        reasoning_factory=lambda: client,
        mailbox_client_factory=lambda _connection: mailbox,
    )

    started = time.monotonic()
    summary = worker.run()
    elapsed = time.monotonic() - started

    assert summary.total_synced == 1
    assert mailbox.seen == ["g1"]
    # Three attempts with backoff would take 1.5 s on the ingestion path.
    assert elapsed < 1.0
    assert dispatcher.drain(timeout=10)
    assert len(dispatcher.dead_letters()) == 1
    dispatcher.shutdown()


class _BlockingClient:
    def __init__(self):
        self.release = threading.Event()
        self.calls = 0

    def complete_json(self, prompt):
        self.calls += 1
        self.release.wait(timeout=10)
        raise RuntimeError("released")


def test_run_sync_stops_waiting_for_enrichment_at_deadline(settings, session_factory, repository):
    repository.add_connection("inbox@example.com", "token")
    mailbox = FakeMailbox([gmail_message("g1"), gmail_message("g2", sender="b@example.com")])
    client = _BlockingClient()

    started = time.monotonic()
    try:
        summary = run_sync(
            replace(settings, enrichment_max_workers=1, enrichment_max_attempts=2),
            session_factory,
            timeout=1.0,
            reasoning_factory=lambda: client,
            mailbox_client_factory=lambda _connection: mailbox,
        )
        elapsed = time.monotonic() - started
    finally:
        client.release.set()

    assert summary.total_synced == 2
    assert elapsed < 5
    assert client.calls == 1
    stored = repository.find_message_by_external_id("email", "g2")
    assert stored.ai_category is None
