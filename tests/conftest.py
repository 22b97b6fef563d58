import base64
import json
import pathlib
import sys
from datetime import datetime, timezone
from typing import Any

import pytest
from fastapi import FastAPI, Request
from sqlalchemy.orm import Session, sessionmaker

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from unified_inbox.app_logging import init_logging
from unified_inbox.core.settings import Settings
from unified_inbox.enrichment import EnrichmentDispatcher, EnrichmentService
from unified_inbox.messaging.conversations import ConversationRouter
from unified_inbox.messaging.errors import ProviderAckError, ProviderError
from unified_inbox.messaging.identity import IdentityResolver
from unified_inbox.messaging.pipeline import IngestionPipeline
from unified_inbox.messaging.repository import SqlAlchemyInboxRepository
from unified_inbox.models.session import get_engine, init_db


def b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def gmail_message(
    message_id: str,
    *,
    sender: str = "Jane Doe <jane@example.com>",
    subject: str | None = "Kitchen remodel",
    body: str = "Hi, can you quote a kitchen remodel?",
    internal_date: int = 1_700_000_000_000,
) -> dict[str, Any]:
    headers = [{"name": "From", "value": sender}]
    if subject is not None:
        headers.append({"name": "Subject", "value": subject})
    return {
        "id": message_id,
        "threadId": f"t-{message_id}",
        "snippet": body[:40],
        "internalDate": str(internal_date),
        "payload": {
            "mimeType": "text/plain",
            "headers": headers,
            "body": {"data": b64(body)},
        },
    }


class FakeReasoningClient:
    """Returns queued JSON strings (or raises queued exceptions)."""

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.prompts: list[str] = []

    def complete_json(self, prompt: str) -> str:
        self.prompts.append(prompt)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        if isinstance(response, dict):
            return json.dumps(response)
        return response


class FakeMailbox:
    """In-memory stand-in for :class:`GmailClient`."""

    def __init__(self, messages: list[dict[str, Any]] | None = None) -> None:
        self.messages = {m["id"]: m for m in messages or []}
        self.seen: list[str] = []
        self.list_calls: list[tuple[datetime, int]] = []
        self.fail_list: Exception | None = None
        self.fail_get: set[str] = set()
        self.fail_ack: set[str] = set()
        self.on_get = None

    def list_unseen(self, after: datetime, max_results: int) -> list[str]:
        self.list_calls.append((after, max_results))
        if self.fail_list is not None:
            raise self.fail_list
        unseen = [mid for mid in self.messages if mid not in self.seen]
        return unseen[:max_results]

    def get_message(self, message_id: str) -> dict[str, Any]:
        if self.on_get is not None:
            self.on_get(message_id)
        if message_id in self.fail_get:
            raise ProviderError(f"boom {message_id}", status_code=500)
        return self.messages[message_id]

    def mark_seen(self, message_id: str) -> None:
        if message_id in self.fail_ack:
            raise ProviderAckError(f"ack failed {message_id}", status_code=500)
        self.seen.append(message_id)


@pytest.fixture
def session_factory(tmp_path) -> sessionmaker[Session]:
    engine = get_engine(
        f"sqlite+pysqlite:///{tmp_path / 'inbox.db'}",
        connect_args={"check_same_thread": False},
    )
    init_db(engine)
    yield sessionmaker(bind=engine, expire_on_commit=False, future=True)
    engine.dispose()


@pytest.fixture
def repository(session_factory) -> SqlAlchemyInboxRepository:
    return SqlAlchemyInboxRepository(session_factory)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+pysqlite:///{tmp_path / 'inbox.db'}",
        enrichment_max_workers=0,
        enrichment_max_attempts=1,
        enrichment_backoff_seconds=0.0,
    )


@pytest.fixture
def reasoning_client() -> FakeReasoningClient:
    return FakeReasoningClient(
        {
            "summary": "Wants a kitchen remodel quote",
            "category": "lead",
            "urgency": "normal",
            "lead_score": "A",
            "next_action": "Call back to schedule a visit",
            "extracted": {"address": "12 Oak St", "rooms": "kitchen"},
        }
    )


@pytest.fixture
def make_pipeline(repository, reasoning_client):
    def _make(
        *,
        client: Any = reasoning_client,
        dispatcher: Any = "inline",
        inactivity_timeout=None,
    ) -> IngestionPipeline:
        if dispatcher == "inline":
            service = EnrichmentService(repository, lambda: client)
            dispatcher = EnrichmentDispatcher(
                service.run, max_workers=0, max_attempts=1, sleep=lambda _s: None
            )
        return IngestionPipeline(
            repository,
            IdentityResolver(repository),
            ConversationRouter(repository, inactivity_timeout=inactivity_timeout),
            dispatcher,
        )

    return _make


@pytest.fixture
def inbox_app(monkeypatch, tmp_path, settings, session_factory, reasoning_client):
    """Build the full application against the SQLite test database."""

    from unified_inbox.main import create_app
    from unified_inbox.routers.deps import limiter

    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setattr(limiter, "enabled", False)
    mailbox = FakeMailbox()

    def _create(app_settings: Settings = settings) -> FastAPI:
        app = create_app(
            app_settings,
            session_factory=session_factory,
            reasoning_factory=lambda: reasoning_client,
            mailbox_client_factory=lambda _connection: mailbox,
        )
        app.state.mailbox = mailbox
        return app

    return _create


@pytest.fixture
def app_factory(monkeypatch):
    def _create_app(log_dir: str, log_request_bodies: bool = False):
        """Create a FastAPI app with logging initialised."""
        monkeypatch.setenv("LOG_DIR", str(log_dir))
        if log_request_bodies:
            monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
        app = FastAPI()

        @app.post("/echo")
        async def echo(request: Request):
            return await request.json()

        @app.post("/form")
        async def form(request: Request):
            data = await request.form()
            return {key: str(value) for key, value in data.items()}

        init_logging(app)
        return app

    return _create_app


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)
