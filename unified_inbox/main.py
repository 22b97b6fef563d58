"""FastAPI application wiring for the unified inbox.

``create_app`` bootstraps the HTTP surface:

- configures logging, Prometheus metrics and rate limiting;
- builds the ingestion pipeline, the enrichment dispatcher and the mailbox
  sync worker once and parks them on ``app.state``;
- mounts the webhook, intake, sync and inbox routers next to the health and
  version probes.

Collaborators can be injected (tests pass a SQLite session factory and fake
clients); by default everything is resolved from the environment.
"""

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.orm import Session, sessionmaker

from .__version__ import __build_date__, __commit_sha__, __version__
from .app_logging import init_logging
from .core.settings import Settings
from .enrichment import EnrichmentDispatcher, EnrichmentService
from .enrichment.client import OpenAIReasoningClient, ReasoningClient
from .enrichment.providers import ProviderRegistry
from .messaging.pipeline import build_pipeline
from .models.session import get_sessionmaker
from .routers import inbox, webhooks
from .routers.deps import limiter
from .sync.worker import ClientFactory, MailboxSyncWorker

logger = logging.getLogger(__name__)


def reasoning_client_factory(settings: Settings, registry: ProviderRegistry | None = None):
    """Return a callable yielding an OpenAI client, or ``None`` without a key."""

    registry = registry or ProviderRegistry()

    def factory() -> ReasoningClient | None:
        credentials = registry.get_credentials("openai")
        if not credentials.configured:
            return None
        return OpenAIReasoningClient(
            credentials.api_key or "",
            model=settings.openai_model,
            base_url=credentials.base_url,
        )

    return factory


def build_services(
    settings: Settings,
    session_factory: sessionmaker[Session],
    *,
    reasoning_factory=None,
    mailbox_client_factory: ClientFactory | None = None,
):
    """Build dispatcher, pipeline and sync worker sharing one repository."""

    pipeline = build_pipeline(settings, session_factory)
    enrichment = EnrichmentService(
        pipeline.repository,
        reasoning_factory or reasoning_client_factory(settings),
        business_name=settings.business_name,
    )
    dispatcher = EnrichmentDispatcher(
        enrichment.run,
        max_workers=settings.enrichment_max_workers,
        max_attempts=settings.enrichment_max_attempts,
        backoff_seconds=settings.enrichment_backoff_seconds,
    )
    pipeline.dispatcher = dispatcher
    worker = MailboxSyncWorker(
        pipeline.repository, pipeline, settings, client_factory=mailbox_client_factory
    )
    return pipeline, enrichment, dispatcher, worker


def create_app(
    settings: Settings | None = None,
    *,
    session_factory: sessionmaker[Session] | None = None,
    reasoning_factory=None,
    mailbox_client_factory: ClientFactory | None = None,
) -> FastAPI:
    load_dotenv()
    settings = settings or Settings.from_env()
    session_factory = session_factory or get_sessionmaker(settings.database_url)
    pipeline, enrichment, dispatcher, worker = build_services(
        settings,
        session_factory,
        reasoning_factory=reasoning_factory,
        mailbox_client_factory=mailbox_client_factory,
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        logger.info("Shutting down enrichment dispatcher")
        dispatcher.shutdown(wait=True)

    app = FastAPI(title="Unified Inbox", version=__version__, lifespan=lifespan)
    init_logging(app)
    app.state.settings = settings
    app.state.repository = pipeline.repository
    app.state.pipeline = pipeline
    app.state.enrichment = enrichment
    app.state.dispatcher = dispatcher
    app.state.sync_worker = worker
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)
    app.include_router(webhooks.router)
    app.include_router(inbox.router)

    # Expose Prometheus metrics
    Instrumentator().instrument(app).expose(
        app, include_in_schema=False, endpoint="/api/metrics"
    )

    @app.get("/api/health")
    async def health():
        """Liveness/readiness probe with a minimal JSON body."""
        return {"status": "ok"}

    @app.get("/api/version")
    async def version():
        """Return version information for the application."""
        return {
            "version": __version__,
            "build_date": __build_date__,
            "commit_sha": __commit_sha__,
        }

    return app
