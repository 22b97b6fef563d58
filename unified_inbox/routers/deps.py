"""Shared request dependencies and the rate limiter.

Services are built once by :func:`unified_inbox.main.create_app` and parked on
``app.state``; routes pull them through these helpers so tests can swap them
with ``app.dependency_overrides``.
"""

from __future__ import annotations

from fastapi import Request
from slowapi import Limiter

from ..core.settings import Settings
from ..messaging.pipeline import IngestionPipeline
from ..messaging.repository import InboxRepository
from ..sync.worker import MailboxSyncWorker


def get_client_ip(request: Request) -> str:
    """Extract a best-effort client IP for rate limiting.

    Prefer ``X-Forwarded-For`` (first hop) if present, otherwise use the
    socket peer address.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


limiter = Limiter(key_func=get_client_ip)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_pipeline(request: Request) -> IngestionPipeline:
    return request.app.state.pipeline


def get_repository(request: Request) -> InboxRepository:
    return request.app.state.repository


def get_sync_worker(request: Request) -> MailboxSyncWorker:
    return request.app.state.sync_worker
