"""Engine and session factory helpers for the inbox store."""

from __future__ import annotations

import logging
import os
import uuid
from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from . import Base

logger = logging.getLogger(__name__)


def _install_sqlite_functions(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _connection_record):  # pragma: no cover - dialect hook
        dbapi_connection.create_function("gen_random_uuid", 0, lambda: str(uuid.uuid4()))
        dbapi_connection.execute("PRAGMA foreign_keys=ON")


def get_engine(database_url: str | None = None, **kwargs: Any) -> Engine:
    """Create an engine for ``database_url`` (or ``DATABASE_URL``).

    SQLite engines get a ``gen_random_uuid`` function so server defaults match
    Postgres, and connections may be shared with enrichment worker threads.
    Postgres engines ping pooled connections before handing them out, since
    the sync endpoint can sit idle between cron ticks.
    """

    url = database_url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not configured.")

    if url.startswith("sqlite"):
        connect_args = dict(kwargs.pop("connect_args", None) or {})
        connect_args.setdefault("check_same_thread", False)
        engine = create_engine(url, connect_args=connect_args, **kwargs)
        _install_sqlite_functions(engine)
        return engine

    kwargs.setdefault("pool_pre_ping", True)
    return create_engine(url, **kwargs)


def get_sessionmaker(database_url: str | None = None, **kwargs: Any) -> sessionmaker[Session]:
    """Return a session factory bound to a fresh engine."""

    return sessionmaker(
        bind=get_engine(database_url, **kwargs), expire_on_commit=False, future=True
    )


def init_db(engine: Engine) -> None:
    """Create every inbox table and index that does not exist yet."""

    Base.metadata.create_all(engine)
    logger.info("Inbox schema ensured on %s", engine.url.render_as_string(hide_password=True))


__all__ = ["Base", "get_engine", "get_sessionmaker", "init_db"]
