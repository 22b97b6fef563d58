"""Logging for the inbox service.

Two rotating files are written under ``LOG_DIR``: ``inbox.log`` receives the
``unified_inbox`` logger tree (ingestion, enrichment, sync) and ``access.log``
receives one JSON line per HTTP request from the access middleware.

Webhook and intake payloads carry customer phone numbers and addresses, so
bodies are only recorded when ``LOG_REQUEST_BODIES=true`` and even then
credentials are replaced with ``***`` and contact fields keep only their last
four characters.

Environment variables: LOG_DIR, LOG_LEVEL, LOG_JSON, LOG_REQUEST_BODIES,
LOG_RETENTION_DAYS, LOG_ROTATE_UTC.
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from logging.handlers import TimedRotatingFileHandler
from typing import Any, cast
from urllib.parse import parse_qsl
from uuid import uuid4

from fastapi import FastAPI, Request

LOGGER_NAME = "unified_inbox"
ACCESS_LOGGER_NAME = "uvicorn.access"
UNLOGGED_PATHS = frozenset({"/api/health", "/api/metrics"})

SECRET_FIELDS = frozenset(
    {
        "authorization",
        "cookie",
        "set-cookie",
        "password",
        "token",
        "access_token",
        "refresh_token",
        "x-twilio-signature",
    }
)
CONTACT_FIELDS = frozenset({"from", "to", "fromemail", "email", "phone"})


def _env_flag(name: str) -> bool:
    return os.getenv(name, "false").lower() == "true"


@dataclass(frozen=True)
class LogConfig:
    directory: str = "logs"
    level: int = logging.INFO
    json: bool = False
    request_bodies: bool = False
    retention_days: int = 7
    rotate_utc: bool = False

    @classmethod
    def from_env(cls) -> "LogConfig":
        return cls(
            directory=os.getenv("LOG_DIR", "logs"),
            level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
            json=_env_flag("LOG_JSON"),
            request_bodies=_env_flag("LOG_REQUEST_BODIES"),
            retention_days=int(os.getenv("LOG_RETENTION_DAYS", "7")),
            rotate_utc=_env_flag("LOG_ROTATE_UTC"),
        )

    def formatter(self) -> logging.Formatter:
        if self.json:
            return JsonFormatter()
        return logging.Formatter("[%(asctime)s] %(levelname)s in %(name)s: %(message)s")

    def file_handler(self, filename: str) -> TimedRotatingFileHandler:
        handler = TimedRotatingFileHandler(
            os.path.join(self.directory, filename),
            when="midnight",
            backupCount=self.retention_days,
            utc=self.rotate_utc,
        )
        handler.setFormatter(self.formatter())
        return handler


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "level": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def _mask_contact(value: object) -> object:
    if not isinstance(value, str) or len(value) <= 4:
        return "***"
    return "***" + value[-4:]


def _scrub(data: object) -> object:
    """Mask secrets and contact details inside nested dicts and lists."""

    if isinstance(data, dict):
        scrubbed: dict[Any, object] = {}
        for key, value in data.items():
            lowered = str(key).lower()
            if lowered in SECRET_FIELDS:
                scrubbed[key] = "***"
            elif lowered in CONTACT_FIELDS:
                scrubbed[key] = _mask_contact(value)
            else:
                scrubbed[key] = _scrub(value)
        return scrubbed
    if isinstance(data, list):
        return [_scrub(item) for item in data]
    return data


def _decode_body(body: bytes, content_type: str) -> object:
    text = body.decode("utf-8", errors="replace")
    if content_type.startswith("application/x-www-form-urlencoded"):
        return _scrub(dict(parse_qsl(text)))
    try:
        return _scrub(json.loads(body))
    except ValueError:
        return text


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded
    return request.client.host if request.client else None


def _install_access_logging(app: FastAPI, config: LogConfig | None = None) -> None:
    """Log every request except health and metrics probes.

    The request id is taken from ``X-Request-Id`` when the caller sends one,
    stored on ``request.state`` and echoed on the response.
    """

    config = config or LogConfig.from_env()
    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        if request.url.path in UNLOGGED_PATHS:
            return await call_next(request)

        request_id = request.headers.get("X-Request-Id") or uuid4().hex
        request.state.request_id = request_id
        started = time.perf_counter()

        body: object = None
        if config.request_bodies:
            raw = await request.body()

            # Replay the consumed body for the route handler.
            async def receive() -> dict:
                return {"type": "http.request", "body": raw, "more_body": False}

            request._receive = receive  # type: ignore[attr-defined]
            if raw:
                body = _decode_body(raw, request.headers.get("content-type", ""))

        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id

        entry: dict[str, object] = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
            "client_ip": _client_ip(request),
            "headers": _scrub(dict(request.headers)),
        }
        if body is not None:
            entry["body"] = body
        access_logger.info(json.dumps(entry, default=str))
        return response


def init_logging(app: FastAPI | None = None) -> logging.Logger:
    """Attach file handlers and, when ``app`` is given, the access middleware.

    The package logger keeps handlers from an earlier call; the access logger
    is reset each time so uvicorn's default console handler does not double up.
    """

    config = LogConfig.from_env()
    os.makedirs(config.directory, exist_ok=True)

    package_logger = logging.getLogger(LOGGER_NAME)
    if not package_logger.handlers:
        package_logger.addHandler(config.file_handler("inbox.log"))
    package_logger.setLevel(config.level)

    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)
    access_logger.handlers.clear()
    access_logger.addHandler(config.file_handler("access.log"))
    access_logger.setLevel(config.level)

    if app is not None:
        cast(Any, app).logger = package_logger
        _install_access_logging(app, config)
    return package_logger
