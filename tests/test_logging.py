import json
import logging
from logging.handlers import TimedRotatingFileHandler

import pytest
from fastapi import FastAPI, Request
from starlette.testclient import TestClient

from unified_inbox.app_logging import (
    JsonFormatter,
    _install_access_logging,
    _scrub,
    init_logging,
)


def _clear_handlers(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.handlers.clear()
    return logger


@pytest.fixture
def clean_loggers():
    loggers = [_clear_handlers("unified_inbox"), _clear_handlers("uvicorn.access")]
    yield loggers
    for logger in loggers:
        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()


def test_timed_rotating_handler_configuration(tmp_path, monkeypatch, clean_loggers):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    monkeypatch.setenv("LOG_RETENTION_DAYS", "5")
    package_logger, access_logger = clean_loggers

    init_logging()

    for logger in (package_logger, access_logger):
        handler = next(h for h in logger.handlers if isinstance(h, TimedRotatingFileHandler))
        assert handler.when == "MIDNIGHT"
        assert handler.backupCount == 5


def test_init_logging_replaces_existing_access_handlers(tmp_path, monkeypatch, clean_loggers):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    _, access_logger = clean_loggers
    stream_handler = logging.StreamHandler()
    access_logger.addHandler(stream_handler)

    init_logging()

    assert stream_handler not in access_logger.handlers
    assert any(isinstance(h, TimedRotatingFileHandler) for h in access_logger.handlers)


def test_log_files_and_redaction(tmp_path, app_factory, clean_loggers):
    package_logger, access_logger = clean_loggers
    app = app_factory(tmp_path, log_request_bodies=True)

    logging.getLogger("unified_inbox.messaging.pipeline").info("hello inbox")

    with TestClient(app) as client:
        resp = client.post(
            "/echo",
            json={"token": "secret", "value": 1},
            headers={"Authorization": "Bearer secret"},
        )
        assert resp.status_code == 200
        form = client.post("/form", data={"From": "+1555", "password": "pw"})
        assert form.status_code == 200

    for logger in (package_logger, access_logger):
        for handler in logger.handlers:
            handler.flush()

    inbox_log = tmp_path / "inbox.log"
    access_log = tmp_path / "access.log"
    assert "hello inbox" in inbox_log.read_text()

    lines = access_log.read_text().splitlines()
    echo = json.loads(lines[-2].split(": ", 1)[1])
    assert echo["headers"]["authorization"] == "***"
    assert echo["body"]["token"] == "***"
    form_entry = json.loads(lines[-1].split(": ", 1)[1])
    assert form_entry["body"] == {"From": "***1555", "password": "***"}


def test_access_logging_request_id_and_skip_paths(caplog, monkeypatch):
    app = FastAPI()

    @app.post("/echo")
    async def echo(request: Request):
        return {"rid": request.state.request_id}

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    _install_access_logging(app)

    with (
        TestClient(app) as client,
        caplog.at_level(logging.INFO, logger="uvicorn.access"),
    ):
        resp = client.post("/echo", json={}, headers={"X-Request-Id": "abc"})
        assert resp.headers["X-Request-Id"] == "abc"
        assert resp.json() == {"rid": "abc"}
        data = json.loads(caplog.records[0].getMessage())
        assert data["request_id"] == "abc"
        assert "body" not in data

        caplog.clear()
        client.get("/api/health")
        assert len(caplog.records) == 0


def test_scrub_and_json_formatter():
    assert _scrub({"Refresh_Token": "x", "nested": [{"access_token": "y", "ok": 1}]}) == {
        "Refresh_Token": "***",
        "nested": [{"access_token": "***", "ok": 1}],
    }
    assert _scrub({"fromEmail": "buyer@example.com", "To": "+1"}) == {
        "fromEmail": "***.com",
        "To": "***",
    }
    record = logging.LogRecord("unified_inbox", logging.INFO, __file__, 1, "hi %s", ("there",), None)
    payload = json.loads(JsonFormatter().format(record))
    assert payload["message"] == "hi there"
    assert payload["logger"] == "unified_inbox"
