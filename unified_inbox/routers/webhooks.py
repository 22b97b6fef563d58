"""Inbound routes: Twilio webhook, parsed-email intake and scheduled mailbox sync."""

import hmac
import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..channels import GmailAdapter, get_adapter
from ..core.settings import Settings
from ..messaging import schemas
from ..messaging.errors import AdapterError, StoreError
from ..messaging.pipeline import IngestionPipeline
from ..sync.worker import MailboxSyncWorker
from .deps import get_pipeline, get_settings, get_sync_worker, limiter

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])

EMPTY_TWIML = "<Response></Response>"


def _twiml(status_code: int = status.HTTP_200_OK) -> Response:
    return Response(content=EMPTY_TWIML, status_code=status_code, media_type="text/xml")


@router.post("/api/webhooks/twilio")
@limiter.limit("120/minute")
async def twilio_webhook(
    request: Request,
    pipeline: IngestionPipeline = Depends(get_pipeline),
    settings: Settings = Depends(get_settings),
) -> Response:
    """Store an inbound SMS/WhatsApp message and answer with empty TwiML."""

    form = await request.form()
    payload: dict[str, Any] = {key: str(value) for key, value in form.items()}
    adapter = get_adapter("twilio")(auth_token=settings.twilio_auth_token)
    if not adapter.verify_signature(str(request.url), payload, request.headers):
        logger.warning("Rejected Twilio webhook with an invalid signature")
        return _twiml(status.HTTP_403_FORBIDDEN)

    try:
        for normalized in adapter.parse_incoming(payload, request.headers):
            await run_in_threadpool(pipeline.save_normalized_message, normalized)
    except AdapterError as exc:
        logger.warning("Unusable Twilio payload: %s", exc)
        return _twiml(status.HTTP_400_BAD_REQUEST)
    except StoreError:
        logger.exception("Failed to store Twilio message")
        return _twiml(status.HTTP_503_SERVICE_UNAVAILABLE)
    return _twiml()


class EmailAttachmentIn(BaseModel):
    download_url: str | None = Field(default=None, alias="downloadUrl")
    mime_type: str | None = Field(default=None, alias="mimeType")
    filename: str | None = None


class EmailIntakeRequest(BaseModel):
    """Email parsed by an external worker."""

    model_config = ConfigDict(populate_by_name=True)

    from_email: str = Field(alias="fromEmail", min_length=1)
    from_name: str | None = Field(default=None, alias="fromName")
    subject: str = Field(min_length=1)
    body_text: str = Field(default="", alias="bodyText")
    message_id: str = Field(alias="messageId", min_length=1)
    attachments: list[EmailAttachmentIn] = Field(default_factory=list)


@router.post("/api/email/intake")
@limiter.limit("120/minute")
async def email_intake(
    request: Request,
    pipeline: IngestionPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from exc
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    if not isinstance(body.get("attachments"), list):
        body["attachments"] = []
    try:
        parsed = EmailIntakeRequest.model_validate(body)
    except ValidationError as exc:
        raise HTTPException(
            status_code=400, detail="fromEmail, messageId, and subject are required"
        ) from exc

    normalized = GmailAdapter().from_parsed(
        from_email=parsed.from_email,
        from_name=parsed.from_name,
        subject=parsed.subject,
        body_text=parsed.body_text,
        message_id=parsed.message_id,
        attachments=[
            {
                "downloadUrl": item.download_url,
                "mimeType": item.mime_type,
                "filename": item.filename,
            }
            for item in parsed.attachments
        ],
        raw_payload=body,
    )
    try:
        result: schemas.IngestResult = await run_in_threadpool(
            pipeline.save_normalized_message, normalized
        )
    except AdapterError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except StoreError as exc:
        logger.exception("Failed to store intake email %s", parsed.message_id)
        raise HTTPException(
            status_code=503, detail="Failed to process Gmail message"
        ) from exc
    return {"ok": True, **result.model_dump(mode="json")}


def _require_cron_secret(request: Request, settings: Settings) -> None:
    if not settings.cron_secret:
        return
    expected = f"Bearer {settings.cron_secret}"
    provided = request.headers.get("Authorization", "")
    if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.api_route("/api/email/sync", methods=["GET", "POST"])
@limiter.limit("10/minute")
async def email_sync(
    request: Request,
    settings: Settings = Depends(get_settings),
    worker: MailboxSyncWorker = Depends(get_sync_worker),
) -> dict[str, Any]:
    """Run one mailbox sync pass; intended for a scheduler."""

    _require_cron_secret(request, settings)
    summary: schemas.SyncSummary = await run_in_threadpool(worker.run)
    return {
        "success": True,
        "synced": summary.total_synced,
        "errors": summary.errors,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
