"""Twilio SMS / WhatsApp channel adapter."""

from __future__ import annotations

import base64
import hashlib
import hmac
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from ..messaging.errors import AdapterError
from ..messaging.models import (
    Attachment,
    Channel,
    CustomerFields,
    Direction,
    NormalizedMessage,
)
from .base import ChannelAdapter

WHATSAPP_PREFIX = "whatsapp:"


class TwilioAdapter(ChannelAdapter):
    channel_name = "twilio"

    def __init__(self, auth_token: str | None = None) -> None:
        self.auth_token = auth_token

    def verify_signature(
        self,
        url: str,
        payload: Mapping[str, Any],
        headers: Mapping[str, str],
    ) -> bool:
        if not self.auth_token:
            return True
        received = headers.get("X-Twilio-Signature")
        if not received:
            return False
        signed = url + "".join(f"{key}{payload[key]}" for key in sorted(payload))
        digest = hmac.new(
            self.auth_token.encode("utf-8"), signed.encode("utf-8"), hashlib.sha1
        ).digest()
        expected = base64.b64encode(digest).decode("ascii")
        return hmac.compare_digest(received, expected)

    def parse_incoming(
        self,
        payload: Mapping[str, Any],
        headers: Mapping[str, str] | None = None,
    ) -> Iterable[NormalizedMessage]:
        sender = str(payload.get("From") or "")
        recipient = str(payload.get("To") or "")
        if not sender:
            raise AdapterError("Twilio payload has no From number")
        is_whatsapp = sender.startswith(WHATSAPP_PREFIX) or recipient.startswith(
            WHATSAPP_PREFIX
        )

        try:
            media_count = int(payload.get("NumMedia") or 0)
        except (TypeError, ValueError):
            media_count = 0
        attachments = []
        for index in range(media_count):
            url = str(payload.get(f"MediaUrl{index}") or "")
            if not url:
                continue
            content_type = str(payload.get(f"MediaContentType{index}") or "image")
            attachments.append(
                Attachment(
                    url=url,
                    kind="image" if content_type.startswith("image") else "file",
                )
            )

        external_id = payload.get("SmsSid") or payload.get("MessageSid")
        yield NormalizedMessage(
            channel=Channel.WHATSAPP if is_whatsapp else Channel.SMS,
            direction=Direction.INCOMING,
            external_id=str(external_id) if external_id else None,
            customer=CustomerFields(phone=sender.replace(WHATSAPP_PREFIX, "")),
            message_text=str(payload.get("Body") or ""),
            attachments=attachments,
            raw_payload={key: payload[key] for key in payload},
            received_at=datetime.now(timezone.utc),
        )
