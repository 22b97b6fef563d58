"""Gmail channel adapter.

Converts Gmail REST API message resources (``users.messages.get`` with the
default ``full`` format) into :class:`NormalizedMessage` objects.
"""

from __future__ import annotations

import base64
import binascii
import html
import logging
import re
from collections.abc import Iterable, Iterator, Mapping
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

logger = logging.getLogger(__name__)

NO_SUBJECT = "(No Subject)"
ATTACHMENT_SCHEME = "gmail-attachment"

_FROM_RE = re.compile(r"^(.*?)\s*<(.+?)>$")
_TAG_RE = re.compile(r"<[^>]*>")
_SCRIPT_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_WS_RE = re.compile(r"\s+")


def decode_base64url(data: str) -> str:
    """Decode Gmail's base64url encoded body data, tolerating missing padding."""
    padded = data + "=" * (-len(data) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError, UnicodeEncodeError):
        logger.warning("Failed to decode base64url body of %d chars", len(data))
        return ""


def strip_html(markup: str) -> str:
    """Best-effort tag stripping; not a full HTML parser."""
    text = _SCRIPT_RE.sub(" ", markup)
    text = _TAG_RE.sub(" ", text)
    return _WS_RE.sub(" ", html.unescape(text)).strip()


def parse_from_header(value: str) -> tuple[str, str]:
    """Split ``"John Doe <john@example.com>"`` into name and address."""
    value = value.strip()
    match = _FROM_RE.match(value)
    if not match:
        return "", value
    name = match.group(1).strip().strip("\"'").strip()
    return name, match.group(2).strip()


def compose_message_text(subject: str, body: str) -> str:
    return f"Subject: {subject}\n\n{body}"


def _header(headers: Iterable[Mapping[str, Any]], name: str) -> str | None:
    wanted = name.lower()
    for header in headers:
        if str(header.get("name", "")).lower() == wanted:
            return str(header.get("value") or "")
    return None


def _walk_parts(part: Mapping[str, Any]) -> Iterator[Mapping[str, Any]]:
    for child in part.get("parts") or []:
        yield child
        yield from _walk_parts(child)


class GmailAdapter(ChannelAdapter):
    channel_name = "email"

    def parse_incoming(
        self,
        payload: Mapping[str, Any],
        headers: Mapping[str, str] | None = None,
    ) -> Iterable[NormalizedMessage]:
        return [self.to_normalized(payload)]

    def to_normalized(self, message: Mapping[str, Any]) -> NormalizedMessage:
        """Convert one Gmail message resource into a normalized message."""

        message_id = message.get("id")
        if not message_id:
            raise AdapterError("Gmail message has no id")
        payload = message.get("payload") or {}
        headers = payload.get("headers") or []

        from_name, from_email = parse_from_header(_header(headers, "From") or "")
        if not from_email:
            raise AdapterError(f"Gmail message {message_id} has no sender address")
        subject = _header(headers, "Subject") or NO_SUBJECT

        body = self._extract_body(message)
        if body is None:
            raise AdapterError(f"Gmail message {message_id} has no usable body or snippet")

        return NormalizedMessage(
            channel=Channel.EMAIL,
            direction=Direction.INCOMING,
            external_id=str(message_id),
            customer=CustomerFields(full_name=from_name or None, email=from_email),
            message_text=compose_message_text(subject, body),
            attachments=self._extract_attachments(message),
            raw_payload=dict(message),
            received_at=self._received_at(message),
        )

    def from_parsed(
        self,
        *,
        from_email: str,
        subject: str,
        message_id: str,
        body_text: str = "",
        from_name: str | None = None,
        attachments: Iterable[Mapping[str, Any]] = (),
        raw_payload: Mapping[str, Any] | None = None,
    ) -> NormalizedMessage:
        """Build a normalized message from an email parsed by another worker."""

        return NormalizedMessage(
            channel=Channel.EMAIL,
            direction=Direction.INCOMING,
            external_id=message_id,
            customer=CustomerFields(full_name=from_name, email=from_email),
            message_text=compose_message_text(subject or NO_SUBJECT, body_text),
            attachments=[
                Attachment(
                    url=str(item.get("downloadUrl") or item.get("url") or ""),
                    kind=str(item.get("mimeType") or "application/octet-stream"),
                    filename=item.get("filename"),
                )
                for item in attachments
            ],
            raw_payload=dict(raw_payload or {}),
        )

    # Helpers ------------------------------------------------------------------
    @staticmethod
    def _extract_body(message: Mapping[str, Any]) -> str | None:
        payload = message.get("payload") or {}

        direct = (payload.get("body") or {}).get("data")
        if direct:
            decoded = decode_base64url(direct)
            if payload.get("mimeType") == "text/html":
                return strip_html(decoded)
            return decoded

        parts = list(_walk_parts(payload))
        for part in parts:
            data = (part.get("body") or {}).get("data")
            if part.get("mimeType") == "text/plain" and data:
                return decode_base64url(data)
        for part in parts:
            data = (part.get("body") or {}).get("data")
            if part.get("mimeType") == "text/html" and data:
                return strip_html(decode_base64url(data))

        snippet = message.get("snippet")
        if snippet:
            return html.unescape(str(snippet))
        return None

    @staticmethod
    def _extract_attachments(message: Mapping[str, Any]) -> list[Attachment]:
        # Bytes are fetched lazily through the synthetic locator, never here.
        message_id = message.get("id")
        attachments: list[Attachment] = []
        for part in _walk_parts(message.get("payload") or {}):
            filename = part.get("filename")
            attachment_id = (part.get("body") or {}).get("attachmentId")
            if filename and attachment_id:
                attachments.append(
                    Attachment(
                        url=f"{ATTACHMENT_SCHEME}://{message_id}/{attachment_id}",
                        kind=part.get("mimeType") or "application/octet-stream",
                        filename=filename,
                    )
                )
        return attachments

    @staticmethod
    def _received_at(message: Mapping[str, Any]) -> datetime:
        internal_date = message.get("internalDate")
        if internal_date:
            try:
                return datetime.fromtimestamp(int(internal_date) / 1000, tz=timezone.utc)
            except (TypeError, ValueError, OverflowError):
                logger.debug("Ignoring invalid internalDate %r", internal_date)
        return datetime.now(timezone.utc)
