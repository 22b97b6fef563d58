"""Domain models shared by channel adapters and the ingestion pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .errors import AdapterError


class Channel(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    WHATSAPP = "whatsapp"
    WEBFORM = "webform"
    VOICEMAIL = "voicemail"


class Direction(str, Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass
class CustomerFields:
    """Contact facts carried by an inbound message."""

    full_name: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None

    def __post_init__(self) -> None:
        self.full_name = _clean(self.full_name)
        self.phone = _clean(self.phone)
        self.address = _clean(self.address)
        email = _clean(self.email)
        self.email = email.lower() if email else None


@dataclass
class Attachment:
    url: str
    kind: str
    filename: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {"url": self.url, "kind": self.kind, "filename": self.filename}


@dataclass
class NormalizedMessage:
    """Uniform representation of inbound channel messages."""

    channel: Channel
    message_text: str
    customer: CustomerFields = field(default_factory=CustomerFields)
    direction: Direction = Direction.INCOMING
    external_id: str | None = None
    attachments: list[Attachment] = field(default_factory=list)
    raw_payload: dict[str, Any] = field(default_factory=dict)
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        self.channel = Channel(self.channel)
        self.direction = Direction(self.direction)
        self.external_id = _clean(self.external_id)
        if self.received_at.tzinfo is None:
            self.received_at = self.received_at.replace(tzinfo=timezone.utc)

    def validate(self) -> None:
        """Raise :class:`AdapterError` unless identity can be resolved."""

        if self.message_text is None:
            raise AdapterError("Normalized message has no text")
        if not (self.customer.email or self.customer.phone):
            raise AdapterError(
                f"{self.channel.value} message {self.external_id or '<no id>'} "
                "carries neither an email nor a phone number"
            )
