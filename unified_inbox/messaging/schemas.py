"""Pydantic schemas for persisted inbox records and API payloads."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Record(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    # SQLite drops tzinfo on the way back; every stored timestamp is UTC.
    @field_validator("*", mode="after")
    @classmethod
    def _assume_utc(cls, value: Any) -> Any:
        if isinstance(value, datetime) and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class CustomerRecord(_Record):
    id: UUID
    full_name: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    source: str | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime


class ConversationRecord(_Record):
    id: UUID
    customer_id: UUID
    title: str
    status: str
    primary_channel: str
    lead_score: str | None = None
    last_message_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class MessageRecord(_Record):
    id: UUID
    conversation_id: UUID
    customer_id: UUID
    channel: str
    direction: str
    external_id: str | None = None
    raw_payload: dict[str, Any] = Field(default_factory=dict)
    message_text: str
    attachments: list[dict[str, Any]] = Field(default_factory=list)
    created_at: datetime
    ai_summary: str | None = None
    ai_category: str | None = None
    ai_urgency: str | None = None
    ai_next_action: str | None = None
    ai_extracted: dict[str, Any] | None = None
    enriched_at: datetime | None = None


class MailboxConnectionRecord(_Record):
    id: UUID
    email_address: str
    access_token: str = Field(repr=False)
    refresh_token: str | None = Field(default=None, repr=False)
    token_expires_at: datetime | None = None
    is_active: bool = True
    last_sync_at: datetime | None = None


class IngestResult(BaseModel):
    customer_id: UUID
    conversation_id: UUID
    message_id: UUID
    duplicate: bool = False


class ConnectionSyncReport(BaseModel):
    email_address: str
    synced: int = 0
    skipped: int = 0
    failed: int = 0
    error: str | None = None


class SyncSummary(BaseModel):
    total_synced: int = 0
    errors: list[str] = Field(default_factory=list)
    connections: list[ConnectionSyncReport] = Field(default_factory=list)
    cancelled: bool = False


class ConversationCustomer(BaseModel):
    id: UUID
    full_name: str | None = None
    phone: str | None = None
    email: str | None = None


class ConversationListItem(BaseModel):
    id: UUID
    title: str
    status: str
    lead_score: str | None = None
    primary_channel: str
    last_message_at: datetime | None = None
    created_at: datetime
    latest_category: str | None = None
    customer: ConversationCustomer


class Pagination(BaseModel):
    page: int
    page_size: int = Field(serialization_alias="pageSize")
    total: int
    has_more: bool = Field(serialization_alias="hasMore")


class ConversationPage(BaseModel):
    conversations: list[ConversationListItem]
    pagination: Pagination
