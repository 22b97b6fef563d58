"""Inbox SQLAlchemy models.

The tables defined here are the minimal schema surface of the inbound
pipeline: customers, their conversations, the messages inside them and the
mailbox connections polled by the sync worker.  Uniqueness that protects the
pipeline's invariants lives in the indexes, not in application code:

- ``customers.phone`` and ``customers.email`` are unique when not null, so two
  concurrent writers can never create duplicate customers for one contact.
- ``messages (channel, external_id)`` is unique, making re-ingestion of a
  provider message a no-op.
- ``conversations.customer_id`` is unique among open rows, so a customer has
  at most one open conversation even when a webhook and a sync run race.
"""

from __future__ import annotations

import datetime as dt
import uuid
from typing import Any, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from . import Base

_JSON = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> dt.datetime:
    """Return the current UTC timestamp with timezone awareness."""

    return dt.datetime.now(dt.timezone.utc)


def _uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )


class Customer(Base):
    """A durable customer identity shared by every inbound channel.

    Attributes:
        full_name: Display name learned from the most recent message.
        email: Lower-cased e-mail address, unique when present.
        phone: Phone number as sent by the channel, unique when present.
        source: Channel that first created the customer.
        notes: Free-form notes maintained by downstream workflows.
    """

    __tablename__ = "customers"
    __table_args__ = (
        Index(
            "uq_customers_phone",
            "phone",
            unique=True,
            postgresql_where=text("phone IS NOT NULL"),
        ),
        Index(
            "uq_customers_email",
            "email",
            unique=True,
            postgresql_where=text("email IS NOT NULL"),
        ),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    full_name: Mapped[Optional[str]] = mapped_column(String(length=255))
    email: Mapped[Optional[str]] = mapped_column(String(length=320))
    phone: Mapped[Optional[str]] = mapped_column(String(length=64))
    address: Mapped[Optional[str]] = mapped_column(Text)
    source: Mapped[Optional[str]] = mapped_column(String(length=32))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    conversations: Mapped[List["Conversation"]] = relationship(
        back_populates="customer", passive_deletes=True
    )


class Conversation(Base):
    """A thread of messages exchanged with one customer."""

    __tablename__ = "conversations"
    __table_args__ = (
        Index("ix_conversations_customer_status", "customer_id", "status"),
        Index(
            "uq_conversations_open_customer",
            "customer_id",
            unique=True,
            postgresql_where=text("status = 'open'"),
            sqlite_where=text("status = 'open'"),
        ),
        Index("ix_conversations_last_message_at", "last_message_at"),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(length=255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(length=16),
        nullable=False,
        default="open",
        server_default=text("'open'"),
    )
    primary_channel: Mapped[str] = mapped_column(String(length=32), nullable=False)
    lead_score: Mapped[Optional[str]] = mapped_column(String(length=8))
    last_message_at: Mapped[Optional[dt.datetime]] = mapped_column(
        DateTime(timezone=True)
    )
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    customer: Mapped[Customer] = relationship(back_populates="conversations")
    messages: Mapped[List["Message"]] = relationship(
        back_populates="conversation", passive_deletes=True
    )


class Message(Base):
    """Immutable record of one communication plus its enrichment fields."""

    __tablename__ = "messages"
    __table_args__ = (
        Index(
            "uq_messages_channel_external_id",
            "channel",
            "external_id",
            unique=True,
            postgresql_where=text("external_id IS NOT NULL"),
        ),
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
    )
    channel: Mapped[str] = mapped_column(String(length=32), nullable=False)
    direction: Mapped[str] = mapped_column(String(length=16), nullable=False)
    external_id: Mapped[Optional[str]] = mapped_column(String(length=255))
    raw_payload: Mapped[dict[str, Any]] = mapped_column(_JSON, nullable=False, default=dict)
    message_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    attachments: Mapped[list[dict[str, Any]]] = mapped_column(
        _JSON, nullable=False, default=list
    )
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    ai_summary: Mapped[Optional[str]] = mapped_column(Text)
    ai_category: Mapped[Optional[str]] = mapped_column(String(length=32))
    ai_urgency: Mapped[Optional[str]] = mapped_column(String(length=16))
    ai_next_action: Mapped[Optional[str]] = mapped_column(Text)
    ai_extracted: Mapped[Optional[dict[str, Any]]] = mapped_column(_JSON)
    enriched_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True))

    conversation: Mapped[Conversation] = relationship(back_populates="messages")


class MailboxConnection(Base):
    """OAuth credentials for a mailbox polled by the sync worker."""

    __tablename__ = "mailbox_connections"
    __table_args__ = (
        Index("uq_mailbox_connections_email", "email_address", unique=True),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    email_address: Mapped[str] = mapped_column(String(length=320), nullable=False)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[Optional[str]] = mapped_column(Text)
    token_expires_at: Mapped[Optional[dt.datetime]] = mapped_column(
        DateTime(timezone=True)
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )
    last_sync_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
