"""Database repository for customers, conversations and messages."""
from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Tuple
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..models import Conversation, Customer, MailboxConnection, Message
from . import schemas
from .errors import (
    ConversationConflictError,
    CustomerConflictError,
    DuplicateMessageError,
    StoreError,
)


SPAM_CATEGORY = "spam_or_ads"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InboxRepository(Protocol):
    """Abstraction for persisting inbox artefacts.

    Every write commits on its own so callers can reason about which steps of
    an ingestion already took effect when a later step fails.
    """

    # Customers
    def find_customer_by_phone(self, phone: str) -> Optional[schemas.CustomerRecord]: ...

    def find_customer_by_email(self, email: str) -> Optional[schemas.CustomerRecord]: ...

    def get_customer(self, customer_id: UUID) -> Optional[schemas.CustomerRecord]: ...

    def create_customer(self, values: Dict[str, Any]) -> schemas.CustomerRecord: ...

    def update_customer(
        self, customer_id: UUID, values: Dict[str, Any]
    ) -> schemas.CustomerRecord: ...

    # Conversations
    def find_open_conversation(
        self, customer_id: UUID
    ) -> Optional[schemas.ConversationRecord]: ...

    def create_conversation(
        self, customer_id: UUID, *, title: str, primary_channel: str
    ) -> schemas.ConversationRecord: ...

    def get_conversation(self, conversation_id: UUID) -> Optional[schemas.ConversationRecord]: ...

    def close_conversation(self, conversation_id: UUID) -> None: ...

    def touch_conversation(self, conversation_id: UUID, *, last_message_at: datetime) -> None: ...

    def set_lead_score(self, conversation_id: UUID, lead_score: str) -> None: ...

    def list_conversations(
        self, *, status: Optional[str], limit: int, offset: int, hide_spam: bool = False
    ) -> Tuple[List[schemas.ConversationListItem], int]: ...

    # Messages
    def find_message_by_external_id(
        self, channel: str, external_id: str
    ) -> Optional[schemas.MessageRecord]: ...

    def insert_message(self, values: Dict[str, Any]) -> schemas.MessageRecord: ...

    def get_message(self, message_id: UUID) -> Optional[schemas.MessageRecord]: ...

    def update_message_enrichment(self, message_id: UUID, values: Dict[str, Any]) -> None: ...

    # Mailbox connections
    def list_active_connections(self) -> List[schemas.MailboxConnectionRecord]: ...

    def add_connection(
        self,
        email_address: str,
        access_token: str,
        refresh_token: Optional[str] = None,
    ) -> schemas.MailboxConnectionRecord: ...

    def mark_connection_synced(self, connection_id: UUID, synced_at: datetime) -> None: ...


class SqlAlchemyInboxRepository:
    """SQLAlchemy implementation of :class:`InboxRepository`."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    # Utility -----------------------------------------------------------------
    @contextmanager
    def _session(self, action: str, *, raise_integrity: bool = False) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            if raise_integrity:
                raise
            raise StoreError(f"Unable to {action}: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            session.rollback()
            raise StoreError(f"Unable to {action}: {exc}") from exc
        finally:
            session.close()

    # Customer operations ------------------------------------------------------
    def find_customer_by_phone(self, phone: str) -> Optional[schemas.CustomerRecord]:
        with self._session("lookup customer by phone") as session:
            row = session.scalars(
                select(Customer).where(Customer.phone == phone).limit(1)
            ).first()
            return schemas.CustomerRecord.model_validate(row) if row else None

    def find_customer_by_email(self, email: str) -> Optional[schemas.CustomerRecord]:
        with self._session("lookup customer by email") as session:
            row = session.scalars(
                select(Customer).where(Customer.email == email.lower()).limit(1)
            ).first()
            return schemas.CustomerRecord.model_validate(row) if row else None

    def get_customer(self, customer_id: UUID) -> Optional[schemas.CustomerRecord]:
        with self._session("load customer") as session:
            row = session.get(Customer, customer_id)
            return schemas.CustomerRecord.model_validate(row) if row else None

    def create_customer(self, values: Dict[str, Any]) -> schemas.CustomerRecord:
        now = _utcnow()
        try:
            with self._session("create customer", raise_integrity=True) as session:
                row = Customer(created_at=now, updated_at=now, **values)
                session.add(row)
                session.flush()
            record = schemas.CustomerRecord.model_validate(row)
        except IntegrityError as exc:
            raise CustomerConflictError(
                "Customer with the same phone or email already exists"
            ) from exc
        return record

    def update_customer(
        self, customer_id: UUID, values: Dict[str, Any]
    ) -> schemas.CustomerRecord:
        try:
            with self._session("update customer", raise_integrity=True) as session:
                row = session.get(Customer, customer_id)
                if row is None:
                    raise StoreError(f"Customer {customer_id} not found")
                for key, value in values.items():
                    setattr(row, key, value)
                row.updated_at = _utcnow()
                session.flush()
                record = schemas.CustomerRecord.model_validate(row)
        except IntegrityError as exc:
            raise CustomerConflictError(
                f"Updating customer {customer_id} collides with another customer"
            ) from exc
        return record

    # Conversation operations --------------------------------------------------
    def find_open_conversation(
        self, customer_id: UUID
    ) -> Optional[schemas.ConversationRecord]:
        with self._session("find open conversation") as session:
            row = session.scalars(
                select(Conversation)
                .where(Conversation.customer_id == customer_id, Conversation.status == "open")
                .order_by(
                    Conversation.last_message_at.desc().nulls_last(),
                    Conversation.created_at.desc(),
                )
                .limit(1)
            ).first()
            return schemas.ConversationRecord.model_validate(row) if row else None

    def create_conversation(
        self, customer_id: UUID, *, title: str, primary_channel: str
    ) -> schemas.ConversationRecord:
        now = _utcnow()
        try:
            with self._session("create conversation", raise_integrity=True) as session:
                row = Conversation(
                    customer_id=customer_id,
                    title=title,
                    primary_channel=primary_channel,
                    status="open",
                    created_at=now,
                    updated_at=now,
                )
                session.add(row)
                session.flush()
                record = schemas.ConversationRecord.model_validate(row)
        except IntegrityError as exc:
            raise ConversationConflictError(
                f"Customer {customer_id} already has an open conversation"
            ) from exc
        return record

    def get_conversation(self, conversation_id: UUID) -> Optional[schemas.ConversationRecord]:
        with self._session("load conversation") as session:
            row = session.get(Conversation, conversation_id)
            return schemas.ConversationRecord.model_validate(row) if row else None

    def close_conversation(self, conversation_id: UUID) -> None:
        with self._session("close conversation") as session:
            session.execute(
                update(Conversation)
                .where(Conversation.id == conversation_id)
                .values(status="closed", updated_at=_utcnow())
            )

    def touch_conversation(self, conversation_id: UUID, *, last_message_at: datetime) -> None:
        with self._session("update conversation recency") as session:
            row = session.get(Conversation, conversation_id)
            if row is None:
                raise StoreError(f"Conversation {conversation_id} not found")
            current = row.last_message_at
            if current is not None and current.tzinfo is None:
                current = current.replace(tzinfo=timezone.utc)
            # Late arrivals must not move the recency marker backwards.
            if current is None or last_message_at > current:
                row.last_message_at = last_message_at
            row.updated_at = _utcnow()

    def set_lead_score(self, conversation_id: UUID, lead_score: str) -> None:
        with self._session("update conversation lead score") as session:
            result = session.execute(
                update(Conversation)
                .where(Conversation.id == conversation_id)
                .values(lead_score=lead_score, updated_at=_utcnow())
            )
            if result.rowcount == 0:
                raise StoreError(f"Conversation {conversation_id} not found")

    def list_conversations(
        self, *, status: Optional[str], limit: int, offset: int, hide_spam: bool = False
    ) -> Tuple[List[schemas.ConversationListItem], int]:
        latest_category = (
            select(Message.ai_category)
            .where(Message.conversation_id == Conversation.id)
            .order_by(Message.created_at.desc())
            .limit(1)
            .correlate(Conversation)
            .scalar_subquery()
        )
        filters = []
        if status is not None:
            filters.append(Conversation.status == status)
        if hide_spam:
            filters.append(or_(latest_category.is_(None), latest_category != SPAM_CATEGORY))

        with self._session("list conversations") as session:
            total = session.scalar(select(func.count(Conversation.id)).where(*filters)) or 0
            rows = session.execute(
                select(Conversation, Customer, latest_category.label("latest_category"))
                .join(Customer, Customer.id == Conversation.customer_id)
                .where(*filters)
                .order_by(
                    Conversation.last_message_at.desc().nulls_last(),
                    Conversation.created_at.desc(),
                )
                .limit(limit)
                .offset(offset)
            ).all()
            items = [
                schemas.ConversationListItem(
                    id=conversation.id,
                    title=conversation.title,
                    status=conversation.status,
                    lead_score=conversation.lead_score,
                    primary_channel=conversation.primary_channel,
                    last_message_at=conversation.last_message_at,
                    created_at=conversation.created_at,
                    latest_category=category,
                    customer=schemas.ConversationCustomer(
                        id=customer.id,
                        full_name=customer.full_name,
                        phone=customer.phone,
                        email=customer.email,
                    ),
                )
                for conversation, customer, category in rows
            ]
        return items, total

    # Message operations -------------------------------------------------------
    def find_message_by_external_id(
        self, channel: str, external_id: str
    ) -> Optional[schemas.MessageRecord]:
        with self._session("lookup message by external id") as session:
            row = session.scalars(
                select(Message)
                .where(Message.channel == channel, Message.external_id == external_id)
                .limit(1)
            ).first()
            return schemas.MessageRecord.model_validate(row) if row else None

    def insert_message(self, values: Dict[str, Any]) -> schemas.MessageRecord:
        try:
            with self._session("insert message", raise_integrity=True) as session:
                row = Message(**values)
                session.add(row)
                session.flush()
                record = schemas.MessageRecord.model_validate(row)
        except IntegrityError as exc:
            external_id = values.get("external_id")
            if external_id and self.find_message_by_external_id(values["channel"], external_id):
                raise DuplicateMessageError(
                    f"Message {values['channel']}:{external_id} already stored"
                ) from exc
            raise StoreError(f"Unable to insert message: {exc}") from exc
        return record

    def get_message(self, message_id: UUID) -> Optional[schemas.MessageRecord]:
        with self._session("load message") as session:
            row = session.get(Message, message_id)
            return schemas.MessageRecord.model_validate(row) if row else None

    def update_message_enrichment(self, message_id: UUID, values: Dict[str, Any]) -> None:
        allowed = {"ai_summary", "ai_category", "ai_urgency", "ai_next_action", "ai_extracted"}
        unexpected = set(values) - allowed
        if unexpected:
            raise ValueError(f"Only enrichment fields may change, got {sorted(unexpected)}")
        with self._session("save enrichment") as session:
            result = session.execute(
                update(Message)
                .where(Message.id == message_id)
                .values(enriched_at=_utcnow(), **values)
            )
            if result.rowcount == 0:
                raise StoreError(f"Message {message_id} not found")

    # Mailbox connections ------------------------------------------------------
    def list_active_connections(self) -> List[schemas.MailboxConnectionRecord]:
        with self._session("list mailbox connections") as session:
            rows = session.scalars(
                select(MailboxConnection)
                .where(MailboxConnection.is_active.is_(True))
                .order_by(MailboxConnection.created_at)
            ).all()
            return [schemas.MailboxConnectionRecord.model_validate(row) for row in rows]

    def add_connection(
        self,
        email_address: str,
        access_token: str,
        refresh_token: Optional[str] = None,
    ) -> schemas.MailboxConnectionRecord:
        with self._session("add mailbox connection") as session:
            row = MailboxConnection(
                email_address=email_address.lower(),
                access_token=access_token,
                refresh_token=refresh_token,
            )
            session.add(row)
            session.flush()
            return schemas.MailboxConnectionRecord.model_validate(row)

    def mark_connection_synced(self, connection_id: UUID, synced_at: datetime) -> None:
        with self._session("stamp mailbox sync") as session:
            session.execute(
                update(MailboxConnection)
                .where(MailboxConnection.id == connection_id)
                .values(last_sync_at=synced_at, updated_at=_utcnow())
            )
