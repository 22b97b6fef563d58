"""Persist normalized messages: identity, conversation, message, enrichment."""

from __future__ import annotations

import logging
from typing import Protocol
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from ..core.settings import Settings
from . import schemas
from .conversations import ConversationRouter
from .errors import ConversationTouchError, DuplicateMessageError, StoreError
from .identity import IdentityResolver
from .models import NormalizedMessage
from .repository import InboxRepository, SqlAlchemyInboxRepository

logger = logging.getLogger(__name__)


class EnrichmentSubmitter(Protocol):
    def submit(self, message_id: UUID) -> None: ...


class IngestionPipeline:
    """Single write path shared by every channel.

    A message counts as ingested once its row is committed.  Recency touch and
    enrichment happen afterwards; a failed touch is surfaced as
    :class:`ConversationTouchError` (the message stays stored) and enrichment
    never affects the outcome.
    """

    def __init__(
        self,
        repository: InboxRepository,
        resolver: IdentityResolver,
        router: ConversationRouter,
        dispatcher: EnrichmentSubmitter | None = None,
    ) -> None:
        self.repository = repository
        self.resolver = resolver
        self.router = router
        self.dispatcher = dispatcher

    def save_normalized_message(self, msg: NormalizedMessage) -> schemas.IngestResult:
        msg.validate()

        if msg.external_id:
            existing = self.repository.find_message_by_external_id(
                msg.channel.value, msg.external_id
            )
            if existing is not None:
                logger.info(
                    "Skipping already stored %s message %s", msg.channel.value, msg.external_id
                )
                return _duplicate(existing)

        customer = self.resolver.resolve(msg.customer, msg.channel)
        conversation = self.router.route(customer, msg)
        try:
            message = self.repository.insert_message(
                {
                    "conversation_id": conversation.id,
                    "customer_id": customer.id,
                    "channel": msg.channel.value,
                    "direction": msg.direction.value,
                    "external_id": msg.external_id,
                    "raw_payload": msg.raw_payload,
                    "message_text": msg.message_text,
                    "attachments": [a.as_dict() for a in msg.attachments],
                    "created_at": msg.received_at,
                }
            )
        except DuplicateMessageError:
            existing = self.repository.find_message_by_external_id(
                msg.channel.value, msg.external_id or ""
            )
            if existing is None:
                raise
            logger.info("Concurrent ingestion of %s message %s", msg.channel.value, msg.external_id)
            return _duplicate(existing)

        try:
            self.repository.touch_conversation(conversation.id, last_message_at=msg.received_at)
        except StoreError as exc:
            raise ConversationTouchError(
                f"Message {message.id} stored but conversation {conversation.id} "
                f"recency update failed: {exc}",
                message_id=message.id,
                conversation_id=conversation.id,
            ) from exc

        self._submit_enrichment(message.id)
        logger.info(
            "Ingested %s message %s into conversation %s",
            msg.channel.value,
            message.id,
            conversation.id,
        )
        return schemas.IngestResult(
            customer_id=customer.id,
            conversation_id=conversation.id,
            message_id=message.id,
        )

    def _submit_enrichment(self, message_id: UUID) -> None:
        if self.dispatcher is None:
            return
        try:
            self.dispatcher.submit(message_id)
        except Exception:
            logger.exception("Could not schedule enrichment for message %s", message_id)


def _duplicate(message: schemas.MessageRecord) -> schemas.IngestResult:
    return schemas.IngestResult(
        customer_id=message.customer_id,
        conversation_id=message.conversation_id,
        message_id=message.id,
        duplicate=True,
    )


def build_pipeline(
    settings: Settings,
    session_factory: sessionmaker[Session],
    dispatcher: EnrichmentSubmitter | None = None,
) -> IngestionPipeline:
    """Wire the default SQLAlchemy-backed pipeline."""
    repository = SqlAlchemyInboxRepository(session_factory)
    return IngestionPipeline(
        repository,
        IdentityResolver(repository),
        ConversationRouter(
            repository, inactivity_timeout=settings.conversation_inactivity_timeout
        ),
        dispatcher,
    )
