"""Route a resolved customer's message to a conversation thread."""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from . import schemas
from .errors import ConversationConflictError, StoreError
from .models import NormalizedMessage
from .repository import InboxRepository

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New conversation"


class ConversationRouter:
    """Reuse the customer's most recent open conversation or open a new one.

    ``inactivity_timeout`` bounds thread growth: when set, an open
    conversation whose last message is older than the timeout (measured from
    the new message's receipt time) is closed and replaced.  When ``None``
    conversations stay open until an external workflow closes them.

    Storage allows one open conversation per customer.  When a concurrent
    writer opens it first, the losing insert conflicts and the lookup is
    repeated so both messages land in the same thread.
    """

    def __init__(
        self,
        repository: InboxRepository,
        *,
        inactivity_timeout: timedelta | None = None,
        max_attempts: int = 3,
    ) -> None:
        self._repository = repository
        self._max_attempts = max_attempts
        self._inactivity_timeout = inactivity_timeout

    def route(
        self, customer: schemas.CustomerRecord, message: NormalizedMessage
    ) -> schemas.ConversationRecord:
        last_conflict: ConversationConflictError | None = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                return self._find_or_open(customer, message)
            except ConversationConflictError as exc:
                last_conflict = exc
                logger.info(
                    "Open conversation for customer %s created concurrently (attempt %d/%d)",
                    customer.id,
                    attempt,
                    self._max_attempts,
                )
        raise StoreError(
            f"Unable to route message for customer {customer.id} after "
            f"{self._max_attempts} attempts"
        ) from last_conflict

    def _find_or_open(
        self, customer: schemas.CustomerRecord, message: NormalizedMessage
    ) -> schemas.ConversationRecord:
        conversation = self._repository.find_open_conversation(customer.id)
        if conversation is not None and self._is_stale(conversation, message):
            logger.info(
                "Closing conversation %s after inactivity (last message %s)",
                conversation.id,
                conversation.last_message_at,
            )
            self._repository.close_conversation(conversation.id)
            conversation = None
        if conversation is not None:
            return conversation

        created = self._repository.create_conversation(
            customer.id,
            title=customer.full_name or DEFAULT_TITLE,
            primary_channel=message.channel.value,
        )
        logger.info("Opened conversation %s for customer %s", created.id, customer.id)
        return created

    def close(self, conversation_id: UUID) -> None:
        self._repository.close_conversation(conversation_id)

    def _is_stale(
        self, conversation: schemas.ConversationRecord, message: NormalizedMessage
    ) -> bool:
        if self._inactivity_timeout is None or conversation.last_message_at is None:
            return False
        return message.received_at - conversation.last_message_at > self._inactivity_timeout
