"""Error taxonomy for the inbound pipeline.

Only errors that would leave persisted state inconsistent (``StoreError`` and
its subclasses) abort a single message's ingestion; everything else degrades
gracefully at the boundary that catches it.
"""

from __future__ import annotations

from uuid import UUID


class PipelineError(RuntimeError):
    """Base class for every error raised by the inbound pipeline."""


class AdapterError(PipelineError):
    """A provider payload could not be converted into a normalized message."""


class StoreError(PipelineError):
    """A datastore lookup or write failed during ingestion."""


class CustomerConflictError(StoreError):
    """Inserting a customer collided with the phone or email unique index."""


class ConversationConflictError(StoreError):
    """The customer already has an open conversation."""


class DuplicateMessageError(StoreError):
    """A message with the same ``(channel, external_id)`` already exists."""


class ConversationTouchError(StoreError):
    """The message was stored but the conversation recency update failed."""

    def __init__(self, message: str, *, message_id: UUID, conversation_id: UUID) -> None:
        super().__init__(message)
        self.message_id = message_id
        self.conversation_id = conversation_id


class EnrichmentError(PipelineError):
    """Building, calling or parsing the reasoning service response failed."""


class ProviderError(PipelineError):
    """The channel provider API returned an error or could not be reached."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderAckError(ProviderError):
    """Marking a message as seen on the provider failed."""


class CircuitOpenError(PipelineError):
    """A circuit breaker rejected the call without contacting the dependency."""
