"""Derive summary, category, urgency and lead score for stored messages."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from uuid import UUID

from pydantic import ValidationError

from ..messaging.errors import EnrichmentError, PipelineError
from ..messaging.repository import InboxRepository
from .client import ReasoningClient
from .prompts import build_prompt
from .schemas import EnrichmentResult

logger = logging.getLogger(__name__)


class EnrichmentService:
    """Annotate a message using an external reasoning service.

    :meth:`run` does the work and raises on any failure so it can be tested
    and retried.  :meth:`trigger` is the fire-and-forget boundary: it never
    raises.
    """

    def __init__(
        self,
        repository: InboxRepository,
        client_factory: Callable[[], ReasoningClient | None],
        *,
        business_name: str = "Dovetails Services LLC",
    ) -> None:
        self._repository = repository
        self._client_factory = client_factory
        self._business_name = business_name

    def run(self, message_id: UUID) -> EnrichmentResult | None:
        """Enrich ``message_id``; return ``None`` when no credential is configured."""

        client = self._client_factory()
        if client is None:
            logger.warning("Reasoning service credential missing, skipping enrichment of %s", message_id)
            return None

        message = self._repository.get_message(message_id)
        if message is None:
            raise EnrichmentError(f"Unable to load message {message_id} for enrichment")
        customer = self._repository.get_customer(message.customer_id)
        if customer is None:
            raise EnrichmentError(f"Unable to load customer {message.customer_id} for enrichment")
        conversation = self._repository.get_conversation(message.conversation_id)
        if conversation is None:
            raise EnrichmentError(
                f"Unable to load conversation {message.conversation_id} for enrichment"
            )

        prompt = build_prompt(message, customer, business_name=self._business_name)
        try:
            content = client.complete_json(prompt)
        except PipelineError:
            raise
        except Exception as exc:
            raise EnrichmentError(f"Reasoning service call failed: {exc}") from exc

        result = parse_enrichment(content)
        self._repository.update_message_enrichment(message.id, result.message_fields())
        if result.lead_score:
            self._repository.set_lead_score(conversation.id, result.lead_score)
        logger.info(
            "Enriched message %s: category=%s urgency=%s lead_score=%s",
            message.id,
            result.category,
            result.urgency,
            result.lead_score,
        )
        return result

    def trigger(self, message_id: UUID) -> None:
        """Run enrichment, logging and swallowing every failure."""
        try:
            self.run(message_id)
        except Exception:
            logger.exception("Enrichment failed for message %s", message_id)


def parse_enrichment(content: str) -> EnrichmentResult:
    """Parse and validate the reasoning service's JSON object."""
    try:
        data = json.loads(content)
    except (TypeError, json.JSONDecodeError) as exc:
        raise EnrichmentError(f"Enrichment response is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise EnrichmentError("Enrichment response must be a JSON object")
    try:
        return EnrichmentResult.model_validate(data)
    except ValidationError as exc:
        raise EnrichmentError(f"Enrichment response failed validation: {exc}") from exc
