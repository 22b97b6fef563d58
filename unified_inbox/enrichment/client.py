"""Reasoning-service clients used by the enrichment stage."""

from __future__ import annotations

import logging
from typing import Protocol

from openai import OpenAI

from ..core.circuit import CircuitBreaker
from ..messaging.errors import EnrichmentError

logger = logging.getLogger(__name__)


class ReasoningClient(Protocol):
    """Single request/response call: text prompt in, JSON object text out."""

    def complete_json(self, prompt: str) -> str: ...


class OpenAIReasoningClient:
    """Chat-completions client constrained to JSON object responses."""

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "gpt-4o-mini",
        timeout: float = 30.0,
        base_url: str | None = None,
        client: OpenAI | None = None,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self.model = model
        self._client = client or OpenAI(
            api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0
        )
        self._breaker = breaker or CircuitBreaker("openai", failure_threshold=5, recovery_timeout=60.0)

    def complete_json(self, prompt: str) -> str:
        response = self._breaker.call(
            self._client.chat.completions.create,
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            response_format={"type": "json_object"},
        )
        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise EnrichmentError("No content returned from the reasoning service")
        return content
