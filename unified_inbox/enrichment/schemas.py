"""Strict schema for the reasoning service's enrichment payload."""

from __future__ import annotations

from typing import Any, Literal, get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator

Category = Literal[
    "lead",
    "customer_question",
    "job_update",
    "billing_or_payment",
    "scheduling",
    "internal_or_personal",
    "spam_or_ads",
    "other",
]
Urgency = Literal["low", "normal", "high"]
LeadScore = Literal["A", "B", "C"]

CATEGORIES: tuple[str, ...] = get_args(Category)
URGENCIES: tuple[str, ...] = get_args(Urgency)
LEAD_SCORES: tuple[str, ...] = get_args(LeadScore)
EXTRACTED_KEYS: tuple[str, ...] = ("address", "rooms", "deadline", "budget_hint")


def _text_or_none(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str):
        raise ValueError("expected a string")
    value = value.strip()
    return value or None


def _choice(value: Any, allowed: tuple[str, ...], *, upper: bool = False) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    value = value.upper() if upper else value.lower()
    return value if value in allowed else None


class EnrichmentResult(BaseModel):
    """Validated enrichment fields.

    Unknown or missing enum values degrade to a safe default instead of being
    stored verbatim: ``category`` falls back to ``"other"`` and is never null,
    ``urgency`` and ``lead_score`` fall back to ``None``.  Text fields must be
    strings when present.
    """

    model_config = ConfigDict(extra="ignore")

    summary: str | None = None
    category: Category = "other"
    urgency: Urgency | None = None
    lead_score: LeadScore | None = None
    next_action: str | None = None
    extracted: dict[str, Any] = Field(default_factory=dict)

    @field_validator("summary", "next_action", mode="before")
    @classmethod
    def _validate_text(cls, value: Any) -> str | None:
        return _text_or_none(value)

    @field_validator("category", mode="before")
    @classmethod
    def _validate_category(cls, value: Any) -> str:
        return _choice(value, CATEGORIES) or "other"

    @field_validator("urgency", mode="before")
    @classmethod
    def _validate_urgency(cls, value: Any) -> str | None:
        return _choice(value, URGENCIES)

    @field_validator("lead_score", mode="before")
    @classmethod
    def _validate_lead_score(cls, value: Any) -> str | None:
        return _choice(value, LEAD_SCORES, upper=True)

    @field_validator("extracted", mode="before")
    @classmethod
    def _validate_extracted(cls, value: Any) -> dict[str, Any]:
        if not isinstance(value, dict):
            return {}
        return {str(k): v for k, v in value.items() if v not in (None, "")}

    def message_fields(self) -> dict[str, Any]:
        return {
            "ai_summary": self.summary,
            "ai_category": self.category,
            "ai_urgency": self.urgency,
            "ai_next_action": self.next_action,
            "ai_extracted": self.extracted,
        }
