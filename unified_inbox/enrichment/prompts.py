"""Prompt construction for message enrichment."""

from __future__ import annotations

import json

from ..messaging import schemas as inbox_schemas
from .schemas import CATEGORIES, EXTRACTED_KEYS, LEAD_SCORES, URGENCIES

MAX_MESSAGE_CHARS = 8000


def _value(value: str | None) -> str:
    return value or "Unknown"


def build_prompt(
    message: inbox_schemas.MessageRecord,
    customer: inbox_schemas.CustomerRecord,
    *,
    business_name: str,
) -> str:
    """Render the classification prompt for one stored message."""

    text = (message.message_text or "")[:MAX_MESSAGE_CHARS]
    return f"""
You are the messaging assistant for {business_name}, a small local home services business.

Incoming {message.channel} message:
{json.dumps(text, ensure_ascii=False)}

Customer info:
- Name: {_value(customer.full_name)}
- Email: {_value(customer.email)}
- Phone: {_value(customer.phone)}
- Address: {_value(customer.address)}

IMPORTANT CLASSIFICATION RULES:
- Classify newsletters, ads, cold sales pitches, SaaS tool promotions and generic marketing as "spam_or_ads".
- Only real business messages belong in the main inbox: leads, customer questions, job updates, scheduling, billing.
- Personal, family or internal messages are "internal_or_personal".
- If unsure, use "other".

Return a JSON object with:
- summary: short summary of what the sender wants
- category: one of {json.dumps(list(CATEGORIES))}
- urgency: one of {json.dumps(list(URGENCIES))}
- lead_score: one of {json.dumps(list(LEAD_SCORES))}
- next_action: short suggestion of what the business should do next
- extracted: object with {{{", ".join(EXTRACTED_KEYS)}}}
""".strip()
