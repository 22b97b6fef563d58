"""Resolve inbound contact fields to a single durable customer."""

from __future__ import annotations

import logging
from typing import Any

from . import schemas
from .errors import CustomerConflictError, StoreError
from .models import Channel, CustomerFields
from .repository import InboxRepository

logger = logging.getLogger(__name__)

_MERGE_FIELDS = ("full_name", "email", "phone", "address")


class IdentityResolver:
    """Map a message's contact fields to exactly one customer row.

    Lookup order is phone first, then email.  The application does not lock:
    when two writers race past the lookup for a brand-new contact, the loser's
    insert hits the phone/email unique index and is retried as a merge into
    the winner's row.
    """

    def __init__(self, repository: InboxRepository, *, max_attempts: int = 3) -> None:
        self._repository = repository
        self._max_attempts = max_attempts

    def resolve(self, fields: CustomerFields, channel: Channel) -> schemas.CustomerRecord:
        last_conflict: CustomerConflictError | None = None
        for attempt in range(1, self._max_attempts + 1):
            existing = self._lookup(fields)
            try:
                if existing is not None:
                    return self._merge(existing, fields)
                return self._create(fields, channel)
            except CustomerConflictError as exc:
                last_conflict = exc
                logger.info(
                    "Customer write conflicted (attempt %d/%d), retrying as merge",
                    attempt,
                    self._max_attempts,
                )
        raise StoreError(
            f"Unable to resolve customer after {self._max_attempts} attempts"
        ) from last_conflict

    def _lookup(self, fields: CustomerFields) -> schemas.CustomerRecord | None:
        if fields.phone:
            customer = self._repository.find_customer_by_phone(fields.phone)
            if customer is not None:
                return customer
        if fields.email:
            return self._repository.find_customer_by_email(fields.email)
        return None

    def _create(self, fields: CustomerFields, channel: Channel) -> schemas.CustomerRecord:
        customer = self._repository.create_customer(
            {
                "full_name": fields.full_name,
                "email": fields.email,
                "phone": fields.phone,
                "address": fields.address,
                "source": channel.value,
            }
        )
        logger.info("Created customer %s from %s message", customer.id, channel.value)
        return customer

    def _merge(
        self, existing: schemas.CustomerRecord, fields: CustomerFields
    ) -> schemas.CustomerRecord:
        values = merge_customer_values(existing, fields)
        try:
            return self._repository.update_customer(existing.id, values)
        except CustomerConflictError:
            # The new phone/email already belongs to a different customer; keep
            # the existing keys and merge only the non-identifying facts.
            logger.warning(
                "Contact keys for customer %s collide with another customer; "
                "merging name/address only",
                existing.id,
            )
            values["email"] = existing.email
            values["phone"] = existing.phone
            return self._repository.update_customer(existing.id, values)


def merge_customer_values(
    existing: schemas.CustomerRecord, fields: CustomerFields
) -> dict[str, Any]:
    """New non-null values win; otherwise the stored value is kept."""
    return {
        name: getattr(fields, name) or getattr(existing, name) for name in _MERGE_FIELDS
    }
