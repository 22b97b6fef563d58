"""Base abstractions for inbound channel adapters."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any

from ..messaging.models import NormalizedMessage


class ChannelAdapter(ABC):
    """Abstract base class encapsulating channel-specific behaviour.

    Adapters are pure transforms: they never touch storage or the network, and
    they raise :class:`~unified_inbox.messaging.errors.AdapterError` when a
    payload is structurally unusable so callers can skip that message alone.
    """

    #: Lowercase channel identifier used in routes and the registry.
    channel_name: str

    @abstractmethod
    def parse_incoming(
        self,
        payload: Mapping[str, Any],
        headers: Mapping[str, str] | None = None,
    ) -> Iterable[NormalizedMessage]:
        """Convert a provider payload into normalized messages."""

    def verify_signature(
        self,
        url: str,
        payload: Mapping[str, Any],
        headers: Mapping[str, str],
    ) -> bool:
        """Validate authenticity of a webhook payload.

        Adapters can override this to implement signature checks. The default
        implementation returns ``True``.
        """

        return True
