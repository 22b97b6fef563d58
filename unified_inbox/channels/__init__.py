"""Inbound channel adapters, looked up by channel name."""

from __future__ import annotations

from .base import ChannelAdapter
from .gmail import GmailAdapter
from .twilio import TwilioAdapter

_ADAPTERS: dict[str, type[ChannelAdapter]] = {}


def register_adapter(adapter: type[ChannelAdapter]) -> None:
    _ADAPTERS[adapter.channel_name] = adapter


def get_adapter(name: str) -> type[ChannelAdapter]:
    """Return the adapter class for ``name`` (case-insensitive)."""
    try:
        return _ADAPTERS[name.lower()]
    except KeyError:
        raise KeyError(f"No inbound adapter for channel '{name}'") from None


for _adapter in (GmailAdapter, TwilioAdapter):
    register_adapter(_adapter)

__all__ = ["ChannelAdapter", "GmailAdapter", "TwilioAdapter", "get_adapter", "register_adapter"]
