"""SQLAlchemy declarative base and inbox models.

This package hosts the SQLAlchemy models backing the unified inbox.  It exposes
a single declarative ``Base`` class that other modules can import when creating
tables.  Individual models live in dedicated modules within this package.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy declarative models."""


# Re-export the inbox models so callers can import them via
# ``from unified_inbox.models import Customer`` instead of touching private modules.
from .inbox import Conversation, Customer, MailboxConnection, Message


__all__ = [
    "Base",
    "Conversation",
    "Customer",
    "MailboxConnection",
    "Message",
]
