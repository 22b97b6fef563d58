"""Scheduled mailbox polling."""

from .gmail_client import GmailClient
from .worker import MailboxSyncWorker, gmail_client_factory

__all__ = ["GmailClient", "MailboxSyncWorker", "gmail_client_factory"]
