"""Database models and access layer."""

from .database import Database
from .repository import MailboxRepository
from .schema import MailboxState, ObservedLabel

__all__ = [
    "Database",
    "MailboxState",
    "ObservedLabel",
    "MailboxRepository",
]
