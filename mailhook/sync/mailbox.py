"""Per-mailbox state bundle shared by the engine and the driver."""

import asyncio

from ..database import Database, MailboxRepository
from ..gmail.auth import TokenStore
from .checkpoint import HistoryCheckpoint
from .subscriptions import SubscriptionRegistry


class Mailbox:
    """
    Everything persisted for one mailbox, plus the lock serializing its
    mutations.

    Exactly one Mailbox (and one SyncEngine) exists per mailbox. Webhook
    processing, subscription changes and credential replacement all run
    under ``lock``; the version column on the stored row rejects writes from
    any other process that raced with us.

    Attributes:
        mailbox_id: Host-assigned mailbox key
        tokens: TokenStore for the mailbox credential
        checkpoint: HistoryCheckpoint for the change log
        subscriptions: SubscriptionRegistry of observed labels
        lock: asyncio.Lock serializing mutations
    """

    def __init__(self, database: Database, mailbox_id: str):
        self.database = database
        self.mailbox_id = mailbox_id
        self.tokens = TokenStore(database, mailbox_id)
        self.checkpoint = HistoryCheckpoint(database, mailbox_id)
        self.subscriptions = SubscriptionRegistry(database, mailbox_id)
        self.lock = asyncio.Lock()

        with database.get_session() as session:
            MailboxRepository(session).get_or_create(mailbox_id)

    @property
    def email_address(self) -> str | None:
        """Provider address, known once the consent redirect completed."""
        with self.database.get_session() as session:
            state = MailboxRepository(session).get(self.mailbox_id)
            return state.email_address if state is not None else None

    @email_address.setter
    def email_address(self, value: str) -> None:
        with self.database.get_session() as session:
            MailboxRepository(session).set_email_address(self.mailbox_id, value)

    @property
    def auth_nonce(self) -> str | None:
        """State value of the pending consent redirect."""
        with self.database.get_session() as session:
            state = MailboxRepository(session).get(self.mailbox_id)
            return state.auth_nonce if state is not None else None

    @auth_nonce.setter
    def auth_nonce(self, value: str | None) -> None:
        with self.database.get_session() as session:
            MailboxRepository(session).set_auth_nonce(self.mailbox_id, value)

    @property
    def user_id(self) -> str:
        """User ID for Gmail calls: the address when known, else 'me'."""
        return self.email_address or 'me'

    def __repr__(self) -> str:
        return f"<Mailbox(id={self.mailbox_id})>"
