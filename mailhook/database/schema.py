"""SQLAlchemy database schema for per-mailbox sync state."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _utcnow() -> datetime:
    """Current time as naive UTC, the convention for every stored timestamp."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class MailboxState(Base):
    """
    Durable state for a single watched mailbox.

    One row per mailbox holds the OAuth token, the history checkpoint and the
    pending OAuth nonce. Writes are guarded by an optimistic version counter:
    an UPDATE whose version no longer matches raises StaleDataError.

    Attributes:
        mailbox_id: Host-assigned mailbox key (primary key)
        email_address: Provider address, known once the OAuth flow completes
        access_token: Current OAuth access token
        refresh_token: OAuth refresh token
        token_expiry: Access token expiry (naive UTC)
        token_uri: Token endpoint used for refresh
        client_id: OAuth client ID
        client_secret: OAuth client secret
        scopes: JSON array of granted scopes
        history_id: Last fully processed history ID (checkpoint)
        auth_nonce: Random state value for the pending consent redirect
        version: Optimistic concurrency counter
    """

    __tablename__ = 'mailboxes'

    mailbox_id = Column(String, primary_key=True)
    email_address = Column(String, unique=True, nullable=True, index=True)

    # OAuth token
    access_token = Column(String, nullable=True)
    refresh_token = Column(String, nullable=True)
    token_expiry = Column(DateTime, nullable=True)
    token_uri = Column(String, nullable=True)
    client_id = Column(String, nullable=True)
    client_secret = Column(String, nullable=True)
    scopes = Column(JSON, default=list)

    history_id = Column(String, nullable=True)
    auth_nonce = Column(String, nullable=True, index=True)

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    observed_labels = relationship(
        "ObservedLabel", back_populates="mailbox", cascade="all, delete-orphan"
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        """Return string representation."""
        return (
            f"<MailboxState(id={self.mailbox_id}, "
            f"address={self.email_address}, history_id={self.history_id})>"
        )


class ObservedLabel(Base):
    """
    Label whose additions are dispatched as domain events.

    Attributes:
        id: Primary key
        mailbox_id: Foreign key to mailboxes table
        label_id: Provider label ID
        subscribed_at: When the subscription was made
    """

    __tablename__ = 'observed_labels'
    __table_args__ = (
        UniqueConstraint('mailbox_id', 'label_id', name='uq_observed_label'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    mailbox_id = Column(String, ForeignKey('mailboxes.mailbox_id'), nullable=False, index=True)
    label_id = Column(String, nullable=False)
    subscribed_at = Column(DateTime, default=_utcnow, nullable=False)

    mailbox = relationship("MailboxState", back_populates="observed_labels")

    def __repr__(self) -> str:
        """Return string representation."""
        return f"<ObservedLabel(mailbox={self.mailbox_id}, label={self.label_id})>"
