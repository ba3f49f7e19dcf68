"""Repository layer for mailbox state access."""

from typing import Any

from sqlalchemy.orm import Session

from ..utils import get_logger
from .schema import MailboxState, ObservedLabel

logger = get_logger(__name__)

TOKEN_COLUMNS = (
    'access_token',
    'refresh_token',
    'token_expiry',
    'token_uri',
    'client_id',
    'client_secret',
    'scopes',
)


class MailboxRepository:
    """
    Repository for mailbox state access operations.

    Provides the persisted layout the sync core relies on: token, history
    checkpoint, observed labels and the pending OAuth nonce.

    Attributes:
        session: SQLAlchemy session

    Example:
        >>> from mailhook.database import Database
        >>> db = Database()
        >>> with db.get_session() as session:
        ...     repo = MailboxRepository(session)
        ...     state = repo.get_or_create("primary")
    """

    def __init__(self, session: Session):
        """
        Initialize repository with database session.

        Args:
            session: SQLAlchemy session
        """
        self.session = session

    def get(self, mailbox_id: str) -> MailboxState | None:
        """
        Get mailbox state by ID.

        Args:
            mailbox_id: Host-assigned mailbox key

        Returns:
            MailboxState or None if not found
        """
        return self.session.get(MailboxState, mailbox_id)

    def get_or_create(self, mailbox_id: str) -> MailboxState:
        """
        Get mailbox state, creating an empty row on first use.

        Args:
            mailbox_id: Host-assigned mailbox key

        Returns:
            Existing or newly added MailboxState
        """
        state = self.get(mailbox_id)
        if state is None:
            state = MailboxState(mailbox_id=mailbox_id, scopes=[])
            self.session.add(state)
            self.session.flush()
            logger.info(f"Created mailbox state: {mailbox_id}")
        return state

    def save_token(self, mailbox_id: str, **columns: Any) -> MailboxState:
        """
        Overwrite the stored OAuth token.

        Args:
            mailbox_id: Host-assigned mailbox key
            **columns: Token column values (see TOKEN_COLUMNS)

        Returns:
            Updated MailboxState

        Raises:
            ValueError: If an unknown column is passed
        """
        unknown = set(columns) - set(TOKEN_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown token columns: {sorted(unknown)}")

        state = self.get_or_create(mailbox_id)
        for name in TOKEN_COLUMNS:
            setattr(state, name, columns.get(name))

        logger.debug(f"Saved token for mailbox: {mailbox_id}")
        return state

    def token_columns(self, mailbox_id: str) -> dict[str, Any] | None:
        """
        Get the stored token column values.

        Returns:
            Mapping of token columns, or None when no access token is stored
        """
        state = self.get(mailbox_id)
        if state is None or not state.access_token:
            return None
        return {name: getattr(state, name) for name in TOKEN_COLUMNS}

    def set_history_id(self, mailbox_id: str, history_id: str) -> MailboxState:
        """Overwrite the stored history checkpoint."""
        state = self.get_or_create(mailbox_id)
        state.history_id = history_id
        return state

    def set_email_address(self, mailbox_id: str, email_address: str) -> MailboxState:
        """Record the provider address the mailbox resolved to."""
        state = self.get_or_create(mailbox_id)
        state.email_address = email_address
        return state

    def set_auth_nonce(self, mailbox_id: str, nonce: str | None) -> MailboxState:
        """Store (or clear) the nonce for the pending consent redirect."""
        state = self.get_or_create(mailbox_id)
        state.auth_nonce = nonce
        return state

    def label_ids(self, mailbox_id: str) -> set[str]:
        """
        Get the observed label IDs for a mailbox.

        Returns:
            Set of label IDs
        """
        rows = (
            self.session.query(ObservedLabel.label_id)
            .filter(ObservedLabel.mailbox_id == mailbox_id)
            .all()
        )
        return {row.label_id for row in rows}

    def has_label(self, mailbox_id: str, label_id: str) -> bool:
        """Check whether a label is observed."""
        return (
            self.session.query(ObservedLabel.id)
            .filter(
                ObservedLabel.mailbox_id == mailbox_id,
                ObservedLabel.label_id == label_id
            )
            .first()
        ) is not None

    def add_label(self, mailbox_id: str, label_id: str) -> bool:
        """
        Observe a label.

        Args:
            mailbox_id: Host-assigned mailbox key
            label_id: Provider label ID

        Returns:
            True if the label was added, False if it was already observed
        """
        self.get_or_create(mailbox_id)
        if self.has_label(mailbox_id, label_id):
            return False

        self.session.add(ObservedLabel(mailbox_id=mailbox_id, label_id=label_id))
        self.session.flush()
        return True

    def remove_label(self, mailbox_id: str, label_id: str) -> bool:
        """
        Stop observing a label.

        Returns:
            True if a row was removed
        """
        deleted = (
            self.session.query(ObservedLabel)
            .filter(
                ObservedLabel.mailbox_id == mailbox_id,
                ObservedLabel.label_id == label_id
            )
            .delete(synchronize_session=False)
        )
        return deleted > 0
