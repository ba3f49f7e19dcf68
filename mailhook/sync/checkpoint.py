"""Durable cursor into the provider's change log."""

from dataclasses import dataclass

from ..database import Database, MailboxRepository
from ..errors import StaleCheckpoint
from ..utils import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Checkpoint:
    """
    Last fully processed point of a mailbox's change log.

    Attributes:
        history_id: Provider history ID (opaque, monotonically increasing)
        mailbox_id: Host-assigned mailbox key
    """

    history_id: str
    mailbox_id: str


def history_key(history_id: str) -> int:
    """Ordering key for history IDs, which Gmail issues as decimal strings."""
    return int(history_id)


class HistoryCheckpoint:
    """
    Persisted checkpoint for one mailbox.

    The stored value never decreases: advance() rejects a lower history ID
    with StaleCheckpoint, since the upstream log is append-only and going
    backward can only be a caller bug.

    Example:
        >>> checkpoint = HistoryCheckpoint(db, "primary")
        >>> checkpoint.advance("1042")
        >>> checkpoint.current()
        Checkpoint(history_id='1042', mailbox_id='primary')
    """

    def __init__(self, database: Database, mailbox_id: str):
        self.database = database
        self.mailbox_id = mailbox_id

    def current(self) -> Checkpoint | None:
        """Stored checkpoint, or None before the first watch."""
        with self.database.get_session() as session:
            state = MailboxRepository(session).get(self.mailbox_id)
            history_id = state.history_id if state is not None else None

        if history_id is None:
            return None
        return Checkpoint(history_id=history_id, mailbox_id=self.mailbox_id)

    def advance(self, history_id: str) -> Checkpoint:
        """
        Persist a new checkpoint.

        Args:
            history_id: History ID that has been fully processed

        Returns:
            The stored checkpoint

        Raises:
            StaleCheckpoint: If history_id is lower than the stored value
        """
        history_id = str(history_id)

        with self.database.get_session() as session:
            repo = MailboxRepository(session)
            state = repo.get_or_create(self.mailbox_id)
            current = state.history_id

            if current is not None and history_key(history_id) < history_key(current):
                raise StaleCheckpoint(current, history_id)

            if current != history_id:
                repo.set_history_id(self.mailbox_id, history_id)
                logger.info(
                    f"Checkpoint for {self.mailbox_id} advanced: {current} -> {history_id}"
                )

        return Checkpoint(history_id=history_id, mailbox_id=self.mailbox_id)
