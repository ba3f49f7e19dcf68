"""Durable set of labels whose additions are dispatched as events."""

from ..database import Database, MailboxRepository
from ..utils import get_logger

logger = get_logger(__name__)


class SubscriptionRegistry:
    """
    Set of observed label IDs for one mailbox.

    Every mutation is committed before the method returns.

    Example:
        >>> registry = SubscriptionRegistry(db, "primary")
        >>> registry.subscribe("Label_12")
        >>> registry.is_subscribed("Label_12")
        True
    """

    def __init__(self, database: Database, mailbox_id: str):
        self.database = database
        self.mailbox_id = mailbox_id

    def subscribe(self, label_id: str) -> bool:
        """
        Observe a label. Subscribing twice leaves a single entry.

        Returns:
            True if the label was newly added
        """
        with self.database.get_session() as session:
            added = MailboxRepository(session).add_label(self.mailbox_id, label_id)

        if added:
            logger.info(f"Subscribed to label {label_id} on {self.mailbox_id}")
        else:
            logger.debug(f"Label {label_id} already subscribed on {self.mailbox_id}")
        return added

    def unsubscribe(self, label_id: str) -> bool:
        """
        Stop observing a label; no-op if it is not observed.

        Returns:
            True if the label was removed
        """
        with self.database.get_session() as session:
            removed = MailboxRepository(session).remove_label(self.mailbox_id, label_id)

        if removed:
            logger.info(f"Unsubscribed from label {label_id} on {self.mailbox_id}")
        return removed

    def is_subscribed(self, label_id: str) -> bool:
        with self.database.get_session() as session:
            return MailboxRepository(session).has_label(self.mailbox_id, label_id)

    def all(self) -> set[str]:
        """All observed label IDs."""
        with self.database.get_session() as session:
            return MailboxRepository(session).label_ids(self.mailbox_id)
