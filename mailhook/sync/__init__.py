"""Incremental mailbox synchronization and label event dispatch."""

from .checkpoint import Checkpoint, HistoryCheckpoint
from .dispatcher import DomainEvent, EventChannel, EventDispatcher, LocalEventBus
from .engine import AdvancePolicy, ChangeLog, SyncEngine, SyncOutcome, SyncResult, SyncState
from .mailbox import Mailbox
from .notification import Notification, decode_notification
from .subscriptions import SubscriptionRegistry

__all__ = [
    "Checkpoint",
    "HistoryCheckpoint",
    "DomainEvent",
    "EventChannel",
    "EventDispatcher",
    "LocalEventBus",
    "AdvancePolicy",
    "ChangeLog",
    "SyncEngine",
    "SyncOutcome",
    "SyncResult",
    "SyncState",
    "Mailbox",
    "Notification",
    "decode_notification",
    "SubscriptionRegistry",
]
