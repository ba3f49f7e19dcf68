"""Gmail push notifications turned into per-label domain events."""

from .driver import MailboxDriver
from .errors import (
    CheckpointExpired,
    ConcurrentModification,
    CsrfMismatch,
    DispatchFailed,
    MailhookError,
    MalformedNotification,
    StaleCheckpoint,
    Unauthenticated,
)

__version__ = "0.1.0"

__all__ = [
    "MailboxDriver",
    "MailhookError",
    "Unauthenticated",
    "MalformedNotification",
    "CheckpointExpired",
    "StaleCheckpoint",
    "DispatchFailed",
    "CsrfMismatch",
    "ConcurrentModification",
]
