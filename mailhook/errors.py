"""Error taxonomy for the mailbox sync core."""


class MailhookError(Exception):
    """Base class for all mailhook errors."""


class Unauthenticated(MailhookError):
    """No usable credential for the mailbox; the OAuth flow must be re-run."""


class MalformedNotification(MailhookError):
    """Webhook payload could not be decoded into a notification."""


class CheckpointExpired(MailhookError):
    """
    Stored history checkpoint is too old for the provider to resolve.

    The caller must re-establish the watch and resynchronize full state.
    """

    def __init__(self, mailbox_id: str, history_id: str):
        super().__init__(
            f"History checkpoint {history_id} for {mailbox_id} is no longer available"
        )
        self.mailbox_id = mailbox_id
        self.history_id = history_id


class StaleCheckpoint(MailhookError):
    """Attempt to move a checkpoint backward."""

    def __init__(self, current: str, attempted: str):
        super().__init__(
            f"Refusing to move checkpoint from {current} back to {attempted}"
        )
        self.current = current
        self.attempted = attempted


class DispatchFailed(MailhookError):
    """
    One or more domain events could not be handed to their channel.

    Attributes:
        failures: List of (event, exception) pairs
        checkpoint: Checkpoint stored despite the failures, if it was advanced
    """

    def __init__(self, failures: list, checkpoint=None):
        self.failures = list(failures)
        self.checkpoint = checkpoint
        labels = sorted({event.label_id for event, _ in self.failures})
        super().__init__(
            f"Failed to dispatch {len(self.failures)} event(s) for labels {labels}"
        )


class CsrfMismatch(MailhookError):
    """OAuth redirect state does not match the stored nonce."""


class ConcurrentModification(MailhookError):
    """Persisted mailbox state changed underneath an optimistic write."""
