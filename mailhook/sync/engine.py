"""Incremental synchronization: change-log replay into label events."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol

from ..errors import DispatchFailed, MalformedNotification
from ..gmail.auth import AuthToken
from ..gmail.models import ChangeBatch
from ..gmail.pagination import Page, PageCursor, PageRequest, iterate_pages
from ..utils import get_logger
from .checkpoint import Checkpoint, history_key
from .dispatcher import DomainEvent, EventDispatcher
from .mailbox import Mailbox
from .notification import Notification, decode_notification

logger = get_logger(__name__)


class SyncState(Enum):
    IDLE = 'idle'
    SYNCING = 'syncing'


class SyncOutcome(Enum):
    """How a notification was handled."""

    DISCARDED = 'discarded'
    BOOTSTRAPPED = 'bootstrapped'
    EMPTY = 'empty'
    SYNCED = 'synced'


class AdvancePolicy(Enum):
    """
    What happens to the checkpoint when some dispatches fail.

    UNCONDITIONAL: iterate the whole batch, advance, then raise DispatchFailed.
        Failed events are not replayed (at most once per checkpoint window).
    REQUIRE_DISPATCH_SUCCESS: stop at the first failure and keep the old
        checkpoint, so the next notification replays the whole batch,
        including events that were already delivered.
    """

    UNCONDITIONAL = 'unconditional'
    REQUIRE_DISPATCH_SUCCESS = 'require_dispatch_success'


@dataclass
class SyncResult:
    """
    Result of processing one notification.

    Attributes:
        outcome: How the notification was handled
        checkpoint: Checkpoint after processing (None if discarded)
        events: Events dispatched successfully, in log order
    """

    outcome: SyncOutcome
    checkpoint: Checkpoint | None = None
    events: list[DomainEvent] = field(default_factory=list)


class ChangeLog(Protocol):
    """Source of change-log pages (GmailClient implements it)."""

    async def list_history(
        self,
        token: AuthToken,
        mailbox_id: str,
        request: PageRequest
    ) -> Page:
        ...


class SyncEngine:
    """
    Turns push notifications into label events for one mailbox.

    Processing a notification:

    1. Decode it; malformed payloads are logged and discarded.
    2. Without a checkpoint, store the notified history ID and stop.
    3. Fetch every change-log record after the checkpoint, following page
       tokens until exhausted; records newer than the notified history ID
       are left for the next notification.
    4. An empty batch leaves the checkpoint untouched.
    5. Otherwise replay the records in log order, dispatching one event per
       subscribed label in each ``labelsAdded`` entry.
    6. Advance the checkpoint to the notified history ID once the whole
       batch has been iterated. A crash before this point replays the batch
       on the next notification (at-least-once delivery).

    Attributes:
        mailbox: State bundle of the mailbox
        change_log: Change-log source
        dispatcher: Event dispatcher
        policy: Checkpoint policy on dispatch failure
        state: IDLE or SYNCING

    Example:
        >>> engine = SyncEngine(mailbox, GmailClient(), EventDispatcher(bus))
        >>> result = await engine.process_notification(request_body)
        >>> result.outcome
        <SyncOutcome.SYNCED: 'synced'>
    """

    def __init__(
        self,
        mailbox: Mailbox,
        change_log: ChangeLog,
        dispatcher: EventDispatcher,
        policy: AdvancePolicy = AdvancePolicy.UNCONDITIONAL,
        token_source: Callable[[], Awaitable[AuthToken]] | None = None
    ):
        """
        Initialize the engine.

        Args:
            mailbox: State bundle of the mailbox
            change_log: Change-log source
            dispatcher: Event dispatcher
            policy: Checkpoint policy on dispatch failure
            token_source: Coroutine function returning a usable token;
                defaults to the mailbox TokenStore
        """
        self.mailbox = mailbox
        self.change_log = change_log
        self.dispatcher = dispatcher
        self.policy = policy
        self.state = SyncState.IDLE
        self._token_source = token_source or self._stored_token
        self._history_cursor = PageCursor('history')

    async def _stored_token(self) -> AuthToken:
        return self.mailbox.tokens.current()

    async def process_notification(self, raw_payload: Any) -> SyncResult:
        """
        Handle one webhook body.

        Args:
            raw_payload: Push envelope, or its base64 data

        Returns:
            SyncResult describing what happened

        Raises:
            Unauthenticated: If no usable credential is stored
            CheckpointExpired: If the checkpoint is too old to resolve
            DispatchFailed: If events could not be delivered (see AdvancePolicy)
        """
        try:
            notification = decode_notification(raw_payload)
        except MalformedNotification as e:
            logger.warning(f"Discarding malformed notification: {e}")
            return SyncResult(SyncOutcome.DISCARDED)

        async with self.mailbox.lock:
            self.state = SyncState.SYNCING
            try:
                return await self._sync(notification)
            finally:
                self.state = SyncState.IDLE

    async def _sync(self, notification: Notification) -> SyncResult:
        address = self.mailbox.email_address
        if address is not None and address != notification.mailbox_id:
            logger.warning(
                f"Discarding notification for {notification.mailbox_id}: "
                f"mailbox {self.mailbox.mailbox_id} is {address}"
            )
            return SyncResult(SyncOutcome.DISCARDED)

        checkpoint = self.mailbox.checkpoint.current()
        if checkpoint is None:
            checkpoint = self.mailbox.checkpoint.advance(notification.history_id)
            logger.info(
                f"Bootstrapped {self.mailbox.mailbox_id} at historyId {notification.history_id}"
            )
            return SyncResult(SyncOutcome.BOOTSTRAPPED, checkpoint)

        if history_key(notification.history_id) <= history_key(checkpoint.history_id):
            logger.debug(
                f"Notification {notification.history_id} is not after "
                f"checkpoint {checkpoint.history_id}"
            )
            return SyncResult(SyncOutcome.EMPTY, checkpoint)

        batch = await self.fetch_changes(checkpoint.history_id, notification.history_id)
        if batch.is_empty:
            logger.debug(f"No changes between {checkpoint.history_id} and {notification.history_id}")
            return SyncResult(SyncOutcome.EMPTY, checkpoint)

        events, failures = await self._replay(batch)

        checkpoint = self.mailbox.checkpoint.advance(notification.history_id)
        if failures:
            logger.error(
                f"{len(failures)} event(s) failed to dispatch; checkpoint advanced "
                f"to {checkpoint.history_id} regardless"
            )
            raise DispatchFailed(failures, checkpoint=checkpoint)

        logger.info(f"Dispatched {len(events)} event(s) from {len(batch)} change record(s)")
        return SyncResult(SyncOutcome.SYNCED, checkpoint, events)

    async def fetch_changes(self, start_history_id: str, end_history_id: str) -> ChangeBatch:
        """
        Collect the change-log records in (start, end].

        Args:
            start_history_id: Checkpoint to read after
            end_history_id: Last history ID to include

        Returns:
            Records in log order
        """
        filter_args = {'startHistoryId': start_history_id}
        records: list[dict[str, Any]] = []

        async for page in iterate_pages(self._fetch_page, self._history_cursor, filter_args):
            records.extend(page.items)

        end = history_key(end_history_id)
        start = history_key(start_history_id)
        in_range = [
            record for record in records
            if start < history_key(str(record['id'])) <= end
        ]

        logger.info(
            f"Fetched {len(in_range)} change record(s) for {self.mailbox.mailbox_id} "
            f"({start_history_id} -> {end_history_id})"
        )
        return ChangeBatch.from_history_records(in_range)

    async def _fetch_page(self, request: PageRequest) -> Page:
        token = await self._token_source()
        return await self.change_log.list_history(token, self.mailbox.user_id, request)

    async def _replay(self, batch: ChangeBatch) -> tuple[list[DomainEvent], list]:
        observed = self.mailbox.subscriptions.all()
        events: list[DomainEvent] = []
        failures: list = []

        for item in batch:
            for change in item.labels_added:
                for label_id in change.label_ids:
                    if label_id not in observed:
                        continue

                    event = DomainEvent(label_id=label_id, message_id=change.message_id)
                    try:
                        await self.dispatcher.dispatch(label_id, event)
                    except DispatchFailed as e:
                        failures.extend(e.failures)
                        if self.policy is AdvancePolicy.REQUIRE_DISPATCH_SUCCESS:
                            logger.error(
                                f"Dispatch failed; keeping checkpoint for {self.mailbox.mailbox_id}"
                            )
                            raise DispatchFailed(failures) from e
                        continue

                    events.append(event)

        return events, failures
