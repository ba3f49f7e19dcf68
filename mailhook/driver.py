"""Gmail mailbox driver: consent redirect, webhooks, subscriptions and queries."""

import asyncio
import secrets
from collections.abc import AsyncIterator
from typing import Any

from .database import Database
from .errors import CsrfMismatch, Unauthenticated
from .gmail.auth import AuthToken, OAuthFlow, refresh
from .gmail.client import GmailClient
from .gmail.models import Label, Message, Thread
from .gmail.pagination import ListFilter, Page, PageCursor, iterate_pages
from .gmail.provisioning import TopicProvisioner
from .sync.checkpoint import Checkpoint
from .sync.dispatcher import EventChannel, EventDispatcher
from .sync.engine import AdvancePolicy, SyncEngine, SyncResult
from .sync.mailbox import Mailbox
from .utils import Config, get_logger

logger = get_logger(__name__)


class MailboxDriver:
    """
    Entry point the host wires its HTTP endpoints and subscribers to.

    Lifecycle:

    1. ``setup()`` stores a fresh nonce and returns the consent URL.
    2. The user consents; the host passes the redirect query to
       ``handle_redirect()``, which exchanges the code, starts the watch and
       seeds the checkpoint.
    3. Each Pub/Sub push body goes to ``handle_webhook()``.
    4. ``subscribe_label()`` / ``unsubscribe_label()`` decide which label
       additions become events on the channel.

    Example:
        >>> bus = LocalEventBus()
        >>> driver = MailboxDriver.from_config(Config.load(), bus)
        >>> print(await driver.setup())
        >>> bus.listen("Label_12", on_label_added)
        >>> await driver.subscribe_label("Label_12")
    """

    def __init__(
        self,
        mailbox: Mailbox,
        client: GmailClient,
        oauth: OAuthFlow,
        channel: EventChannel,
        topic_name: str,
        provisioner: TopicProvisioner | None = None,
        policy: AdvancePolicy = AdvancePolicy.UNCONDITIONAL
    ):
        """
        Initialize the driver.

        Args:
            mailbox: State bundle of the mailbox
            client: Gmail API client
            oauth: Consent flow for the OAuth client
            channel: Bus receiving label events
            topic_name: Fully qualified Pub/Sub topic for watch notifications
            provisioner: Creates the topic during setup (optional)
            policy: Checkpoint policy on dispatch failure
        """
        self.mailbox = mailbox
        self.client = client
        self.oauth = oauth
        self.topic_name = topic_name
        self.provisioner = provisioner
        self.engine = SyncEngine(
            mailbox,
            client,
            EventDispatcher(channel),
            policy=policy,
            token_source=self._token,
        )
        self._refresh_lock = asyncio.Lock()
        self._messages = PageCursor('messages')
        self._threads = PageCursor('threads')

    @classmethod
    def from_config(
        cls,
        config: Config,
        channel: EventChannel,
        mailbox_id: str = 'primary'
    ) -> 'MailboxDriver':
        """
        Build a driver from configuration.

        Args:
            config: Loaded configuration
            channel: Bus receiving label events
            mailbox_id: Host-assigned mailbox key
        """
        database = Database(config.DATABASE_PATH)
        database.create_tables()

        return cls(
            mailbox=Mailbox(database, mailbox_id),
            client=GmailClient(max_retries=config.API_MAX_RETRIES),
            oauth=OAuthFlow(config.GMAIL_CLIENT_SECRETS_PATH, config.OAUTH_REDIRECT_URI),
            channel=channel,
            topic_name=config.notification_topic,
            provisioner=TopicProvisioner(),
            policy=AdvancePolicy(config.SYNC_ADVANCE_POLICY),
        )

    # ------------------------------------------------------------------
    # Setup and consent
    # ------------------------------------------------------------------

    async def setup(self, provisioning_token: AuthToken | None = None) -> str:
        """
        Prepare the mailbox for the consent flow.

        Args:
            provisioning_token: Credential allowed to create the Pub/Sub
                topic; the topic is left alone when omitted

        Returns:
            Consent URL for the user to visit
        """
        if provisioning_token is not None and self.provisioner is not None:
            await self.provisioner.ensure_topic(provisioning_token, self.topic_name)

        async with self.mailbox.lock:
            nonce = OAuthFlow.new_nonce()
            self.mailbox.auth_nonce = nonce

        url = self.oauth.authorization_url(nonce)
        logger.info(f"Consent URL generated for mailbox {self.mailbox.mailbox_id}")
        return url

    async def handle_redirect(self, query: str) -> Checkpoint:
        """
        Complete the consent flow from the redirect request.

        Args:
            query: Redirect URL or its query string (``code`` and ``state``)

        Returns:
            Checkpoint seeded from the new watch

        Raises:
            CsrfMismatch: If ``state`` does not match the stored nonce
            Unauthenticated: If the redirect carries no authorization code
        """
        code, state = OAuthFlow.parse_redirect(query)

        async with self.mailbox.lock:
            expected = self.mailbox.auth_nonce
            if not expected or not state or not secrets.compare_digest(state, expected):
                logger.warning(f"Rejected consent redirect for {self.mailbox.mailbox_id}")
                raise CsrfMismatch("OAuth state does not match the pending request")
            if not code:
                raise Unauthenticated("Consent redirect carried no authorization code")

            token = await self.oauth.exchange(code)
            self.mailbox.tokens.replace(token)
            self.mailbox.auth_nonce = None

            profile = await self.client.get_profile(token)
            address = profile['emailAddress']
            self.mailbox.email_address = address

            return await self._watch(token, address)

    async def rewatch(self) -> Checkpoint:
        """
        Re-register the watch and move the checkpoint to its history ID.

        Needed when the watch lapses and after CheckpointExpired; changes
        between the old checkpoint and the new one are not replayed.
        """
        async with self.mailbox.lock:
            token = await self._token()
            return await self._watch(token, self.mailbox.user_id)

    async def stop_watch(self) -> None:
        """Stop push notifications for the mailbox."""
        token = await self._token()
        await self.client.stop(token, self.mailbox.user_id)

    async def _watch(self, token: AuthToken, address: str) -> Checkpoint:
        response = await self.client.watch(token, address, self.topic_name)
        checkpoint = self.mailbox.checkpoint.advance(str(response['historyId']))
        logger.info(f"Mailbox {self.mailbox.mailbox_id} watching {address}")
        return checkpoint

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    async def _token(self) -> AuthToken:
        """Current token, refreshed first if it has expired."""
        token = self.mailbox.tokens.current()
        if not token.expired:
            return token

        async with self._refresh_lock:
            token = self.mailbox.tokens.current()
            if not token.expired:
                return token
            return await self._refresh(token)

    async def _refresh(self, token: AuthToken) -> AuthToken:
        refreshed = await asyncio.to_thread(refresh, token)
        self.mailbox.tokens.replace(refreshed, expected=token)
        return self.mailbox.tokens.current()

    async def refresh_token(self) -> AuthToken:
        """Force a token refresh and store the result."""
        async with self._refresh_lock:
            return await self._refresh(self.mailbox.tokens.current())

    # ------------------------------------------------------------------
    # Webhook and subscriptions
    # ------------------------------------------------------------------

    async def handle_webhook(self, body: Any) -> SyncResult:
        """Process one Pub/Sub push body."""
        return await self.engine.process_notification(body)

    async def subscribe_label(self, label_id: str) -> bool:
        """Dispatch events when this label is added to a message."""
        async with self.mailbox.lock:
            return self.mailbox.subscriptions.subscribe(label_id)

    async def unsubscribe_label(self, label_id: str) -> bool:
        """Stop dispatching events for this label."""
        async with self.mailbox.lock:
            return self.mailbox.subscriptions.unsubscribe(label_id)

    async def subscribe_label_named(self, name: str) -> Label | None:
        """
        Subscribe to a label by display name.

        Returns:
            The label, or None if the mailbox has no label with that name
        """
        label = await self.label_with_name(name)
        if label is not None:
            await self.subscribe_label(label.id)
        return label

    def subscribed_labels(self) -> set[str]:
        return self.mailbox.subscriptions.all()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def message(self, message_id: str) -> Message:
        token = await self._token()
        return await self.client.get_message(token, self.mailbox.user_id, message_id)

    async def messages_page(self, list_filter: ListFilter | None = None) -> Page:
        """First page of a message listing."""
        request = self._messages.first_page((list_filter or ListFilter()).to_args())
        token = await self._token()
        return await self.client.list_messages(token, self.mailbox.user_id, request)

    async def next_messages_page(
        self,
        previous: Page,
        list_filter: ListFilter | None = None
    ) -> Page | None:
        """
        Page after ``previous``, or None when the listing is exhausted.

        ``list_filter`` is the caller's current filter; it is not taken from
        the previous page.
        """
        request = self._messages.next_page(previous, (list_filter or ListFilter()).to_args())
        if request is None:
            return None
        token = await self._token()
        return await self.client.list_messages(token, self.mailbox.user_id, request)

    async def iter_messages(self, list_filter: ListFilter | None = None) -> AsyncIterator[Page]:
        """Every page of a message listing."""
        async for page in iterate_pages(
            self._list_messages, self._messages, (list_filter or ListFilter()).to_args()
        ):
            yield page

    async def _list_messages(self, request) -> Page:
        token = await self._token()
        return await self.client.list_messages(token, self.mailbox.user_id, request)

    async def thread(self, thread_id: str) -> Thread:
        token = await self._token()
        return await self.client.get_thread(token, self.mailbox.user_id, thread_id)

    async def threads_page(self, list_filter: ListFilter | None = None) -> Page:
        """First page of a thread listing."""
        request = self._threads.first_page((list_filter or ListFilter()).to_args())
        token = await self._token()
        return await self.client.list_threads(token, self.mailbox.user_id, request)

    async def next_threads_page(
        self,
        previous: Page,
        list_filter: ListFilter | None = None
    ) -> Page | None:
        """Page after ``previous``, or None when the listing is exhausted."""
        request = self._threads.next_page(previous, (list_filter or ListFilter()).to_args())
        if request is None:
            return None
        token = await self._token()
        return await self.client.list_threads(token, self.mailbox.user_id, request)

    async def label(self, label_id: str) -> Label:
        token = await self._token()
        return await self.client.get_label(token, self.mailbox.user_id, label_id)

    async def labels(self) -> list[Label]:
        token = await self._token()
        return await self.client.list_labels(token, self.mailbox.user_id)

    async def label_with_name(self, name: str) -> Label | None:
        """Find a label by display name, None if absent."""
        for label in await self.labels():
            if label.name == name and label.id:
                return label
        return None
