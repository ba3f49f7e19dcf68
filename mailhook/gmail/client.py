"""Async Gmail API client used by the sync engine and the query operations."""

import asyncio
import random
from typing import Any, Callable, Literal

import httplib2
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..errors import CheckpointExpired, Unauthenticated
from ..utils import get_logger
from .auth import AuthToken
from .models import Label, Message, Thread
from .pagination import Page, PageRequest

logger = get_logger(__name__)

RETRYABLE_STATUSES = (429, 500, 502, 503, 504)


class GmailClient:
    """
    Gmail API wrapper with an explicit credential on every call.

    The discovery service is built once without credentials; each request is
    decorated with the caller's AuthToken and executed on a worker thread
    with its own HTTP connection, so concurrent calls for different
    credentials never share state.

    Attributes:
        service: Gmail API service object
        max_retries: Retry bound for history and list calls
        initial_delay: First backoff delay in seconds

    Example:
        >>> client = GmailClient()
        >>> page = await client.list_messages(token, "me", request)
        >>> message = await client.get_message(token, "me", page.items[0]["id"])
    """

    def __init__(
        self,
        max_retries: int = 3,
        initial_delay: float = 1.0,
        http_factory: Callable[[], httplib2.Http] = httplib2.Http
    ):
        """
        Initialize Gmail API client.

        Args:
            max_retries: Maximum retry attempts for history and list calls
            initial_delay: Initial backoff delay in seconds
            http_factory: Creates the transport for each request
        """
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self._http_factory = http_factory
        self.service = build('gmail', 'v1', http=http_factory(), cache_discovery=False)
        logger.info("Gmail API service initialized")

    async def get_profile(self, token: AuthToken, user_id: str = 'me') -> dict[str, Any]:
        """
        Fetch the mailbox profile (address, current history ID).

        Returns:
            Profile resource with ``emailAddress`` and ``historyId``
        """
        return await self._execute(self.service.users().getProfile(userId=user_id), token)

    async def watch(
        self,
        token: AuthToken,
        mailbox_id: str,
        topic_name: str,
        label_ids: list[str] | None = None
    ) -> dict[str, Any]:
        """
        Register a push-notification watch on the mailbox.

        Args:
            token: Credential for the mailbox
            mailbox_id: Mailbox address (or 'me')
            topic_name: Fully qualified Pub/Sub topic
            label_ids: Restrict notifications to these labels

        Returns:
            Watch response with ``historyId`` and ``expiration``
        """
        body: dict[str, Any] = {'topicName': topic_name}
        if label_ids:
            body['labelIds'] = label_ids

        response = await self._execute(
            self.service.users().watch(userId=mailbox_id, body=body), token
        )
        logger.info(f"Watching {mailbox_id} from historyId {response.get('historyId')}")
        return response

    async def stop(self, token: AuthToken, mailbox_id: str) -> None:
        """Cancel push notifications for the mailbox."""
        await self._execute(self.service.users().stop(userId=mailbox_id), token)
        logger.info(f"Stopped watch on {mailbox_id}")

    async def list_history(
        self,
        token: AuthToken,
        mailbox_id: str,
        request: PageRequest
    ) -> Page:
        """
        Fetch one page of the change log.

        Args:
            token: Credential for the mailbox
            mailbox_id: Mailbox address (or 'me')
            request: Page request whose filter carries ``startHistoryId``

        Returns:
            Page of raw history records

        Raises:
            CheckpointExpired: If the start history ID is too old to resolve
        """
        try:
            response = await self._execute(
                self.service.users().history().list(userId=mailbox_id, **request.to_params()),
                token,
                retry=True
            )
        except HttpError as e:
            if e.resp.status == 404:
                raise CheckpointExpired(
                    mailbox_id, str(request.filter_args.get('startHistoryId'))
                ) from e
            raise

        return Page.from_response('history', response)

    async def list_messages(
        self,
        token: AuthToken,
        mailbox_id: str,
        request: PageRequest
    ) -> Page:
        """
        Fetch one page of message references.

        Example:
            >>> cursor = PageCursor('messages')
            >>> page = await client.list_messages(
            ...     token, 'me', cursor.first_page({'q': 'is:unread'})
            ... )
        """
        response = await self._execute(
            self.service.users().messages().list(userId=mailbox_id, **request.to_params()),
            token,
            retry=True
        )
        page = Page.from_response('messages', response)
        logger.debug(f"Listed {len(page.items)} messages (has_more={page.has_next})")
        return page

    async def list_threads(
        self,
        token: AuthToken,
        mailbox_id: str,
        request: PageRequest
    ) -> Page:
        """Fetch one page of thread references."""
        response = await self._execute(
            self.service.users().threads().list(userId=mailbox_id, **request.to_params()),
            token,
            retry=True
        )
        page = Page.from_response('threads', response)
        logger.debug(f"Listed {len(page.items)} threads (has_more={page.has_next})")
        return page

    async def get_message(
        self,
        token: AuthToken,
        mailbox_id: str,
        message_id: str,
        message_format: Literal['full', 'metadata', 'minimal'] = 'full'
    ) -> Message:
        """Fetch and parse a single message."""
        response = await self._execute(
            self.service.users().messages().get(
                userId=mailbox_id, id=message_id, format=message_format
            ),
            token
        )
        return Message.from_gmail_message(response)

    async def get_thread(self, token: AuthToken, mailbox_id: str, thread_id: str) -> Thread:
        """Fetch and parse a thread with its messages."""
        response = await self._execute(
            self.service.users().threads().get(userId=mailbox_id, id=thread_id),
            token
        )
        return Thread.from_gmail_thread(response)

    async def get_label(self, token: AuthToken, mailbox_id: str, label_id: str) -> Label:
        """Fetch a single label."""
        response = await self._execute(
            self.service.users().labels().get(userId=mailbox_id, id=label_id),
            token
        )
        return Label.from_gmail_label(response)

    async def list_labels(self, token: AuthToken, mailbox_id: str) -> list[Label]:
        """Fetch every label of the mailbox."""
        response = await self._execute(
            self.service.users().labels().list(userId=mailbox_id),
            token,
            retry=True
        )
        labels = [Label.from_gmail_label(label) for label in response.get('labels', [])]
        logger.debug(f"Fetched {len(labels)} labels")
        return labels

    async def _execute(self, request, token: AuthToken, retry: bool = False) -> Any:
        """
        Execute an API request with the given credential.

        Args:
            request: Gmail API request object
            token: Credential applied to the request
            retry: Retry 429/5xx responses with exponential backoff and jitter

        Returns:
            API response

        Raises:
            Unauthenticated: On HTTP 401
            HttpError: If the request fails otherwise
        """
        attempts = self.max_retries + 1 if retry else 1
        delay = self.initial_delay

        for attempt in range(attempts):
            token.apply(request)
            try:
                return await asyncio.to_thread(request.execute, http=self._http_factory())

            except HttpError as e:
                status = e.resp.status
                if status == 401:
                    raise Unauthenticated(f"Gmail rejected the credential: {e}") from e

                if retry and status in RETRYABLE_STATUSES and attempt < attempts - 1:
                    wait = delay + random.uniform(0, delay)
                    logger.warning(
                        f"API error {status}, "
                        f"retrying in {wait:.1f}s (attempt {attempt + 1}/{self.max_retries})"
                    )
                    await asyncio.sleep(wait)
                    delay *= 2
                    continue

                raise
