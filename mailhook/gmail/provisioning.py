"""Pub/Sub topic provisioning for mailbox watch notifications."""

import asyncio
from typing import Callable

import httplib2
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..utils import get_logger
from .auth import AuthToken

logger = get_logger(__name__)

# google.rpc.Code ALREADY_EXISTS maps to HTTP 409
ALREADY_EXISTS = 409


class TopicProvisioner:
    """
    Creates the Pub/Sub topic Gmail publishes watch notifications to.

    Example:
        >>> provisioner = TopicProvisioner()
        >>> await provisioner.ensure_topic(token, "projects/p/topics/gmail-driver-webhooks")
    """

    def __init__(self, http_factory: Callable[[], httplib2.Http] = httplib2.Http):
        self._http_factory = http_factory
        self.service = build('pubsub', 'v1', http=http_factory(), cache_discovery=False)

    async def ensure_topic(self, token: AuthToken, topic_name: str) -> bool:
        """
        Create the topic unless it already exists.

        Args:
            token: Credential allowed to administer the project's topics
            topic_name: Fully qualified topic name

        Returns:
            True if the topic was created, False if it already existed

        Raises:
            HttpError: For any failure other than the topic already existing
        """
        request = token.apply(
            self.service.projects().topics().create(name=topic_name, body={})
        )
        try:
            await asyncio.to_thread(request.execute, http=self._http_factory())
        except HttpError as e:
            if e.resp.status == ALREADY_EXISTS:
                logger.info(f"Topic already exists: {topic_name}")
                return False
            raise

        logger.info(f"Created topic: {topic_name}")
        return True
