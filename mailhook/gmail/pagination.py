"""Opaque-token pagination shared by every list-style Gmail query."""

from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

# Response key holding the items of each list resource
ITEM_KEYS = {
    'messages': 'messages',
    'threads': 'threads',
    'history': 'history',
    'labels': 'labels',
}


@dataclass(frozen=True)
class ListFilter:
    """
    Caller-facing filter for message and thread listings.

    Attributes:
        label_ids: Only items carrying all of these labels
        query: Gmail search query (e.g. "is:unread from:example.com")
        include_spam_trash: Include SPAM and TRASH items
        page_size: Maximum items per page

    Example:
        >>> ListFilter(label_ids=("INBOX",), page_size=50).to_args()
        {'labelIds': ['INBOX'], 'maxResults': 50}
    """

    label_ids: tuple[str, ...] | None = None
    query: str | None = None
    include_spam_trash: bool | None = None
    page_size: int | None = None

    def to_args(self) -> dict[str, Any]:
        """Gmail request parameters for the set fields."""
        args: dict[str, Any] = {}
        if self.label_ids is not None:
            args['labelIds'] = list(self.label_ids)
        if self.query is not None:
            args['q'] = self.query
        if self.include_spam_trash is not None:
            args['includeSpamTrash'] = self.include_spam_trash
        if self.page_size is not None:
            args['maxResults'] = self.page_size
        return args


@dataclass(frozen=True)
class PageRequest:
    """
    One page request of a logical list query.

    Attributes:
        resource: List resource the request targets ('messages', 'threads', ...)
        filter_args: Request parameters, identical on every page of the query
        page_token: Continuation token from the previous page, None for the first
    """

    resource: str
    filter_args: Mapping[str, Any] = field(default_factory=dict)
    page_token: str | None = None

    def to_params(self) -> dict[str, Any]:
        """Parameters for the Gmail list call."""
        params = dict(self.filter_args)
        if self.page_token is not None:
            params['pageToken'] = self.page_token
        return params


@dataclass(frozen=True)
class Page:
    """
    One page of a list response.

    Attributes:
        resource: List resource the page came from
        items: Raw item dictionaries
        next_page_token: Continuation token, None on the last page
        raw: Full response body
    """

    resource: str
    items: list[dict[str, Any]]
    next_page_token: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_response(cls, resource: str, response: Mapping[str, Any]) -> 'Page':
        """
        Wrap a Gmail list response.

        Args:
            resource: List resource that produced the response
            response: Response body

        Returns:
            Page with the resource's items and continuation token
        """
        key = ITEM_KEYS.get(resource, resource)
        return cls(
            resource=resource,
            items=list(response.get(key) or []),
            next_page_token=response.get('nextPageToken'),
            raw=response,
        )

    @property
    def has_next(self) -> bool:
        return self.next_page_token is not None


class PageCursor:
    """
    Builds page requests for one list resource.

    The continuation token is never inspected: it is copied verbatim from
    the previous response into the next request. Filter arguments always
    come from the caller, so a changed filter starts a new logical query
    instead of continuing the old one.

    Example:
        >>> cursor = PageCursor('messages')
        >>> request = cursor.first_page({'q': 'is:unread'})
        >>> while request is not None:
        ...     page = await client.list_messages(token, 'me', request)
        ...     request = cursor.next_page(page, {'q': 'is:unread'})
    """

    def __init__(self, resource: str):
        self.resource = resource

    def first_page(self, filter_args: Mapping[str, Any]) -> PageRequest:
        """Request for the first page of a query."""
        return PageRequest(self.resource, MappingProxyType(dict(filter_args)))

    def next_page(
        self,
        previous: Page | Mapping[str, Any],
        filter_args: Mapping[str, Any]
    ) -> PageRequest | None:
        """
        Request for the page after ``previous``.

        Args:
            previous: Previous Page, or the raw response body
            filter_args: Current filter of the logical query

        Returns:
            Next request, or None when the previous page carries no token

        Raises:
            ValueError: If ``previous`` belongs to another list resource
        """
        if isinstance(previous, Page):
            if previous.resource != self.resource:
                raise ValueError(
                    f"Cannot continue a '{self.resource}' query with a "
                    f"'{previous.resource}' page token"
                )
            token = previous.next_page_token
        else:
            token = previous.get('nextPageToken')

        if token is None:
            return None

        return PageRequest(self.resource, MappingProxyType(dict(filter_args)), token)


async def iterate_pages(
    fetch: Callable[[PageRequest], Awaitable[Page]],
    cursor: PageCursor,
    filter_args: Mapping[str, Any]
) -> AsyncIterator[Page]:
    """
    Follow a cursor until the upstream stops returning continuation tokens.

    Args:
        fetch: Coroutine function performing one page request
        cursor: Cursor for the list resource
        filter_args: Filter applied to every page

    Yields:
        Pages in upstream order
    """
    request = cursor.first_page(filter_args)
    while request is not None:
        page = await fetch(request)
        yield page
        request = cursor.next_page(page, filter_args)
