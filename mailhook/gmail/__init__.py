"""Gmail API client, credentials and pagination."""

from .auth import AuthToken, OAuthFlow, TokenStore, refresh
from .client import GmailClient
from .models import ChangeBatch, ChangeItem, Label, LabelChange, Message, Thread
from .pagination import ListFilter, Page, PageCursor, PageRequest, iterate_pages
from .provisioning import TopicProvisioner

__all__ = [
    "AuthToken",
    "OAuthFlow",
    "TokenStore",
    "refresh",
    "GmailClient",
    "ChangeBatch",
    "ChangeItem",
    "Label",
    "LabelChange",
    "Message",
    "Thread",
    "ListFilter",
    "Page",
    "PageCursor",
    "PageRequest",
    "iterate_pages",
    "TopicProvisioner",
]
