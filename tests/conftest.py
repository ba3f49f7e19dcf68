"""Shared test fixtures for all test modules."""

import base64
import json
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from mailhook.database import Database, MailboxRepository
from mailhook.gmail.auth import AuthToken
from mailhook.gmail.pagination import Page, PageRequest
from mailhook.sync import EventDispatcher, LocalEventBus, Mailbox

# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def temp_db(tmp_path: Path) -> Generator[Database, None, None]:
    """
    Create a temporary test database with schema initialized.

    Usage:
        def test_something(temp_db):
            with temp_db.get_session() as session:
                # Use session
    """
    db = Database(str(tmp_path / "test.db"))
    db.create_tables()

    yield db

    db.dispose()


@pytest.fixture
def repo_session(temp_db: Database):
    """Session wrapped in a MailboxRepository, committed at teardown."""
    with temp_db.get_session() as session:
        yield MailboxRepository(session)


@pytest.fixture
def mailbox(temp_db: Database) -> Mailbox:
    """
    Mailbox 'primary' with no token, checkpoint or subscriptions.

    Usage:
        def test_something(mailbox):
            mailbox.subscriptions.subscribe("Label_1")
    """
    return Mailbox(temp_db, "primary")


# ============================================================================
# Credential Fixtures
# ============================================================================

@pytest.fixture
def auth_token() -> AuthToken:
    """Valid token expiring in an hour."""
    return AuthToken(
        access_token="ya29.access",
        refresh_token="1//refresh",
        expiry=datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(hours=1),
        token_uri="https://oauth2.googleapis.com/token",
        client_id="client-id",
        client_secret="client-secret",
        scopes=("https://www.googleapis.com/auth/gmail.readonly",),
    )


@pytest.fixture
def expired_token(auth_token: AuthToken) -> AuthToken:
    """Token whose access token expired an hour ago."""
    return AuthToken(
        access_token="ya29.stale",
        refresh_token=auth_token.refresh_token,
        expiry=datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(hours=1),
        token_uri=auth_token.token_uri,
        client_id=auth_token.client_id,
        client_secret=auth_token.client_secret,
        scopes=auth_token.scopes,
    )


@pytest.fixture
def authed_mailbox(mailbox: Mailbox, auth_token: AuthToken) -> Mailbox:
    """Mailbox with a stored token and known address."""
    mailbox.tokens.replace(auth_token)
    mailbox.email_address = "user@example.com"
    return mailbox


# ============================================================================
# Notification and Change Log Fixtures
# ============================================================================

@pytest.fixture
def notification_factory():
    """
    Factory for Pub/Sub push bodies.

    Usage:
        def test_something(notification_factory):
            body = notification_factory(history_id=1005)
    """
    def _create(
        history_id: int | str = 1000,
        email_address: str = "user@example.com",
    ) -> dict:
        data = json.dumps({'emailAddress': email_address, 'historyId': history_id})
        return {
            'message': {
                'data': base64.b64encode(data.encode()).decode(),
                'messageId': '2070443601311540',
                'publishTime': '2024-01-01T00:00:00Z',
            },
            'subscription': 'projects/test/subscriptions/gmail-push',
        }

    return _create


@pytest.fixture
def history_record_factory():
    """
    Factory for ``users.history.list`` records.

    Usage:
        def test_something(history_record_factory):
            record = history_record_factory(1001, labels_added=[("m1", ["Label_1"])])
    """
    def _create(
        history_id: int,
        labels_added: list[tuple[str, list[str]]] | None = None,
        labels_removed: list[tuple[str, list[str]]] | None = None,
        messages_added: list[tuple[str, list[str]]] | None = None,
    ) -> dict:
        record: dict = {'id': str(history_id), 'messages': []}
        if labels_added:
            record['labelsAdded'] = [
                {
                    'message': {'id': mid, 'threadId': f't_{mid}', 'labelIds': labels},
                    'labelIds': labels,
                }
                for mid, labels in labels_added
            ]
        if labels_removed:
            record['labelsRemoved'] = [
                {'message': {'id': mid, 'threadId': f't_{mid}'}, 'labelIds': labels}
                for mid, labels in labels_removed
            ]
        if messages_added:
            record['messagesAdded'] = [
                {'message': {'id': mid, 'threadId': f't_{mid}', 'labelIds': labels}}
                for mid, labels in messages_added
            ]
        return record

    return _create


class FakeChangeLog:
    """
    In-memory change log serving pre-built pages.

    Each element of ``pages`` is a list of history records; every page but
    the last carries a continuation token.
    """

    def __init__(self, pages: list[list[dict]] | None = None, error: Exception | None = None):
        self.pages = pages or [[]]
        self.error = error
        self.requests: list[PageRequest] = []
        self.tokens: list[AuthToken] = []

    async def list_history(self, token: AuthToken, mailbox_id: str, request: PageRequest) -> Page:
        self.requests.append(request)
        self.tokens.append(token)
        if self.error is not None:
            raise self.error

        index = 0 if request.page_token is None else int(request.page_token.split('-')[1])
        next_token = f"page-{index + 1}" if index + 1 < len(self.pages) else None
        response = {'history': self.pages[index], 'historyId': '9999'}
        if next_token:
            response['nextPageToken'] = next_token
        return Page.from_response('history', response)


@pytest.fixture
def change_log_factory():
    """Factory for FakeChangeLog instances."""
    return FakeChangeLog


@pytest.fixture
def event_bus() -> LocalEventBus:
    return LocalEventBus()


@pytest.fixture
def recorded_events(event_bus: LocalEventBus):
    """
    Record every event published on the bus, in order.

    Usage:
        def test_something(recorded_events, event_bus):
            ...
            assert recorded_events == [DomainEvent("L", "m1")]
    """
    events = []
    original = event_bus.publish

    async def _publish(label_id, event):
        events.append(event)
        return await original(label_id, event)

    event_bus.publish = _publish
    return events


@pytest.fixture
def dispatcher(event_bus: LocalEventBus) -> EventDispatcher:
    return EventDispatcher(event_bus)


# ============================================================================
# Gmail Payload Fixtures
# ============================================================================

@pytest.fixture
def sample_gmail_message():
    """
    Create a sample Gmail API message structure.

    Usage:
        def test_something(sample_gmail_message):
            message = Message.from_gmail_message(sample_gmail_message)
    """
    return {
        'id': 'msg123',
        'threadId': 'thread123',
        'labelIds': ['INBOX', 'UNREAD'],
        'snippet': 'This is a test email snippet',
        'historyId': '1001',
        'internalDate': '1704067200000',
        'payload': {
            'headers': [
                {'name': 'From', 'value': 'Test Sender <sender@example.com>'},
                {'name': 'To', 'value': 'me@example.com'},
                {'name': 'Subject', 'value': 'Test Email'},
                {'name': 'Date', 'value': 'Mon, 1 Jan 2024 00:00:00 +0000'},
            ],
            'mimeType': 'multipart/alternative',
            'parts': [
                {
                    'mimeType': 'text/plain',
                    'body': {
                        'data': 'VGVzdCBib2R5'  # base64 for "Test body"
                    }
                },
                {
                    'mimeType': 'text/html',
                    'body': {
                        'data': 'PHA+VGVzdCBib2R5PC9wPg=='  # base64 for "<p>Test body</p>"
                    }
                }
            ]
        }
    }
