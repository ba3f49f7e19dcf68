"""Gmail-specific test fixtures."""

from unittest.mock import MagicMock, patch

import httplib2
import pytest
from googleapiclient.errors import HttpError

from mailhook.gmail.client import GmailClient


@pytest.fixture
def gmail_client():
    """
    GmailClient whose discovery service is a MagicMock.

    Usage:
        def test_something(gmail_client):
            gmail_client.service.users().messages().list().execute.return_value = {...}
    """
    with patch('mailhook.gmail.client.build'):
        client = GmailClient(max_retries=2, initial_delay=0.01)
    client.service = MagicMock()
    return client


@pytest.fixture
def http_error():
    """
    Factory for googleapiclient HttpError with a given status.

    Usage:
        def test_something(http_error):
            raise http_error(404)
    """
    def _create(status: int, content: bytes = b'{"error": {"message": "test"}}') -> HttpError:
        return HttpError(resp=httplib2.Response({'status': status}), content=content)

    return _create


@pytest.fixture
def mock_gmail_message_multipart_nested(sample_gmail_message):
    """Gmail message with nested multipart parts holding two plain-text bodies."""
    message = dict(sample_gmail_message)
    message['payload'] = {
        'mimeType': 'multipart/mixed',
        'headers': sample_gmail_message['payload']['headers'],
        'parts': [
            {
                'mimeType': 'multipart/alternative',
                'parts': [
                    {
                        'mimeType': 'text/plain',
                        'body': {'data': 'Rmlyc3Q='}  # "First"
                    },
                    {
                        'mimeType': 'text/html',
                        'body': {'data': 'PHA+Rmlyc3Q8L3A+'}
                    }
                ]
            },
            {
                'mimeType': 'text/plain; charset="UTF-8"',
                'body': {'data': 'U2Vjb25k'}  # "Second"
            },
            {
                'filename': 'document.pdf',
                'mimeType': 'application/pdf',
                'body': {'attachmentId': 'att123', 'size': 12345}
            }
        ]
    }
    return message
