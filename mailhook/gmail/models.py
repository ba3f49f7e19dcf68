"""Data models for parsing Gmail API responses."""

import base64
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.header import decode_header
from email.utils import parseaddr, parsedate_to_datetime
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class LabelChange:
    """
    Labels added to (or removed from) one message in a history record.

    Attributes:
        message_id: Gmail message ID
        thread_id: Gmail thread ID
        label_ids: Labels that changed, in provider order
    """

    message_id: str
    thread_id: Optional[str]
    label_ids: tuple[str, ...]

    @classmethod
    def from_gmail(cls, entry: Dict[str, Any]) -> 'LabelChange':
        """
        Parse a ``labelsAdded``/``labelsRemoved`` entry.

        Example:
            >>> LabelChange.from_gmail({'message': {'id': 'm1'}, 'labelIds': ['STARRED']})
            LabelChange(message_id='m1', thread_id=None, label_ids=('STARRED',))
        """
        message = entry.get('message', {})
        return cls(
            message_id=message['id'],
            thread_id=message.get('threadId'),
            label_ids=tuple(entry.get('labelIds', [])),
        )


@dataclass(frozen=True)
class MessageChange:
    """
    A message added to or deleted from the mailbox.

    Attributes:
        message_id: Gmail message ID
        thread_id: Gmail thread ID
        label_ids: Labels the message carries
    """

    message_id: str
    thread_id: Optional[str]
    label_ids: tuple[str, ...]

    @classmethod
    def from_gmail(cls, entry: Dict[str, Any]) -> 'MessageChange':
        """Parse a ``messagesAdded``/``messagesDeleted`` entry."""
        message = entry.get('message', {})
        return cls(
            message_id=message['id'],
            thread_id=message.get('threadId'),
            label_ids=tuple(message.get('labelIds', [])),
        )


@dataclass(frozen=True)
class ChangeItem:
    """
    One record of the mailbox change log.

    Attributes:
        history_id: ID of this history record
        labels_added: Label additions, in record order
        labels_removed: Label removals
        messages_added: Newly added messages
        messages_deleted: Deleted messages
    """

    history_id: str
    labels_added: tuple[LabelChange, ...] = ()
    labels_removed: tuple[LabelChange, ...] = ()
    messages_added: tuple[MessageChange, ...] = ()
    messages_deleted: tuple[MessageChange, ...] = ()

    @classmethod
    def from_history_record(cls, record: Dict[str, Any]) -> 'ChangeItem':
        """
        Parse one element of ``users.history.list``'s ``history`` array.

        Example:
            >>> item = ChangeItem.from_history_record({
            ...     'id': '1002',
            ...     'labelsAdded': [{'message': {'id': 'm1'}, 'labelIds': ['Label_7']}],
            ... })
            >>> item.labels_added[0].label_ids
            ('Label_7',)
        """
        return cls(
            history_id=str(record['id']),
            labels_added=tuple(
                LabelChange.from_gmail(e) for e in record.get('labelsAdded', [])
            ),
            labels_removed=tuple(
                LabelChange.from_gmail(e) for e in record.get('labelsRemoved', [])
            ),
            messages_added=tuple(
                MessageChange.from_gmail(e) for e in record.get('messagesAdded', [])
            ),
            messages_deleted=tuple(
                MessageChange.from_gmail(e) for e in record.get('messagesDeleted', [])
            ),
        )


@dataclass(frozen=True)
class ChangeBatch:
    """Ordered change-log records returned for one checkpoint range."""

    items: tuple[ChangeItem, ...] = ()

    @classmethod
    def from_history_records(cls, records: List[Dict[str, Any]]) -> 'ChangeBatch':
        return cls(items=tuple(ChangeItem.from_history_record(r) for r in records))

    @property
    def is_empty(self) -> bool:
        return not self.items

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)


def _decode_body(data: str) -> str:
    """Decode base64url encoded body data."""
    if not data:
        return ''
    try:
        padded = data + '=' * (-len(data) % 4)
        return base64.urlsafe_b64decode(padded).decode('utf-8', errors='replace')
    except (ValueError, TypeError):
        return ''


@dataclass
class Message:
    """
    Message parsed from a Gmail API ``messages.get`` response.

    Attributes:
        message_id: Unique Gmail message ID
        thread_id: Gmail thread ID
        from_address: Sender email address
        from_name: Sender display name
        subject: Subject line
        date: Message date (naive UTC)
        snippet: Short preview text
        labels: Gmail label IDs
        history_id: Last history record that modified the message
        headers: Headers keyed by lower-cased name
        payload: Raw MIME part tree

    Example:
        >>> message = Message.from_gmail_message(response)
        >>> print(message.header("subject"), message.text)
    """

    message_id: str
    thread_id: str
    from_address: str
    from_name: str
    subject: str
    date: Optional[datetime]
    snippet: str
    labels: List[str]
    history_id: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    payload: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_gmail_message(cls, message: Dict[str, Any]) -> 'Message':
        """
        Parse a Gmail API message resource.

        Args:
            message: Message resource from messages().get()

        Returns:
            Parsed Message
        """
        payload = message.get('payload', {})

        headers = {}
        for header in payload.get('headers', []):
            if header and header.get('name'):
                headers[header['name'].lower()] = header.get('value', '')

        from_name, from_address = cls._parse_email_address(headers.get('from', ''))

        return cls(
            message_id=message['id'],
            thread_id=message.get('threadId', ''),
            from_address=from_address,
            from_name=from_name,
            subject=headers.get('subject', ''),
            date=cls._parse_date(headers.get('date', '')),
            snippet=message.get('snippet', ''),
            labels=list(message.get('labelIds', [])),
            history_id=message.get('historyId'),
            headers=headers,
            payload=payload,
        )

    @staticmethod
    def _parse_email_address(address_header: str) -> tuple[str, str]:
        """
        Parse an address header into name and address.

        Example:
            >>> Message._parse_email_address("John Doe <john@example.com>")
            ('John Doe', 'john@example.com')
        """
        if not address_header:
            return '', ''

        name, address = parseaddr(address_header)

        if name:
            name_parts = []
            for part, encoding in decode_header(name):
                if isinstance(part, bytes):
                    name_parts.append(part.decode(encoding or 'utf-8', errors='replace'))
                else:
                    name_parts.append(part)
            name = ''.join(name_parts)

        return name, address

    @staticmethod
    def _parse_date(date_str: str) -> Optional[datetime]:
        """Parse a Date header to a naive UTC datetime, None if unparseable."""
        if not date_str:
            return None
        try:
            dt = parsedate_to_datetime(date_str)
        except (TypeError, ValueError):
            return None
        if dt.tzinfo is not None:
            dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
        return dt

    def header(self, name: str) -> Optional[str]:
        """
        Look up a header value; names are case-insensitive.

        Example:
            >>> message.header("Content-Type")
            'multipart/alternative; boundary="000"'
        """
        return self.headers.get(name.lower())

    @property
    def text(self) -> str:
        """
        Plain-text content of the message.

        Every ``text/plain`` part is decoded and followed by a newline, in the
        order the parts appear in the MIME tree (depth-first, siblings left
        to right).
        """
        chunks: List[str] = []

        def walk(part: Dict[str, Any]) -> None:
            mime_type = part.get('mimeType', '')
            if mime_type.startswith('multipart/'):
                for subpart in part.get('parts', []):
                    walk(subpart)
            elif mime_type.startswith('text/plain'):
                chunks.append(_decode_body(part.get('body', {}).get('data', '')) + '\n')

        if self.payload:
            walk(self.payload)
        return ''.join(chunks)

    def __repr__(self) -> str:
        """Return string representation of message."""
        return (
            f"Message(id={self.message_id[:10]}..., "
            f"from={self.from_address}, "
            f"subject='{self.subject[:50]}')"
        )


@dataclass
class Thread:
    """
    Conversation parsed from ``threads.get``.

    The snippet is copied from the first message so single-thread reads match
    what ``threads.list`` reports.
    """

    thread_id: str
    snippet: str
    history_id: Optional[str]
    messages: List[Message]

    @classmethod
    def from_gmail_thread(cls, thread: Dict[str, Any]) -> 'Thread':
        messages = [Message.from_gmail_message(m) for m in thread.get('messages', [])]
        snippet = messages[0].snippet if messages else thread.get('snippet', '')
        return cls(
            thread_id=thread['id'],
            snippet=snippet,
            history_id=thread.get('historyId'),
            messages=messages,
        )


@dataclass(frozen=True)
class Label:
    """Gmail label resource."""

    id: str
    name: str
    type: str = 'user'
    messages_total: Optional[int] = None
    messages_unread: Optional[int] = None

    @classmethod
    def from_gmail_label(cls, label: Dict[str, Any]) -> 'Label':
        return cls(
            id=label['id'],
            name=label.get('name', ''),
            type=label.get('type', 'user'),
            messages_total=label.get('messagesTotal'),
            messages_unread=label.get('messagesUnread'),
        )

    @property
    def is_system(self) -> bool:
        return self.type == 'system'
