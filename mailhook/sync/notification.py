"""Decoding of Gmail push notifications delivered through Pub/Sub."""

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any

from ..errors import MalformedNotification


@dataclass(frozen=True)
class Notification:
    """
    Mailbox change announced by a push notification.

    Attributes:
        mailbox_id: Address of the mailbox that changed
        history_id: Latest history ID observed by the provider
    """

    mailbox_id: str
    history_id: str


def _extract_data(payload: Any) -> Any:
    """Find the base64 ``data`` field in a push envelope."""
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode('ascii')

    if isinstance(payload, str):
        stripped = payload.strip()
        if stripped.startswith('{'):
            try:
                payload = json.loads(stripped)
            except json.JSONDecodeError as e:
                raise MalformedNotification(f"Envelope is not valid JSON: {e}") from e
        else:
            return stripped

    if isinstance(payload, dict):
        if isinstance(payload.get('message'), dict):
            payload = payload['message']
        if 'data' not in payload:
            raise MalformedNotification("Envelope has no 'data' field")
        return payload['data']

    raise MalformedNotification(f"Unsupported payload type: {type(payload).__name__}")


def decode_notification(payload: Any) -> Notification:
    """
    Decode a push notification.

    Accepts the Pub/Sub push body (``{"message": {"data": ...}}``) as a dict
    or JSON text, a bare ``{"data": ...}`` mapping, or the base64 data itself.
    Only ``emailAddress`` and ``historyId`` are read.

    Args:
        payload: Webhook body

    Returns:
        Decoded notification

    Raises:
        MalformedNotification: If the payload cannot be decoded

    Example:
        >>> data = base64.b64encode(b'{"emailAddress": "a@b.c", "historyId": 42}')
        >>> decode_notification({"message": {"data": data.decode()}})
        Notification(mailbox_id='a@b.c', history_id='42')
    """
    try:
        data = _extract_data(payload)
        if not isinstance(data, str) or not data:
            raise MalformedNotification("Notification data is empty")

        raw = base64.b64decode(data + '=' * (-len(data) % 4), altchars=b'-_')
        decoded = json.loads(raw.decode('utf-8'))
    except MalformedNotification:
        raise
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise MalformedNotification(f"Could not decode notification data: {e}") from e

    if not isinstance(decoded, dict):
        raise MalformedNotification("Notification data is not a JSON object")

    mailbox_id = decoded.get('emailAddress')
    history_id = decoded.get('historyId')
    if not mailbox_id or history_id in (None, ''):
        raise MalformedNotification("Notification lacks emailAddress or historyId")

    history_id = str(history_id)
    if not history_id.isdigit():
        raise MalformedNotification(f"historyId is not numeric: {history_id}")

    return Notification(mailbox_id=mailbox_id, history_id=history_id)
