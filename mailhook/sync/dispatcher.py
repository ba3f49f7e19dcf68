"""Fan-out of domain events to the channel registered for each label."""

import inspect
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from ..errors import DispatchFailed
from ..utils import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class DomainEvent:
    """
    A subscribed label was added to a message.

    Attributes:
        label_id: Label that was added
        message_id: Message that gained the label
    """

    label_id: str
    message_id: str


class EventChannel(Protocol):
    """Downstream bus that delivers events to the listeners of a label."""

    async def publish(self, label_id: str, event: DomainEvent) -> int:
        """Deliver an event; returns the number of listeners reached."""
        ...


class LocalEventBus:
    """
    In-process channel: callbacks registered per label.

    Publishing to a label nobody listens to reaches zero listeners and is not
    an error. Callbacks may be plain functions or coroutine functions.

    Example:
        >>> bus = LocalEventBus()
        >>> unlisten = bus.listen("Label_12", handle_event)
        >>> await bus.publish("Label_12", DomainEvent("Label_12", "m1"))
        1
    """

    def __init__(self):
        self._listeners: dict[str, list[Callable[[DomainEvent], Any]]] = defaultdict(list)

    def listen(self, label_id: str, callback: Callable[[DomainEvent], Any]) -> Callable[[], None]:
        """
        Register a callback for a label.

        Returns:
            Function removing the callback again
        """
        self._listeners[label_id].append(callback)

        def unlisten() -> None:
            if callback in self._listeners.get(label_id, []):
                self._listeners[label_id].remove(callback)

        return unlisten

    def listener_count(self, label_id: str) -> int:
        return len(self._listeners.get(label_id, []))

    async def publish(self, label_id: str, event: DomainEvent) -> int:
        listeners = list(self._listeners.get(label_id, []))
        for callback in listeners:
            result = callback(event)
            if inspect.isawaitable(result):
                await result
        return len(listeners)


class EventDispatcher:
    """
    Hands domain events to the channel.

    Delivery is a best-effort broadcast: no listener is fine, but a transport
    failure is reported as DispatchFailed so the sync engine can apply its
    checkpoint policy.
    """

    def __init__(self, channel: EventChannel):
        self.channel = channel

    async def dispatch(self, label_id: str, event: DomainEvent) -> int:
        """
        Deliver one event.

        Args:
            label_id: Label whose listeners receive the event
            event: Event to deliver

        Returns:
            Number of listeners reached

        Raises:
            DispatchFailed: If the channel raised
        """
        try:
            delivered = await self.channel.publish(label_id, event)
        except Exception as e:
            logger.error(f"Dispatch of {event} failed: {e}")
            raise DispatchFailed([(event, e)]) from e

        logger.debug(f"Dispatched {event} to {delivered} listener(s)")
        return delivered
