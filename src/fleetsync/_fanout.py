"""Synchronous event fan-out to live observers.

Every inbound transport message and every synthetic state-change event
(e.g. a liveness demotion) is broadcast to all registered subscribers,
typically one per open dashboard connection.

Delivery is synchronous and in registration order.  A subscriber that
raises is logged and skipped; the remaining subscribers still receive
the event.  Subscribers that need to do I/O should hand the event to
their own queue rather than block here.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FanoutEvent:
    """A single broadcast event."""

    topic: str
    payload: Any

    def to_dict(self) -> dict[str, Any]:
        return {"topic": self.topic, "payload": self.payload}


Subscriber = Callable[[FanoutEvent], None]
"""Callback invoked with each broadcast event."""


class EventFanout:
    """Registry of observers keyed by an ephemeral connection id."""

    def __init__(self) -> None:
        self._subscribers: dict[str, Subscriber] = {}

    def add_subscriber(self, subscriber_id: str, callback: Subscriber) -> None:
        """Register *callback* under *subscriber_id*, replacing any previous one."""
        self._subscribers[subscriber_id] = callback
        logger.debug("Subscriber %s added (%d total)", subscriber_id, len(self))

    def remove_subscriber(self, subscriber_id: str) -> None:
        """Remove a subscriber; unknown ids are ignored."""
        if self._subscribers.pop(subscriber_id, None) is not None:
            logger.debug("Subscriber %s removed (%d total)", subscriber_id, len(self))

    def publish(self, topic: str, payload: Any) -> int:
        """Deliver an event to every current subscriber.

        Returns the number of subscribers that received it without
        raising.
        """
        event = FanoutEvent(topic=topic, payload=payload)
        delivered = 0
        for subscriber_id, callback in list(self._subscribers.items()):
            try:
                callback(event)
            except Exception:
                logger.exception("Subscriber %s failed on %s", subscriber_id, topic)
            else:
                delivered += 1
        return delivered

    def __len__(self) -> int:
        return len(self._subscribers)

    def __contains__(self, subscriber_id: object) -> bool:
        return subscriber_id in self._subscribers
