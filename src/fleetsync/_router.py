"""Device telemetry topic routing.

Extracts the device id and message kind from inbound topics and
dispatches to the handler registered for that kind.

Topic convention::

    {ns}/device/{id}/status            → status report      (routed)
    {ns}/device/{id}/heartbeat         → liveness signal    (routed)
    {ns}/device/{id}/error             → device error       (routed)
    {ns}/device/{id}/content/current   → now-showing pointer (routed)
    {ns}/device/{id}/command           → outbound commands  (not routed)
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from fleetsync._messages import MessageKind

logger = logging.getLogger(__name__)

DeviceHandler = Callable[[str, str, Any], Awaitable[None]]
"""Async handler receiving (device_id, topic, decoded payload)."""


class TopicRouter:
    """Routes device telemetry to per-kind handlers."""

    def __init__(self, *, namespace: str) -> None:
        self._namespace = namespace
        self._handlers: dict[MessageKind, DeviceHandler] = {}

    def register(self, kind: MessageKind, handler: DeviceHandler) -> None:
        """Register the handler for one message kind.

        Raises:
            ValueError: If a handler is already registered for *kind*.
        """
        if kind in self._handlers:
            msg = f"Handler already registered for '{kind}'"
            raise ValueError(msg)
        self._handlers[kind] = handler

    async def route(self, topic: str, payload: Any) -> bool:
        """Dispatch *payload* to the handler matching *topic*.

        Returns ``True`` when a handler ran.  Topics outside the device
        telemetry layout, and kinds without a handler, are ignored.
        """
        parsed = self.parse(topic)
        if parsed is None:
            return False
        device_id, kind = parsed
        handler = self._handlers.get(kind)
        if handler is None:
            logger.debug("No handler registered for %s (topic: %s)", kind, topic)
            return False
        await handler(device_id, topic, payload)
        return True

    def parse(self, topic: str) -> tuple[str, MessageKind] | None:
        """Split *topic* into ``(device_id, kind)``.

        Returns:
            The pair if *topic* matches ``{ns}/device/{id}/{kind}`` for a
            recognised kind, otherwise ``None``.
        """
        prefix = f"{self._namespace}/device/"
        if not topic.startswith(prefix):
            return None
        device_id, sep, suffix = topic[len(prefix) :].partition("/")
        if not sep or not device_id:
            return None
        try:
            return device_id, MessageKind(suffix)
        except ValueError:
            return None

    def command_topic(self, device_id: str) -> str:
        return f"{self._namespace}/device/{device_id}/command"

    @property
    def subscriptions(self) -> list[str]:
        """Wildcard subscriptions covering every registered kind."""
        return [f"{self._namespace}/device/+/{kind}" for kind in self._handlers]
