"""Message gateway between the MQTT transport and the registry.

The gateway owns the transport session's subscriptions, turns inbound
device telemetry into registry updates, forwards every inbound message
to the :class:`~fleetsync._fanout.EventFanout`, and publishes commands.

Inbound pipeline (per message)::

    raw text ─► JSON decode (raw text on failure)
             ─► TopicRouter ─► strict parse ─► registry update
             ─► EventFanout.publish(topic, payload)   (always)

A failing handler is logged and never stops the subscription loop;
fan-out happens even when the handler failed or the topic is unknown.
Registry timestamps come from the server clock, never from the
device-supplied ``timestamp``.
Heartbeats refresh liveness whatever their body; a body that is not a
valid heartbeat object only loses its metrics.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fleetsync._clock import ClockPort
from fleetsync._errors import GatewayDisconnected, MalformedMessage, NotFound
from fleetsync._fanout import EventFanout
from fleetsync._messages import (
    Command,
    CommandEnvelope,
    CurrentContentMessage,
    ErrorMessage,
    HeartbeatMessage,
    MessageKind,
    PlaylistEntry,
    StatusMessage,
    decode_payload,
    parse_message,
)
from fleetsync._models import DeviceStatus
from fleetsync._mqtt import MqttLifecycle, MqttMessageHandler, MqttPort
from fleetsync._registry import Registry
from fleetsync._router import TopicRouter

logger = logging.getLogger(__name__)

CATCH_ALL = "#"
"""Wildcard subscribed purely so every message reaches the fan-out."""


class MessageGateway:
    """Routes device telemetry into the registry and sends commands."""

    def __init__(
        self,
        *,
        mqtt: MqttPort,
        registry: Registry,
        fanout: EventFanout,
        clock: ClockPort,
        namespace: str,
        qos: int = 1,
    ) -> None:
        self._mqtt = mqtt
        self._registry = registry
        self._fanout = fanout
        self._clock = clock
        self._qos = qos
        self._router = TopicRouter(namespace=namespace)
        self._router.register(MessageKind.STATUS, self._on_status)
        self._router.register(MessageKind.HEARTBEAT, self._on_heartbeat)
        self._router.register(MessageKind.ERROR, self._on_error)
        self._router.register(MessageKind.CURRENT_CONTENT, self._on_current_content)

    @property
    def is_connected(self) -> bool:
        """Whether a transport session is currently up."""
        return self._mqtt.is_connected

    @property
    def subscriptions(self) -> list[str]:
        return [*self._router.subscriptions, CATCH_ALL]

    # -- Lifecycle ----------------------------------------------------------

    async def connect(self) -> None:
        """Subscribe to device telemetry and start the transport session.

        Subscriptions are registered before the session starts; the
        transport re-issues them after every reconnect.
        """
        for topic in self.subscriptions:
            await self._mqtt.subscribe(topic)
        if isinstance(self._mqtt, MqttMessageHandler):
            self._mqtt.on_message(self.handle_message)
        if isinstance(self._mqtt, MqttLifecycle):
            await self._mqtt.start()
        logger.info("Gateway subscribed to %s", ", ".join(self.subscriptions))

    async def disconnect(self) -> None:
        if isinstance(self._mqtt, MqttLifecycle):
            await self._mqtt.stop()
        logger.info("Gateway disconnected")

    # -- Inbound ------------------------------------------------------------

    async def handle_message(self, topic: str, raw: str) -> None:
        """Process one inbound transport message."""
        payload = decode_payload(raw)
        try:
            await self._router.route(topic, payload)
        except asyncio.CancelledError:
            raise
        except MalformedMessage as exc:
            logger.warning("Dropping message: %s", exc)
        except Exception:
            logger.exception("Handler failed for %s", topic)
        self._fanout.publish(topic, payload)

    async def _on_status(self, device_id: str, topic: str, payload: Any) -> None:
        msg = parse_message(topic, StatusMessage, payload)
        status = DeviceStatus.OFFLINE if msg.status == "offline" else DeviceStatus.ONLINE
        patch: dict[str, Any] = {"status": status, "last_heartbeat": self._clock.now()}
        if msg.status == "offline":
            patch["playback_state"] = None
        elif msg.status != "online":
            patch["playback_state"] = msg.status
        if msg.current_content is not None:
            patch["current_content"] = msg.current_content
        if await self._apply(device_id, patch):
            logger.info(
                "Device %s status updated to %s",
                device_id,
                msg.status,
                extra={"device_id": device_id},
            )

    async def _on_heartbeat(self, device_id: str, topic: str, payload: Any) -> None:
        # Arrival alone proves liveness; the body only contributes metrics.
        try:
            msg = parse_message(topic, HeartbeatMessage, payload)
        except MalformedMessage as exc:
            logger.debug("Heartbeat body ignored: %s", exc)
            msg = HeartbeatMessage()
        patch: dict[str, Any] = {
            "status": DeviceStatus.ONLINE,
            "last_heartbeat": self._clock.now(),
        }
        if msg.system_metrics is not None:
            patch["system_metrics"] = msg.system_metrics
        await self._apply(device_id, patch)

    async def _on_error(self, device_id: str, topic: str, payload: Any) -> None:
        msg = parse_message(topic, ErrorMessage, payload)
        logger.warning(
            "Device %s reported error: %s",
            device_id,
            msg.error,
            extra={"device_id": device_id},
        )

    async def _on_current_content(self, device_id: str, topic: str, payload: Any) -> None:
        msg = parse_message(topic, CurrentContentMessage, payload)
        patch = {"current_content": msg.content_id, "last_heartbeat": self._clock.now()}
        if await self._apply(device_id, patch):
            logger.info(
                "Device %s now showing %s",
                device_id,
                msg.content_id,
                extra={"device_id": device_id},
            )

    async def _apply(self, device_id: str, patch: dict[str, Any]) -> bool:
        """Write a telemetry patch; unknown devices are ignored."""
        try:
            await self._registry.update_device(device_id, patch)
        except NotFound:
            logger.debug("Ignoring telemetry from unknown device %s", device_id)
            return False
        return True

    # -- Outbound -----------------------------------------------------------

    async def publish_command(
        self,
        device_id: str,
        command: Command | str,
        payload: dict[str, Any] | None = None,
    ) -> CommandEnvelope:
        """Publish a command envelope to ``{ns}/device/{id}/command``.

        Resolves once the broker has acknowledged the publish.

        Raises:
            GatewayDisconnected: If there is no active session.
        """
        if not self.is_connected:
            msg = f"cannot send '{command}' to {device_id}: no MQTT session"
            raise GatewayDisconnected(msg)
        envelope = CommandEnvelope(
            command=str(command),
            payload=payload or {},
            timestamp=self._clock.now().isoformat(),
        )
        await self._mqtt.publish(
            self._router.command_topic(device_id),
            envelope.to_json(),
            qos=self._qos,
        )
        logger.info(
            "Command %s sent to device %s",
            envelope.command,
            device_id,
            extra={"device_id": device_id},
        )
        return envelope

    async def play(self, device_id: str) -> CommandEnvelope:
        return await self.publish_command(device_id, Command.PLAY)

    async def pause(self, device_id: str) -> CommandEnvelope:
        return await self.publish_command(device_id, Command.PAUSE)

    async def next(self, device_id: str) -> CommandEnvelope:
        return await self.publish_command(device_id, Command.NEXT)

    async def previous(self, device_id: str) -> CommandEnvelope:
        return await self.publish_command(device_id, Command.PREVIOUS)

    async def reboot(self, device_id: str) -> CommandEnvelope:
        return await self.publish_command(device_id, Command.REBOOT)

    async def update_config(
        self,
        device_id: str,
        config: dict[str, Any],
    ) -> CommandEnvelope:
        return await self.publish_command(device_id, Command.UPDATE_CONFIG, config)

    async def update_content(
        self,
        device_id: str,
        playlist: list[PlaylistEntry],
    ) -> CommandEnvelope:
        payload = {"content": [entry.to_dict() for entry in playlist]}
        return await self.publish_command(device_id, Command.UPDATE_CONTENT, payload)
