"""Device registration, configuration and control.

Devices come into existence two ways:

- **Explicit registration** by an operator — :meth:`DeviceService.register`.
  The device starts offline until its first telemetry arrives.
- **Handshake** from the device itself —
  :meth:`DeviceService.register_from_handshake`.  An upsert keyed by the
  device's own id; a returning device keeps the configuration stored
  on the server, including its orientation.

Telemetry never creates devices (see :mod:`fleetsync._gateway`).
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from pydantic import BaseModel, ConfigDict

from fleetsync._clock import ClockPort
from fleetsync._gateway import MessageGateway
from fleetsync._messages import CONTROL_COMMANDS, Command, CommandEnvelope
from fleetsync._models import (
    Device,
    DeviceConfig,
    DeviceConfigPatch,
    DeviceStatus,
    Orientation,
)
from fleetsync._registry import Registry

logger = logging.getLogger(__name__)


class DeviceUpdate(BaseModel):
    """Operator-editable device fields."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    location: str | None = None
    address: str | None = None


class DeviceService:
    """Operator-facing device operations."""

    def __init__(
        self,
        *,
        registry: Registry,
        gateway: MessageGateway,
        clock: ClockPort,
    ) -> None:
        self._registry = registry
        self._gateway = gateway
        self._clock = clock

    async def register(
        self,
        name: str,
        location: str = "",
        address: str | None = None,
        config: DeviceConfig | dict[str, Any] | None = None,
        device_id: str | None = None,
    ) -> Device:
        """Create a device record.

        Raises:
            ConflictError: If *device_id* is already taken.
        """
        device = Device(
            id=device_id or uuid.uuid4().hex,
            name=name,
            location=location,
            address=address,
            config=DeviceConfig.model_validate(config or {}),
        )
        created = await self._registry.create_device(device)
        logger.info("Registered device %s (%s)", created.id, name, extra={"device_id": created.id})
        return created

    async def register_from_handshake(
        self,
        device_id: str,
        hostname: str,
        address: str | None = None,
        orientation: Orientation | None = None,
        platform: str | None = None,
        version: str | None = None,
    ) -> tuple[Device, bool]:
        """Create or refresh a device announcing itself.

        Returns:
            The stored device and whether it was newly created.
        """
        now = self._clock.now()
        existing = await self._registry.find_device(device_id)
        if existing is None:
            device = Device(
                id=device_id,
                name=hostname,
                address=address,
                platform=platform,
                version=version,
                status=DeviceStatus.ONLINE,
                last_heartbeat=now,
                config=DeviceConfig(orientation=orientation or "landscape"),
            )
            created = await self._registry.create_device(device)
            logger.info(
                "Auto-registered device %s (%s)",
                device_id,
                hostname,
                extra={"device_id": device_id},
            )
            return created, True

        patch: dict[str, Any] = {
            "status": DeviceStatus.ONLINE,
            "last_heartbeat": now,
        }
        if address is not None:
            patch["address"] = address
        if platform is not None:
            patch["platform"] = platform
        if version is not None:
            patch["version"] = version
        updated = await self._registry.update_device(device_id, patch, rev=existing.rev)
        logger.info("Device %s reconnected", device_id, extra={"device_id": device_id})
        return updated, False

    async def get(self, device_id: str) -> Device:
        return await self._registry.get_device(device_id)

    async def list(self, status: DeviceStatus | None = None) -> list[Device]:
        return await self._registry.list_devices(status)

    async def update(self, device_id: str, patch: DeviceUpdate | dict[str, Any]) -> Device:
        """Change name, location or address.

        Raises:
            pydantic.ValidationError: If *patch* names other fields.
        """
        fields = DeviceUpdate.model_validate(patch).model_dump(exclude_none=True)
        return await self._registry.update_device(device_id, fields)

    async def delete(self, device_id: str) -> None:
        """Delete the device record.

        Content assignments that reference it are left in place.
        """
        await self._registry.delete_device(device_id)

    async def update_config(
        self,
        device_id: str,
        patch: DeviceConfigPatch | dict[str, Any],
    ) -> Device:
        """Merge a configuration patch, persist it and send it to the device.

        The registry write is kept even when the publish fails.

        Raises:
            pydantic.ValidationError: If a value is out of range.
            NotFound: If the device is missing.
            GatewayDisconnected: If the command could not be published.
        """
        changes = DeviceConfigPatch.model_validate(patch).model_dump(exclude_none=True)
        device = await self._registry.get_device(device_id)
        config = DeviceConfig.model_validate({**device.config.model_dump(), **changes})
        updated = await self._registry.update_device(
            device_id,
            {"config": config.model_dump()},
            rev=device.rev,
        )
        await self._gateway.update_config(device_id, config.model_dump())
        return updated

    async def control(self, device_id: str, action: str) -> CommandEnvelope:
        """Send a playback or power command.

        Raises:
            ValueError: If *action* is not a control command.
            NotFound: If the device is missing.
            GatewayDisconnected: If there is no MQTT session.
        """
        if action not in CONTROL_COMMANDS:
            msg = f"Invalid action '{action}'"
            raise ValueError(msg)
        await self._registry.get_device(device_id)
        return await self._gateway.publish_command(device_id, Command(action))
