"""Heartbeat-absence liveness monitor.

State machine per device::

    ONLINE ──(no telemetry for > heartbeat_timeout)──► OFFLINE

The reverse transition only ever happens through inbound telemetry
(see :mod:`fleetsync._gateway`); the monitor never promotes a device.

Each sweep re-reads a candidate right before writing so that a
heartbeat that landed since the query is not overwritten.  A heartbeat
arriving between that re-read and the write can still be lost; the
device corrects itself with its next message.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime, timedelta

from fleetsync._clock import ClockPort
from fleetsync._errors import ConflictError, NotFound
from fleetsync._fanout import EventFanout
from fleetsync._models import Device, DeviceStatus
from fleetsync._registry import Registry

logger = logging.getLogger(__name__)

HEARTBEAT_TIMEOUT_REASON = "heartbeat_timeout"


def status_topic(device_id: str) -> str:
    """Namespace-relative topic of synthetic status events."""
    return f"device/{device_id}/status"


class LivenessMonitor:
    """Periodically demotes silent devices to offline.

    Args:
        registry: Device persistence.
        fanout: Receives one ``device/{id}/status`` event per demotion.
        clock: Wall clock used to age heartbeats.
        timeout: Seconds without telemetry before a device is offline.
        interval: Seconds between sweeps.
    """

    def __init__(
        self,
        *,
        registry: Registry,
        fanout: EventFanout,
        clock: ClockPort,
        timeout: float,
        interval: float,
    ) -> None:
        self._registry = registry
        self._fanout = fanout
        self._clock = clock
        self._timeout = timedelta(seconds=timeout)
        self._interval = interval
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the periodic sweep, replacing any running timer."""
        if self._task is not None:
            self._task.cancel()
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "Liveness monitoring started (timeout=%.0fs, interval=%.0fs)",
            self._timeout.total_seconds(),
            self._interval,
        )

    async def stop(self) -> None:
        """Cancel the timer and wait for it to finish.  Idempotent."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Liveness monitoring stopped")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.sweep()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Liveness sweep failed")

    def _expired(self, device: Device, now: datetime) -> bool:
        if not device.is_online or device.last_heartbeat is None:
            return False
        return now - device.last_heartbeat > self._timeout

    async def sweep(self) -> list[str]:
        """Demote every online device whose heartbeat has expired.

        Returns:
            Ids of the devices transitioned to offline by this sweep.
        """
        now = self._clock.now()
        demoted: list[str] = []
        for device in await self._registry.list_devices(DeviceStatus.ONLINE):
            try:
                if self._expired(device, now) and await self._demote(device.id, now):
                    demoted.append(device.id)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(
                    "Liveness check of %s failed",
                    device.id,
                    extra={"device_id": device.id},
                )
        return demoted

    async def _demote(self, device_id: str, now: datetime) -> bool:
        try:
            current = await self._registry.get_device(device_id)
            if not self._expired(current, now):
                return False
            silent_for = now - current.last_heartbeat  # type: ignore[operator]
            await self._registry.update_device(
                device_id,
                {"status": DeviceStatus.OFFLINE},
                rev=current.rev,
            )
        except (NotFound, ConflictError) as exc:
            logger.info("Skipping liveness demotion of %s: %s", device_id, exc)
            return False

        logger.info(
            "Device %s offline, last heartbeat %ds ago",
            device_id,
            round(silent_for.total_seconds()),
            extra={"device_id": device_id},
        )
        self._fanout.publish(
            status_topic(device_id),
            {
                "status": str(DeviceStatus.OFFLINE),
                "reason": HEARTBEAT_TIMEOUT_REASON,
                "timestamp": now.isoformat(),
            },
        )
        return True
