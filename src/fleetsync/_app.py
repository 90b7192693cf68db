"""Composition root of the synchronization service.

:class:`SyncService` wires the collaborators together::

    DocumentStore ─► Registry ─┬─► MessageGateway ◄── MqttPort
                               │        │
                               │        └─► EventFanout ◄── LivenessMonitor
                               ├─► AssignmentEngine ─► MessageGateway
                               ├─► DeviceService
                               └─► ContentLibrary

Lifecycle::

    start()  → gateway.connect() → monitor.start()
    stop()   → monitor.stop() ∥ gateway.disconnect() → close owned store

Test doubles (``mqtt``, ``store``, ``clock``) may be injected; the
production adapters are built from settings otherwise.
"""

from __future__ import annotations

import asyncio
import logging
import random
import signal
import uuid
from datetime import datetime

from fleetsync._assignment import AssignmentEngine
from fleetsync._clock import ClockPort, SystemClock
from fleetsync._couchdb import CouchDocumentStore
from fleetsync._dashboard import FleetOverview, build_overview
from fleetsync._devices import DeviceService
from fleetsync._fanout import EventFanout
from fleetsync._gateway import MessageGateway
from fleetsync._health import HealthSnapshot
from fleetsync._library import ContentLibrary
from fleetsync._liveness import LivenessMonitor
from fleetsync._mqtt import MqttClient, MqttPort
from fleetsync._registry import Registry
from fleetsync._settings import Settings
from fleetsync._store import DocumentStore

logger = logging.getLogger(__name__)


def default_client_id() -> str:
    return f"fleetsync-{uuid.uuid4().hex[:8]}"


class SyncService:
    """The running device synchronization core."""

    def __init__(
        self,
        settings: Settings,
        *,
        mqtt: MqttPort | None = None,
        store: DocumentStore | None = None,
        clock: ClockPort | None = None,
        fanout: EventFanout | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.settings = settings
        self.clock: ClockPort = clock or SystemClock()

        if mqtt is None:
            mqtt_settings = settings.mqtt
            if not mqtt_settings.client_id:
                mqtt_settings = mqtt_settings.model_copy(
                    update={"client_id": default_client_id()},
                )
            mqtt = MqttClient(mqtt_settings)
        self.mqtt = mqtt

        self._owned_store: CouchDocumentStore | None = None
        if store is None:
            self._owned_store = CouchDocumentStore(settings.couchdb)
            store = self._owned_store
        self.store = store

        self.fanout = fanout or EventFanout()
        self.registry = Registry(store, self.clock)
        self.gateway = MessageGateway(
            mqtt=self.mqtt,
            registry=self.registry,
            fanout=self.fanout,
            clock=self.clock,
            namespace=settings.mqtt.namespace,
            qos=settings.mqtt.qos,
        )
        self.assignments = AssignmentEngine(
            registry=self.registry,
            gateway=self.gateway,
            public_base_url=settings.public_base_url,
            rng=rng,
        )
        self.devices = DeviceService(
            registry=self.registry,
            gateway=self.gateway,
            clock=self.clock,
        )
        self.library = ContentLibrary(registry=self.registry, assignments=self.assignments)
        self.monitor = LivenessMonitor(
            registry=self.registry,
            fanout=self.fanout,
            clock=self.clock,
            timeout=settings.liveness.heartbeat_timeout,
            interval=settings.liveness.check_interval,
        )
        self._started_at: datetime | None = None

    # -- Lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Connect the gateway and start liveness monitoring."""
        await self.gateway.connect()
        self.monitor.start()
        self._started_at = self.clock.now()
        logger.info("Synchronization service started")

    async def stop(self) -> None:
        """Stop monitoring and the transport session together.

        In-flight publishes and registry writes are not awaited.
        """
        await asyncio.gather(self.monitor.stop(), self.gateway.disconnect())
        if self._owned_store is not None:
            await self._owned_store.aclose()
        self._started_at = None
        logger.info("Synchronization service stopped")

    async def run(self, shutdown_event: asyncio.Event | None = None) -> None:
        """Run until *shutdown_event* is set (SIGTERM/SIGINT by default)."""
        shutdown_event = self._install_signal_handlers(shutdown_event)
        await self.start()
        try:
            await shutdown_event.wait()
        finally:
            await self.stop()

    def _install_signal_handlers(
        self,
        shutdown_event: asyncio.Event | None,
    ) -> asyncio.Event:
        """Install SIGTERM/SIGINT handlers. Returns the shutdown event."""
        if shutdown_event is not None:
            return shutdown_event
        event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, event.set)
        return event

    # -- Introspection ------------------------------------------------------

    def health(self) -> HealthSnapshot:
        return HealthSnapshot.capture(
            now=self.clock.now(),
            started_at=self._started_at,
            mqtt_connected=self.gateway.is_connected,
        )

    async def overview(self) -> FleetOverview:
        return await build_overview(self.registry, now=self.clock.now())
