"""MQTT client port and adapters.

Provides MqttPort (Protocol) and two implementations:

- MqttClient — real aiomqtt-based client with reconnection
- MockMqttClient — test double that records calls

Design decisions:

- aiomqtt imported lazily inside MqttClient._connection_loop() so the
  mock works without aiomqtt installed
- Subscriptions tracked internally and restored on every reconnect
- Reconnection uses exponential backoff with jitter, bounded by
  ``reconnect_max_interval``
- Publishing without a live session raises GatewayDisconnected; callers
  that must not block consult ``is_connected`` first
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from fleetsync._errors import GatewayDisconnected
from fleetsync._settings import MqttSettings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

MessageCallback = Callable[[str, str], Awaitable[None]]
"""Async callback receiving (topic, payload) for each inbound message."""

# ---------------------------------------------------------------------------
# Ports (Protocols)
# ---------------------------------------------------------------------------


@runtime_checkable
class MqttPort(Protocol):
    """Port contract for MQTT publish/subscribe."""

    @property
    def is_connected(self) -> bool: ...

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None: ...

    async def subscribe(self, topic: str) -> None: ...


@runtime_checkable
class MqttMessageHandler(Protocol):
    """Adapters that deliver inbound messages to callbacks."""

    def on_message(self, callback: MessageCallback) -> None: ...


@runtime_checkable
class MqttLifecycle(Protocol):
    """Adapters with a background session that must be started/stopped."""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


# ---------------------------------------------------------------------------
# Mock / test-double adapter
# ---------------------------------------------------------------------------


@dataclass
class MockMqttClient:
    """In-memory test double that records MQTT interactions.

    Records publishes and subscriptions for assertion.  Supports
    callback registration and simulated message delivery via
    ``deliver()``.  Set ``connected = False`` to simulate a lost
    session: publishes then raise :class:`GatewayDisconnected`.
    """

    published: list[tuple[str, str, bool, int]] = field(
        default_factory=list,
    )
    subscriptions: list[str] = field(default_factory=list)
    connected: bool = True
    _callbacks: list[MessageCallback] = field(
        default_factory=list,
        init=False,
        repr=False,
    )

    # -- MqttPort methods --------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None:
        """Record a publish call."""
        if not self.connected:
            msg = "MockMqttClient is disconnected"
            raise GatewayDisconnected(msg)
        self.published.append((topic, payload, retain, qos))

    async def subscribe(self, topic: str) -> None:
        """Record a subscribe call."""
        self.subscriptions.append(topic)

    # -- Test helpers -------------------------------------------------------

    def on_message(self, callback: MessageCallback) -> None:
        """Register an inbound-message callback."""
        self._callbacks.append(callback)

    async def deliver(self, topic: str, payload: str) -> None:
        """Simulate an inbound message by invoking all callbacks."""
        for cb in self._callbacks:
            await cb(topic, payload)

    @property
    def publish_count(self) -> int:
        """Number of recorded publishes."""
        return len(self.published)

    def reset(self) -> None:
        """Clear all recorded data and callbacks."""
        self.published.clear()
        self.subscriptions.clear()
        self._callbacks.clear()

    def get_messages_for(
        self,
        topic: str,
    ) -> list[tuple[str, bool, int]]:
        """Return ``(payload, retain, qos)`` tuples for *topic*."""
        return [
            (payload, retain, qos)
            for t, payload, retain, qos in self.published
            if t == topic
        ]


# ---------------------------------------------------------------------------
# Real adapter
# ---------------------------------------------------------------------------


@dataclass
class MqttClient:
    """Production MQTT adapter backed by *aiomqtt*.

    Uses a background task that maintains a persistent connection
    with automatic reconnection.  ``publish`` resolves once the broker
    has acknowledged the message (QoS >= 1); delivery to the device
    itself is never confirmed.
    """

    settings: MqttSettings

    # internal state --------------------------------------------------------
    _callbacks: list[MessageCallback] = field(
        default_factory=list,
        init=False,
        repr=False,
    )
    _subscriptions: set[str] = field(
        default_factory=set,
        init=False,
        repr=False,
    )
    _client: Any = field(default=None, init=False, repr=False)
    _listen_task: asyncio.Task[None] | None = field(
        default=None,
        init=False,
        repr=False,
    )
    _connected: asyncio.Event = field(
        default_factory=asyncio.Event,
        init=False,
        repr=False,
    )
    _stopping: bool = field(default=False, init=False, repr=False)

    # -- MqttPort methods --------------------------------------------------

    @property
    def is_connected(self) -> bool:
        """Whether the client is currently connected to the broker."""
        return self._connected.is_set()

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None:
        """Publish a message to the broker.

        Raises:
            GatewayDisconnected: If there is no live session or the
                transport fails before the broker acknowledges.
        """
        client = self._client
        if client is None or not self.is_connected:
            msg = "MQTT session is not connected"
            raise GatewayDisconnected(msg)
        try:
            await client.publish(topic, payload, retain=retain, qos=qos)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            msg = f"publish to {topic} failed: {exc}"
            raise GatewayDisconnected(msg) from exc
        logger.debug("Published to %s (qos=%d, retain=%s)", topic, qos, retain)

    async def subscribe(self, topic: str) -> None:
        """Subscribe to *topic*.

        The subscription is tracked internally so it can be restored
        after a reconnection.
        """
        self._subscriptions.add(topic)
        if self._client is not None:
            await self._client.subscribe(topic, qos=self.settings.qos)

    # -- Callback registration ---------------------------------------------

    def on_message(self, callback: MessageCallback) -> None:
        """Register a callback for inbound messages."""
        self._callbacks.append(callback)

    # -- Lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Start the background connection loop."""
        if self._listen_task is not None and not self._listen_task.done():
            logger.debug("MqttClient.start() called while already running")
            return
        self._stopping = False
        self._listen_task = asyncio.create_task(self._connection_loop())

    async def stop(self) -> None:
        """Stop the connection loop and clean up.

        Idempotent — safe to call multiple times.
        """
        self._stopping = True
        if self._listen_task is not None:
            self._listen_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listen_task
            self._listen_task = None
        self._client = None
        self._connected.clear()

    async def wait_connected(self, timeout: float | None = None) -> bool:
        """Wait until a session is up; ``False`` on timeout."""
        try:
            await asyncio.wait_for(self._connected.wait(), timeout)
        except TimeoutError:
            return False
        return True

    # -- Internal -----------------------------------------------------------

    def _backoff_delay(self, failures: int) -> float:
        """Exponential backoff with jitter for the *failures*-th retry."""
        base = self.settings.reconnect_interval * (2 ** max(failures - 1, 0))
        capped = min(base, self.settings.reconnect_max_interval)
        return capped * random.uniform(0.5, 1.0)  # noqa: S311

    async def _connection_loop(self) -> None:
        """Maintain a persistent connection with auto-reconnect."""
        try:
            import aiomqtt  # noqa: PLC0415
        except ModuleNotFoundError as exc:
            msg = "aiomqtt is required to use MqttClient"
            raise RuntimeError(msg) from exc

        failures = 0
        while not self._stopping:
            try:
                password: str | None = None
                if self.settings.password is not None:
                    password = self.settings.password.get_secret_value()

                async with aiomqtt.Client(
                    hostname=self.settings.host,
                    port=self.settings.port,
                    username=self.settings.username,
                    password=password,
                    identifier=self.settings.client_id or None,
                    keepalive=self.settings.keepalive,
                ) as client:
                    self._client = client
                    try:
                        for topic in sorted(self._subscriptions):
                            await client.subscribe(topic, qos=self.settings.qos)

                        self._connected.set()
                        failures = 0
                        logger.info(
                            "MQTT connected to %s:%d",
                            self.settings.host,
                            self.settings.port,
                        )

                        async for message in client.messages:
                            await self._dispatch(message)
                    finally:
                        self._connected.clear()
                        self._client = None

            except asyncio.CancelledError:
                raise
            except Exception:
                failures += 1
                delay = self._backoff_delay(failures)
                logger.warning(
                    "MQTT connection lost, reconnecting in %.1fs",
                    delay,
                    exc_info=True,
                )
                await asyncio.sleep(delay)

    async def _dispatch(self, message: Any) -> None:
        """Decode and hand an inbound message to every callback."""
        topic = str(message.topic)

        if message.payload is None:
            logger.debug("Skipping message with None payload on %s", topic)
            return

        payload = (
            message.payload.decode("utf-8", errors="replace")
            if isinstance(message.payload, (bytes, bytearray))
            else str(message.payload)
        )

        for cb in self._callbacks:
            try:
                await cb(topic, payload)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Error in message callback for %s", topic)
