"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest

from fleetsync._clock import ClockPort
from fleetsync._fanout import EventFanout, FanoutEvent
from fleetsync._gateway import MessageGateway
from fleetsync._mqtt import MockMqttClient
from fleetsync._registry import Registry
from fleetsync._store import MemoryDocumentStore
from fleetsync.testing import SyncHarness

# The fleetsync testing plugin is registered via a ``pytest11`` entry
# point (pyproject.toml) for external consumers.  In our own test
# suite we disable it (``-p no:fleetsync``) and load explicitly here
# instead, so that the fleetsync import chain is measured by coverage.
pytest_plugins = ["fleetsync.testing._plugin"]


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests wiring the full service"
    )


# ---------------------------------------------------------------------------
# Core wiring
# ---------------------------------------------------------------------------


@pytest.fixture
def registry(memory_store: MemoryDocumentStore, fake_clock: ClockPort) -> Registry:
    """Registry over an empty in-memory store."""
    return Registry(memory_store, fake_clock)


@pytest.fixture
def fanout() -> EventFanout:
    return EventFanout()


@pytest.fixture
def events(fanout: EventFanout) -> list[FanoutEvent]:
    """Every event broadcast through ``fanout`` during the test."""
    received: list[FanoutEvent] = []
    fanout.add_subscriber("recorder", received.append)
    return received


@pytest.fixture
def gateway(
    mock_mqtt: MockMqttClient,
    registry: Registry,
    fanout: EventFanout,
    fake_clock: ClockPort,
) -> MessageGateway:
    """Gateway in the ``signage`` namespace over the mock transport."""
    return MessageGateway(
        mqtt=mock_mqtt,
        registry=registry,
        fanout=fanout,
        clock=fake_clock,
        namespace="signage",
    )


@pytest.fixture
async def harness() -> AsyncIterator[SyncHarness]:
    """Started SyncHarness, stopped after the test."""
    h = SyncHarness.create(seed=1234)
    await h.start()
    yield h
    await h.stop()
