"""Public test-support utilities for fleetsync.

Provided symbols:

- :class:`SyncHarness` — SyncService wired to in-memory test doubles.
- :class:`MockMqttClient` — in-memory MQTT double that records calls.
- :class:`MemoryDocumentStore` — revisioned in-memory document store.
- :class:`FakeClock` — settable UTC clock.
- :func:`make_settings` — ``Settings`` factory that ignores the environment.
"""

from fleetsync._mqtt import MockMqttClient
from fleetsync._store import MemoryDocumentStore
from fleetsync.testing._clock import FakeClock
from fleetsync.testing._harness import SyncHarness
from fleetsync.testing._settings import make_settings

__all__ = [
    "FakeClock",
    "MemoryDocumentStore",
    "MockMqttClient",
    "SyncHarness",
    "make_settings",
]
