"""fleetsync.

Device-fleet state synchronization and command dispatch over MQTT and
CouchDB.
"""

from importlib.metadata import PackageNotFoundError, version

from fleetsync._app import SyncService
from fleetsync._assignment import AssignmentEngine
from fleetsync._clock import ClockPort, SystemClock
from fleetsync._couchdb import CouchDocumentStore
from fleetsync._dashboard import DeviceRow, FleetOverview, FleetStats, build_overview
from fleetsync._devices import DeviceService, DeviceUpdate
from fleetsync._errors import (
    ConflictError,
    FleetSyncError,
    GatewayDisconnected,
    InvalidState,
    MalformedMessage,
    NotFound,
    StoreUnavailable,
)
from fleetsync._fanout import EventFanout, FanoutEvent
from fleetsync._gateway import MessageGateway
from fleetsync._health import HealthSnapshot
from fleetsync._library import ContentLibrary, ContentUpdate
from fleetsync._liveness import LivenessMonitor
from fleetsync._logging import JsonFormatter, configure_logging
from fleetsync._messages import Command, CommandEnvelope, MessageKind, PlaylistEntry
from fleetsync._models import (
    Content,
    ContentMetadata,
    ContentStatus,
    Device,
    DeviceConfig,
    DeviceConfigPatch,
    DeviceStatus,
    Schedule,
)
from fleetsync._mqtt import (
    MessageCallback,
    MockMqttClient,
    MqttClient,
    MqttLifecycle,
    MqttMessageHandler,
    MqttPort,
)
from fleetsync._registry import Registry
from fleetsync._settings import (
    CouchDBSettings,
    LivenessSettings,
    LoggingSettings,
    MqttSettings,
    Settings,
)
from fleetsync._store import DocumentStore, MemoryDocumentStore

try:
    __version__ = version("fleetsync")
except PackageNotFoundError:
    # Editable installs without metadata
    __version__ = "0.0.0+unknown"

__all__ = [
    # Version
    "__version__",
    # Service
    "SyncService",
    "AssignmentEngine",
    "ContentLibrary",
    "ContentUpdate",
    "DeviceService",
    "DeviceUpdate",
    "LivenessMonitor",
    "MessageGateway",
    # Clock
    "ClockPort",
    "SystemClock",
    # Registry
    "CouchDocumentStore",
    "DocumentStore",
    "MemoryDocumentStore",
    "Registry",
    # Models
    "Content",
    "ContentMetadata",
    "ContentStatus",
    "Device",
    "DeviceConfig",
    "DeviceConfigPatch",
    "DeviceStatus",
    "Schedule",
    # Messages
    "Command",
    "CommandEnvelope",
    "MessageKind",
    "PlaylistEntry",
    # Fan-out
    "EventFanout",
    "FanoutEvent",
    # Health / overview
    "DeviceRow",
    "FleetOverview",
    "FleetStats",
    "HealthSnapshot",
    "build_overview",
    # Logging
    "JsonFormatter",
    "configure_logging",
    # MQTT
    "MessageCallback",
    "MockMqttClient",
    "MqttClient",
    "MqttLifecycle",
    "MqttMessageHandler",
    "MqttPort",
    # Errors
    "ConflictError",
    "FleetSyncError",
    "GatewayDisconnected",
    "InvalidState",
    "MalformedMessage",
    "NotFound",
    "StoreUnavailable",
    # Settings
    "CouchDBSettings",
    "LivenessSettings",
    "LoggingSettings",
    "MqttSettings",
    "Settings",
]
