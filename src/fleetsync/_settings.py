"""Service configuration via pydantic-settings.

Configuration is loaded from environment variables and/or ``.env``
files.  All variables carry the ``FLEETSYNC_`` prefix; nested models
use ``__`` as the delimiter, e.g. ``FLEETSYNC_MQTT__HOST=broker.local``.

Sections:

* **MQTT** — broker connection, reconnect backoff and topic namespace.
* **CouchDB** — document store connection.
* **Liveness** — heartbeat timeout and sweep interval.
* **Logging** — level, format, optional file sink, rotation.

All durations are in **seconds**.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import (
    BaseModel,
    Field,
    SecretStr,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

# -------------------------------------------------------------------
# Sub-models (BaseModel, NOT BaseSettings: nested via composition)
# -------------------------------------------------------------------


class MqttSettings(BaseModel):
    """MQTT broker connection and topic configuration.

    Environment variables (with ``__`` nesting)::

        FLEETSYNC_MQTT__HOST=broker.local
        FLEETSYNC_MQTT__PORT=1883
        FLEETSYNC_MQTT__USERNAME=user
        FLEETSYNC_MQTT__PASSWORD=secret
        FLEETSYNC_MQTT__NAMESPACE=signage
    """

    host: str = Field(
        default="localhost",
        description="MQTT broker hostname or IP address.",
    )
    port: Annotated[int, Field(ge=1, le=65535)] = Field(
        default=1883,
        description="MQTT broker port.",
    )
    username: str | None = Field(
        default=None,
        description="MQTT authentication username (optional).",
    )
    password: SecretStr | None = Field(
        default=None,
        description="MQTT authentication password (optional).",
    )
    client_id: str = Field(
        default="",
        description=(
            "MQTT client identifier. When empty, the service generates "
            "'fleetsync-{hex8}' at startup."
        ),
    )
    keepalive: Annotated[int, Field(ge=1)] = Field(
        default=60,
        description="MQTT keepalive period in seconds.",
    )
    reconnect_interval: Annotated[float, Field(gt=0)] = Field(
        default=1.0,
        description=(
            "Initial seconds to wait before reconnecting after "
            "connection loss.  Doubles on each consecutive failure "
            "(exponential backoff with jitter) up to "
            "``reconnect_max_interval``."
        ),
    )
    reconnect_max_interval: Annotated[float, Field(gt=0)] = Field(
        default=60.0,
        description="Upper bound (seconds) for the reconnect backoff.",
    )
    qos: Annotated[int, Field(ge=0, le=2)] = Field(
        default=1,
        description="QoS used for subscriptions and outbound commands.",
    )
    namespace: str = Field(
        default="signage",
        description="Root namespace of every device topic.",
    )


class CouchDBSettings(BaseModel):
    """Document store connection.

    Environment variables::

        FLEETSYNC_COUCHDB__URL=http://couch.local:5984
        FLEETSYNC_COUCHDB__USERNAME=admin
        FLEETSYNC_COUCHDB__PASSWORD=secret
        FLEETSYNC_COUCHDB__DATABASE=digital_signage
    """

    url: str = Field(
        default="http://localhost:5984",
        description="Base URL of the CouchDB server.",
    )
    username: str | None = Field(default=None, description="Basic-auth user.")
    password: SecretStr | None = Field(
        default=None,
        description="Basic-auth password.",
    )
    database: str = Field(
        default="digital_signage",
        description="Database holding device and content documents.",
    )
    timeout: Annotated[float, Field(gt=0)] = Field(
        default=10.0,
        description="Per-request timeout in seconds.",
    )


class LivenessSettings(BaseModel):
    """Heartbeat-absence detection.

    Devices publish a heartbeat every 30 s; the default timeout gives
    them a 60 s grace window on top of that.
    """

    heartbeat_timeout: Annotated[float, Field(gt=0)] = Field(
        default=90.0,
        description="Seconds without telemetry before a device is offline.",
    )
    check_interval: Annotated[float, Field(gt=0)] = Field(
        default=30.0,
        description="Seconds between two liveness sweeps.",
    )

    @model_validator(mode="after")
    def _timeout_exceeds_interval(self) -> LivenessSettings:
        if self.heartbeat_timeout <= self.check_interval:
            msg = "heartbeat_timeout must be larger than check_interval"
            raise ValueError(msg)
        return self


class LoggingSettings(BaseModel):
    """Logging configuration.

    When ``file`` is set, logs are also written to a rotating file
    (size-based rotation, ``backup_count`` generations kept).  When
    ``None``, logs go to stderr only.

    ``format`` selects ``"json"`` (one JSON object per line, for log
    aggregators) or ``"text"`` (human-readable, for development).
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Root log level.",
    )
    format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format.",
    )
    file: str | None = Field(
        default=None,
        description="Optional log file path. ``None`` means stderr only.",
    )
    max_file_size_mb: Annotated[int, Field(ge=1)] = Field(
        default=10,
        description="Maximum log file size in megabytes before rotation.",
    )
    backup_count: Annotated[int, Field(ge=0)] = Field(
        default=3,
        description="Number of rotated log files to keep.",
    )


# -------------------------------------------------------------------
# Root settings
# -------------------------------------------------------------------


class Settings(BaseSettings):
    """Root settings for the synchronization service.

    Example ``.env``::

        FLEETSYNC_MQTT__HOST=broker.local
        FLEETSYNC_COUCHDB__URL=http://couch.local:5984
        FLEETSYNC_LIVENESS__HEARTBEAT_TIMEOUT=120
        FLEETSYNC_LOGGING__FORMAT=text
        FLEETSYNC_PUBLIC_BASE_URL=http://signage.local:3000
    """

    model_config = SettingsConfigDict(
        env_prefix="FLEETSYNC_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    mqtt: MqttSettings = Field(
        default_factory=MqttSettings,
        description="MQTT broker connection settings.",
    )
    couchdb: CouchDBSettings = Field(
        default_factory=CouchDBSettings,
        description="Document store settings.",
    )
    liveness: LivenessSettings = Field(
        default_factory=LivenessSettings,
        description="Liveness monitor settings.",
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Logging configuration.",
    )
    public_base_url: str | None = Field(
        default=None,
        description=(
            "Absolute URL under which content payloads are served. "
            "When set, playlist entries carry a download ``url``."
        ),
    )
