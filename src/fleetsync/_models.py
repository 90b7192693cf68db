"""Persisted entities: devices and content.

Both entities are stored as JSON documents carrying the store's
``_id`` / ``_rev`` keys and a ``type`` discriminator.  The models use
pydantic aliases so the Python side reads ``device.id`` / ``device.rev``
while the stored document keeps the store's key names.

Content invariant: ``set(device_orders) == set(assigned_devices)``.
It is maintained by :class:`~fleetsync._assignment.AssignmentEngine`,
the only writer of either field.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from pathlib import PurePath
from typing import Annotated, Any, Literal, Self

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

DEFAULT_EXTENSION = ".png"

TransitionEffect = Literal["fade", "slide", "wipe", "dissolve"]
Orientation = Literal[
    "landscape",
    "portrait",
    "inverted_landscape",
    "inverted_portrait",
]
DisplayDuration = Annotated[int, Field(ge=1000, le=60000)]


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]
"""Datetime read as UTC when the stored value carries no offset."""


class DeviceStatus(StrEnum):
    """Liveness state of a device."""

    ONLINE = "online"
    OFFLINE = "offline"


class ContentStatus(StrEnum):
    """Whether a content item is eligible for playlists."""

    ACTIVE = "active"
    INACTIVE = "inactive"


# ---------------------------------------------------------------------------
# Document base
# ---------------------------------------------------------------------------


class _Document(BaseModel):
    """Common ``_id`` / ``_rev`` handling for stored entities."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(alias="_id")
    rev: str | None = Field(default=None, alias="_rev")
    created_at: UtcDatetime | None = None
    updated_at: UtcDatetime | None = None

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> Self:
        """Build the model from a raw store document."""
        return cls.model_validate(doc)

    def to_document(self) -> dict[str, Any]:
        """Serialise to a JSON-ready store document.

        ``_rev`` is omitted for documents that were never written.
        """
        doc = self.model_dump(mode="json", by_alias=True)
        if doc.get("_rev") is None:
            doc.pop("_rev", None)
        return doc


# ---------------------------------------------------------------------------
# Device
# ---------------------------------------------------------------------------


class DeviceConfig(BaseModel):
    """Playback configuration pushed with ``update_config``."""

    model_config = ConfigDict(extra="ignore")

    transition_effect: TransitionEffect = "fade"
    display_duration: DisplayDuration = 5000
    resolution: str = "1920x1080"
    orientation: Orientation = "landscape"


class DeviceConfigPatch(BaseModel):
    """Partial configuration update; unknown fields are rejected."""

    model_config = ConfigDict(extra="forbid")

    transition_effect: TransitionEffect | None = None
    display_duration: DisplayDuration | None = None
    resolution: str | None = None
    orientation: Orientation | None = None


class Device(_Document):
    """A managed display endpoint."""

    type: Literal["device"] = "device"
    name: str
    location: str = ""
    address: str | None = None
    status: DeviceStatus = DeviceStatus.OFFLINE
    current_content: str | None = None
    last_heartbeat: UtcDatetime | None = None
    playback_state: str | None = None
    system_metrics: dict[str, Any] | None = None
    platform: str | None = None
    version: str | None = None
    config: DeviceConfig = Field(default_factory=DeviceConfig)

    @property
    def is_online(self) -> bool:
        return self.status is DeviceStatus.ONLINE


# ---------------------------------------------------------------------------
# Content
# ---------------------------------------------------------------------------


class ContentMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore")

    width: int | None = None
    height: int | None = None
    description: str = ""
    tags: list[str] = Field(default_factory=list)


class Schedule(BaseModel):
    """Optional display window of a content item."""

    model_config = ConfigDict(extra="ignore")

    start_time: datetime | None = None
    end_time: datetime | None = None
    days_of_week: list[Annotated[int, Field(ge=0, le=6)]] = Field(
        default_factory=list,
    )


class Content(_Document):
    """An uploaded media asset and its per-device assignment."""

    type: Literal["content"] = "content"
    filename: str
    size: int = 0
    media_type: str = "application/octet-stream"
    status: ContentStatus = ContentStatus.ACTIVE
    assigned_devices: list[str] = Field(default_factory=list)
    device_orders: dict[str, int] = Field(default_factory=dict)
    metadata: ContentMetadata = Field(default_factory=ContentMetadata)
    schedule: Schedule | None = None

    @property
    def extension(self) -> str:
        """File extension of the original upload, ``.png`` when absent."""
        return PurePath(self.filename).suffix or DEFAULT_EXTENSION

    @property
    def attachment_name(self) -> str:
        """Name of the binary payload attached to this document."""
        return f"content{self.extension}"

    def is_assigned_to(self, device_id: str) -> bool:
        return device_id in self.assigned_devices

    def order_for(self, device_id: str) -> int:
        """Playlist position on *device_id* (0 when unset)."""
        return self.device_orders.get(device_id, 0)
