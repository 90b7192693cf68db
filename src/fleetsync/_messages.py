"""Wire formats: inbound telemetry, outbound commands, playlists.

Inbound payloads are modelled as a tagged union keyed by the topic
suffix.  :func:`parse_message` is strict: a payload that is not a JSON
object or misses required fields raises
:class:`~fleetsync._errors.MalformedMessage` instead of being coerced.

Field aliases accept the names older display firmware still sends
(``tv_id``, ``image_id``, ``current_image``, ``total_images``,
``current_index``).
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Annotated, Any, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from fleetsync._errors import MalformedMessage


class MessageKind(StrEnum):
    """Recognised inbound topic suffixes (after ``{ns}/device/{id}/``)."""

    STATUS = "status"
    HEARTBEAT = "heartbeat"
    ERROR = "error"
    CURRENT_CONTENT = "content/current"


class Command(StrEnum):
    """Command identifiers understood by the displays."""

    PLAY = "play"
    PAUSE = "pause"
    NEXT = "next"
    PREVIOUS = "previous"
    REBOOT = "reboot"
    UPDATE_CONFIG = "update_config"
    UPDATE_CONTENT = "update_content"


CONTROL_COMMANDS: frozenset[Command] = frozenset(
    {Command.PLAY, Command.PAUSE, Command.NEXT, Command.PREVIOUS, Command.REBOOT},
)
"""Commands an operator may send without a payload."""

# ---------------------------------------------------------------------------
# Inbound
# ---------------------------------------------------------------------------


class _Inbound(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    timestamp: str | None = None


class StatusMessage(_Inbound):
    """Playback status report.

    ``status`` is ``offline`` on graceful shutdown; any other value
    (``online``, ``playing``, ``paused``, ``stopped``) means the device
    is alive.
    """

    status: Annotated[str, Field(min_length=1)]
    current_content: str | None = Field(
        default=None,
        validation_alias=AliasChoices("current_content", "current_image"),
    )
    total: int | None = Field(
        default=None,
        validation_alias=AliasChoices("total", "total_images"),
    )
    index: int | None = Field(
        default=None,
        validation_alias=AliasChoices("index", "current_index"),
    )
    uptime: float | None = None


class HeartbeatMessage(_Inbound):
    device_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("device_id", "tv_id"),
    )
    status: str = "online"
    system_metrics: dict[str, Any] | None = None


class ErrorMessage(_Inbound):
    error: str


class CurrentContentMessage(_Inbound):
    content_id: str = Field(validation_alias=AliasChoices("content_id", "image_id"))


_M = TypeVar("_M", bound=_Inbound)


def decode_payload(raw: str) -> Any:
    """Parse *raw* as JSON, falling back to the raw text."""
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def parse_message(topic: str, shape: type[_M], payload: Any) -> _M:
    """Validate a decoded payload against *shape*.

    Raises:
        MalformedMessage: If *payload* is not a JSON object or does not
            satisfy the shape.
    """
    if not isinstance(payload, dict):
        raise MalformedMessage(topic, "expected a JSON object")
    try:
        return shape.model_validate(payload)
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        raise MalformedMessage(topic, f"invalid fields: {fields}") from exc


# ---------------------------------------------------------------------------
# Outbound
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CommandEnvelope:
    """Outbound command as published on ``{ns}/device/{id}/command``."""

    command: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: str = ""

    def to_json(self) -> str:
        return json.dumps(asdict(self))


@dataclass(frozen=True, slots=True)
class PlaylistEntry:
    """One item of a device playlist as pushed with ``update_content``."""

    id: str
    path: str
    order: int
    extension: str
    url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if self.url is None:
            del data["url"]
        return data
