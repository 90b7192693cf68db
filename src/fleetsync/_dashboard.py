"""Fleet overview for dashboards."""

from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime

from fleetsync._models import ContentStatus, Device
from fleetsync._registry import Registry


@dataclass(frozen=True, slots=True)
class DeviceRow:
    id: str
    name: str
    location: str
    status: str
    current_content: str | None
    last_heartbeat: str | None
    assigned_content: int


@dataclass(frozen=True, slots=True)
class FleetStats:
    total_devices: int
    online_devices: int
    offline_devices: int
    total_content: int
    active_content: int
    last_updated: str


@dataclass(frozen=True, slots=True)
class FleetOverview:
    stats: FleetStats
    devices: list[DeviceRow] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


def _row(device: Device, assigned: int) -> DeviceRow:
    return DeviceRow(
        id=device.id,
        name=device.name,
        location=device.location,
        status=str(device.status),
        current_content=device.current_content,
        last_heartbeat=device.last_heartbeat.isoformat() if device.last_heartbeat else None,
        assigned_content=assigned,
    )


async def build_overview(registry: Registry, *, now: datetime) -> FleetOverview:
    """Aggregate device and content counts plus one row per device."""
    devices = await registry.list_devices()
    content = await registry.list_content()

    per_device: Counter[str] = Counter()
    for item in content:
        per_device.update(item.assigned_devices)
    online = sum(1 for d in devices if d.is_online)

    stats = FleetStats(
        total_devices=len(devices),
        online_devices=online,
        offline_devices=len(devices) - online,
        total_content=len(content),
        active_content=sum(1 for c in content if c.status is ContentStatus.ACTIVE),
        last_updated=now.isoformat(),
    )
    return FleetOverview(
        stats=stats,
        devices=[_row(d, per_device[d.id]) for d in devices],
    )
