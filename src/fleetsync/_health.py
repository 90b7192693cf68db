"""Service health snapshot.

Payload schema::

    {
        "status": "ok",              # "degraded" while MQTT is down
        "timestamp": "2026-01-01T00:00:00+00:00",
        "mqtt_connected": true,
        "uptime_s": 3600.0
    }
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class HealthSnapshot:
    """Immutable point-in-time health of a running service."""

    status: str
    timestamp: str
    mqtt_connected: bool
    uptime_s: float

    @classmethod
    def capture(
        cls,
        *,
        now: datetime,
        started_at: datetime | None,
        mqtt_connected: bool,
    ) -> HealthSnapshot:
        """Build a snapshot; uptime is zero for a service never started."""
        uptime = (now - started_at).total_seconds() if started_at else 0.0
        return cls(
            status="ok" if mqtt_connected else "degraded",
            timestamp=now.isoformat(),
            mqtt_connected=mqtt_connected,
            uptime_s=uptime,
        )

    def to_dict(self) -> dict[str, object]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict())
