"""Wall-clock port and system adapter.

Heartbeat timestamps are persisted and compared across process
restarts, so the core measures liveness against UTC wall-clock time
rather than a monotonic counter.  Tests inject a deterministic clock.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Protocol, runtime_checkable


@runtime_checkable
class ClockPort(Protocol):
    """Source of the current time as a timezone-aware UTC datetime."""

    def now(self) -> datetime:
        """Return the current UTC time."""
        ...


class SystemClock:
    """Production clock wrapping ``datetime.now(UTC)``.

    Satisfies :class:`ClockPort` via structural subtyping (PEP 544).
    """

    def now(self) -> datetime:
        """Return the current UTC time."""
        return datetime.now(UTC)
