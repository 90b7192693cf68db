"""Error taxonomy of the synchronization core.

Every failure the core raises derives from :class:`FleetSyncError` and
carries a machine-readable ``error_type`` so outer layers (HTTP routes,
dashboards) can map it without ``isinstance`` ladders.

Propagation rules:

- ``NotFound`` / ``InvalidState`` abort only the operation that raised.
- ``ConflictError`` is surfaced to the immediate caller, never retried.
- ``GatewayDisconnected`` raised by a playlist push is logged and
  swallowed; the registry mutation that triggered it stands.
- ``MalformedMessage`` is swallowed at the gateway boundary after
  logging.
"""

from __future__ import annotations


class FleetSyncError(Exception):
    """Base class for all errors raised by the core."""

    error_type: str = "error"

    def to_dict(self) -> dict[str, str]:
        """Serialise to a ``{"error_type", "message"}`` mapping."""
        return {"error_type": self.error_type, "message": str(self)}


class NotFound(FleetSyncError):
    """The requested document does not exist."""

    error_type = "not_found"

    def __init__(self, doc_id: str, kind: str = "document") -> None:
        super().__init__(f"{kind} '{doc_id}' not found")
        self.doc_id = doc_id
        self.kind = kind


class ConflictError(FleetSyncError):
    """A write was rejected because the supplied revision is stale."""

    error_type = "conflict"

    def __init__(self, doc_id: str, rev: str | None = None) -> None:
        super().__init__(f"revision conflict on '{doc_id}' (rev={rev})")
        self.doc_id = doc_id
        self.rev = rev


class GatewayDisconnected(FleetSyncError):
    """A publish was attempted without an active transport session."""

    error_type = "gateway_disconnected"


class InvalidState(FleetSyncError):
    """An operation's precondition does not hold."""

    error_type = "invalid_state"


class MalformedMessage(FleetSyncError):
    """An inbound payload does not match the shape expected for its topic."""

    error_type = "malformed_message"

    def __init__(self, topic: str, reason: str) -> None:
        super().__init__(f"malformed message on {topic}: {reason}")
        self.topic = topic
        self.reason = reason


class StoreUnavailable(FleetSyncError):
    """The document store could not be reached or answered unexpectedly."""

    error_type = "store_unavailable"
