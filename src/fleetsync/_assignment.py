"""Content ↔ device assignment and per-device ordering.

Every content item keeps two fields in lock-step:

- ``assigned_devices`` — the devices it is assigned to
- ``device_orders`` — device id → playlist position

Their key sets are equal after every operation in this module, which
is the only writer of either field.

Each mutating call ends by recomputing the playlist of every affected
device and pushing it as an ``update_content`` command.  The push is
fire-and-forget: a missing session or a failed publish is logged and
the registry write that already succeeded stands.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Iterable, Sequence

from fleetsync._errors import GatewayDisconnected, InvalidState
from fleetsync._gateway import MessageGateway
from fleetsync._messages import PlaylistEntry
from fleetsync._models import Content, ContentStatus
from fleetsync._registry import Registry

logger = logging.getLogger(__name__)


def attachment_path(content_id: str) -> str:
    """Server-relative path under which a content payload is served."""
    return f"api/content/{content_id}/attachment"


class AssignmentEngine:
    """Maintains content assignments and pushes the resulting playlists."""

    def __init__(
        self,
        *,
        registry: Registry,
        gateway: MessageGateway,
        public_base_url: str | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._registry = registry
        self._gateway = gateway
        self._base_url = public_base_url.rstrip("/") if public_base_url else None
        self._rng = rng or random.Random()  # noqa: S311

    # -- Mutations ----------------------------------------------------------

    async def assign(
        self,
        content_id: str,
        device_ids: Sequence[str],
        start_order: int = 0,
    ) -> Content:
        """Assign content to devices at ``start_order``, ``start_order + 1``, ...

        Every device id is validated before anything is written.  Ids
        already assigned keep their membership and get the new order.

        Raises:
            NotFound: If the content or any of the devices is missing.
            ConflictError: If the content changed while being updated.
        """
        if start_order < 0:
            msg = "start_order must be >= 0"
            raise ValueError(msg)
        targets = list(dict.fromkeys(device_ids))
        content = await self._registry.get_content(content_id)
        for device_id in targets:
            await self._registry.get_device(device_id)
        if not targets:
            return content

        assigned = list(content.assigned_devices)
        assigned.extend(d for d in targets if d not in content.assigned_devices)
        orders = dict(content.device_orders)
        for index, device_id in enumerate(targets):
            orders[device_id] = start_order + index

        updated = await self._registry.update_content(
            content_id,
            {"assigned_devices": assigned, "device_orders": orders},
            rev=content.rev,
        )
        logger.info("Assigned content %s to %s", content_id, ", ".join(targets))
        for device_id in targets:
            await self.push_playlist(device_id)
        return updated

    async def unassign(self, content_id: str, device_id: str) -> Content:
        """Remove one device from a content item's assignment.

        Raises:
            NotFound: If the content is missing.
            InvalidState: If the content is not assigned to *device_id*.
        """
        content = await self._registry.get_content(content_id)
        if not content.is_assigned_to(device_id):
            msg = f"content '{content_id}' is not assigned to device '{device_id}'"
            raise InvalidState(msg)

        orders = dict(content.device_orders)
        orders.pop(device_id, None)
        updated = await self._registry.update_content(
            content_id,
            {
                "assigned_devices": [d for d in content.assigned_devices if d != device_id],
                "device_orders": orders,
            },
            rev=content.rev,
        )
        logger.info("Unassigned content %s from %s", content_id, device_id)
        await self.push_playlist(device_id)
        return updated

    async def reorder(
        self,
        device_id: str,
        orders: Iterable[tuple[str, int]],
    ) -> list[Content]:
        """Set playlist positions of content on one device.

        Pairs naming missing content, or content not assigned to
        *device_id*, are skipped.

        Returns:
            The content items that were updated.

        Raises:
            NotFound: If the device is missing.
        """
        pairs = list(orders)
        if any(order < 0 for _, order in pairs):
            msg = "order values must be >= 0"
            raise ValueError(msg)
        await self._registry.get_device(device_id)

        updated: list[Content] = []
        for content_id, order in pairs:
            content = await self._registry.find_content(content_id)
            if content is None or not content.is_assigned_to(device_id):
                logger.debug("Reorder on %s skips %s", device_id, content_id)
                continue
            updated.append(await self._set_order(content, device_id, order))

        logger.info("Reordered %d content item(s) on %s", len(updated), device_id)
        await self.push_playlist(device_id)
        return updated

    async def shuffle(self, device_id: str) -> list[Content]:
        """Give the device's content a uniformly random order ``0..n-1``.

        Raises:
            NotFound: If the device is missing.
            InvalidState: If no content is assigned to the device.
        """
        await self._registry.get_device(device_id)
        items = await self._registry.content_for_device(device_id)
        if not items:
            msg = f"no content assigned to device '{device_id}'"
            raise InvalidState(msg)

        self._rng.shuffle(items)
        updated = [
            await self._set_order(content, device_id, position)
            for position, content in enumerate(items)
        ]
        logger.info("Shuffled %d content item(s) on %s", len(updated), device_id)
        await self.push_playlist(device_id)
        return updated

    async def delete_content(self, content_id: str) -> None:
        """Delete content and its payload, then refresh affected devices."""
        content = await self._registry.get_content(content_id)
        await self._registry.delete_content(content_id)
        for device_id in content.assigned_devices:
            await self.push_playlist(device_id)

    async def _set_order(self, content: Content, device_id: str, order: int) -> Content:
        return await self._registry.update_content(
            content.id,
            {"device_orders": {**content.device_orders, device_id: order}},
            rev=content.rev,
        )

    # -- Playlists ----------------------------------------------------------

    async def playlist(self, device_id: str) -> list[PlaylistEntry]:
        """Active content assigned to *device_id*, in the device's order."""
        items = await self._registry.content_for_device(device_id)
        return [
            PlaylistEntry(
                id=content.id,
                path=attachment_path(content.id),
                order=content.order_for(device_id),
                extension=content.extension,
                url=(
                    f"{self._base_url}/{attachment_path(content.id)}"
                    if self._base_url
                    else None
                ),
            )
            for content in items
            if content.status is ContentStatus.ACTIVE
        ]

    async def push_playlist(self, device_id: str) -> bool:
        """Send the device its current playlist; ``False`` when not sent."""
        if not self._gateway.is_connected:
            logger.warning("MQTT not connected, skipping playlist push to %s", device_id)
            return False
        try:
            entries = await self.playlist(device_id)
            await self._gateway.update_content(device_id, entries)
        except asyncio.CancelledError:
            raise
        except GatewayDisconnected as exc:
            logger.warning("Playlist push to %s failed: %s", device_id, exc)
            return False
        except Exception:
            logger.exception("Playlist push to %s failed", device_id)
            return False
        return True
