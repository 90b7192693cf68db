"""Typed document registry for devices and content.

:class:`Registry` sits on top of a :class:`~fleetsync._store.DocumentStore`
and converts raw documents into :class:`~fleetsync._models.Device` and
:class:`~fleetsync._models.Content` models.

Updates are read-modify-write: fetch the current document and revision,
merge the patch shallowly, validate, and write back against the prior
revision.  A concurrent writer in between surfaces as
:class:`~fleetsync._errors.ConflictError`; there is no retry here.

Listings log and skip stored documents that no longer validate, so one
corrupt document cannot hide the rest of the fleet.
"""

from __future__ import annotations

import logging
from typing import Any, TypeVar

from pydantic import ValidationError

from fleetsync._clock import ClockPort
from fleetsync._errors import NotFound
from fleetsync._models import (
    Content,
    ContentStatus,
    Device,
    DeviceStatus,
    _Document,
)
from fleetsync._store import (
    INDEX_CONTENT_ALL,
    INDEX_CONTENT_BY_DEVICE,
    INDEX_CONTENT_BY_STATUS,
    INDEX_DEVICES_ALL,
    INDEX_DEVICES_BY_STATUS,
    DocumentStore,
)

logger = logging.getLogger(__name__)

_D = TypeVar("_D", bound=_Document)

_MODELS: dict[str, type[_Document]] = {"device": Device, "content": Content}


def _parse_all(model: type[_D], docs: list[dict[str, Any]]) -> list[_D]:
    """Validate query rows, skipping documents that do not fit *model*."""
    items: list[_D] = []
    for doc in docs:
        try:
            items.append(model.from_document(doc))
        except ValidationError as exc:
            logger.warning(
                "Skipping invalid %s document %s: %d error(s)",
                model.model_fields["type"].default,
                doc.get("_id"),
                exc.error_count(),
            )
    return items


class Registry:
    """Device and content persistence with optimistic concurrency."""

    def __init__(self, store: DocumentStore, clock: ClockPort) -> None:
        self._store = store
        self._clock = clock

    @property
    def store(self) -> DocumentStore:
        return self._store

    # -- Generic -------------------------------------------------------------

    async def update(
        self,
        doc_id: str,
        patch: dict[str, Any],
        *,
        rev: str | None = None,
    ) -> _Document:
        """Merge *patch* into a stored document and write it back.

        When *rev* is given the write is made against that revision
        instead of the freshly read one, so a caller holding an older
        snapshot gets a :class:`ConflictError` rather than silently
        overwriting a newer version.

        Raises:
            NotFound: If the document does not exist.
            ConflictError: If the revision moved on before the write.
            pydantic.ValidationError: If the patched document is invalid.
        """
        raw = await self._store.get(doc_id)
        model = _MODELS.get(raw.get("type", ""))
        if model is None:
            raise NotFound(doc_id)
        return await self._write_merged(model, raw, patch, rev)

    # -- Devices -------------------------------------------------------------

    async def get_device(self, device_id: str) -> Device:
        return await self._get(Device, device_id)

    async def find_device(self, device_id: str) -> Device | None:
        """Like :meth:`get_device` but returns ``None`` when absent."""
        try:
            return await self.get_device(device_id)
        except NotFound:
            return None

    async def create_device(self, device: Device) -> Device:
        return await self._create(device)

    async def update_device(
        self,
        device_id: str,
        patch: dict[str, Any],
        *,
        rev: str | None = None,
    ) -> Device:
        raw = await self._get_raw(Device, device_id)
        return await self._write_merged(Device, raw, patch, rev)

    async def delete_device(self, device_id: str) -> None:
        raw = await self._get_raw(Device, device_id)
        await self._store.delete(device_id, raw["_rev"])
        logger.info("Deleted device %s", device_id, extra={"device_id": device_id})

    async def list_devices(self, status: DeviceStatus | None = None) -> list[Device]:
        if status is None:
            docs = await self._store.query(INDEX_DEVICES_ALL)
        else:
            docs = await self._store.query(INDEX_DEVICES_BY_STATUS, str(status))
        return _parse_all(Device, docs)

    # -- Content -------------------------------------------------------------

    async def get_content(self, content_id: str) -> Content:
        return await self._get(Content, content_id)

    async def find_content(self, content_id: str) -> Content | None:
        try:
            return await self.get_content(content_id)
        except NotFound:
            return None

    async def create_content(self, content: Content, payload: bytes | None = None) -> Content:
        """Store a content document, then attach its binary payload."""
        created = await self._create(content)
        if payload is None:
            return created
        rev = await self._store.put_attachment(
            created.id,
            created.attachment_name,
            payload,
            created.media_type,
            created.rev or "",
        )
        return created.model_copy(update={"rev": rev})

    async def update_content(
        self,
        content_id: str,
        patch: dict[str, Any],
        *,
        rev: str | None = None,
    ) -> Content:
        raw = await self._get_raw(Content, content_id)
        return await self._write_merged(Content, raw, patch, rev)

    async def delete_content(self, content_id: str) -> None:
        """Delete a content document together with its attachments."""
        raw = await self._get_raw(Content, content_id)
        rev = raw["_rev"]
        for name in list(raw.get("_attachments") or {}):
            rev = await self._store.delete_attachment(content_id, name, rev)
        await self._store.delete(content_id, rev)
        logger.info("Deleted content %s", content_id)

    async def list_content(self, status: ContentStatus | None = None) -> list[Content]:
        if status is None:
            docs = await self._store.query(INDEX_CONTENT_ALL)
        else:
            docs = await self._store.query(INDEX_CONTENT_BY_STATUS, str(status))
        return _parse_all(Content, docs)

    async def content_for_device(self, device_id: str) -> list[Content]:
        """Content assigned to *device_id*, ascending by its order value."""
        docs = await self._store.query(INDEX_CONTENT_BY_DEVICE, device_id)
        items = _parse_all(Content, docs)
        return sorted(items, key=lambda c: c.order_for(device_id))

    async def read_payload(self, content: Content) -> bytes:
        return await self._store.get_attachment(content.id, content.attachment_name)

    # -- Internal ------------------------------------------------------------

    async def _get_raw(self, model: type[_Document], doc_id: str) -> dict[str, Any]:
        kind = model.model_fields["type"].default
        try:
            raw = await self._store.get(doc_id)
        except NotFound:
            raise NotFound(doc_id, kind=kind) from None
        if raw.get("type") != kind:
            raise NotFound(doc_id, kind=kind)
        return raw

    async def _get(self, model: type[_D], doc_id: str) -> _D:
        return model.from_document(await self._get_raw(model, doc_id))

    async def _create(self, entity: _D) -> _D:
        now = self._clock.now()
        stamped = entity.model_copy(update={"created_at": now, "updated_at": now, "rev": None})
        rev = await self._store.put(stamped.to_document())
        return stamped.model_copy(update={"rev": rev})

    async def _write_merged(
        self,
        model: type[_D],
        raw: dict[str, Any],
        patch: dict[str, Any],
        rev: str | None,
    ) -> _D:
        base_rev = rev if rev is not None else raw["_rev"]
        merged = {**raw, **patch, "updated_at": self._clock.now()}
        entity = model.from_document(merged)
        # Keys unknown to the model (e.g. ``_attachments``) ride along.
        doc = {**merged, **entity.to_document(), "_rev": base_rev}
        new_rev = await self._store.put(doc)
        return entity.model_copy(update={"rev": new_rev})
