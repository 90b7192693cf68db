"""Content library: uploaded media and its metadata."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel, ConfigDict

from fleetsync._assignment import AssignmentEngine
from fleetsync._errors import InvalidState
from fleetsync._models import Content, ContentMetadata, ContentStatus, Schedule
from fleetsync._registry import Registry

logger = logging.getLogger(__name__)


class ContentUpdate(BaseModel):
    """Editable content fields; assignment fields are not among them."""

    model_config = ConfigDict(extra="forbid")

    filename: str | None = None
    status: ContentStatus | None = None
    description: str | None = None
    tags: list[str] | None = None
    schedule: Schedule | None = None


class ContentLibrary:
    """Creates, lists and edits content items.

    Assignment and deletion go through
    :class:`~fleetsync._assignment.AssignmentEngine`, which owns the
    device-facing side effects.  A status change is the one edit here
    that alters playlists, so it asks the engine to re-push them.
    """

    def __init__(self, *, registry: Registry, assignments: AssignmentEngine) -> None:
        self._registry = registry
        self._assignments = assignments

    async def create(
        self,
        filename: str,
        data: bytes,
        media_type: str,
        *,
        width: int | None = None,
        height: int | None = None,
        description: str = "",
        tags: Iterable[str] = (),
    ) -> Content:
        content = Content(
            id=uuid.uuid4().hex,
            filename=filename,
            size=len(data),
            media_type=media_type,
            metadata=ContentMetadata(
                width=width,
                height=height,
                description=description,
                tags=list(tags),
            ),
        )
        created = await self._registry.create_content(content, data)
        logger.info("Stored content %s (%s, %d bytes)", created.id, filename, len(data))
        return created

    async def get(self, content_id: str) -> Content:
        return await self._registry.get_content(content_id)

    async def list(
        self,
        status: ContentStatus | None = None,
        device_id: str | None = None,
        tags: Iterable[str] | None = None,
    ) -> list[Content]:
        """List content, optionally filtered.

        With *device_id* the result is in that device's playlist order.
        With *tags* only items carrying every given tag are returned.
        """
        if device_id is not None:
            items = await self._registry.content_for_device(device_id)
            if status is not None:
                items = [c for c in items if c.status is status]
        else:
            items = await self._registry.list_content(status)
        if tags:
            wanted = set(tags)
            items = [c for c in items if wanted.issubset(c.metadata.tags)]
        return items

    async def update(self, content_id: str, patch: ContentUpdate | dict[str, Any]) -> Content:
        """Apply an edit.

        Raises:
            pydantic.ValidationError: If *patch* names unknown fields.
            NotFound: If the content is missing.
            InvalidState: If a new filename changes the file extension;
                the stored payload keeps its original type.
        """
        edit = ContentUpdate.model_validate(patch)
        current = await self._registry.get_content(content_id)

        fields: dict[str, Any] = {}
        if edit.filename is not None:
            renamed = current.model_copy(update={"filename": edit.filename})
            if renamed.extension != current.extension:
                msg = (
                    f"cannot rename {current.filename!r} to {edit.filename!r}: "
                    "file extension would change"
                )
                raise InvalidState(msg)
            fields["filename"] = edit.filename
        if edit.status is not None:
            fields["status"] = edit.status
        if "schedule" in edit.model_fields_set:
            # An explicit null removes the display window.
            fields["schedule"] = (
                edit.schedule.model_dump(mode="json") if edit.schedule is not None else None
            )
        if edit.description is not None or edit.tags is not None:
            metadata = current.metadata.model_copy(
                update={
                    k: v
                    for k, v in (("description", edit.description), ("tags", edit.tags))
                    if v is not None
                },
            )
            fields["metadata"] = metadata.model_dump()

        updated = await self._registry.update_content(content_id, fields, rev=current.rev)
        if updated.status is not current.status:
            for device_id in updated.assigned_devices:
                await self._assignments.push_playlist(device_id)
        return updated

    async def read_payload(self, content_id: str) -> bytes:
        content = await self._registry.get_content(content_id)
        return await self._registry.read_payload(content)
