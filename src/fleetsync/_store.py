"""Revisioned document store port and in-memory adapter.

Provides :class:`DocumentStore` (Protocol) and
:class:`MemoryDocumentStore`, a CouchDB-compatible test double.  The
production adapter lives in :mod:`fleetsync._couchdb`.

Contract:

- ``get(id)`` returns the document or raises ``NotFound``.
- ``put(doc)`` writes the document and returns its new revision.  The
  supplied ``_rev`` must equal the stored revision (or be absent for a
  new document); otherwise ``ConflictError`` is raised.
- ``query(index, key)`` returns documents emitted under *key* by one of
  the named indexes in :data:`INDEXES` (all keys when *key* is None).
- Attachments are written under the owning document's revision chain:
  every attachment write bumps the document revision.

Writing a document without its ``_attachments`` stubs drops the
attachments, as CouchDB does.  Callers that rewrite a document must
carry the stubs over.
"""

from __future__ import annotations

import asyncio
import copy
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from fleetsync._errors import ConflictError, NotFound

# ---------------------------------------------------------------------------
# Indexes
# ---------------------------------------------------------------------------

INDEX_DEVICES_ALL = "devices/all"
INDEX_DEVICES_BY_STATUS = "devices/by_status"
INDEX_CONTENT_ALL = "content/all"
INDEX_CONTENT_BY_STATUS = "content/by_status"
INDEX_CONTENT_BY_DEVICE = "content/by_device"


def _emit_if_type(doc_type: str, key: str) -> Callable[[dict[str, Any]], Iterable[Any]]:
    def emit(doc: dict[str, Any]) -> Iterable[Any]:
        if doc.get("type") == doc_type:
            yield doc.get(key)

    return emit


def _emit_assigned_devices(doc: dict[str, Any]) -> Iterable[Any]:
    if doc.get("type") == "content":
        yield from doc.get("assigned_devices") or []


INDEXES: dict[str, Callable[[dict[str, Any]], Iterable[Any]]] = {
    INDEX_DEVICES_ALL: _emit_if_type("device", "_id"),
    INDEX_DEVICES_BY_STATUS: _emit_if_type("device", "status"),
    INDEX_CONTENT_ALL: _emit_if_type("content", "_id"),
    INDEX_CONTENT_BY_STATUS: _emit_if_type("content", "status"),
    INDEX_CONTENT_BY_DEVICE: _emit_assigned_devices,
}
"""Index name → emitter yielding the keys a document is indexed under.

The CouchDB adapter installs equivalent map functions as views named
``{design}/{view}`` after the same names.
"""

# ---------------------------------------------------------------------------
# Port (Protocol)
# ---------------------------------------------------------------------------


@runtime_checkable
class DocumentStore(Protocol):
    """Port contract for a revisioned JSON document store."""

    async def get(self, doc_id: str) -> dict[str, Any]: ...

    async def put(self, doc: dict[str, Any]) -> str: ...

    async def delete(self, doc_id: str, rev: str) -> None: ...

    async def query(self, index: str, key: Any = None) -> list[dict[str, Any]]: ...

    async def get_attachment(self, doc_id: str, name: str) -> bytes: ...

    async def put_attachment(
        self,
        doc_id: str,
        name: str,
        data: bytes,
        content_type: str,
        rev: str,
    ) -> str: ...

    async def delete_attachment(self, doc_id: str, name: str, rev: str) -> str: ...


# ---------------------------------------------------------------------------
# In-memory adapter
# ---------------------------------------------------------------------------


def _next_rev(rev: str | None) -> str:
    generation = int(rev.split("-", 1)[0]) if rev else 0
    return f"{generation + 1}-{uuid.uuid4().hex}"


@dataclass
class MemoryDocumentStore:
    """In-memory :class:`DocumentStore` with CouchDB revision semantics.

    Every operation yields to the event loop once before touching
    state, so concurrent read-modify-write sequences interleave the way
    they would against a networked store.
    """

    _docs: dict[str, dict[str, Any]] = field(default_factory=dict, repr=False)
    _blobs: dict[str, dict[str, bytes]] = field(default_factory=dict, repr=False)

    async def get(self, doc_id: str) -> dict[str, Any]:
        await asyncio.sleep(0)
        doc = self._docs.get(doc_id)
        if doc is None:
            raise NotFound(doc_id)
        return copy.deepcopy(doc)

    async def put(self, doc: dict[str, Any]) -> str:
        await asyncio.sleep(0)
        doc_id = doc["_id"]
        current = self._docs.get(doc_id)
        self._check_rev(doc_id, current, doc.get("_rev"))

        stored = copy.deepcopy(doc)
        stored["_rev"] = _next_rev(current["_rev"] if current else None)
        kept = set(stored.get("_attachments") or {})
        blobs = self._blobs.get(doc_id, {})
        self._blobs[doc_id] = {name: data for name, data in blobs.items() if name in kept}
        self._docs[doc_id] = stored
        return stored["_rev"]

    async def delete(self, doc_id: str, rev: str) -> None:
        await asyncio.sleep(0)
        current = self._docs.get(doc_id)
        if current is None:
            raise NotFound(doc_id)
        self._check_rev(doc_id, current, rev)
        del self._docs[doc_id]
        self._blobs.pop(doc_id, None)

    async def query(self, index: str, key: Any = None) -> list[dict[str, Any]]:
        await asyncio.sleep(0)
        try:
            emit = INDEXES[index]
        except KeyError:
            msg = f"Unknown index '{index}'"
            raise ValueError(msg) from None
        rows: list[dict[str, Any]] = []
        for doc in self._docs.values():
            for emitted in emit(doc):
                if key is None or emitted == key:
                    rows.append(copy.deepcopy(doc))
        return rows

    async def get_attachment(self, doc_id: str, name: str) -> bytes:
        await asyncio.sleep(0)
        try:
            return self._blobs[doc_id][name]
        except KeyError:
            raise NotFound(f"{doc_id}/{name}", kind="attachment") from None

    async def put_attachment(
        self,
        doc_id: str,
        name: str,
        data: bytes,
        content_type: str,
        rev: str,
    ) -> str:
        await asyncio.sleep(0)
        current = self._docs.get(doc_id)
        if current is None:
            raise NotFound(doc_id)
        self._check_rev(doc_id, current, rev)
        stubs = current.setdefault("_attachments", {})
        stubs[name] = {"content_type": content_type, "length": len(data), "stub": True}
        self._blobs.setdefault(doc_id, {})[name] = bytes(data)
        current["_rev"] = _next_rev(current["_rev"])
        return current["_rev"]

    async def delete_attachment(self, doc_id: str, name: str, rev: str) -> str:
        await asyncio.sleep(0)
        current = self._docs.get(doc_id)
        if current is None or name not in (current.get("_attachments") or {}):
            raise NotFound(f"{doc_id}/{name}", kind="attachment")
        self._check_rev(doc_id, current, rev)
        del current["_attachments"][name]
        self._blobs.get(doc_id, {}).pop(name, None)
        current["_rev"] = _next_rev(current["_rev"])
        return current["_rev"]

    # -- Test helpers -------------------------------------------------------

    @property
    def document_count(self) -> int:
        """Number of stored documents."""
        return len(self._docs)

    def raw(self, doc_id: str) -> dict[str, Any] | None:
        """Return the stored document without yielding (for assertions)."""
        doc = self._docs.get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    @staticmethod
    def _check_rev(
        doc_id: str,
        current: dict[str, Any] | None,
        supplied: str | None,
    ) -> None:
        expected = current["_rev"] if current is not None else None
        if supplied != expected:
            raise ConflictError(doc_id, supplied)
