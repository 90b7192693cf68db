"""CouchDB adapter for :class:`~fleetsync._store.DocumentStore`.

Talks to CouchDB's HTTP API through a single :class:`httpx.AsyncClient`.
Status mapping:

- ``404`` → :class:`~fleetsync._errors.NotFound`
- ``409`` → :class:`~fleetsync._errors.ConflictError`
- network failures and other non-2xx answers →
  :class:`~fleetsync._errors.StoreUnavailable`

Each index in :data:`~fleetsync._store.INDEXES` is a view
``_design/{design}/_view/{view}`` whose map function emits the index
key; queries use ``include_docs=true``.
"""

from __future__ import annotations

import json
import logging
from typing import Any
from urllib.parse import quote

import httpx

from fleetsync._errors import ConflictError, NotFound, StoreUnavailable
from fleetsync._settings import CouchDBSettings

logger = logging.getLogger(__name__)

DESIGN_DOCUMENTS: dict[str, dict[str, str]] = {
    "devices": {
        "all": "function(doc) { if (doc.type === 'device') { emit(doc._id, null); } }",
        "by_status": (
            "function(doc) { if (doc.type === 'device') { emit(doc.status, null); } }"
        ),
    },
    "content": {
        "all": "function(doc) { if (doc.type === 'content') { emit(doc._id, null); } }",
        "by_status": (
            "function(doc) { if (doc.type === 'content') { emit(doc.status, null); } }"
        ),
        "by_device": (
            "function(doc) { if (doc.type === 'content' && doc.assigned_devices) {"
            " doc.assigned_devices.forEach(function(id) { emit(id, null); }); } }"
        ),
    },
}
"""Design document name → view name → JavaScript map function."""


def _doc_path(doc_id: str) -> str:
    if doc_id.startswith("_design/"):
        return "_design/" + quote(doc_id.removeprefix("_design/"), safe="")
    return quote(doc_id, safe="")


class CouchDocumentStore:
    """Revisioned document store backed by a CouchDB database.

    Parameters
    ----------
    settings:
        Server URL, credentials, database name and request timeout.
    client:
        Pre-built HTTP client (tests pass one with a
        :class:`httpx.MockTransport`).  Built from *settings* when omitted.
    """

    def __init__(
        self,
        settings: CouchDBSettings,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._database = settings.database
        if client is None:
            auth = None
            if settings.username:
                password = settings.password.get_secret_value() if settings.password else ""
                auth = httpx.BasicAuth(settings.username, password)
            client = httpx.AsyncClient(
                base_url=settings.url.rstrip("/"),
                auth=auth,
                timeout=settings.timeout,
            )
        self._client = client

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> CouchDocumentStore:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    # -- Documents ----------------------------------------------------------

    async def get(self, doc_id: str) -> dict[str, Any]:
        response = await self._request("GET", self._url(doc_id), doc_id=doc_id)
        return response.json()

    async def put(self, doc: dict[str, Any]) -> str:
        doc_id = doc["_id"]
        response = await self._request(
            "PUT",
            self._url(doc_id),
            doc_id=doc_id,
            rev=doc.get("_rev"),
            json=doc,
        )
        return response.json()["rev"]

    async def delete(self, doc_id: str, rev: str) -> None:
        await self._request(
            "DELETE",
            self._url(doc_id),
            doc_id=doc_id,
            rev=rev,
            params={"rev": rev},
        )

    async def query(self, index: str, key: Any = None) -> list[dict[str, Any]]:
        design, _, view = index.partition("/")
        if view not in DESIGN_DOCUMENTS.get(design, {}):
            msg = f"Unknown index '{index}'"
            raise ValueError(msg)
        params = {"include_docs": "true"}
        if key is not None:
            params["key"] = json.dumps(key)
        response = await self._request(
            "GET",
            f"/{self._database}/_design/{design}/_view/{view}",
            doc_id=f"_design/{design}",
            params=params,
        )
        return [row["doc"] for row in response.json().get("rows", []) if row.get("doc")]

    # -- Attachments --------------------------------------------------------

    async def get_attachment(self, doc_id: str, name: str) -> bytes:
        response = await self._request(
            "GET",
            self._url(doc_id, name),
            doc_id=f"{doc_id}/{name}",
            kind="attachment",
        )
        return response.content

    async def put_attachment(
        self,
        doc_id: str,
        name: str,
        data: bytes,
        content_type: str,
        rev: str,
    ) -> str:
        response = await self._request(
            "PUT",
            self._url(doc_id, name),
            doc_id=doc_id,
            rev=rev,
            params={"rev": rev},
            content=data,
            headers={"Content-Type": content_type},
        )
        return response.json()["rev"]

    async def delete_attachment(self, doc_id: str, name: str, rev: str) -> str:
        response = await self._request(
            "DELETE",
            self._url(doc_id, name),
            doc_id=f"{doc_id}/{name}",
            kind="attachment",
            rev=rev,
            params={"rev": rev},
        )
        return response.json()["rev"]

    # -- Setup --------------------------------------------------------------

    async def ensure_database(self) -> bool:
        """Create the database and install the view design documents.

        Existing design documents are rewritten only when their views
        differ.  Safe to run repeatedly.

        Returns:
            ``True`` if the database itself was created.
        """
        response = await self._send("PUT", f"/{self._database}")
        created = response.status_code in (201, 202)
        if not created and response.status_code != 412:
            raise StoreUnavailable(
                f"cannot create database '{self._database}': HTTP {response.status_code}",
            )
        if created:
            logger.info("Created database %s", self._database)

        for design, views in DESIGN_DOCUMENTS.items():
            doc_id = f"_design/{design}"
            wanted = {name: {"map": source} for name, source in views.items()}
            try:
                existing = await self.get(doc_id)
            except NotFound:
                existing = None
            if existing is not None and existing.get("views") == wanted:
                continue
            doc: dict[str, Any] = {"_id": doc_id, "language": "javascript", "views": wanted}
            if existing is not None:
                doc["_rev"] = existing["_rev"]
            await self.put(doc)
            logger.info("Installed design document %s", doc_id)
        return created

    # -- Internal -----------------------------------------------------------

    def _url(self, doc_id: str, attachment: str | None = None) -> str:
        url = f"/{self._database}/{_doc_path(doc_id)}"
        if attachment is not None:
            url += "/" + quote(attachment, safe="")
        return url

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            msg = f"CouchDB request {method} {url} failed: {exc}"
            raise StoreUnavailable(msg) from exc

    async def _request(
        self,
        method: str,
        url: str,
        *,
        doc_id: str,
        kind: str = "document",
        rev: str | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        response = await self._send(method, url, **kwargs)
        if response.status_code == 404:
            raise NotFound(doc_id, kind=kind)
        if response.status_code == 409:
            raise ConflictError(doc_id, rev)
        if response.is_error:
            msg = f"CouchDB {method} {url} returned HTTP {response.status_code}"
            raise StoreUnavailable(msg)
        return response
