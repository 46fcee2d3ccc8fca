"""Key/value document stores that hold serialized snapshots."""

from __future__ import annotations

import logging
from typing import Protocol

import httpx
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..db_models import SnapshotDocument
from ..errors import BlobNotFoundError, ConfigurationError, ProviderError
from ..utils import utc_now

logger = logging.getLogger(__name__)


class BlobStore(Protocol):
    """Read and write whole documents by key.

    ``read`` raises :class:`BlobNotFoundError` for a missing document;
    ``write`` with ``None`` deletes it.
    """

    async def read(self, key: str) -> bytes: ...

    async def write(self, key: str, content: bytes | None) -> None: ...


class GistBlobStore:
    """Store documents as files of a single GitHub Gist."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        if not settings.gist_id or not settings.gist_token:
            raise ConfigurationError(
                "GIST_ID and GIST_TOKEN are required for the gist snapshot backend"
            )
        self._gist_id = settings.gist_id
        self._token = settings.gist_token
        self._client = http_client

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    async def read(self, key: str) -> bytes:
        try:
            response = await self._client.get(
                f"/gists/{self._gist_id}", headers=self._headers()
            )
        except httpx.HTTPError as exc:
            raise ProviderError("gist", f"read of {key} failed: {exc}") from exc

        if response.status_code == 404:
            raise BlobNotFoundError(f"gist {self._gist_id} not found")
        if response.status_code >= 400:
            raise ProviderError(
                "gist", f"read of {key} failed with status {response.status_code}"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError("gist", "non-JSON response") from exc

        files = payload.get("files") if isinstance(payload, dict) else None
        entry = files.get(key) if isinstance(files, dict) else None
        if not isinstance(entry, dict):
            raise BlobNotFoundError(f"file {key} not found in gist {self._gist_id}")

        if entry.get("truncated") and entry.get("raw_url"):
            return await self._read_raw(key, entry["raw_url"])
        return (entry.get("content") or "").encode("utf-8")

    async def _read_raw(self, key: str, raw_url: str) -> bytes:
        logger.info("Gist file %s is truncated, fetching raw content", key)
        try:
            response = await self._client.get(raw_url, headers=self._headers())
        except httpx.HTTPError as exc:
            raise ProviderError("gist", f"raw read of {key} failed: {exc}") from exc
        if response.status_code >= 400:
            raise ProviderError(
                "gist", f"raw read of {key} failed with status {response.status_code}"
            )
        return response.content

    async def write(self, key: str, content: bytes | None) -> None:
        file_entry = None if content is None else {"content": content.decode("utf-8")}
        try:
            response = await self._client.patch(
                f"/gists/{self._gist_id}",
                json={"files": {key: file_entry}},
                headers=self._headers(),
            )
        except httpx.HTTPError as exc:
            raise ProviderError("gist", f"write of {key} failed: {exc}") from exc
        if response.status_code >= 400:
            raise ProviderError(
                "gist", f"write of {key} failed with status {response.status_code}"
            )


class DatabaseBlobStore:
    """Store documents as rows of the ``snapshot_documents`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def read(self, key: str) -> bytes:
        async with self._session_factory() as session:
            document = await session.scalar(
                select(SnapshotDocument).where(SnapshotDocument.key == key)
            )
        if document is None:
            raise BlobNotFoundError(f"document {key} not found")
        return document.content

    async def write(self, key: str, content: bytes | None) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                if content is None:
                    await session.execute(
                        delete(SnapshotDocument).where(SnapshotDocument.key == key)
                    )
                    return
                document = await session.get(SnapshotDocument, key)
                if document is None:
                    document = SnapshotDocument(key=key, content=content)
                    session.add(document)
                document.content = content
                document.size_bytes = len(content)
                document.updated_at = utc_now()
