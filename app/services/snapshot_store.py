"""Persist :class:`AnimeSnapshot` documents within a blob store's size ceiling."""

from __future__ import annotations

import logging

from pydantic import ValidationError

from ..config import GIST_MAX_FILE_BYTES
from ..errors import BlobNotFoundError, SnapshotCorruptError, SnapshotTooLargeError
from ..models import AnimeSnapshot, GenerationMetadata
from .blob_store import BlobStore

logger = logging.getLogger(__name__)

REDUCED_PREVIOUS_DESCRIPTION = "Previous data cleared due to size limit"


def serialize_snapshot(snapshot: AnimeSnapshot) -> bytes:
    return snapshot.model_dump_json(indent=2).encode("utf-8")


class SnapshotStore:
    """Load and save the snapshot document stored under ``key``."""

    def __init__(
        self,
        blob_store: BlobStore,
        key: str,
        max_bytes: int = GIST_MAX_FILE_BYTES,
    ):
        self._blob_store = blob_store
        self._key = key
        self._max_bytes = max_bytes

    @property
    def key(self) -> str:
        return self._key

    async def load(self) -> AnimeSnapshot | None:
        """Return the stored snapshot, or ``None`` if none has been saved yet.

        Transport failures propagate unchanged; undecodable content raises
        :class:`SnapshotCorruptError`.
        """

        try:
            content = await self._blob_store.read(self._key)
        except BlobNotFoundError:
            logger.info("Snapshot %s not found, a new one will be created", self._key)
            return None

        try:
            snapshot = AnimeSnapshot.model_validate_json(content)
        except ValidationError as exc:
            raise SnapshotCorruptError(f"Snapshot {self._key} is malformed: {exc}") from exc
        logger.info(
            "Snapshot %s loaded (%s current items)",
            self._key,
            len(snapshot.current.items),
        )
        return snapshot

    async def save(self, snapshot: AnimeSnapshot) -> AnimeSnapshot:
        """Write ``snapshot`` and return what was actually stored.

        An oversized document is retried once with the previous generation's
        items cleared. The current generation is never truncated; if the
        reduced document still does not fit, :class:`SnapshotTooLargeError`
        is raised and nothing is written.
        """

        content = serialize_snapshot(snapshot)
        if len(content) <= self._max_bytes:
            await self._blob_store.write(self._key, content)
            logger.info("Snapshot %s saved (%.2fKB)", self._key, len(content) / 1024)
            return snapshot

        logger.warning(
            "Snapshot %s size (%.2fKB) exceeds limit (%.2fKB)",
            self._key,
            len(content) / 1024,
            self._max_bytes / 1024,
        )
        if not snapshot.previous.items:
            raise SnapshotTooLargeError(len(content), self._max_bytes, reduced=False)

        reduced = snapshot.model_copy(
            update={
                "previous": snapshot.previous.model_copy(
                    update={
                        "items": [],
                        "metadata": GenerationMetadata(
                            total_count=0, description=REDUCED_PREVIOUS_DESCRIPTION
                        ),
                    }
                )
            }
        )
        reduced_content = serialize_snapshot(reduced)
        if len(reduced_content) > self._max_bytes:
            raise SnapshotTooLargeError(len(reduced_content), self._max_bytes, reduced=True)

        await self._blob_store.write(self._key, reduced_content)
        logger.info(
            "Snapshot %s saved with previous generation cleared (%.2fKB)",
            self._key,
            len(reduced_content) / 1024,
        )
        return reduced

    async def delete(self) -> None:
        """Remove the stored snapshot; a missing document is not an error."""

        try:
            await self._blob_store.read(self._key)
        except BlobNotFoundError:
            logger.info("Snapshot %s not found, nothing to delete", self._key)
            return
        await self._blob_store.write(self._key, None)
        logger.info("Snapshot %s deleted", self._key)
