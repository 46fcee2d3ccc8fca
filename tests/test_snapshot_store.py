"""Tests for snapshot persistence and the size ceiling."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

import pytest

from app.errors import BlobNotFoundError, SnapshotCorruptError, SnapshotTooLargeError
from app.models import Anime, AnimeTitle
from app.services.generations import advance_snapshot, create_initial_snapshot
from app.services.snapshot_store import REDUCED_PREVIOUS_DESCRIPTION, SnapshotStore, serialize_snapshot

T0 = datetime(2024, 5, 1, 4, 15, tzinfo=timezone.utc)
T1 = datetime(2024, 5, 1, 12, 15, tzinfo=timezone.utc)


class MemoryBlobStore:
    def __init__(self) -> None:
        self.documents: dict[str, bytes] = {}
        self.writes: list[tuple[str, bytes | None]] = []

    async def read(self, key: str) -> bytes:
        try:
            return self.documents[key]
        except KeyError:
            raise BlobNotFoundError(key) from None

    async def write(self, key: str, content: bytes | None) -> None:
        self.writes.append((key, content))
        if content is None:
            self.documents.pop(key, None)
        else:
            self.documents[key] = content


def make_items(count: int, offset: int = 0, description: str = "") -> list[Anime]:
    return [
        Anime(
            anilist_id=offset + index,
            title=AnimeTitle(romaji=f"Show {offset + index}"),
            description=description or None,
        )
        for index in range(count)
    ]


def test_load_returns_none_when_document_is_missing() -> None:
    store = SnapshotStore(MemoryBlobStore(), "anime.json")

    assert asyncio.run(store.load()) is None


def test_save_then_load_round_trip() -> None:
    blobs = MemoryBlobStore()
    store = SnapshotStore(blobs, "anime.json")
    snapshot = create_initial_snapshot(make_items(3), T0)

    stored = asyncio.run(store.save(snapshot))
    loaded = asyncio.run(store.load())

    assert stored == snapshot
    assert loaded == snapshot
    # Stored as indented JSON.
    assert blobs.documents["anime.json"].startswith(b"{\n  ")


def test_malformed_content_raises() -> None:
    blobs = MemoryBlobStore()
    blobs.documents["anime.json"] = b"{not json"
    store = SnapshotStore(blobs, "anime.json")

    with pytest.raises(SnapshotCorruptError):
        asyncio.run(store.load())


def test_structurally_invalid_content_raises() -> None:
    blobs = MemoryBlobStore()
    blobs.documents["anime.json"] = json.dumps({"current": {}}).encode()
    store = SnapshotStore(blobs, "anime.json")

    with pytest.raises(SnapshotCorruptError):
        asyncio.run(store.load())


def test_oversized_snapshot_drops_previous_items() -> None:
    padding = "x" * 400
    initial = create_initial_snapshot(make_items(10, description=padding), T0)
    snapshot = advance_snapshot(initial.current, make_items(10, offset=100, description=padding), T1)
    current_only = serialize_snapshot(
        snapshot.model_copy(
            update={"previous": snapshot.previous.model_copy(update={"items": []})}
        )
    )
    blobs = MemoryBlobStore()
    store = SnapshotStore(blobs, "anime.json", max_bytes=len(current_only) + 200)

    stored = asyncio.run(store.save(snapshot))

    assert len(blobs.writes) == 1
    assert stored.current == snapshot.current
    assert stored.previous.items == []
    assert stored.previous.metadata.total_count == 0
    assert stored.previous.metadata.description == REDUCED_PREVIOUS_DESCRIPTION
    assert stored.previous.timestamp == snapshot.previous.timestamp
    assert asyncio.run(store.load()) == stored


def test_oversized_current_generation_fails_loudly() -> None:
    initial = create_initial_snapshot(make_items(5), T0)
    snapshot = advance_snapshot(initial.current, make_items(20, offset=100, description="y" * 500), T1)
    blobs = MemoryBlobStore()
    store = SnapshotStore(blobs, "anime.json", max_bytes=2_048)

    with pytest.raises(SnapshotTooLargeError) as excinfo:
        asyncio.run(store.save(snapshot))

    assert excinfo.value.reduced is True
    assert blobs.writes == []


def test_oversized_without_previous_items_fails_without_retry() -> None:
    snapshot = create_initial_snapshot(make_items(20, description="z" * 500), T0)
    store = SnapshotStore(MemoryBlobStore(), "anime.json", max_bytes=2_048)

    with pytest.raises(SnapshotTooLargeError) as excinfo:
        asyncio.run(store.save(snapshot))

    assert excinfo.value.reduced is False


def test_delete_is_a_no_op_when_missing() -> None:
    blobs = MemoryBlobStore()
    store = SnapshotStore(blobs, "anime.json")

    asyncio.run(store.delete())
    assert blobs.writes == []

    asyncio.run(store.save(create_initial_snapshot(make_items(1), T0)))
    asyncio.run(store.delete())
    assert blobs.writes[-1] == ("anime.json", None)
    assert asyncio.run(store.load()) is None
