"""Service orchestrating catalog fetches, enrichment and snapshot persistence."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Protocol

from ..errors import ConfigurationError, EmptyRefreshError
from ..models import Anime, AnimeSnapshot, ListOptions
from ..utils import utc_now
from .enrichment import EnrichmentPipeline
from .freshness import FreshnessPolicy
from .generations import (
    advance_snapshot,
    carry_enrichment,
    create_initial_snapshot,
    diff_new,
)
from .result_cache import ResultCache
from .snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)

RESULT_CACHE_KEY = "anime-cache:result"


class CatalogSource(Protocol):
    async def fetch_merged(self, options: ListOptions) -> list[Anime]: ...


@dataclass(slots=True)
class RefreshResult:
    """Outcome of an explicit refresh: the served items and what was stored."""

    items: list[Anime]
    snapshot: AnimeSnapshot


class AnimeCatalogService:
    """Serve the enriched anime list from cache, snapshot or a fresh pipeline run.

    Reads go through the in-process result cache first, then the persisted
    snapshot; a fresh fetch happens only when the snapshot is missing or
    stale. Provider failures on this path fall back to stale data. Only
    :meth:`force_refresh` surfaces them.
    """

    def __init__(
        self,
        catalog: CatalogSource,
        pipeline: EnrichmentPipeline,
        snapshot_store: SnapshotStore,
        freshness: FreshnessPolicy,
        result_cache: ResultCache[list[Anime]],
        *,
        clock: Callable[[], datetime] = utc_now,
        refresh_poll_seconds: int = 300,
    ):
        self._catalog = catalog
        self._pipeline = pipeline
        self._snapshot_store = snapshot_store
        self._freshness = freshness
        self._result_cache = result_cache
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}
        self._refresh_task: asyncio.Task[None] | None = None
        self._refresh_poll_seconds = refresh_poll_seconds

    async def start(self) -> None:
        """Launch the background loop that refreshes inside the daily windows."""

        if self._refresh_task is None:
            self._refresh_task = asyncio.create_task(self._refresh_loop())

    async def stop(self) -> None:
        """Stop the background refresh loop."""

        if self._refresh_task is None:
            return
        self._refresh_task.cancel()
        with suppress(asyncio.CancelledError):
            await self._refresh_task
        self._refresh_task = None

    async def get_list_cached_or_fresh(
        self,
        options: ListOptions | None = None,
        *,
        use_result_cache: bool = True,
    ) -> list[Anime]:
        """Return the current list, refreshing the snapshot when it is stale.

        Never raises because providers are down or returned nothing; a
        :class:`ConfigurationError` still propagates. With
        ``use_result_cache=False`` the in-process cache is skipped so that
        scheduled callers always evaluate snapshot freshness.
        """

        options = options or ListOptions()
        if use_result_cache:
            cached = self._result_cache.get(RESULT_CACHE_KEY)
            if cached is not None:
                logger.info("Result cache hit: %s anime", len(cached))
                return cached

        async with self._lock():
            if use_result_cache:
                cached = self._result_cache.get(RESULT_CACHE_KEY)
                if cached is not None:
                    return cached

            snapshot = await self._load_snapshot()
            if snapshot is not None and not self._freshness.is_stale(
                snapshot.current.timestamp
            ):
                logger.info("Snapshot is fresh, serving stored list")
                self._cache(snapshot.current.items)
                return snapshot.current.items

            logger.info("Snapshot missing or stale, refreshing")
            try:
                items = await self._fetch_fresh(options, snapshot)
            except ConfigurationError:
                raise
            except Exception as exc:
                logger.error("Failed to fetch anime data: %s", exc)
                if snapshot is not None:
                    logger.warning("Serving stale snapshot after fetch failure")
                    return snapshot.current.items
                raise

            if not items:
                logger.warning("Fetched empty anime list, not caching")
                if snapshot is not None:
                    logger.warning("Serving stale snapshot after empty fetch")
                    return snapshot.current.items
                return []

            updated = self._build_snapshot(snapshot, items)
            try:
                await self._snapshot_store.save(updated)
            except ConfigurationError:
                raise
            except Exception as exc:
                logger.error("Failed to persist snapshot (serving fresh data anyway): %s", exc)

            self._cache(updated.current.items)
            return updated.current.items

    async def force_refresh(self, options: ListOptions | None = None) -> RefreshResult:
        """Fetch, merge and persist a new generation, raising on any failure."""

        options = options or ListOptions()
        async with self._lock():
            snapshot = await self._load_snapshot()
            items = await self._fetch_fresh(options, snapshot)
            if not items:
                logger.warning("Fetched empty anime list, cannot update snapshot")
                raise EmptyRefreshError("Fetched empty anime list, cannot update snapshot")

            updated = self._build_snapshot(snapshot, items)
            stored = await self._snapshot_store.save(updated)
            self._cache(stored.current.items)
            logger.info("Snapshot refreshed with %s anime", len(stored.current.items))
            return RefreshResult(items=stored.current.items, snapshot=stored)

    async def get_list_from_cache(self) -> list[Anime]:
        """Return the stored list without ever calling a provider."""

        cached = self._result_cache.get(RESULT_CACHE_KEY)
        if cached is not None:
            return cached
        snapshot = await self._load_snapshot()
        if snapshot is None:
            return []
        self._cache(snapshot.current.items)
        return snapshot.current.items

    async def get_new_items(self) -> list[Anime]:
        """Return current items that did not appear in the previous generation."""

        snapshot = await self._load_snapshot()
        if snapshot is None or not snapshot.previous.items:
            return []
        return diff_new(snapshot.current.items, snapshot.previous.items)

    async def get_item(self, identifier: int) -> Anime | None:
        """Look an item up by AniList id, falling back to its TMDB id."""

        items = await self.get_list_from_cache()
        for item in items:
            if item.anilist_id == identifier:
                return item
        for item in items:
            if item.tmdb_id == identifier:
                return item
        return None

    def clear_cache(self) -> None:
        self._result_cache.clear(RESULT_CACHE_KEY)
        logger.info("Anime result cache cleared")

    async def delete_snapshot(self) -> None:
        """Drop the stored snapshot so the next read rebuilds it."""

        async with self._lock():
            self.clear_cache()
            await self._snapshot_store.delete()

    def _lock(self) -> asyncio.Lock:
        return self._locks.setdefault(self._snapshot_store.key, asyncio.Lock())

    def _cache(self, items: list[Anime]) -> None:
        self._result_cache.set(RESULT_CACHE_KEY, items)
        logger.info("Anime result cache set: %s anime", len(items))

    async def _load_snapshot(self) -> AnimeSnapshot | None:
        """Load the snapshot, treating unreadable content as absent."""

        try:
            return await self._snapshot_store.load()
        except ConfigurationError:
            raise
        except Exception as exc:
            logger.warning("Snapshot read failed, treating as absent: %s", exc)
            return None

    async def _fetch_fresh(
        self, options: ListOptions, snapshot: AnimeSnapshot | None
    ) -> list[Anime]:
        items = await self._catalog.fetch_merged(options)
        if not items:
            return []
        if snapshot is not None:
            items = carry_enrichment(snapshot.current.items, items)
        if self._pipeline.enabled:
            items = await self._pipeline.enrich(items)
        return items

    def _build_snapshot(
        self, snapshot: AnimeSnapshot | None, items: list[Anime]
    ) -> AnimeSnapshot:
        now = self._clock()
        if snapshot is None:
            logger.info("Creating initial snapshot")
            return create_initial_snapshot(items, now)
        logger.info("Advancing existing snapshot")
        return advance_snapshot(snapshot.current, items, now)

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self._refresh_poll_seconds)
            try:
                await self.get_list_cached_or_fresh(use_result_cache=False)
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception("Scheduled refresh failed: %s", exc)
