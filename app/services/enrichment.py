"""Staged, deduplicated cross-provider enrichment of anime records."""

from __future__ import annotations

import logging
from typing import Callable, Hashable, Iterable, Sequence, TypeVar

from ..config import DEFAULT_TRANSLATION_KEYS
from ..models import Anime, Stage
from ..utils import first_non_empty
from .lookup import (
    CrossReferenceProvider,
    ExternalIds,
    LocalizationProvider,
    LocalizedDetails,
    SearchHit,
    SeriesTranslations,
    tmdb_tv_url,
    tvdb_series_url,
)
from .markers import MarkerStore
from .scheduler import TaskResult, run_bounded

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)

SEARCH_MEDIA_TYPE = "tv"


def group_items(
    items: Iterable[Anime], key: Callable[[Anime], K | None]
) -> dict[K, list[Anime]]:
    """Group items by ``key`` preserving first-seen order; ``None`` keys are dropped."""

    groups: dict[K, list[Anime]] = {}
    for item in items:
        value = key(item)
        if value is None or value == "":
            continue
        groups.setdefault(value, []).append(item)
    return groups


class EnrichmentPipeline:
    """Fill in TMDB/TheTVDB identifiers and localized text for a batch.

    Stages run strictly in order and each stage issues one lookup per unique
    key (search title, TMDB id or TheTVDB id) through :func:`run_bounded`:

    1. title search on TMDB for items with neither a TMDB nor a TheTVDB id
    2. TMDB localized details for every known TMDB id
    3. TMDB external ids for items still lacking localized text
    4. TheTVDB translations for items still lacking localized text

    Items that picked up TMDB localized text in stage 2 never reach stages 3
    and 4. Failed lookups set an ``error`` marker, empty answers a ``no-data``
    marker, so the next pass only retries what is worth retrying.
    """

    def __init__(
        self,
        primary: CrossReferenceProvider | None,
        secondary: LocalizationProvider | None,
        markers: MarkerStore,
        *,
        concurrency: int = 5,
        timeout: float | None = None,
        search_language: str = "en",
        detail_language: str = "zh-CN",
        translation_keys: Sequence[str] = DEFAULT_TRANSLATION_KEYS,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._primary = primary
        self._secondary = secondary
        self._markers = markers
        self._concurrency = concurrency
        self._timeout = timeout
        self._search_language = search_language
        self._detail_language = detail_language
        self._translation_keys = tuple(translation_keys)

    @property
    def enabled(self) -> bool:
        return self._primary is not None or self._secondary is not None

    async def enrich(self, items: list[Anime]) -> list[Anime]:
        """Enrich ``items`` in place and return the same list."""

        if not self.enabled or not items:
            return items

        providers = [
            name
            for name, provider in (("TMDB", self._primary), ("TheTVDB", self._secondary))
            if provider is not None
        ]
        logger.info(
            "Batch enriching %s anime with %s data", len(items), " + ".join(providers)
        )

        if self._primary is not None:
            await self._search_titles(self._primary, items)
            await self._fetch_details(self._primary, items)
            await self._resolve_cross_references(self._primary, items)
        if self._secondary is not None:
            await self._fetch_secondary_details(self._secondary, items)

        self._log_summary(items)
        return items

    async def _search_titles(
        self, primary: CrossReferenceProvider, items: list[Anime]
    ) -> None:
        def _search_key(item: Anime) -> str | None:
            if item.tmdb_id or item.tvdb_id:
                return None
            if self._markers.should_skip(item, Stage.TITLE_SEARCH):
                return None
            return item.search_title()

        groups = group_items(items, _search_key)
        if not groups:
            return

        def _task(title: str):
            return lambda: primary.search_by_title(title, language=self._search_language)

        keys = list(groups)
        results = await self._run([_task(title) for title in keys])

        for title, result in zip(keys, results):
            group = groups[title]
            if not result.ok:
                logger.warning("Error searching TMDB for %r: %s", title, result.reason)
                self._markers.mark_error(group, Stage.TITLE_SEARCH)
                continue
            hit = self._select_hit(result.value or [])
            if hit is None:
                self._markers.mark_no_data(group, Stage.TITLE_SEARCH)
                continue
            for item in group:
                if not item.tmdb_id:
                    item.tmdb_id = hit.id
                    if not item.tmdb_url:
                        item.tmdb_url = tmdb_tv_url(hit.id)
                self._markers.clear(item, Stage.TITLE_SEARCH)

    async def _fetch_details(
        self, primary: CrossReferenceProvider, items: list[Anime]
    ) -> None:
        groups = group_items(
            (item for item in items if not item.has_primary_localization()),
            lambda item: item.tmdb_id,
        )
        tmdb_ids = [
            tmdb_id
            for tmdb_id, group in groups.items()
            if self._any_attemptable(group, Stage.DETAILS)
        ]
        if not tmdb_ids:
            return

        def _task(tmdb_id: int):
            return lambda: primary.get_details(tmdb_id, language=self._detail_language)

        results = await self._run([_task(tmdb_id) for tmdb_id in tmdb_ids])

        for tmdb_id, result in zip(tmdb_ids, results):
            group = groups[tmdb_id]
            if not result.ok:
                logger.warning(
                    "Error getting TMDB details for TMDB ID %s: %s", tmdb_id, result.reason
                )
                self._markers.mark_error(group, Stage.DETAILS)
                continue
            details: LocalizedDetails | None = result.value
            if details is None or details.is_empty():
                self._markers.mark_no_data(group, Stage.DETAILS)
                continue
            for item in group:
                if details.title and details.title.strip():
                    item.tmdb_title = details.title
                if details.overview and details.overview.strip():
                    item.tmdb_description = details.overview
                if not item.tmdb_url:
                    item.tmdb_url = tmdb_tv_url(tmdb_id)
                self._markers.clear(item, Stage.DETAILS)

    async def _resolve_cross_references(
        self, primary: CrossReferenceProvider, items: list[Anime]
    ) -> None:
        groups = group_items(
            (
                item
                for item in items
                if not item.has_primary_localization() and not item.tvdb_id
            ),
            lambda item: item.tmdb_id,
        )
        tmdb_ids = [
            tmdb_id
            for tmdb_id, group in groups.items()
            if self._any_attemptable(group, Stage.CROSS_REFERENCE)
        ]
        if not tmdb_ids:
            return

        def _task(tmdb_id: int):
            return lambda: primary.get_external_ids(tmdb_id)

        results = await self._run([_task(tmdb_id) for tmdb_id in tmdb_ids])

        for tmdb_id, result in zip(tmdb_ids, results):
            group = groups[tmdb_id]
            if not result.ok:
                logger.warning(
                    "Error getting TheTVDB ID from TMDB external ids for TMDB ID %s: %s",
                    tmdb_id,
                    result.reason,
                )
                self._markers.mark_error(group, Stage.CROSS_REFERENCE)
                continue
            external: ExternalIds | None = result.value
            if external is None or not external.tvdb_id:
                self._markers.mark_no_data(group, Stage.CROSS_REFERENCE)
                continue
            for item in group:
                item.tvdb_id = external.tvdb_id
                if not item.tvdb_url:
                    item.tvdb_url = tvdb_series_url(external.tvdb_id)
                self._markers.clear(item, Stage.CROSS_REFERENCE)

    async def _fetch_secondary_details(
        self, secondary: LocalizationProvider, items: list[Anime]
    ) -> None:
        groups = group_items(
            (
                item
                for item in items
                if not item.has_primary_localization()
                and not item.has_secondary_localization()
            ),
            lambda item: item.tvdb_id,
        )
        tvdb_ids = [
            tvdb_id
            for tvdb_id, group in groups.items()
            if self._any_attemptable(group, Stage.SECONDARY_DETAILS)
        ]
        if not tvdb_ids:
            return

        def _task(tvdb_id: int):
            return lambda: secondary.get_series(tvdb_id, language=self._detail_language)

        results = await self._run([_task(tvdb_id) for tvdb_id in tvdb_ids])

        for tvdb_id, result in zip(tvdb_ids, results):
            group = groups[tvdb_id]
            if not result.ok:
                logger.warning(
                    "Error getting TheTVDB data for TVDB ID %s: %s", tvdb_id, result.reason
                )
                self._markers.mark_error(group, Stage.SECONDARY_DETAILS)
                continue
            series: SeriesTranslations | None = result.value
            if series is None:
                self._markers.mark_no_data(group, Stage.SECONDARY_DETAILS)
                continue
            title = self.pick_translation(series.names)
            overview = self.pick_translation(series.overviews)
            if not (title or overview):
                self._markers.mark_no_data(group, Stage.SECONDARY_DETAILS)
                continue
            for item in group:
                if not item.tvdb_url:
                    item.tvdb_url = tvdb_series_url(tvdb_id)
                if title:
                    item.tvdb_title = title
                if overview:
                    item.tvdb_description = overview
                self._markers.clear(item, Stage.SECONDARY_DETAILS)

    def pick_translation(self, values: dict[str, str]) -> str | None:
        """Return the first translation matching the preferred language keys."""

        return first_non_empty(values.get(key) for key in self._translation_keys)

    def _any_attemptable(self, group: Iterable[Anime], stage: Stage) -> bool:
        return any(not self._markers.should_skip(item, stage) for item in group)

    async def _run(self, tasks: list) -> list[TaskResult]:
        return await run_bounded(tasks, self._concurrency, timeout=self._timeout)

    @staticmethod
    def _select_hit(hits: Sequence[SearchHit]) -> SearchHit | None:
        for hit in hits:
            if hit.media_type == SEARCH_MEDIA_TYPE and hit.id:
                return hit
        return None

    @staticmethod
    def _log_summary(items: Sequence[Anime]) -> None:
        localized = sum(
            1 for item in items if item.has_primary_localization() or item.has_secondary_localization()
        )
        with_tmdb = sum(1 for item in items if item.tmdb_id)
        logger.info(
            "Batch enrichment completed: %s/%s anime localized, %s/%s with TMDB id",
            localized,
            len(items),
            with_tmdb,
            len(items),
        )
        for item in items:
            logger.debug(
                "Anime [%s]: TMDB ID %s, TVDB ID %s, search title %r",
                item.anilist_id,
                item.tmdb_id or "not found",
                item.tvdb_id or "not found",
                item.search_title(),
            )
