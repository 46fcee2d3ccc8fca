"""Tests for the staged enrichment pipeline."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from app.models import Anime, AnimeTitle, ErrorMarker, NoDataMarker, Stage
from app.services.enrichment import EnrichmentPipeline, group_items
from app.services.lookup import ExternalIds, LocalizedDetails, SearchHit, SeriesTranslations
from app.services.markers import MarkerStore

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeTMDB:
    """In-memory stand-in for the TMDB adapter that records every call."""

    def __init__(
        self,
        *,
        hits: dict[str, list[SearchHit]] | None = None,
        details: dict[int, LocalizedDetails] | None = None,
        external: dict[int, ExternalIds] | None = None,
        failing_titles: set[str] | None = None,
        failing_ids: set[int] | None = None,
        failing_external_ids: set[int] | None = None,
    ) -> None:
        self.hits = hits or {}
        self.details = details or {}
        self.external = external or {}
        self.failing_titles = failing_titles or set()
        self.failing_ids = failing_ids or set()
        self.failing_external_ids = failing_external_ids or set()
        self.search_calls: list[str] = []
        self.detail_calls: list[int] = []
        self.external_calls: list[int] = []

    async def search_by_title(self, title: str, *, language: str) -> list[SearchHit]:
        self.search_calls.append(title)
        if title in self.failing_titles:
            raise RuntimeError("tmdb unavailable")
        return self.hits.get(title, [])

    async def get_details(self, tmdb_id: int, *, language: str) -> LocalizedDetails | None:
        self.detail_calls.append(tmdb_id)
        if tmdb_id in self.failing_ids:
            raise RuntimeError("tmdb unavailable")
        return self.details.get(tmdb_id)

    async def get_external_ids(self, tmdb_id: int) -> ExternalIds | None:
        self.external_calls.append(tmdb_id)
        if tmdb_id in self.failing_external_ids:
            raise RuntimeError("tmdb unavailable")
        return self.external.get(tmdb_id)


class FakeTVDB:
    def __init__(self, series: dict[int, SeriesTranslations] | None = None) -> None:
        self.series = series or {}
        self.calls: list[int] = []

    async def get_series(self, tvdb_id: int, *, language: str) -> SeriesTranslations | None:
        self.calls.append(tvdb_id)
        return self.series.get(tvdb_id)


def make_anime(anilist_id: int, english: str | None = None, **fields) -> Anime:
    return Anime(
        anilist_id=anilist_id,
        title=AnimeTitle(romaji=f"Romaji {anilist_id}", english=english),
        **fields,
    )


def build_pipeline(tmdb=None, tvdb=None, clock=None) -> EnrichmentPipeline:
    return EnrichmentPipeline(tmdb, tvdb, MarkerStore(clock=clock or FakeClock(T0)))


def test_group_items_preserves_first_seen_order_and_drops_missing_keys() -> None:
    items = [make_anime(1, "B"), make_anime(2, "A"), make_anime(3, "B"), make_anime(4)]

    groups = group_items(items, lambda item: item.title.english)

    assert list(groups) == ["B", "A"]
    assert [item.anilist_id for item in groups["B"]] == [1, 3]


def test_identical_titles_issue_a_single_search() -> None:
    tmdb = FakeTMDB(
        hits={"Frieren": [SearchHit(id=209867, media_type="tv", title="Frieren")]},
        details={209867: LocalizedDetails(title="葬送的芙莉莲", overview="简介")},
    )
    items = [make_anime(index, "Frieren") for index in range(1, 6)]

    asyncio.run(build_pipeline(tmdb).enrich(items))

    assert tmdb.search_calls == ["Frieren"]
    assert tmdb.detail_calls == [209867]
    assert all(item.tmdb_id == 209867 for item in items)
    assert all(item.tmdb_title == "葬送的芙莉莲" for item in items)
    assert items[0].tmdb_url == "https://www.themoviedb.org/tv/209867"


def test_series_root_title_is_used_for_search() -> None:
    tmdb = FakeTMDB()
    item = make_anime(2, "Show Season 2", series_title=AnimeTitle(romaji="Root", english="Show"))

    asyncio.run(build_pipeline(tmdb).enrich([item]))

    assert tmdb.search_calls == ["Show"]


def test_non_tv_hits_are_treated_as_no_data() -> None:
    tmdb = FakeTMDB(hits={"Movie": [SearchHit(id=1, media_type="movie", title="Movie")]})
    item = make_anime(1, "Movie")

    asyncio.run(build_pipeline(tmdb).enrich([item]))

    assert item.tmdb_id is None
    assert isinstance(item.markers[Stage.TITLE_SEARCH], NoDataMarker)


def test_no_data_cooldown_skips_until_it_expires() -> None:
    clock = FakeClock(T0)
    tmdb = FakeTMDB()
    pipeline = build_pipeline(tmdb, clock=clock)
    items = [make_anime(1, "Unknown")]

    asyncio.run(pipeline.enrich(items))
    assert tmdb.search_calls == ["Unknown"]

    clock.now = T0 + timedelta(hours=23)
    asyncio.run(pipeline.enrich(items))
    assert tmdb.search_calls == ["Unknown"]

    clock.now = T0 + timedelta(hours=25)
    asyncio.run(pipeline.enrich(items))
    assert tmdb.search_calls == ["Unknown", "Unknown"]


def test_errors_are_retried_on_the_next_pass() -> None:
    clock = FakeClock(T0)
    tmdb = FakeTMDB(failing_titles={"Flaky"})
    pipeline = build_pipeline(tmdb, clock=clock)
    items = [make_anime(1, "Flaky"), make_anime(2, "Stable")]

    asyncio.run(pipeline.enrich(items))

    assert isinstance(items[0].markers[Stage.TITLE_SEARCH], ErrorMarker)
    assert isinstance(items[1].markers[Stage.TITLE_SEARCH], NoDataMarker)

    clock.now = T0 + timedelta(minutes=1)
    asyncio.run(pipeline.enrich(items))

    assert tmdb.search_calls.count("Flaky") == 2
    assert tmdb.search_calls.count("Stable") == 1


def test_items_with_known_tmdb_id_skip_search() -> None:
    tmdb = FakeTMDB(details={42: LocalizedDetails(title="标题", overview=None)})
    item = make_anime(1, "Known", tmdb_id=42)

    asyncio.run(build_pipeline(tmdb).enrich([item]))

    assert tmdb.search_calls == []
    assert tmdb.detail_calls == [42]
    assert item.tmdb_title == "标题"


def test_primary_localization_stops_later_stages() -> None:
    tmdb = FakeTMDB(
        details={42: LocalizedDetails(title="标题", overview="简介")},
        external={42: ExternalIds(tvdb_id=7)},
    )
    tvdb = FakeTVDB({7: SeriesTranslations(id=7, names={"zho": "其他"})})
    item = make_anime(1, tmdb_id=42)

    asyncio.run(build_pipeline(tmdb, tvdb).enrich([item]))

    assert tmdb.external_calls == []
    assert tvdb.calls == []
    assert item.tvdb_title is None


def test_secondary_provider_fills_gaps_left_by_primary() -> None:
    tmdb = FakeTMDB(
        details={42: LocalizedDetails(title=None, overview=None)},
        external={42: ExternalIds(tvdb_id=7)},
    )
    tvdb = FakeTVDB(
        {7: SeriesTranslations(id=7, name="Name", names={"eng": "Name", "zho": "名字"}, overviews={"zho": "概述"})}
    )
    item = make_anime(1, tmdb_id=42)

    asyncio.run(build_pipeline(tmdb, tvdb).enrich([item]))

    assert isinstance(item.markers[Stage.DETAILS], NoDataMarker)
    assert item.tvdb_id == 7
    assert item.tvdb_url == "https://thetvdb.com/series/7"
    assert item.tvdb_title == "名字"
    assert item.tvdb_description == "概述"
    assert item.display_title() == "名字"


def test_secondary_without_preferred_translation_is_no_data() -> None:
    tvdb = FakeTVDB({7: SeriesTranslations(id=7, name="Name", names={"eng": "Name"})})
    item = make_anime(1, tvdb_id=7)

    asyncio.run(build_pipeline(None, tvdb).enrich([item]))

    assert item.tvdb_title is None
    assert isinstance(item.markers[Stage.SECONDARY_DETAILS], NoDataMarker)


def test_already_localized_items_are_never_refetched() -> None:
    tmdb = FakeTMDB()
    tvdb = FakeTVDB()
    item = make_anime(1, "Done", tmdb_id=42, tmdb_title="完成", tvdb_id=7)

    asyncio.run(build_pipeline(tmdb, tvdb).enrich([item]))

    assert tmdb.search_calls == []
    assert tmdb.detail_calls == []
    assert tvdb.calls == []


def test_disabled_pipeline_returns_items_untouched() -> None:
    pipeline = build_pipeline()
    items = [make_anime(1, "Anything")]

    assert pipeline.enabled is False
    assert asyncio.run(pipeline.enrich(items)) is items
    assert items[0].markers == {}


def test_invalid_concurrency_is_rejected() -> None:
    with pytest.raises(ValueError):
        EnrichmentPipeline(FakeTMDB(), None, MarkerStore(), concurrency=0)


def test_detail_no_data_cooldown_skips_until_it_expires() -> None:
    clock = FakeClock(T0)
    tmdb = FakeTMDB()
    pipeline = build_pipeline(tmdb, clock=clock)
    items = [make_anime(1, tmdb_id=42)]

    asyncio.run(pipeline.enrich(items))
    assert isinstance(items[0].markers[Stage.DETAILS], NoDataMarker)
    assert tmdb.detail_calls == [42]

    clock.now = T0 + timedelta(hours=23)
    asyncio.run(pipeline.enrich(items))
    assert tmdb.detail_calls == [42]

    clock.now = T0 + timedelta(hours=25)
    asyncio.run(pipeline.enrich(items))
    assert tmdb.detail_calls == [42, 42]


def test_secondary_no_data_cooldown_skips_until_it_expires() -> None:
    clock = FakeClock(T0)
    tvdb = FakeTVDB()
    pipeline = build_pipeline(None, tvdb, clock=clock)
    items = [make_anime(1, tvdb_id=7)]

    asyncio.run(pipeline.enrich(items))
    assert isinstance(items[0].markers[Stage.SECONDARY_DETAILS], NoDataMarker)

    clock.now = T0 + timedelta(hours=23)
    asyncio.run(pipeline.enrich(items))
    assert tvdb.calls == [7]

    clock.now = T0 + timedelta(hours=25)
    asyncio.run(pipeline.enrich(items))
    assert tvdb.calls == [7, 7]


def test_failed_detail_fetch_marks_whole_group_and_is_retried() -> None:
    clock = FakeClock(T0)
    tmdb = FakeTMDB(failing_ids={42})
    pipeline = build_pipeline(tmdb, clock=clock)
    items = [make_anime(1, tmdb_id=42), make_anime(2, tmdb_id=42)]

    asyncio.run(pipeline.enrich(items))

    assert tmdb.detail_calls == [42]
    assert all(isinstance(item.markers[Stage.DETAILS], ErrorMarker) for item in items)

    tmdb.failing_ids.clear()
    tmdb.details[42] = LocalizedDetails(title="标题", overview=None)
    clock.now = T0 + timedelta(minutes=1)
    asyncio.run(pipeline.enrich(items))

    assert tmdb.detail_calls == [42, 42]
    assert all(item.tmdb_title == "标题" for item in items)


def test_failed_cross_reference_is_retried_on_the_next_pass() -> None:
    clock = FakeClock(T0)
    tmdb = FakeTMDB(failing_external_ids={42})
    pipeline = build_pipeline(tmdb, clock=clock)
    items = [make_anime(1, tmdb_id=42)]

    asyncio.run(pipeline.enrich(items))

    assert isinstance(items[0].markers[Stage.DETAILS], NoDataMarker)
    assert isinstance(items[0].markers[Stage.CROSS_REFERENCE], ErrorMarker)

    tmdb.failing_external_ids.clear()
    tmdb.external[42] = ExternalIds(tvdb_id=7)
    clock.now = T0 + timedelta(minutes=1)
    asyncio.run(pipeline.enrich(items))

    assert tmdb.detail_calls == [42]
    assert tmdb.external_calls == [42, 42]
    assert items[0].tvdb_id == 7
