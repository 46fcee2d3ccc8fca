from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from app.models import (
    Anime,
    AnimeSnapshot,
    AnimeTitle,
    ErrorMarker,
    ListOptions,
    NoDataMarker,
    Stage,
)


def test_search_title_prefers_series_root_then_english():
    item = Anime(
        anilist_id=2,
        title=AnimeTitle(romaji="Shingeki no Kyojin 2", english="Attack on Titan S2"),
        series_title=AnimeTitle(romaji="Shingeki no Kyojin", native="進撃の巨人"),
    )
    assert item.search_title() == "進撃の巨人"

    bare = Anime(anilist_id=3, title=AnimeTitle(romaji="Romaji", english=" "))
    assert bare.search_title() == "Romaji"


def test_display_fields_fall_back_in_order():
    item = Anime(
        anilist_id=1,
        title=AnimeTitle(romaji="Romaji", english="English"),
        description="AniList text",
        tvdb_title="TheTVDB 标题",
    )
    assert item.display_title() == "TheTVDB 标题"
    assert item.display_description() == "AniList text"

    item.tmdb_title = "TMDB 标题"
    item.tmdb_description = "TMDB 简介"
    assert item.display_title() == "TMDB 标题"
    assert item.display_description() == "TMDB 简介"


def test_markers_round_trip_through_json():
    since = datetime(2024, 5, 1, tzinfo=timezone.utc)
    item = Anime(
        anilist_id=1,
        title=AnimeTitle(romaji="Romaji"),
        markers={Stage.DETAILS: NoDataMarker(since=since), Stage.TITLE_SEARCH: ErrorMarker()},
    )

    restored = Anime.model_validate_json(item.model_dump_json())

    assert restored.markers[Stage.DETAILS] == NoDataMarker(since=since)
    assert isinstance(restored.markers[Stage.TITLE_SEARCH], ErrorMarker)


def test_payload_hides_markers_and_adds_display_fields():
    item = Anime(anilist_id=1, title=AnimeTitle(romaji="Romaji"), markers={Stage.DETAILS: ErrorMarker()})

    payload = item.to_payload()

    assert "markers" not in payload
    assert payload["displayTitle"] == "Romaji"
    assert payload["displayDescription"] is None


def test_anime_accepts_camel_case_identifier():
    item = Anime.model_validate({"anilistId": 5, "title": {"romaji": "x"}})
    assert item.anilist_id == 5


def test_snapshot_accepts_camel_case_metadata():
    snapshot = AnimeSnapshot.model_validate(
        {
            "current": {
                "date": "2024-05-01",
                "timestamp": "2024-05-01T04:00:00Z",
                "items": [],
                "metadata": {"totalCount": 0, "description": "x"},
            },
            "previous": {"date": "2024-05-01", "timestamp": "2024-05-01T04:00:00Z"},
        }
    )
    assert snapshot.current.metadata.description == "x"
    assert snapshot.previous.items == []


def test_list_options_from_query():
    options = ListOptions.from_query({"upcoming": "false", "limit": ""})
    assert options.include_trending is True
    assert options.include_upcoming is False
    assert options.limit is None

    with pytest.raises(ValidationError):
        ListOptions.from_query({"limit": "0"})
