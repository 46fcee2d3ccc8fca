"""Client for the AniList GraphQL API, the primary catalog source."""

from __future__ import annotations

import asyncio
import calendar
import logging
from datetime import date
from typing import Any

import httpx

from ..config import Settings
from ..errors import ProviderError
from ..models import Anime, AnimeTitle, FuzzyDate, ListOptions, ListSource
from ..utils import extract_tmdb_id, utc_now
from .scheduler import run_bounded

logger = logging.getLogger(__name__)

TMDB_LINK_SITES = {"TMDB", "The Movie Database"}

_TITLE_FIELDS = "title { romaji english native }"

_MEDIA_FIELDS = f"""
  id
  {_TITLE_FIELDS}
  coverImage {{ large extraLarge }}
  bannerImage
  description
  averageScore
  popularity
  trending
  status
  format
  episodes
  duration
  startDate {{ year month day }}
  endDate {{ year month day }}
  season
  seasonYear
  genres
  studios {{ nodes {{ name }} }}
  source
  siteUrl
  relations {{ edges {{ relationType node {{ id {_TITLE_FIELDS} }} }} }}
  externalLinks {{ id url site }}
"""

TRENDING_QUERY = f"""
query TrendingAnime($page: Int, $perPage: Int, $startDateGte: FuzzyDateInt, $startDateLte: FuzzyDateInt) {{
  Page(page: $page, perPage: $perPage) {{
    media(
      type: ANIME
      format: TV
      sort: TRENDING_DESC
      status_in: [RELEASING, FINISHED]
      averageScore_greater: 70
      startDate_greater: $startDateGte
      startDate_lesser: $startDateLte
    ) {{{_MEDIA_FIELDS}}}
  }}
}}
"""

UPCOMING_QUERY = f"""
query UpcomingAnime($page: Int, $perPage: Int, $startDateGte: FuzzyDateInt, $startDateLte: FuzzyDateInt) {{
  Page(page: $page, perPage: $perPage) {{
    media(
      type: ANIME
      format: TV
      sort: START_DATE
      status: NOT_YET_RELEASED
      startDate_greater: $startDateGte
      startDate_lesser: $startDateLte
    ) {{{_MEDIA_FIELDS}}}
  }}
}}
"""

RELATIONS_QUERY = f"""
query MediaRelations($id: Int) {{
  Media(id: $id) {{
    id
    {_TITLE_FIELDS}
    relations {{ edges {{ relationType node {{ id {_TITLE_FIELDS} }} }} }}
  }}
}}
"""


def shift_months(value: date, months: int) -> date:
    """Move ``value`` by whole months, clamping the day to the target month."""

    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def fuzzy_date_int(value: date) -> int:
    """Return the ``YYYYMMDD`` integer AniList uses for fuzzy date filters."""

    return value.year * 10_000 + value.month * 100 + value.day


class AniListClient:
    """Fetch trending and upcoming TV anime from AniList."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    async def fetch_trending(self, *, today: date | None = None) -> list[Anime]:
        """Anime that started airing within the last month with a high score."""

        today = today or utc_now().date()
        variables = {
            "page": 1,
            "perPage": self._settings.anilist_page_size,
            "startDateGte": fuzzy_date_int(shift_months(today, -1)),
            "startDateLte": fuzzy_date_int(today),
        }
        logger.info(
            "Fetching trending anime from AniList (%s to %s)",
            variables["startDateGte"],
            variables["startDateLte"],
        )
        data = await self._execute(TRENDING_QUERY, variables)
        return await self._convert_page(data, "trending")

    async def fetch_upcoming(self, *, today: date | None = None) -> list[Anime]:
        """Anime scheduled to start airing within the next month."""

        today = today or utc_now().date()
        variables = {
            "page": 1,
            "perPage": self._settings.anilist_page_size,
            "startDateGte": fuzzy_date_int(today),
            "startDateLte": fuzzy_date_int(shift_months(today, 1)),
        }
        logger.info(
            "Fetching upcoming anime from AniList (%s to %s)",
            variables["startDateGte"],
            variables["startDateLte"],
        )
        data = await self._execute(UPCOMING_QUERY, variables)
        return await self._convert_page(data, "upcoming")

    async def fetch_merged(self, options: ListOptions) -> list[Anime]:
        """Fetch the requested lists and merge them by AniList id.

        A list that fails is logged and treated as empty. When every
        requested list fails the first error is raised.
        """

        requested: list[tuple[ListSource, Any]] = []
        if options.include_trending:
            requested.append(("trending", self.fetch_trending()))
        if options.include_upcoming:
            requested.append(("upcoming", self.fetch_upcoming()))
        if not requested:
            return []

        outcomes = await asyncio.gather(
            *(coroutine for _, coroutine in requested), return_exceptions=True
        )

        lists: list[tuple[ListSource, list[Anime]]] = []
        failures: list[BaseException] = []
        for (source, _), outcome in zip(requested, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.error("Failed to fetch %s anime from AniList: %s", source, outcome)
                failures.append(outcome)
                continue
            lists.append((source, outcome))

        if failures and not lists:
            raise failures[0]

        merged = merge_lists(lists)
        logger.info(
            "Merged %s unique anime from AniList (%s)",
            len(merged),
            ", ".join(f"{len(items)} {source}" for source, items in lists),
        )
        if options.limit:
            merged = merged[: options.limit]
            logger.info("Limited results to %s anime (limit=%s)", len(merged), options.limit)
        return merged

    async def _execute(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self._settings.anilist_access_token:
            headers["Authorization"] = f"Bearer {self._settings.anilist_access_token}"
        try:
            response = await self._client.post(
                str(self._settings.anilist_api_url),
                json={"query": query, "variables": variables},
                headers=headers,
            )
        except httpx.HTTPError as exc:
            raise ProviderError("anilist", f"request failed: {exc}") from exc

        if response.status_code >= 400:
            raise ProviderError(
                "anilist", f"request failed with status {response.status_code}"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError("anilist", "non-JSON response") from exc
        if not isinstance(payload, dict):
            raise ProviderError("anilist", "invalid response structure")

        errors = payload.get("errors")
        if errors:
            messages = ", ".join(
                str(error.get("message")) for error in errors if isinstance(error, dict)
            )
            raise ProviderError("anilist", f"GraphQL errors: {messages}")
        data = payload.get("data")
        if not isinstance(data, dict):
            raise ProviderError("anilist", "invalid response structure")
        return data

    async def _convert_page(self, data: dict[str, Any], source: ListSource) -> list[Anime]:
        page = data.get("Page") or {}
        media = page.get("media") or []
        entries = [entry for entry in media if isinstance(entry, dict)]

        def _task(entry: dict[str, Any]):
            return lambda: self._convert_media(entry, source)

        results = await run_bounded(
            [_task(entry) for entry in entries], self._settings.enrichment_concurrency
        )
        anime: list[Anime] = []
        for result in results:
            if not result.ok:
                raise result.reason
            anime.append(result.value)
        logger.info("Fetched %s %s anime from AniList", len(anime), source)
        return anime

    async def _convert_media(self, media: dict[str, Any], source: ListSource) -> Anime:
        cover = media.get("coverImage") or {}
        studios = [
            node["name"]
            for node in (media.get("studios") or {}).get("nodes") or []
            if isinstance(node, dict) and node.get("name")
        ]
        tmdb_link = next(
            (
                link
                for link in media.get("externalLinks") or []
                if isinstance(link, dict) and link.get("site") in TMDB_LINK_SITES
            ),
            None,
        )
        tmdb_url = tmdb_link.get("url") if tmdb_link else None
        series_title = await self._find_series_root(media["id"], media.get("relations"))

        return Anime(
            anilist_id=media["id"],
            title=_parse_title(media.get("title")),
            series_title=series_title,
            cover_image=cover.get("extraLarge") or cover.get("large") or None,
            banner_image=media.get("bannerImage") or None,
            description=media.get("description") or None,
            average_score=media.get("averageScore") or None,
            popularity=media.get("popularity") or None,
            trending=media.get("trending") or None,
            status=media.get("status"),
            format=media.get("format"),
            episodes=media.get("episodes") or None,
            duration=media.get("duration") or None,
            start_date=_parse_fuzzy_date(media.get("startDate")),
            end_date=_parse_fuzzy_date(media.get("endDate")),
            season=media.get("season") or None,
            season_year=media.get("seasonYear") or None,
            genres=list(media.get("genres") or []),
            studios=studios,
            source_type=media.get("source") or None,
            source=source,
            sources=[source],
            anilist_url=media.get("siteUrl"),
            tmdb_id=extract_tmdb_id(tmdb_url),
            tmdb_url=tmdb_url or None,
        )

    async def _find_series_root(
        self,
        media_id: int,
        relations: Any,
        visited: set[int] | None = None,
    ) -> AnimeTitle | None:
        """Walk PARENT, then PREQUEL relations to the first entry of a series."""

        visited = visited if visited is not None else set()
        if media_id in visited:
            return None
        visited.add(media_id)

        edges = relations.get("edges") or [] if isinstance(relations, dict) else []
        parent = _find_edge(edges, "PARENT")
        if parent is not None:
            return _parse_title(parent["node"].get("title"))

        prequel = _find_edge(edges, "PREQUEL")
        if prequel is None:
            return None
        prequel_node = prequel["node"]
        prequel_title = _parse_title(prequel_node.get("title"))
        try:
            data = await self._execute(RELATIONS_QUERY, {"id": prequel_node["id"]})
        except ProviderError as exc:
            logger.warning(
                "Failed to fetch prequel relations for media %s: %s", prequel_node["id"], exc
            )
            return prequel_title

        prequel_media = data.get("Media") or {}
        root = await self._find_series_root(
            prequel_node["id"], prequel_media.get("relations"), visited
        )
        return root or prequel_title


def merge_lists(lists: list[tuple[ListSource, list[Anime]]]) -> list[Anime]:
    """Merge lists by AniList id, unioning sources and filling missing covers."""

    merged: dict[int, Anime] = {}
    for source, items in lists:
        for item in items:
            existing = merged.get(item.anilist_id)
            if existing is None:
                merged[item.anilist_id] = item
                continue
            if source not in existing.sources:
                existing.sources.append(source)
            if not existing.cover_image and item.cover_image:
                existing.cover_image = item.cover_image
    return list(merged.values())


def _find_edge(edges: list[Any], relation_type: str) -> dict[str, Any] | None:
    for edge in edges:
        if (
            isinstance(edge, dict)
            and edge.get("relationType") == relation_type
            and isinstance(edge.get("node"), dict)
        ):
            return edge
    return None


def _parse_title(raw: Any) -> AnimeTitle:
    raw = raw if isinstance(raw, dict) else {}
    return AnimeTitle(
        romaji=raw.get("romaji") or "",
        english=raw.get("english") or None,
        native=raw.get("native") or None,
    )


def _parse_fuzzy_date(raw: Any) -> FuzzyDate | None:
    if not isinstance(raw, dict):
        return None
    return FuzzyDate(
        year=raw.get("year") or None,
        month=raw.get("month") or None,
        day=raw.get("day") or None,
    )
