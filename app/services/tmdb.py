"""Utilities for resolving metadata from The Movie Database (TMDB)."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..config import Settings
from ..errors import ConfigurationError, ProviderError
from .lookup import ExternalIds, LocalizedDetails, SearchHit

logger = logging.getLogger(__name__)


class TMDBClient:
    """Client responsible for TMDB searches, TV details and external ids."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        if not settings.tmdb_api_key:
            raise ConfigurationError(
                "TMDB API key is required when initialising TMDBClient"
            )
        self._settings = settings
        self._client = http_client

    async def search_by_title(self, title: str, *, language: str) -> list[SearchHit]:
        """Return multi-search hits for ``title``; an empty list means no match."""

        params = {
            "query": title,
            "include_adult": "false",
            "language": language,
        }
        payload = await self._get_json("/search/multi", params=params, context=title)
        if payload is None:
            return []
        results = payload.get("results") or []
        if not isinstance(results, list) or not results:
            logger.info("TMDB search empty result for %r", title)
            return []

        hits: list[SearchHit] = []
        for candidate in results:
            if not isinstance(candidate, dict) or candidate.get("id") is None:
                continue
            media_type = str(candidate.get("media_type") or "")
            hit_title = self._pick_title(candidate, media_type)
            try:
                hit_id = int(candidate["id"])
            except (TypeError, ValueError):
                continue
            hits.append(
                SearchHit(
                    id=hit_id,
                    media_type=media_type,
                    title=hit_title or title,
                    overview=candidate.get("overview") or None,
                )
            )
        logger.info("TMDB search success: %r, results=%s", title, len(hits))
        return hits

    async def get_details(self, tmdb_id: int, *, language: str) -> LocalizedDetails | None:
        """Fetch localized TV details; ``None`` when TMDB has no such entry."""

        payload = await self._get_json(
            f"/tv/{tmdb_id}", params={"language": language}, context=str(tmdb_id)
        )
        if payload is None:
            return None
        return LocalizedDetails(
            title=(payload.get("name") or "").strip() or None,
            overview=(payload.get("overview") or "").strip() or None,
        )

    async def get_external_ids(self, tmdb_id: int) -> ExternalIds | None:
        """Fetch the external id mapping (TheTVDB, IMDb) for a TV entry."""

        payload = await self._get_json(
            f"/tv/{tmdb_id}/external_ids", params={}, context=str(tmdb_id)
        )
        if payload is None:
            return None
        tvdb_id = payload.get("tvdb_id")
        try:
            resolved_tvdb = int(tvdb_id) if tvdb_id else None
        except (TypeError, ValueError):
            resolved_tvdb = None
        return ExternalIds(tvdb_id=resolved_tvdb, imdb_id=payload.get("imdb_id") or None)

    async def _get_json(
        self, endpoint: str, *, params: dict[str, Any], context: str
    ) -> dict[str, Any] | None:
        request_params = {**params, "api_key": self._settings.tmdb_api_key}
        try:
            response = await self._client.get(endpoint, params=request_params)
        except httpx.HTTPError as exc:
            raise ProviderError("tmdb", f"request for {context} failed: {exc}") from exc

        if response.status_code == 404:
            logger.debug("TMDB returned 404 for %s (%s)", endpoint, context)
            return None
        if response.status_code >= 400:
            raise ProviderError(
                "tmdb",
                f"{endpoint} for {context} failed with status {response.status_code}",
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError("tmdb", f"non-JSON response for {context}") from exc
        if not isinstance(payload, dict):
            raise ProviderError("tmdb", f"unexpected response structure for {context}")
        return payload

    @staticmethod
    def _pick_title(result: dict[str, Any], media_type: str) -> str | None:
        if media_type == "movie":
            return result.get("title") or result.get("original_title")
        return result.get("name") or result.get("original_name")
