"""Client for TheTVDB v4 API used as the secondary localization source."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

from ..config import Settings
from ..errors import ConfigurationError, ProviderError
from .lookup import SeriesTranslations

logger = logging.getLogger(__name__)

TOKEN_LIFETIME_SECONDS = 50 * 60


class TheTVDBClient:
    """Thin wrapper around TheTVDB login and series endpoints."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        if not settings.tvdb_api_key:
            raise ConfigurationError(
                "TheTVDB API key is required when initialising TheTVDBClient"
            )
        self._settings = settings
        self._client = http_client
        self._token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    async def get_series(self, tvdb_id: int, *, language: str) -> SeriesTranslations | None:
        """Return the series name and its translations; ``None`` if unknown."""

        token = await self._access_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "Accept-Language": language,
        }
        try:
            response = await self._client.get(
                f"/series/{tvdb_id}/extended",
                params={"meta": "translations", "short": "true"},
                headers=headers,
            )
        except httpx.HTTPError as exc:
            raise ProviderError("tvdb", f"series {tvdb_id} request failed: {exc}") from exc

        if response.status_code == 404:
            return None
        if response.status_code == 401:
            # Token revoked early; force a fresh login next time.
            self._token = None
        if response.status_code >= 400:
            raise ProviderError(
                "tvdb", f"series {tvdb_id} failed with status {response.status_code}"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError("tvdb", f"non-JSON response for series {tvdb_id}") from exc

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            return None
        translations = data.get("translations") or {}
        return SeriesTranslations(
            id=tvdb_id,
            name=data.get("name") or None,
            names=self._collect(translations.get("nameTranslations"), "name"),
            overviews=self._collect(translations.get("overviewTranslations"), "overview"),
        )

    async def _access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token
        async with self._token_lock:
            # Another caller may have refreshed while we waited.
            if self._token and time.monotonic() < self._token_expires_at:
                return self._token
            logger.info("Fetching new TheTVDB token")
            try:
                response = await self._client.post(
                    "/login", json={"apikey": self._settings.tvdb_api_key}
                )
            except httpx.HTTPError as exc:
                raise ProviderError("tvdb", f"login failed: {exc}") from exc
            if response.status_code >= 400:
                raise ProviderError(
                    "tvdb", f"login failed with status {response.status_code}"
                )
            try:
                token = response.json()["data"]["token"]
            except (ValueError, KeyError, TypeError) as exc:
                raise ProviderError("tvdb", "login response did not include a token") from exc
            self._token = str(token)
            self._token_expires_at = time.monotonic() + TOKEN_LIFETIME_SECONDS
            return self._token

    @staticmethod
    def _collect(entries: Any, value_key: str) -> dict[str, str]:
        collected: dict[str, str] = {}
        if not isinstance(entries, list):
            return collected
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            language = entry.get("language")
            value = entry.get(value_key)
            if isinstance(language, str) and isinstance(value, str) and value.strip():
                collected.setdefault(language, value.strip())
        return collected
