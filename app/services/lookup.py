"""Contracts between the enrichment pipeline and metadata providers.

Provider-specific response parsing lives in the adapters (``tmdb.py`` and
``tvdb.py``); the pipeline only sees the normalized shapes declared here.
Adapters return empty results for "nothing found" and raise
:class:`~app.errors.ProviderError` for transport or provider-side failures.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol


@dataclass(slots=True)
class SearchHit:
    """Normalized view of a title search result."""

    id: int
    media_type: str
    title: str
    overview: str | None = None


@dataclass(slots=True)
class LocalizedDetails:
    title: str | None = None
    overview: str | None = None

    def is_empty(self) -> bool:
        return not ((self.title or "").strip() or (self.overview or "").strip())


@dataclass(slots=True)
class ExternalIds:
    tvdb_id: int | None = None
    imdb_id: str | None = None


@dataclass(slots=True)
class SeriesTranslations:
    """Localized names and overviews keyed by the provider's language code."""

    id: int
    name: str | None = None
    names: dict[str, str] = field(default_factory=dict)
    overviews: dict[str, str] = field(default_factory=dict)


class CrossReferenceProvider(Protocol):
    """Primary cross-reference database (searched by title, resolved by id)."""

    async def search_by_title(self, title: str, *, language: str) -> list[SearchHit]:
        ...

    async def get_details(self, tmdb_id: int, *, language: str) -> LocalizedDetails | None:
        ...

    async def get_external_ids(self, tmdb_id: int) -> ExternalIds | None:
        ...


class LocalizationProvider(Protocol):
    """Secondary database used when the primary one has no localized data."""

    async def get_series(self, tvdb_id: int, *, language: str) -> SeriesTranslations | None:
        ...


def tmdb_tv_url(tmdb_id: int) -> str:
    return f"https://www.themoviedb.org/tv/{tmdb_id}"


def tvdb_series_url(tvdb_id: int) -> str:
    return f"https://thetvdb.com/series/{tvdb_id}"
