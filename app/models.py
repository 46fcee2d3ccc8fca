"""Pydantic models describing anime records and persisted snapshots."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Mapping, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .utils import first_non_empty

ListSource = Literal["trending", "upcoming"]


class Stage(str, Enum):
    """Enrichment stages that carry their own retry bookkeeping."""

    TITLE_SEARCH = "title-search"
    DETAILS = "details"
    CROSS_REFERENCE = "cross-reference"
    SECONDARY_DETAILS = "secondary-details"


class ClearMarker(BaseModel):
    state: Literal["clear"] = "clear"


class ErrorMarker(BaseModel):
    """Last attempt failed transiently; retry on the next pass."""

    state: Literal["error"] = "error"


class NoDataMarker(BaseModel):
    """Provider answered without data; retry only after the cooldown."""

    state: Literal["no-data"] = "no-data"
    since: datetime


RetryMarker = Annotated[
    Union[ClearMarker, ErrorMarker, NoDataMarker],
    Field(discriminator="state"),
]


class AnimeTitle(BaseModel):
    """Alternate titles reported by the primary catalog."""

    model_config = ConfigDict(frozen=True)

    romaji: str
    english: str | None = None
    native: str | None = None

    def search_title(self) -> str | None:
        """Return the single best title to search secondary providers with."""

        return first_non_empty((self.english, self.native, self.romaji))


class FuzzyDate(BaseModel):
    year: int | None = None
    month: int | None = None
    day: int | None = None


class Anime(BaseModel):
    """A catalog entry under enrichment."""

    model_config = ConfigDict(populate_by_name=True)

    anilist_id: int = Field(validation_alias=AliasChoices("anilist_id", "anilistId"))
    title: AnimeTitle
    series_title: AnimeTitle | None = None
    cover_image: str | None = None
    banner_image: str | None = None
    description: str | None = None
    average_score: int | None = None
    popularity: int | None = None
    trending: int | None = None
    status: str | None = None
    format: str | None = None
    episodes: int | None = None
    duration: int | None = None
    start_date: FuzzyDate | None = None
    end_date: FuzzyDate | None = None
    season: str | None = None
    season_year: int | None = None
    genres: list[str] = Field(default_factory=list)
    studios: list[str] = Field(default_factory=list)
    source_type: str | None = None
    source: ListSource = "trending"
    sources: list[ListSource] = Field(default_factory=list)
    anilist_url: str | None = None

    tmdb_id: int | None = None
    tmdb_url: str | None = None
    tmdb_title: str | None = None
    tmdb_description: str | None = None

    tvdb_id: int | None = None
    tvdb_url: str | None = None
    tvdb_title: str | None = None
    tvdb_description: str | None = None

    markers: dict[Stage, RetryMarker] = Field(default_factory=dict)

    inserted_at: datetime | None = None
    updated_at: datetime | None = None

    def search_title(self) -> str | None:
        """Deduplication key for title searches.

        The series root title is preferred so that every season of a show
        resolves through one search.
        """

        if self.series_title is not None:
            root_title = self.series_title.search_title()
            if root_title:
                return root_title
        return self.title.search_title()

    def has_primary_localization(self) -> bool:
        return bool(self.tmdb_title or self.tmdb_description)

    def has_secondary_localization(self) -> bool:
        return bool(self.tvdb_title or self.tvdb_description)

    def display_title(self) -> str:
        title = first_non_empty(
            (
                self.tmdb_title,
                self.tvdb_title,
                self.title.english,
                self.title.romaji,
                self.title.native,
            )
        )
        return title or f"AniList {self.anilist_id}"

    def display_description(self) -> str | None:
        return first_non_empty(
            (self.tmdb_description, self.tvdb_description, self.description)
        )

    def to_payload(self) -> dict[str, object]:
        """Return the JSON payload exposed over the HTTP API."""

        payload = self.model_dump(mode="json", exclude={"markers"})
        payload["displayTitle"] = self.display_title()
        payload["displayDescription"] = self.display_description()
        return payload


class GenerationMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_count: int = Field(
        default=0, validation_alias=AliasChoices("total_count", "totalCount")
    )
    description: str = ""


class Generation(BaseModel):
    """One full resolved list as of a point in time."""

    date: str
    timestamp: datetime
    items: list[Anime] = Field(default_factory=list)
    metadata: GenerationMetadata = Field(default_factory=GenerationMetadata)


class AnimeSnapshot(BaseModel):
    """The persisted unit: the current generation and the one it replaced."""

    current: Generation
    previous: Generation


class ListOptions(BaseModel):
    """Options controlling which primary catalog lists are fetched."""

    model_config = ConfigDict(populate_by_name=True)

    include_trending: bool = Field(
        default=True,
        validation_alias=AliasChoices("include_trending", "includeTrending", "trending"),
    )
    include_upcoming: bool = Field(
        default=True,
        validation_alias=AliasChoices("include_upcoming", "includeUpcoming", "upcoming"),
    )
    limit: int | None = Field(default=None, ge=1, le=500)

    @classmethod
    def from_query(cls, params: Mapping[str, str]) -> "ListOptions":
        return cls.model_validate(dict(params))

    @field_validator("limit", mode="before")
    @classmethod
    def _parse_optional_int(cls, value: object) -> object:
        if value is None or value == "":
            return None
        if isinstance(value, int):
            return value
        try:
            return int(str(value))
        except (TypeError, ValueError) as exc:
            raise ValueError("Value must be an integer") from exc
