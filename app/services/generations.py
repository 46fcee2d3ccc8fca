"""Matching items across generations and building snapshot generations."""

from __future__ import annotations

from datetime import datetime
from typing import Sequence

from ..models import Anime, AnimeSnapshot, Generation, GenerationMetadata, Stage
from ..utils import ensure_utc, normalize_title, utc_date_string


def find_existing(previous: Sequence[Anime], candidate: Anime) -> Anime | None:
    """Return the previous-generation entry matching ``candidate``.

    An AniList id match anywhere in ``previous`` wins over a normalized
    romaji title match.
    """

    for entry in previous:
        if entry.anilist_id == candidate.anilist_id:
            return entry

    title_key = normalize_title(candidate.title.romaji)
    if not title_key:
        return None
    for entry in previous:
        if normalize_title(entry.title.romaji) == title_key:
            return entry
    return None


def merge_generation(
    previous: Sequence[Anime], items: Sequence[Anime], now: datetime
) -> list[Anime]:
    """Carry first-seen timestamps over from ``previous`` and sort newest first.

    Matched items keep their ``inserted_at`` and get ``updated_at = now``;
    unmatched (or never-stamped) items get both set to ``now``.
    """

    merged: list[Anime] = []
    for item in items:
        existing = find_existing(previous, item)
        if existing is not None and existing.inserted_at is not None:
            update = {"inserted_at": existing.inserted_at, "updated_at": now}
        else:
            update = {"inserted_at": now, "updated_at": now}
        merged.append(item.model_copy(update=update))
    return sort_by_inserted_at(merged)


def sort_by_inserted_at(items: Sequence[Anime]) -> list[Anime]:
    """Sort by first-seen timestamp descending; unstamped items go last."""

    stamped = [item for item in items if item.inserted_at is not None]
    unstamped = [item for item in items if item.inserted_at is None]
    stamped.sort(key=lambda item: ensure_utc(item.inserted_at), reverse=True)  # type: ignore[arg-type]
    return stamped + unstamped


def diff_new(current: Sequence[Anime], previous: Sequence[Anime]) -> list[Anime]:
    """Return the items of ``current`` that have no match in ``previous``."""

    return [item for item in current if find_existing(previous, item) is None]


def create_initial_snapshot(items: Sequence[Anime], now: datetime) -> AnimeSnapshot:
    """Build the first snapshot, with an empty previous generation."""

    merged = merge_generation([], items, now)
    date = utc_date_string(now)
    return AnimeSnapshot(
        current=Generation(
            date=date,
            timestamp=now,
            items=merged,
            metadata=GenerationMetadata(
                total_count=len(merged),
                description=f"Anime cache created at {now.isoformat()}",
            ),
        ),
        previous=Generation(
            date=date,
            timestamp=now,
            items=[],
            metadata=GenerationMetadata(
                total_count=0, description="Initial previous data (empty)"
            ),
        ),
    )


def advance_snapshot(
    current: Generation, items: Sequence[Anime], now: datetime
) -> AnimeSnapshot:
    """Promote ``items`` to the current generation; ``current`` becomes previous."""

    merged = merge_generation(current.items, items, now)
    new_count = sum(
        1
        for item in merged
        if (existing := find_existing(current.items, item)) is None
        or existing.inserted_at is None
    )
    return AnimeSnapshot(
        current=Generation(
            date=utc_date_string(now),
            timestamp=now,
            items=merged,
            metadata=GenerationMetadata(
                total_count=len(merged),
                description=f"Anime cache updated at {now.isoformat()}, {new_count} new anime",
            ),
        ),
        previous=current.model_copy(deep=True),
    )


TMDB_FIELDS = ("tmdb_id", "tmdb_url", "tmdb_title", "tmdb_description")
TVDB_FIELDS = ("tvdb_id", "tvdb_url", "tvdb_title", "tvdb_description")
TMDB_STAGES = (Stage.TITLE_SEARCH, Stage.DETAILS, Stage.CROSS_REFERENCE)
TVDB_STAGES = (Stage.SECONDARY_DETAILS,)


def _same_or_unset(fresh: int | None, stored: int | None) -> bool:
    return fresh is None or fresh == stored


def carry_enrichment(previous: Sequence[Anime], items: Sequence[Anime]) -> list[Anime]:
    """Copy enrichment results and retry markers from matching previous items.

    Freshly fetched catalog records arrive bare; values already present on a
    fresh item are kept. Provider data is only carried while the fresh item
    still points at the same provider id. The TheTVDB id is derived from the
    TMDB id, so a changed TMDB id drops both groups.
    """

    carried: list[Anime] = []
    for item in items:
        existing = find_existing(previous, item)
        if existing is None:
            carried.append(item)
            continue

        fields: tuple[str, ...] = ()
        stages: tuple[Stage, ...] = ()
        if _same_or_unset(item.tmdb_id, existing.tmdb_id):
            fields += TMDB_FIELDS
            stages += TMDB_STAGES
            if _same_or_unset(item.tvdb_id, existing.tvdb_id):
                fields += TVDB_FIELDS
                stages += TVDB_STAGES

        update: dict[str, object] = {
            field: getattr(existing, field)
            for field in fields
            if getattr(item, field) is None and getattr(existing, field) is not None
        }
        markers = {
            stage: marker for stage, marker in existing.markers.items() if stage in stages
        }
        update["markers"] = {**markers, **item.markers}
        carried.append(item.model_copy(update=update))
    return carried
