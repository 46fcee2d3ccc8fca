"""Utility helpers for the AniCache service."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Iterable, TypeVar

T = TypeVar("T")

TMDB_LINK_RE = re.compile(r"/(?:tv|movie)/(\d+)")


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""

    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_date_string(value: datetime) -> str:
    """Return the ``YYYY-MM-DD`` UTC date for ``value``."""

    return ensure_utc(value).strftime("%Y-%m-%d")


def normalize_title(value: str | None) -> str:
    """Return a case-insensitive, trimmed comparison key for a title."""

    return (value or "").strip().lower()


def first_non_empty(candidates: Iterable[T | None]) -> T | None:
    """Return the first candidate that is neither ``None`` nor blank.

    Candidates are evaluated in order, so the position in the iterable is the
    precedence rule.
    """

    for candidate in candidates:
        if candidate is None:
            continue
        if isinstance(candidate, str) and not candidate.strip():
            continue
        return candidate
    return None


def extract_tmdb_id(url: str | None) -> int | None:
    """Extract the numeric TMDB id from a themoviedb.org URL."""

    if not url:
        return None
    match = TMDB_LINK_RE.search(url)
    if not match:
        return None
    try:
        return int(match.group(1))
    except ValueError:  # pragma: no cover - regex guarantees digits
        return None


def split_csv(value: object) -> list[str]:
    """Split comma separated strings or iterables into stripped, non-empty parts."""

    if value is None:
        return []
    if isinstance(value, str):
        raw_values = value.split(",")
    elif isinstance(value, Iterable):
        raw_values = [str(part) for part in value]
    else:
        raise TypeError("Value must be a string or iterable of strings")
    return [part.strip() for part in raw_values if part and part.strip()]
