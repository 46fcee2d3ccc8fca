"""In-process result cache with time-based expiry."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Generic, TypeVar

from ..utils import utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class _CacheEntry(Generic[T]):
    data: T
    stored_at: datetime


class ResultCache(Generic[T]):
    """Keyed cache whose entries are evicted on the first read after ``ttl``.

    Scoped to one process; swap for a shared cache when running several
    workers.
    """

    def __init__(self, ttl: timedelta, clock: Callable[[], datetime] = utc_now):
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[str, _CacheEntry[T]] = {}

    def get(self, key: str) -> T | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at >= self._ttl:
            del self._entries[key]
            logger.debug("Result cache entry %s expired", key)
            return None
        return entry.data

    def set(self, key: str, data: T) -> None:
        self._entries[key] = _CacheEntry(data=data, stored_at=self._clock())

    def clear(self, key: str | None = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
