"""Per-item, per-stage retry and backoff bookkeeping."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Iterable

from ..models import Anime, ClearMarker, ErrorMarker, NoDataMarker, Stage
from ..utils import ensure_utc, utc_now

DEFAULT_NO_DATA_COOLDOWN = timedelta(hours=24)


class MarkerStore:
    """Decides whether a stage lookup is worth attempting for an item.

    * ``error``: always retried on the next pass.
    * ``no-data``: skipped until ``cooldown`` has elapsed since it was set.
    * clear or unset: attempted.
    """

    def __init__(
        self,
        cooldown: timedelta = DEFAULT_NO_DATA_COOLDOWN,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._cooldown = cooldown
        self._clock = clock

    @property
    def cooldown(self) -> timedelta:
        return self._cooldown

    def should_skip(self, item: Anime, stage: Stage) -> bool:
        marker = item.markers.get(stage)
        if isinstance(marker, ErrorMarker):
            return False
        if isinstance(marker, NoDataMarker):
            elapsed = self._clock() - ensure_utc(marker.since)
            return elapsed < self._cooldown
        return False

    def mark_error(self, items: Iterable[Anime], stage: Stage) -> None:
        for item in items:
            item.markers[stage] = ErrorMarker()

    def mark_no_data(self, items: Iterable[Anime], stage: Stage) -> None:
        now = self._clock()
        for item in items:
            item.markers[stage] = NoDataMarker(since=now)

    def clear(self, item: Anime, stage: Stage) -> None:
        item.markers[stage] = ClearMarker()
