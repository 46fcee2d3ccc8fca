"""Time-windowed staleness decisions for the persisted snapshot."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Sequence

from ..utils import ensure_utc, utc_now


class FreshnessPolicy:
    """Refreshes are allowed inside a few fixed daily UTC windows.

    * data older than ``max_age`` is always stale
    * both timestamps inside windows: stale only if the windows differ
    * now inside a window, data outside any window: stale
    * now outside every window: fresh
    """

    def __init__(
        self,
        windows: Sequence[int] = (4, 12, 20),
        *,
        window_hours: int = 1,
        max_age: timedelta = timedelta(hours=8),
        clock: Callable[[], datetime] = utc_now,
    ):
        if window_hours < 1:
            raise ValueError("window_hours must be at least 1")
        self._windows = tuple(windows)
        self._window_hours = window_hours
        self._max_age = max_age
        self._clock = clock

    @property
    def max_age(self) -> timedelta:
        return self._max_age

    def window_index(self, moment: datetime) -> int | None:
        """Return the index of the refresh window containing ``moment``."""

        hour = ensure_utc(moment).hour
        for index, start in enumerate(self._windows):
            # Windows may wrap past midnight (e.g. 23:00 for two hours).
            if (hour - start) % 24 < self._window_hours:
                return index
        return None

    def is_stale(self, last_generated_at: datetime) -> bool:
        now = self._clock()
        generated_at = ensure_utc(last_generated_at)
        if now - generated_at >= self._max_age:
            return True

        data_window = self.window_index(generated_at)
        current_window = self.window_index(now)
        if current_window is None:
            return False
        if data_window is None:
            return True
        return data_window != current_window
