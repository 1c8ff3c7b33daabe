"""
Index refresh throttling.

A rebuild of the project search index is due once ``interval`` seconds
have passed since the last completed rebuild. Nothing has been built
before the first ``mark_updated()``, so a new scheduler is always due.
"""

import math
import time
from typing import Callable, Optional

DEFAULT_REFRESH_INTERVAL = 10 * 60  # 10 minutes


class RefreshScheduler:
    """Decides whether the project index needs rebuilding."""

    def __init__(
        self,
        interval: float = DEFAULT_REFRESH_INTERVAL,
        clock: Callable[[], float] = time.monotonic
    ):
        self.interval = interval
        self._clock = clock
        self.last_update: Optional[float] = None

    def _elapsed(self) -> float:
        if self.last_update is None:
            return math.inf
        return self._clock() - self.last_update

    def should_update_index(self) -> bool:
        return self._elapsed() >= self.interval

    def get_time_to_next_update(self) -> int:
        """Whole seconds until the next rebuild is due, 0 if due now."""
        elapsed = self._elapsed()
        if elapsed >= self.interval:
            return 0
        return math.ceil(self.interval - elapsed)

    def mark_updated(self) -> None:
        """Record a completed rebuild."""
        self.last_update = self._clock()
