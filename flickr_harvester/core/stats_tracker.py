from __future__ import annotations

import threading
from typing import Dict, Optional

from flickr_harvester.core.models import RunStats


class StatsTracker:
    """
    Run progress counters.

    Rule: All mutation is done under one lock.
    Call snapshot(...) to get a consistent RunStats for printing/logging.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._processed = 0
        self._dispatched = 0
        self._pages = 0
        self._skipped = 0

    def inc_processed(self, n: int = 1) -> int:
        with self._lock:
            self._processed += int(n)
            return self._processed

    def inc_dispatched(self, n: int = 1) -> None:
        with self._lock:
            self._dispatched += int(n)

    def inc_pages(self, n: int = 1) -> None:
        with self._lock:
            self._pages += int(n)

    def inc_skipped(self, n: int = 1) -> None:
        with self._lock:
            self._skipped += int(n)

    def snapshot(self, cache_stats: Optional[Dict[str, int]] = None) -> RunStats:
        cache_stats = cache_stats or {}
        with self._lock:
            return RunStats(
                processed=self._processed,
                events_dispatched=self._dispatched,
                pages_visited=self._pages,
                skipped=self._skipped,
                cache_hits=int(cache_stats.get("hits", 0)),
                cache_misses=int(cache_stats.get("misses", 0)),
            )
