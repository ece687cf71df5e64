"""
Short-horizon suppression of repeated page views.

Two layers absorb accidental double-fires (e.g. duplicate dispatch on fast
navigation): PageViewDebouncer runs in the sending client before any network
call, and is_recent_duplicate runs on the server against the store.
Neither is a correctness guarantee; near-simultaneous requests may both pass.
"""

import threading
import time
from datetime import datetime, timedelta
from typing import Callable, Dict

DEDUP_WINDOW_SECONDS = 2.0
STALE_AFTER_SECONDS = 10.0


def is_recent_duplicate(store, ip_hash: str, path: str, now: datetime,
                        window_seconds: float = DEDUP_WINDOW_SECONDS) -> bool:
    """Server-side check: same visitor hash and path persisted within the window."""
    since = now - timedelta(seconds=window_seconds)
    return store.has_recent_page_view(ip_hash, path, since)


class PageViewDebouncer:
    """Client-side memory of recently sent paths."""

    def __init__(self, window_seconds: float = DEDUP_WINDOW_SECONDS,
                 stale_after_seconds: float = STALE_AFTER_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.window_seconds = window_seconds
        self.stale_after_seconds = stale_after_seconds
        self.clock = clock
        self._sent: Dict[str, float] = {}
        self._lock = threading.Lock()

    def should_send(self, path: str) -> bool:
        """Record and allow ``path`` unless it was sent within the window."""
        now = self.clock()
        with self._lock:
            last_sent = self._sent.get(path)
            if last_sent is not None and now - last_sent < self.window_seconds:
                return False

            self._sent[path] = now
            self._prune(now)
            return True

    def _prune(self, now: float) -> None:
        stale = [key for key, sent_at in self._sent.items() if now - sent_at > self.stale_after_seconds]
        for key in stale:
            del self._sent[key]

    def __contains__(self, path: str) -> bool:
        with self._lock:
            return path in self._sent
