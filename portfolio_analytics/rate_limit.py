"""
Fixed-window rate limiting for the tracking endpoints.

Counters live in the in-memory storage of ``limits`` (the engine behind
Flask-Limiter), so each process keeps its own: under several gunicorn
workers the effective limit is per worker rather than global.
"""

import logging
from typing import Mapping, Optional

from limits import parse
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter

from .privacy import UNKNOWN_IP

logger = logging.getLogger(__name__)


def client_identity(headers: Mapping[str, str]) -> str:
    """Caller identity from proxy headers, first X-Forwarded-For hop wins."""
    forwarded = headers.get("X-Forwarded-For", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = (headers.get("X-Real-IP") or "").strip()
    return real_ip or UNKNOWN_IP


class RateLimiter:
    """
    Per-identity fixed window: ``limit`` requests, counted from the first
    hit, then rejections until the window expires. Expired windows are
    dropped by the storage itself.
    """

    def __init__(self, limit: int, window_seconds: float = 60.0, name: str = "default",
                 storage: Optional[MemoryStorage] = None):
        self.limit = limit
        self.window_seconds = max(1, int(window_seconds))
        self.name = name
        self.item = parse(f"{limit}/{self.window_seconds} second")
        self.storage = storage or MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self.storage)

    def check(self, identity: str) -> bool:
        """Count one request for ``identity``; False once the window is exhausted."""
        allowed = self._strategy.hit(self.item, self.name, identity)
        if not allowed:
            logger.debug(f"Rate limiter '{self.name}' rejected {identity}")
        return allowed

    def remaining(self, identity: str) -> int:
        return self._strategy.get_window_stats(self.item, self.name, identity).remaining

    def reset(self) -> None:
        self.storage.reset()
