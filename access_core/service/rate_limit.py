import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

import gconf
from cachetools import TTLCache

log = logging.getLogger(__name__)


@dataclass
class _Window:
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    """
    Counts requests per key in fixed windows of ``window_seconds``.
    The window of a key starts with its first request, later requests do not extend it.
    Keys are dropped when their window ends or when more than ``max_keys`` are tracked.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        max_keys: int = 10_000,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._timer = timer
        self._windows = TTLCache(maxsize=max_keys, ttl=window_seconds, timer=timer)
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls) -> "FixedWindowRateLimiter":
        return cls(
            max_requests=gconf.get("rate_limit.max_requests"),
            window_seconds=gconf.get("rate_limit.window_seconds"),
            max_keys=gconf.get("rate_limit.max_tracked_clients", default=10_000),
        )

    def hit(self, key: str):
        """Count one request for key, raises RateLimitExceeded if the window is used up."""
        now = self._timer()
        with self._lock:
            window = self._windows.get(key)
            if window is None or now >= window.reset_at:
                self._windows[key] = _Window(count=1, reset_at=now + self.window_seconds)
                return
            if window.count >= self.max_requests:
                raise RateLimitExceeded(key, retry_after=window.reset_at - now)
            # mutate in place, setting the key again would restart its ttl
            window.count += 1

    def reset(self):
        with self._lock:
            self._windows.clear()


class RateLimitExceeded(Exception):
    def __init__(self, key: str, retry_after: float):
        super().__init__(f"rate limit exceeded for {key}, retry after {retry_after:.0f}s")
        self.key = key
        self.retry_after = retry_after
