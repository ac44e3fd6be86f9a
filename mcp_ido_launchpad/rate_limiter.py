"""
Caller Rate Limiting

Limits how many mutating requests one caller (an address or a client IP) may
submit within a sliding 60-second window, so that a single participant cannot
flood the serialized pool operations.

Rate Limiting Algorithm:
- Tracks request count and first request timestamp of the window per key
- Resets the counter once the window has expired
- Entries are kept in LRU order and expired entries are purged once the
  cache grows past ``max_entries``
"""
import threading
import time
from collections import OrderedDict
from typing import Tuple

from mcp_ido_launchpad.config import RATE_LIMIT_PER_MINUTE
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)


class RateLimiter:
    def __init__(self, limit: int = RATE_LIMIT_PER_MINUTE, window: int = 60, max_entries: int = 1000):
        self.limit = limit
        self.window = window
        self.max_entries = max_entries
        # {key: (count, first_request_timestamp_in_window)}
        self.cache: "OrderedDict[str, Tuple[int, int]]" = OrderedDict()
        self._lock = threading.Lock()

    def check(self, key: str) -> bool:
        """
        Records a request from ``key``.

        Returns:
            True if the request is allowed, False if the rate limit is exceeded.
        """
        now = int(time.time())
        with self._lock:
            if len(self.cache) > self.max_entries:
                self.cleanup(now - self.window)

            count, started = self.cache.get(key, (0, now))
            if now - started >= self.window:
                count, started = 0, now
            if count >= self.limit:
                logger.warning(f"Rate limit exceeded for {key}. Count: {count}, Limit: {self.limit}")
                return False

            self.cache[key] = (count + 1, started)
            self.cache.move_to_end(key)
            return True

    def cleanup(self, cutoff_time: int) -> None:
        """Removes entries whose window started before ``cutoff_time``."""
        expired = [key for key, (_, started) in self.cache.items() if started < cutoff_time]
        for key in expired:
            del self.cache[key]
        if expired:
            logger.debug(f"Cleaned up {len(expired)} old rate limit entries")

    def reset(self, key: str) -> None:
        with self._lock:
            self.cache.pop(key, None)
