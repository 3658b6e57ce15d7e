"""
Rate Limiting for credential-sensitive endpoints.

Fixed-window counters kept in process memory. State is lost on restart and
is not shared between processes; multi-instance deployments need a shared
counter store behind the same interface.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple


@dataclass
class RateLimitEntry:
    count: int
    expires_at: float  # monotonic milliseconds


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


class RateLimiter:
    """Fixed-window request counter keyed by client identity + action"""

    def __init__(self, clock: Callable[[], float] = _monotonic_ms, sweep_interval: int = 1000):
        self._clock = clock
        self._entries: Dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()
        # expired entries are dropped every ``sweep_interval`` checks
        self._sweep_interval = sweep_interval
        self._checks = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def check(self, key: str, limit: int, window_ms: int) -> bool:
        """
        Count one action for ``key``.

        Returns:
            True if the action is allowed, False once ``limit`` is exceeded
            inside the current window.
        """
        if limit <= 0 or window_ms <= 0:
            raise ValueError("limit and window_ms must be positive")

        with self._lock:
            now = self._clock()
            self._checks += 1
            if self._checks >= self._sweep_interval:
                self._checks = 0
                self._sweep(now)

            entry = self._entries.get(key)
            if entry is None or entry.expires_at <= now:
                self._entries[key] = RateLimitEntry(count=1, expires_at=now + window_ms)
                return True
            entry.count += 1
            return entry.count <= limit

    def reset(self, key: str):
        with self._lock:
            self._entries.pop(key, None)

    def purge_expired(self) -> int:
        with self._lock:
            return self._sweep(self._clock())

    def _sweep(self, now: float) -> int:
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)


class RateLimitPolicy:
    """Maps action names to their configured (limit, window) thresholds"""

    DEFAULT = (10, 60 * 60 * 1000)

    def __init__(self, limiter: RateLimiter, limits: Dict[str, Tuple[int, int]]):
        self.limiter = limiter
        self.limits = dict(limits)

    def allow(self, action: str, client: Optional[str]) -> bool:
        limit, window_ms = self.limits.get(action, self.DEFAULT)
        return self.limiter.check(f"{action}:{client or 'unknown'}", limit, window_ms)
