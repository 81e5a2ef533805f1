"""
Read-through TTL cache for account balances.

Fills are tagged with the epoch observed before the storage read. Every
invalidation or clear bumps the epoch, so a fill that raced any mutation is
dropped instead of re-caching the pre-mutation value. Only live entries are
kept per account.
"""

import threading
import time
from typing import Callable, Dict, Optional, Tuple

from .schema import BalanceInfo


class BalanceCache:
    """Per-account cache of BalanceInfo snapshots."""

    def __init__(self, ttl_sec: float, clock: Callable[[], float] = time.monotonic):
        if ttl_sec < 0:
            raise ValueError(f"Cache TTL must be >= 0: {ttl_sec}")
        self.ttl_sec = ttl_sec
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, Tuple[BalanceInfo, float]] = {}  # account_id -> (value, stored_at)
        self._epoch = 0
        self.hits = 0
        self.misses = 0

    def get(self, account_id: str) -> Optional[BalanceInfo]:
        with self._lock:
            entry = self._entries.get(account_id)
            if entry is None:
                self.misses += 1
                return None

            value, stored_at = entry
            if self._clock() - stored_at >= self.ttl_sec:
                del self._entries[account_id]
                self.misses += 1
                return None

            self.hits += 1
            return value

    def generation(self) -> int:
        """Token to pass to put() after reading storage."""
        with self._lock:
            return self._epoch

    def put(self, account_id: str, value: BalanceInfo, generation: int) -> bool:
        """Store a value read under `generation`. Returns False if it went stale meanwhile."""
        if self.ttl_sec == 0:
            return False
        with self._lock:
            if self._epoch != generation:
                return False
            self._entries[account_id] = (value, self._clock())
            return True

    def invalidate(self, account_id: str):
        with self._lock:
            self._entries.pop(account_id, None)
            self._epoch += 1

    def clear(self):
        with self._lock:
            self._entries.clear()
            self._epoch += 1

    def stats(self):
        with self._lock:
            return {
                "size": len(self._entries),
                "hits": self.hits,
                "misses": self.misses,
                "ttl_sec": self.ttl_sec,
            }
