import threading
import time
from typing import Callable, Optional

from .models import EarningsStats


class StatsCache:
    """Read-through cache of per-user stats with a bounded TTL.

    Owned by the HTTP layer; the ledger service never reads from it. Writes
    that change a user's earnings must call ``invalidate``.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, EarningsStats]] = {}
        self._lock = threading.Lock()

    def get_or_load(self, user_id: str, loader: Callable[[], EarningsStats]) -> EarningsStats:
        if self.ttl_seconds <= 0:
            return loader()

        cached = self._get(user_id)
        if cached is not None:
            return cached

        stats = loader()
        with self._lock:
            now = self._clock()
            self._evict_expired(now)
            self._entries[user_id] = (now + self.ttl_seconds, stats)
        return stats

    def _evict_expired(self, now: float) -> None:
        expired = [key for key, (expires_at, _) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _get(self, user_id: str) -> Optional[EarningsStats]:
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                return None
            expires_at, stats = entry
            if self._clock() >= expires_at:
                del self._entries[user_id]
                return None
            return stats

    def invalidate(self, user_id: str) -> None:
        with self._lock:
            self._entries.pop(user_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
