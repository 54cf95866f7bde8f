"""
Price Cache

In-process cache owned by one MarketDataService instance. Entries expire
after ``ttl_seconds`` for normal reads but stay available through
``get_stale`` so a failed live call can fall back to the last known value.
TTL and clock are injectable for tests.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from utils.logging_config import setup_logger

logger = setup_logger(__name__)


@dataclass
class CacheEntry:
    value: Any
    stored_at: float


class PriceCache:
    """Thread-safe TTL cache. ``ttl_seconds=None`` keeps entries forever."""

    def __init__(self, ttl_seconds: Optional[float] = 60.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def _is_fresh(self, entry: CacheEntry) -> bool:
        if self.ttl_seconds is None:
            return True
        return self.clock() - entry.stored_at < self.ttl_seconds

    def get(self, key: str) -> Optional[Any]:
        """Fresh value for ``key`` or None."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._is_fresh(entry):
                self.hits += 1
                return entry.value
            self.misses += 1
            return None

    def get_stale(self, key: str) -> Optional[Any]:
        """Last stored value for ``key`` regardless of age."""
        with self._lock:
            entry = self._entries.get(key)
            return entry.value if entry is not None else None

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(value=value, stored_at=self.clock())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            total = self.hits + self.misses
            return {
                'entries': len(self._entries),
                'hits': self.hits,
                'misses': self.misses,
                'hit_rate': (self.hits / total) if total else 0.0,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
