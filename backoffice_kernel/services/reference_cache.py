"""
TtlCache -- injected, clock-driven cache for reference lookups.

Each instance owns its key space; nothing is module-global, so tests
control time through the injected Clock and never share entries.
Entries expire ``ttl_seconds`` after they were written.  A TTL of 0
disables caching.
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Hashable

from backoffice_kernel.domain.clock import Clock, SystemClock


@dataclass(frozen=True)
class _Entry:
    value: Any
    expires_at: datetime


class TtlCache:
    def __init__(self, ttl_seconds: int, clock: Clock | None = None, max_entries: int = 10_000):
        if ttl_seconds < 0:
            raise ValueError(f"ttl_seconds must be >= 0, got {ttl_seconds}")
        if max_entries <= 0:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock or SystemClock()
        self._max_entries = max_entries
        self._entries: dict[Hashable, _Entry] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable, default: Any = None) -> Any:
        now = self._clock.now()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            if entry.expires_at <= now:
                del self._entries[key]
                return default
            return entry.value

    def put(self, key: Hashable, value: Any) -> None:
        if not self._ttl:
            return
        now = self._clock.now()
        with self._lock:
            if key not in self._entries and len(self._entries) >= self._max_entries:
                self._evict_expired(now)
                if len(self._entries) >= self._max_entries:
                    # Oldest write goes first
                    oldest = min(self._entries, key=lambda k: self._entries[k].expires_at)
                    del self._entries[oldest]
            self._entries[key] = _Entry(value, now + self._ttl)

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _evict_expired(self, now: datetime) -> None:
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for key in expired:
            del self._entries[key]

    def __len__(self) -> int:
        with self._lock:
            self._evict_expired(self._clock.now())
            return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING


_MISSING = object()
