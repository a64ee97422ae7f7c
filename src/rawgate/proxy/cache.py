"""Bounded in-process cache for objects fetched from the origin."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

LOGGER = structlog.get_logger("rawgate.cache")

CACHE_KEY_PREFIX = "github_raw_"


@dataclass(frozen=True, slots=True)
class CacheEntry:
    key: str
    payload: bytes
    content_type: str
    inserted_at: float
    ttl_seconds: float

    def expired(self, now: float) -> bool:
        return now - self.inserted_at > self.ttl_seconds


class ObjectCache:
    """Key/value store with per-entry TTL and a hard entry cap.

    Expiry is checked on every ``get``; ``purge_expired`` is an optional sweep
    that only reclaims memory earlier. When an insert pushes the size past
    ``max_entries`` the entry with the oldest ``inserted_at`` is dropped.
    """

    def __init__(
        self,
        ttl_seconds: float = 300,
        max_entries: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self.evictions = 0

    @staticmethod
    def key_for(object_key: str) -> str:
        return f"{CACHE_KEY_PREFIX}{object_key}"

    def get(self, cache_key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._entries.get(cache_key)
            if entry is None:
                return None
            if entry.expired(self._clock()):
                del self._entries[cache_key]
                LOGGER.debug("cache_entry_expired", cache_key=cache_key)
                return None
            return entry

    def put(
        self,
        cache_key: str,
        payload: bytes,
        content_type: str,
        ttl_seconds: Optional[float] = None,
    ) -> CacheEntry:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            entry = CacheEntry(
                key=cache_key,
                payload=payload,
                content_type=content_type,
                inserted_at=self._clock(),
                ttl_seconds=ttl,
            )
            # Delete first so dict order tracks insertion time.
            self._entries.pop(cache_key, None)
            self._entries[cache_key] = entry
            if len(self._entries) > self.max_entries:
                self._evict_oldest()
            return entry

    def delete(self, cache_key: str) -> None:
        with self._lock:
            self._entries.pop(cache_key, None)

    def purge_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.expired(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            LOGGER.info("cache_expired_purged", purged=len(expired))
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict[str, object]:
        with self._lock:
            return {
                "entries": len(self._entries),
                "max_entries": self.max_entries,
                "ttl_seconds": self.ttl_seconds,
                "evictions": self.evictions,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _evict_oldest(self) -> None:
        oldest = min(self._entries.values(), key=lambda entry: entry.inserted_at)
        del self._entries[oldest.key]
        self.evictions += 1
        LOGGER.info("cache_evicted", cache_key=oldest.key, max_entries=self.max_entries)
