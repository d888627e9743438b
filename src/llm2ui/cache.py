# src/llm2ui/cache.py
"""
Bounded LRU + TTL cache for built prompts.

Safe under concurrent use from threads: the map is guarded by one lock, and
builds for the same key are serialized by a per-key lock so two callers
never build the same prompt twice.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional

import structlog

from .schemas import CacheEntry
from . import utils

logger = structlog.get_logger()

DEFAULT_MAX_SIZE = 100


def make_cache_key(
    *,
    task: str,
    catalog_version: Optional[str],
    token_budget: Optional[int],
    language: str,
    extra: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Stable key over every input that affects the built prompt.

    Identical inputs give identical keys across processes.
    """
    return utils.stable_hash(
        {
            "task": task,
            "catalog_version": catalog_version,
            "token_budget": token_budget,
            "language": language,
            "extra": extra or {},
        }
    )


class PromptCache:
    """
    Args:
      max_size: entry bound; least-recently-used entries are evicted first.
      ttl_seconds: entries older than this are treated as missing. None = no expiry.
      clock: monotonic seconds source (injectable for tests).
    """

    def __init__(
        self,
        max_size: Optional[int] = None,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size is not None and max_size < 1:
            raise ValueError("max_size must be >= 1")
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self.max_size = max_size or DEFAULT_MAX_SIZE
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._build_locks: Dict[str, threading.Lock] = {}
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    # ----- internals (call with self._lock held) -----

    def _expired(self, entry: CacheEntry) -> bool:
        return self.ttl_seconds is not None and self._clock() - entry.created_at >= self.ttl_seconds

    def _lookup(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._expired(entry):
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return entry

    def _store(self, key: str, value: Any) -> None:
        self._entries[key] = CacheEntry(key=key, value=value, created_at=self._clock())
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            self.evictions += 1
            logger.debug("prompt_cache_evicted", key=evicted[:12])

    # ----- public API -----

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._lookup(key)
            if entry is None:
                self.misses += 1
                return None
            self.hits += 1
            return entry.value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._store(key, value)

    def get_or_build(self, key: str, build: Callable[[], Any]) -> Any:
        """
        Cached value for `key`, building (once) on a miss.

        Exceptions from `build` propagate and nothing is cached.
        """
        with self._lock:
            entry = self._lookup(key)
            if entry is not None:
                self.hits += 1
                return entry.value
            build_lock = self._build_locks.setdefault(key, threading.Lock())

        with build_lock:
            # Another caller may have finished building while we waited.
            with self._lock:
                entry = self._lookup(key)
                if entry is not None:
                    self.hits += 1
                    return entry.value
                self.misses += 1

            try:
                value = build()
                with self._lock:
                    self._store(key, value)
            finally:
                with self._lock:
                    self._build_locks.pop(key, None)
            return value

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._build_locks.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return isinstance(key, str) and self._lookup(key) is not None

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            total = self.hits + self.misses
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "hits": self.hits,
                "misses": self.misses,
                "evictions": self.evictions,
                "hit_rate": (self.hits / total) if total else 0.0,
            }
