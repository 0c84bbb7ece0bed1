from __future__ import annotations

import logging
import threading
import time
from typing import Dict, Optional

from cachetools import LRUCache

from .validation import DEFAULT_TTL_SECONDS, ForwardDecision

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 10000


class ForwardingCache:
    """
    LRU cache of validated forwarding decisions keyed by lowercased host.

    Expiry is carried by each ForwardDecision (expires_at_ms); get() does not
    look at it, callers use is_expired() and rebuild stale entries.

    Inputs:
        maxsize: Maximum number of hosts kept before least recently used
            entries are evicted.
        ttl_seconds: Entry lifetime reported by snapshot(); build_app reads it
            back so ValidationPipeline stamps expires_at_ms with the same value.

    Example use:
        >>> from forward_domain.validation import ForwardDecision
        >>> cache = ForwardingCache(maxsize=2)
        >>> d = ForwardDecision("https://dest.example/", False, False, 10, 301)
        >>> cache.set("Shop.Example.com", d)
        >>> cache.get("shop.example.com") is d
        True
        >>> ForwardingCache.is_expired(d, now_ms=11)
        True
    """

    def __init__(
        self, maxsize: int = DEFAULT_MAX_ENTRIES, ttl_seconds: int = DEFAULT_TTL_SECONDS
    ) -> None:
        self.maxsize = int(maxsize)
        self.ttl_seconds = int(ttl_seconds)
        self._lock = threading.RLock()
        self._store: LRUCache = LRUCache(maxsize=self.maxsize)
        self.cache_hits = 0
        self.cache_misses = 0

    @staticmethod
    def _key(host: str) -> str:
        return host.strip().lower()

    @staticmethod
    def is_expired(decision: ForwardDecision, now_ms: Optional[int] = None) -> bool:
        """Return True when now is past the decision's expiry timestamp."""
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        return now_ms > decision.expires_at_ms

    def get(self, host: str) -> Optional[ForwardDecision]:
        """
        Return the cached decision for host, or None.

        Args:
            host: Hostname (case-insensitive).
        Returns:
            The ForwardDecision, expired or not, or None when absent.
        """
        with self._lock:
            decision = self._store.get(self._key(host))
            if decision is None:
                self.cache_misses += 1
            else:
                self.cache_hits += 1
            return decision

    def set(self, host: str, decision: ForwardDecision) -> None:
        with self._lock:
            self._store[self._key(host)] = decision

    def invalidate(self, host: str) -> bool:
        """
        Drop the entry for host so the next lookup re-runs validation.

        Args:
            host: Hostname (case-insensitive).
        Returns:
            True when an entry existed and was removed.
        """
        with self._lock:
            removed = self._store.pop(self._key(host), None) is not None
        if removed:
            logger.info("Invalidated cached forwarding for %s", host)
        return removed

    def reset_all(self) -> int:
        """
        Discard every entry by swapping in a fresh store.

        Returns:
            Number of entries that were discarded.
        """
        with self._lock:
            dropped = len(self._store)
            self._store = LRUCache(maxsize=self.maxsize)
        logger.info("Forwarding cache reset (%d entries dropped)", dropped)
        return dropped

    def __contains__(self, host: object) -> bool:
        if not isinstance(host, str):
            return False
        with self._lock:
            return self._key(host) in self._store

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def snapshot(self) -> Dict[str, int]:
        """Summarize size, limits and hit/miss counters."""
        with self._lock:
            return {
                "entries": len(self._store),
                "max_entries": self.maxsize,
                "ttl_seconds": self.ttl_seconds,
                "cache_hits": self.cache_hits,
                "cache_misses": self.cache_misses,
            }
