"""In-memory TTL set used for the short-term abuse flag list.

Thread-safe, bounded by LRU eviction, process-local. Entries expire after a
fixed TTL so a flagged address is not denied forever by one worker.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from typing import Callable

logger = logging.getLogger(__name__)


class TTLSet:
    """Thread-safe, in-memory set with per-entry expiry and LRU eviction.

    Attributes:
        ttl_seconds: Time-to-live applied to all entries.
        max_entries: Maximum number of members (None for unlimited).
    """

    def __init__(
        self,
        ttl_seconds: int = 3600,
        max_entries: int | None = 10_000,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._store: OrderedDict[str, float] = OrderedDict()
        self._lock = threading.RLock()
        self._evictions = 0

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"TTLSet(ttl_seconds={self._ttl}, max_entries={self._max_entries}, "
            f"size={len(self._store)}, evictions={self._evictions})"
        )

    def __contains__(self, member: object) -> bool:
        if not isinstance(member, str):
            return False

        with self._lock:
            expires_at = self._store.get(member)
            if expires_at is None:
                return False
            if self._clock() >= expires_at:
                self._evict_single(member)
                return False
            return True

    def __len__(self) -> int:
        with self._lock:
            self._evict_expired_locked()
            return len(self._store)

    def add(self, member: str) -> None:
        """Insert or refresh a member, evicting as needed."""

        with self._lock:
            self._evict_expired_locked()
            self._store[member] = self._clock() + self._ttl
            self._store.move_to_end(member)
            self._evict_if_over_capacity_locked()

    def discard(self, member: str) -> None:
        with self._lock:
            self._store.pop(member, None)

    def clear(self) -> None:
        """Remove all members and reset counters."""

        with self._lock:
            self._store.clear()
            self._evictions = 0

    def stats(self) -> dict[str, int | None]:
        with self._lock:
            return {
                "ttl_seconds": self._ttl,
                "max_entries": self._max_entries,
                "entries": len(self._store),
                "evictions": self._evictions,
            }

    def _evict_single(self, member: str) -> None:
        if member in self._store:
            self._store.pop(member, None)
            self._evictions += 1

    def _evict_expired_locked(self) -> None:
        now = self._clock()
        expired = [m for m, expires_at in self._store.items() if expires_at <= now]
        for member in expired:
            self._evict_single(member)

    def _evict_if_over_capacity_locked(self) -> None:
        if self._max_entries is None:
            return

        while len(self._store) > self._max_entries:
            # popitem(last=False) removes the least recently refreshed member
            member, _ = self._store.popitem(last=False)
            self._evictions += 1
            logger.debug("ttl_set.evicted", extra={"reason": "capacity"})
