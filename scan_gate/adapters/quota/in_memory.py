"""In-memory quota ledger (single process, lost on restart)."""

from __future__ import annotations

import threading
from dataclasses import replace

from scan_gate.adapters.quota.base import AbstractQuotaStore, LedgerEntry


class InMemoryQuotaStore(AbstractQuotaStore):
    """Thread-safe dict-backed ledger."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._entries: dict[str, LedgerEntry] = {}
        self._costs: dict[str, float] = {}

    def get(self, key: str) -> LedgerEntry | None:
        with self._lock:
            return self._entries.get(key)

    def increment(self, key: str, *, now: float) -> LedgerEntry:
        with self._lock:
            entry = self._entries.get(key) or LedgerEntry(key=key)
            entry = replace(entry, scan_count=entry.scan_count + 1, last_scan_at=now)
            self._entries[key] = entry
            return entry

    def set_blocked(self, key: str, blocked: bool) -> LedgerEntry:
        with self._lock:
            entry = self._entries.get(key) or LedgerEntry(key=key)
            entry = replace(entry, is_blocked=blocked)
            self._entries[key] = entry
            return entry

    def add_daily_cost(self, day: str, cents: float) -> float:
        with self._lock:
            total = self._costs.get(day, 0.0) + cents
            self._costs[day] = total
            return total
