"""Redis-backed quota ledger.

Each entry is a hash ``{namespace}:quota:{key}`` with ``scan_count``,
``is_blocked`` and ``last_scan_at`` fields. Increments run inside a MULTI/EXEC
transaction so the counter and timestamp move together.
"""

from __future__ import annotations

import redis

from scan_gate.adapters.quota.base import AbstractQuotaStore, LedgerEntry
from scan_gate.adapters.redis_client import store_errors

_COST_TTL_SECONDS = 3 * 86400


def _entry_from_hash(key: str, data: dict[str, str]) -> LedgerEntry:
    last_scan_at = data.get("last_scan_at")
    return LedgerEntry(
        key=key,
        scan_count=int(data.get("scan_count") or 0),
        is_blocked=data.get("is_blocked") == "1",
        last_scan_at=float(last_scan_at) if last_scan_at else None,
    )


class RedisQuotaStore(AbstractQuotaStore):
    """Persistent ledger shared by every worker."""

    def __init__(self, client: redis.Redis, *, namespace: str) -> None:
        self._client = client
        self._namespace = namespace

    def _entry_key(self, key: str) -> str:
        return f"{self._namespace}:quota:{key}"

    def get(self, key: str) -> LedgerEntry | None:
        with store_errors("quota", "get"):
            data = self._client.hgetall(self._entry_key(key))
        if not data:
            return None
        return _entry_from_hash(key, data)

    def increment(self, key: str, *, now: float) -> LedgerEntry:
        entry_key = self._entry_key(key)
        with store_errors("quota", "increment"):
            pipe = self._client.pipeline(transaction=True)
            pipe.hincrby(entry_key, "scan_count", 1)
            pipe.hset(entry_key, "last_scan_at", repr(now))
            pipe.hgetall(entry_key)
            _, _, data = pipe.execute()
        return _entry_from_hash(key, data)

    def set_blocked(self, key: str, blocked: bool) -> LedgerEntry:
        entry_key = self._entry_key(key)
        with store_errors("quota", "set_blocked"):
            pipe = self._client.pipeline(transaction=True)
            pipe.hset(entry_key, "is_blocked", "1" if blocked else "0")
            pipe.hsetnx(entry_key, "scan_count", 0)
            pipe.hgetall(entry_key)
            _, _, data = pipe.execute()
        return _entry_from_hash(key, data)

    def add_daily_cost(self, day: str, cents: float) -> float:
        cost_key = f"{self._namespace}:cost:{day}"
        with store_errors("quota", "add_daily_cost"):
            pipe = self._client.pipeline(transaction=True)
            pipe.incrbyfloat(cost_key, cents)
            pipe.expire(cost_key, _COST_TTL_SECONDS)
            total, _ = pipe.execute()
        return float(total)
