"""Redis-backed device registry.

Layout (all under the store namespace):
- ``device:{fp}`` hash: first_seen, last_seen, is_blocked
- ``device:{fp}:users`` / ``:ips`` / ``:agents`` sets
- ``user_ips:{user_id}`` sorted set of IPs scored by last-seen time
"""

from __future__ import annotations

import redis

from scan_gate.adapters.devices.base import AbstractDeviceStore, DeviceRecord
from scan_gate.adapters.redis_client import store_errors


class RedisDeviceStore(AbstractDeviceStore):
    """Persistent registry shared by every worker."""

    def __init__(self, client: redis.Redis, *, namespace: str) -> None:
        self._client = client
        self._namespace = namespace

    def _key(self, fingerprint: str, suffix: str = "") -> str:
        base = f"{self._namespace}:device:{fingerprint}"
        return f"{base}:{suffix}" if suffix else base

    def _read(self, fingerprint: str) -> DeviceRecord | None:
        pipe = self._client.pipeline(transaction=True)
        pipe.hgetall(self._key(fingerprint))
        pipe.smembers(self._key(fingerprint, "users"))
        pipe.smembers(self._key(fingerprint, "ips"))
        pipe.smembers(self._key(fingerprint, "agents"))
        data, users, ips, agents = pipe.execute()
        if not data:
            return None
        return DeviceRecord(
            fingerprint=fingerprint,
            first_seen=float(data.get("first_seen") or 0.0),
            last_seen=float(data.get("last_seen") or 0.0),
            user_ids=frozenset(users),
            ip_addresses=frozenset(ips),
            user_agents=frozenset(agents),
            is_blocked=data.get("is_blocked") == "1",
        )

    def touch(
        self,
        fingerprint: str,
        *,
        now: float,
        user_id: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> DeviceRecord:
        with store_errors("devices", "touch"):
            pipe = self._client.pipeline(transaction=True)
            pipe.hsetnx(self._key(fingerprint), "first_seen", repr(now))
            pipe.hset(self._key(fingerprint), "last_seen", repr(now))
            if user_id:
                pipe.sadd(self._key(fingerprint, "users"), user_id)
            if ip:
                pipe.sadd(self._key(fingerprint, "ips"), ip)
            if user_agent:
                pipe.sadd(self._key(fingerprint, "agents"), user_agent)
            pipe.execute()
            record = self._read(fingerprint)
        return record or DeviceRecord(fingerprint=fingerprint, first_seen=now, last_seen=now)

    def get(self, fingerprint: str) -> DeviceRecord | None:
        with store_errors("devices", "get"):
            return self._read(fingerprint)

    def set_blocked(self, fingerprint: str, blocked: bool, *, now: float) -> DeviceRecord:
        with store_errors("devices", "set_blocked"):
            pipe = self._client.pipeline(transaction=True)
            pipe.hsetnx(self._key(fingerprint), "first_seen", repr(now))
            pipe.hsetnx(self._key(fingerprint), "last_seen", repr(now))
            pipe.hset(self._key(fingerprint), "is_blocked", "1" if blocked else "0")
            pipe.execute()
            record = self._read(fingerprint)
        return record or DeviceRecord(
            fingerprint=fingerprint, first_seen=now, last_seen=now, is_blocked=blocked
        )

    def record_user_ip(self, user_id: str, ip: str, *, now: float, window_seconds: int) -> int:
        key = f"{self._namespace}:user_ips:{user_id}"
        with store_errors("devices", "record_user_ip"):
            pipe = self._client.pipeline(transaction=True)
            pipe.zadd(key, {ip: now})
            pipe.zremrangebyscore(key, "-inf", now - window_seconds)
            pipe.zcard(key)
            pipe.expire(key, window_seconds)
            _, _, distinct, _ = pipe.execute()
        return int(distinct)
