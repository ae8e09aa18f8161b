"""In-memory device registry (single process, lost on restart)."""

from __future__ import annotations

import threading
from dataclasses import replace

from scan_gate.adapters.devices.base import AbstractDeviceStore, DeviceRecord


class InMemoryDeviceStore(AbstractDeviceStore):
    """Thread-safe dict-backed registry."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._devices: dict[str, DeviceRecord] = {}
        self._user_ips: dict[str, dict[str, float]] = {}

    def touch(
        self,
        fingerprint: str,
        *,
        now: float,
        user_id: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> DeviceRecord:
        with self._lock:
            record = self._devices.get(fingerprint) or DeviceRecord(
                fingerprint=fingerprint, first_seen=now, last_seen=now
            )
            record = replace(
                record,
                last_seen=now,
                user_ids=record.user_ids | {user_id} if user_id else record.user_ids,
                ip_addresses=record.ip_addresses | {ip} if ip else record.ip_addresses,
                user_agents=record.user_agents | {user_agent} if user_agent else record.user_agents,
            )
            self._devices[fingerprint] = record
            return record

    def get(self, fingerprint: str) -> DeviceRecord | None:
        with self._lock:
            return self._devices.get(fingerprint)

    def set_blocked(self, fingerprint: str, blocked: bool, *, now: float) -> DeviceRecord:
        with self._lock:
            record = self._devices.get(fingerprint) or DeviceRecord(
                fingerprint=fingerprint, first_seen=now, last_seen=now
            )
            record = replace(record, is_blocked=blocked)
            self._devices[fingerprint] = record
            return record

    def record_user_ip(self, user_id: str, ip: str, *, now: float, window_seconds: int) -> int:
        with self._lock:
            seen = self._user_ips.setdefault(user_id, {})
            seen[ip] = now
            cutoff = now - window_seconds
            for stale in [addr for addr, ts in seen.items() if ts <= cutoff]:
                del seen[stale]
            return len(seen)
