"""Server side of the device fingerprint registry.

Every request carrying a fingerprint upserts the device record. The same
observation feeds account-sharing detection:

- more than ``max_users_per_device`` distinct accounts on one device
- more than ``max_ips_per_user`` distinct IPs for one account within the window

Either condition raises an audit flag but never denies. Registry writes are
best-effort: a store outage is logged and the request proceeds.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from scan_gate.adapters.audit.base import Severity
from scan_gate.adapters.devices.base import AbstractDeviceStore, DeviceRecord
from scan_gate.core.errors import DependencyError
from scan_gate.core.logging import hash_identifier
from scan_gate.services.audit import AuditLog
from scan_gate.services.identity import RequestContext, ResolvedIdentity
from scan_gate.services.quota_ledger import QuotaLedger
from scan_gate.utils.ttl_set import TTLSet

logger = logging.getLogger(__name__)


def device_ledger_key(fingerprint: str) -> str:
    return f"device:{fingerprint}"


@dataclass(frozen=True)
class SharingReport:
    """What one observation revealed about possible account sharing."""

    device_user_count: int = 0
    user_ip_count: int = 0
    shared_device: bool = False
    multi_ip_user: bool = False

    @property
    def flagged(self) -> bool:
        return self.shared_device or self.multi_ip_user


class DeviceRegistry:
    def __init__(
        self,
        store: AbstractDeviceStore,
        ledger: QuotaLedger,
        audit: AuditLog,
        recent_flags: TTLSet,
        *,
        max_users_per_device: int = 5,
        max_ips_per_user: int = 5,
        ip_window_seconds: int = 86400,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._audit = audit
        self._recent_flags = recent_flags
        self._max_users = max_users_per_device
        self._max_ips = max_ips_per_user
        self._ip_window = ip_window_seconds
        self._clock = clock

    def observe(self, context: RequestContext, identity: ResolvedIdentity) -> SharingReport:
        """Record a contact and run sharing detection.

        Returns:
            SharingReport. An empty report when the store is unreachable.
        """
        now = self._clock()
        report = SharingReport()

        try:
            if identity.fingerprint:
                record = self._store.touch(
                    identity.fingerprint,
                    now=now,
                    user_id=identity.user_id,
                    ip=context.ip,
                    user_agent=context.user_agent,
                )
                users = len(record.user_ids)
                report = SharingReport(
                    device_user_count=users,
                    shared_device=users > self._max_users,
                )

            if identity.user_id and context.ip:
                ips = self._store.record_user_ip(
                    identity.user_id, context.ip, now=now, window_seconds=self._ip_window
                )
                report = SharingReport(
                    device_user_count=report.device_user_count,
                    user_ip_count=ips,
                    shared_device=report.shared_device,
                    multi_ip_user=ips > self._max_ips,
                )
        except DependencyError:
            logger.warning(
                "device.registry_unavailable",
                extra={"identity_hash": hash_identifier(identity.key)},
            )
            return report

        if report.shared_device and identity.fingerprint:
            self._flag(
                f"shared_device:{identity.fingerprint}",
                identity=device_ledger_key(identity.fingerprint),
                reason="Device used by too many accounts",
                metadata={"user_count": report.device_user_count, "threshold": self._max_users},
            )
        if report.multi_ip_user and identity.user_id:
            self._flag(
                f"multi_ip_user:{identity.user_id}",
                identity=identity.key,
                reason="Account used from too many IP addresses",
                metadata={
                    "ip_count": report.user_ip_count,
                    "threshold": self._max_ips,
                    "window_seconds": self._ip_window,
                },
            )
        return report

    def _flag(self, flag_key: str, *, identity: str, reason: str, metadata: dict) -> None:
        # one audit event per condition per flag TTL, not one per request
        if flag_key in self._recent_flags:
            return
        self._recent_flags.add(flag_key)
        logger.warning(
            "device.sharing_flagged",
            extra={"identity_hash": hash_identifier(identity), "sharing_reason": reason},
        )
        self._audit.record(
            "account_sharing",
            identity=identity,
            reason=reason,
            severity=Severity.MEDIUM,
            metadata=metadata,
        )

    def get(self, fingerprint: str) -> DeviceRecord | None:
        return self._store.get(fingerprint)

    def set_blocked(self, fingerprint: str, blocked: bool, *, actor: str | None = None) -> DeviceRecord:
        """Operator block/unblock of a device and its quota ledger entry.

        Store errors propagate: operator actions must not silently fail.
        """
        record = self._store.set_blocked(fingerprint, blocked, now=self._clock())
        self._ledger.set_blocked(device_ledger_key(fingerprint), blocked, actor=actor)
        logger.info(
            "device.blocked" if blocked else "device.unblocked",
            extra={"fingerprint_hash": hash_identifier(fingerprint), "actor": actor},
        )
        return record
