"""Absolute (non-resetting) scan quota per device or per user.

Check and consume are separate operations: the gate only checks, and the
caller consumes after its downstream work actually succeeded, so failed
analyses are never charged.

Store outages fail open with a reduced allowance: each ledger key may consume
at most ``fail_open_allowance`` scans (default one) while the store is
unreachable. Those grants are tracked in-process and forgotten as soon as the
store answers again for that key.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from scan_gate.adapters.audit.base import Severity
from scan_gate.adapters.quota.base import AbstractQuotaStore, LedgerEntry
from scan_gate.core.errors import DependencyError
from scan_gate.core.logging import hash_identifier
from scan_gate.services.audit import AuditLog
from scan_gate.services.policy import Outcome, PolicyStep, allow, deny, first_decisive

logger = logging.getLogger(__name__)

UNLIMITED = -1


class QuotaReason(str, Enum):
    OK = "ok"
    UNLIMITED = "unlimited"
    EXHAUSTED = "QUOTA_EXHAUSTED"
    BLOCKED = "DEVICE_BLOCKED"
    USER_BLOCKED = "USER_BLOCKED"
    FAIL_OPEN = "fail_open"
    FAIL_OPEN_EXHAUSTED = "QUOTA_UNVERIFIED"


@dataclass(frozen=True)
class QuotaStatus:
    """Answer to "may this identity scan?".

    ``remaining_scans`` is ``-1`` for unlimited tiers.
    """

    can_scan: bool
    remaining_scans: int
    is_blocked: bool
    reason: QuotaReason
    scan_count: int = 0
    last_scan_at: float | None = None
    degraded: bool = False


class FailOpenGrants:
    """Process-local count of scans consumed while the ledger store was down."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._used: dict[str, int] = {}

    def used(self, key: str) -> int:
        with self._lock:
            return self._used.get(key, 0)

    def record(self, key: str) -> int:
        with self._lock:
            self._used[key] = self._used.get(key, 0) + 1
            return self._used[key]

    def forget(self, key: str) -> None:
        with self._lock:
            self._used.pop(key, None)


def blocked_reason_for(key: str) -> QuotaReason:
    return QuotaReason.USER_BLOCKED if key.startswith("user:") else QuotaReason.BLOCKED


def status_from_entry(
    entry: LedgerEntry | None,
    allowance: int | None,
    *,
    blocked_reason: QuotaReason = QuotaReason.BLOCKED,
) -> QuotaStatus:
    """Derive a QuotaStatus; a block dominates any remaining allowance."""
    scan_count = entry.scan_count if entry else 0
    last_scan_at = entry.last_scan_at if entry else None

    if entry is not None and entry.is_blocked:
        return QuotaStatus(
            can_scan=False,
            remaining_scans=0,
            is_blocked=True,
            reason=blocked_reason,
            scan_count=scan_count,
            last_scan_at=last_scan_at,
        )

    if allowance is None:
        return QuotaStatus(
            can_scan=True,
            remaining_scans=UNLIMITED,
            is_blocked=False,
            reason=QuotaReason.UNLIMITED,
            scan_count=scan_count,
            last_scan_at=last_scan_at,
        )

    remaining = max(0, allowance - scan_count)
    return QuotaStatus(
        can_scan=remaining > 0,
        remaining_scans=remaining,
        is_blocked=False,
        reason=QuotaReason.OK if remaining > 0 else QuotaReason.EXHAUSTED,
        scan_count=scan_count,
        last_scan_at=last_scan_at,
    )


class QuotaLedger:
    def __init__(
        self,
        store: AbstractQuotaStore,
        audit: AuditLog,
        grants: FailOpenGrants,
        *,
        fail_open_allowance: int = 1,
        scan_cost_cents: float = 0.0,
        daily_cost_alert_cents: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._audit = audit
        self._grants = grants
        self._fail_open_allowance = fail_open_allowance
        self._scan_cost_cents = scan_cost_cents
        self._daily_cost_alert_cents = daily_cost_alert_cents
        self._clock = clock

    def _lookup(self, key: str, allowance: int | None) -> Outcome[QuotaStatus]:
        status = status_from_entry(self._store.get(key), allowance, blocked_reason=blocked_reason_for(key))
        self._grants.forget(key)
        if status.can_scan:
            return allow(status)
        return deny(status, reason=status.reason.value)

    def _degraded_status(self, key: str, allowance: int | None) -> QuotaStatus:
        if allowance is None:
            return QuotaStatus(
                can_scan=True,
                remaining_scans=UNLIMITED,
                is_blocked=False,
                reason=QuotaReason.UNLIMITED,
                degraded=True,
            )
        remaining = max(0, self._fail_open_allowance - self._grants.used(key))
        return QuotaStatus(
            can_scan=remaining > 0,
            remaining_scans=remaining,
            is_blocked=False,
            reason=QuotaReason.FAIL_OPEN if remaining > 0 else QuotaReason.FAIL_OPEN_EXHAUSTED,
            degraded=True,
        )

    def _fail_open(self, key: str, allowance: int | None) -> Outcome[QuotaStatus]:
        status = self._degraded_status(key, allowance)
        logger.warning(
            "quota.fail_open",
            extra={
                "ledger_key_hash": hash_identifier(key),
                "remaining": status.remaining_scans,
                "can_scan": status.can_scan,
            },
        )
        if status.can_scan:
            return allow(status)
        return deny(status, reason=status.reason.value)

    def check(self, key: str, allowance: int | None) -> QuotaStatus:
        """Read-only quota lookup; repeated calls without consume agree.

        Args:
            key: Ledger key (device or user, never both).
            allowance: The tier's lifetime allowance; None means unlimited.

        Returns:
            QuotaStatus. A fresh key reports the full allowance and no entry
            is created until the first consume.
        """
        outcome = first_decisive(
            "quota",
            [
                PolicyStep("store", lambda: self._lookup(key, allowance)),
                PolicyStep("fail_open", lambda: self._fail_open(key, allowance)),
            ],
        )
        status: QuotaStatus = outcome.value  # type: ignore[assignment]
        return status

    def consume(self, key: str, allowance: int | None) -> QuotaStatus:
        """Record one scan whose downstream work has completed.

        The increment is atomic in the store and always applied: the resource
        was already spent. Admission and consume are separate calls, so two
        requests admitted on the last remaining scan are both charged and
        ``scan_count`` can end above the allowance (known over-count;
        ``remaining_scans`` floors at zero). When the store is down the scan is
        charged against the in-process fail-open grant instead.
        """
        now = self._clock()
        try:
            entry = self._store.increment(key, now=now)
        except DependencyError:
            used = self._grants.record(key)
            logger.warning(
                "quota.consume_unrecorded",
                extra={"ledger_key_hash": hash_identifier(key), "fail_open_used": used},
            )
            return self._degraded_status(key, allowance)

        self._grants.forget(key)
        status = status_from_entry(entry, allowance, blocked_reason=blocked_reason_for(key))
        logger.info(
            "quota.consumed",
            extra={
                "ledger_key_hash": hash_identifier(key),
                "scan_count": entry.scan_count,
                "remaining": status.remaining_scans,
            },
        )

        if allowance is not None and entry.scan_count == allowance:
            self._audit.record(
                "quota_exhausted",
                identity=key,
                reason="Lifetime scan allowance used up",
                severity=Severity.LOW,
                metadata={"scan_count": entry.scan_count, "allowance": allowance},
            )

        self._track_cost(now)
        return status

    def _track_cost(self, now: float) -> None:
        if not self._scan_cost_cents:
            return

        day = datetime.fromtimestamp(now, tz=timezone.utc).strftime("%Y-%m-%d")
        try:
            total = self._store.add_daily_cost(day, self._scan_cost_cents)
        except DependencyError:
            logger.warning("quota.cost_unrecorded", extra={"day": day})
            return

        threshold = self._daily_cost_alert_cents
        # compare at micro-cent precision so float drift cannot re-fire the alert
        previous = round(total - self._scan_cost_cents, 6)
        if threshold and previous < threshold <= round(total, 6):
            self._audit.record(
                "cost_threshold",
                identity=None,
                reason="Daily downstream cost exceeded threshold",
                severity=Severity.CRITICAL,
                metadata={"day": day, "total_cents": round(total, 4), "threshold_cents": threshold},
            )

    def set_blocked(self, key: str, blocked: bool, *, actor: str | None = None) -> LedgerEntry:
        """Operator block/unblock. Store errors propagate to the operator."""
        entry = self._store.set_blocked(key, blocked)
        self._audit.record(
            "ledger_blocked" if blocked else "ledger_unblocked",
            identity=key,
            reason="Operator block" if blocked else "Operator unblock",
            severity=Severity.MEDIUM,
            metadata={"actor": actor, "scan_count": entry.scan_count},
        )
        return entry
