"""The scan-admission gate.

Per request::

    identity -> abuse pre-filter -> tier -> device registry (best-effort)
             -> rate limiter -> quota ledger -> allow

Every deny is terminal and only the first failing check is reported. Denies
are returned as an AdmissionDecision rather than raised, so the same gate can
back an HTTP route or be called in-process by the analysis service.

Consuming a scan is a separate call, made by the caller only after its
downstream work succeeded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum

from scan_gate.adapters.audit.base import Severity
from scan_gate.adapters.rate_limit.base import RateLimitResult
from scan_gate.core.logging import hash_identifier
from scan_gate.services.abuse import AbuseHeuristicEngine, AbuseVerdict
from scan_gate.services.audit import AuditLog
from scan_gate.services.fingerprint import DeviceRegistry, SharingReport
from scan_gate.services.identity import IdentityResolver, RequestContext, ResolvedIdentity
from scan_gate.services.quota_ledger import QuotaLedger, QuotaReason, QuotaStatus
from scan_gate.services.rate_limiter import RateLimiterService
from scan_gate.services.tiers import ResolvedTier, TierResolver

logger = logging.getLogger(__name__)

SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"


class Stage(str, Enum):
    ABUSE_CHECK = "abuse_check"
    RATE_CHECK = "rate_check"
    QUOTA_CHECK = "quota_check"
    ALLOW = "allow"


@dataclass(frozen=True)
class AdmissionDecision:
    """Outcome of one pass through the gate.

    ``stage`` is the check that denied, or ``ALLOW``. Fields for checks that
    never ran are None.
    """

    allowed: bool
    stage: Stage
    identity: ResolvedIdentity
    tier: ResolvedTier | None = None
    rate: RateLimitResult | None = None
    quota: QuotaStatus | None = None
    code: str | None = None
    reason: str | None = None
    upgrade_suggested: bool = False
    sharing: SharingReport | None = None

    @property
    def remaining(self) -> int | None:
        return self.rate.remaining if self.rate else None

    @property
    def reset_at(self) -> int | None:
        return self.rate.reset_at if self.rate else None

    def rate_limit_headers(self) -> dict[str, str]:
        if self.rate is None:
            return {}
        headers = {
            "X-RateLimit-Limit": str(self.rate.limit),
            "X-RateLimit-Remaining": str(self.rate.remaining),
            "X-RateLimit-Reset": str(self.rate.reset_at),
        }
        if not self.rate.allowed:
            headers["Retry-After"] = str(self.rate.retry_after_seconds or 0)
        return headers


class AdmissionGate:
    def __init__(
        self,
        *,
        identities: IdentityResolver,
        tiers: TierResolver,
        abuse: AbuseHeuristicEngine | None,
        registry: DeviceRegistry,
        rate_limiter: RateLimiterService | None,
        ledger: QuotaLedger,
        audit: AuditLog,
        quota_enabled: bool = True,
    ) -> None:
        self.identities = identities
        self.tiers = tiers
        self.abuse = abuse
        self.registry = registry
        self.rate_limiter = rate_limiter
        self.ledger = ledger
        self.audit = audit
        self.quota_enabled = quota_enabled

    def evaluate(self, context: RequestContext) -> AdmissionDecision:
        """Run every check in order and return the first deny, or allow."""
        identity = self.identities.resolve(context)

        if self.abuse is not None:
            verdict: AbuseVerdict = self.abuse.screen(context, identity)
            if verdict.suspicious:
                return self._finish(
                    AdmissionDecision(
                        allowed=False,
                        stage=Stage.ABUSE_CHECK,
                        identity=identity,
                        code=SUSPICIOUS_ACTIVITY,
                        reason=verdict.reason,
                    )
                )

        tier = self.tiers.resolve(identity)
        sharing = self.registry.observe(context, identity)

        rate: RateLimitResult | None = None
        if self.rate_limiter is not None:
            check = self.rate_limiter.check(identity, tier)
            rate = check.result
            if not check.allowed:
                return self._finish(
                    AdmissionDecision(
                        allowed=False,
                        stage=Stage.RATE_CHECK,
                        identity=identity,
                        tier=tier,
                        rate=rate,
                        code=RATE_LIMIT_EXCEEDED,
                        reason="Rate limit exceeded",
                        upgrade_suggested=check.upgrade_suggested,
                        sharing=sharing,
                    )
                )

        quota: QuotaStatus | None = None
        if self.quota_enabled:
            quota = self._ledger_status(identity, tier)
            if not quota.can_scan:
                self._audit_quota_deny(identity, tier, quota)
                return self._finish(
                    AdmissionDecision(
                        allowed=False,
                        stage=Stage.QUOTA_CHECK,
                        identity=identity,
                        tier=tier,
                        rate=rate,
                        quota=quota,
                        code=quota.reason.value,
                        reason="Device or account is blocked"
                        if quota.is_blocked
                        else "Scan allowance exhausted",
                        upgrade_suggested=not quota.is_blocked,
                        sharing=sharing,
                    )
                )

        return self._finish(
            AdmissionDecision(
                allowed=True,
                stage=Stage.ALLOW,
                identity=identity,
                tier=tier,
                rate=rate,
                quota=quota,
                sharing=sharing,
            )
        )

    def _ledger_status(self, identity: ResolvedIdentity, tier: ResolvedTier) -> QuotaStatus:
        """Allowance from the device-keyed entry; a block on either entry denies.

        Signed-in users with a fingerprint are counted against the device, but
        an operator block on ``user:<id>`` must still apply to them.
        """
        status = self.ledger.check(identity.ledger_key, tier.limits.scan_allowance)
        account_key = identity.account_ledger_key
        if status.is_blocked or account_key is None or account_key == identity.ledger_key:
            return status

        account = self.ledger.check(account_key, None)
        if not account.is_blocked:
            return status
        return replace(account, scan_count=status.scan_count, last_scan_at=status.last_scan_at)

    def _audit_quota_deny(self, identity: ResolvedIdentity, tier: ResolvedTier, quota: QuotaStatus) -> None:
        self.audit.record(
            "quota_denied",
            identity=identity.account_ledger_key
            if quota.reason is QuotaReason.USER_BLOCKED
            else identity.ledger_key,
            reason=quota.reason.value,
            severity=Severity.MEDIUM if quota.is_blocked else Severity.LOW,
            metadata={
                "tier": tier.tier.value,
                "scan_count": quota.scan_count,
                "is_blocked": quota.is_blocked,
                "degraded": quota.degraded,
            },
        )

    def _finish(self, decision: AdmissionDecision) -> AdmissionDecision:
        logger.info(
            "gate.allowed" if decision.allowed else "gate.denied",
            extra={
                "stage": decision.stage.value,
                "deny_code": decision.code,
                "identity_kind": decision.identity.kind.value,
                "identity_hash": hash_identifier(decision.identity.key),
                "tier": decision.tier.tier.value if decision.tier else None,
                "remaining": decision.remaining,
            },
        )
        return decision

    def quota(self, context: RequestContext) -> tuple[ResolvedIdentity, ResolvedTier, QuotaStatus]:
        """Idempotent quota read for the identity behind a request."""
        identity = self.identities.resolve(context)
        tier = self.tiers.resolve(identity)
        return identity, tier, self._ledger_status(identity, tier)

    def consume(self, context: RequestContext) -> tuple[ResolvedIdentity, ResolvedTier, QuotaStatus]:
        """Charge one scan to the identity's ledger entry after downstream success."""
        identity = self.identities.resolve(context)
        tier = self.tiers.resolve(identity)
        status = self.ledger.consume(identity.ledger_key, tier.limits.scan_allowance)
        return identity, tier, status
