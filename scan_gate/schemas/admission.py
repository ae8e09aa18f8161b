"""Pydantic schemas for admission, quota and consume responses."""

from pydantic import BaseModel, Field

from scan_gate.services.admission import AdmissionDecision
from scan_gate.services.quota_ledger import QuotaStatus


class QuotaInfo(BaseModel):
    """Absolute ledger state for the resolved identity."""

    can_scan: bool = Field(..., description="Whether another scan may be admitted.")
    remaining_scans: int = Field(
        ...,
        description="Scans left on the lifetime allowance; -1 for unlimited tiers.",
    )
    is_blocked: bool = Field(
        ...,
        description="Device or account administratively blocked (distinct from exhausted).",
    )
    degraded: bool = Field(
        False,
        description="True when the ledger store was unreachable and the fail-open allowance applied.",
    )

    @classmethod
    def from_status(cls, status: QuotaStatus) -> "QuotaInfo":
        return cls(
            can_scan=status.can_scan,
            remaining_scans=status.remaining_scans,
            is_blocked=status.is_blocked,
            degraded=status.degraded,
        )


class AdmissionResponse(BaseModel):
    """Gate decision returned to the analysis caller.

    Abuse and rate-limit denials are reported as 403/429 errors instead; a
    quota denial is an application-level answer with ``allowed=false``.
    """

    allowed: bool
    identity: str = Field(..., description="Identity kind the request was keyed on (user, device, ip).")
    authenticated: bool
    tier: str | None = None
    remaining: int | None = Field(None, description="Requests left in the current window.")
    reset_at: int | None = Field(None, description="UNIX time when the current window ends.")
    code: str | None = Field(None, description="QUOTA_EXHAUSTED, DEVICE_BLOCKED or USER_BLOCKED when denied.")
    message: str | None = None
    upgrade: bool = False
    quota: QuotaInfo | None = None

    @classmethod
    def from_decision(cls, decision: AdmissionDecision) -> "AdmissionResponse":
        return cls(
            allowed=decision.allowed,
            identity=decision.identity.kind.value,
            authenticated=decision.identity.is_authenticated,
            tier=decision.tier.tier.value if decision.tier else None,
            remaining=decision.remaining,
            reset_at=decision.reset_at,
            code=decision.code,
            message=decision.reason,
            upgrade=decision.upgrade_suggested,
            quota=QuotaInfo.from_status(decision.quota) if decision.quota else None,
        )


class QuotaResponse(BaseModel):
    identity: str
    authenticated: bool
    tier: str
    quota: QuotaInfo
