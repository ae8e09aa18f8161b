from fastapi import APIRouter, Depends, Response

from scan_gate.core.auth import verify_api_key
from scan_gate.core.config import settings
from scan_gate.core.errors import RateLimitExceededError, SuspiciousActivityError
from scan_gate.core.gate import get_gate, get_request_context
from scan_gate.schemas.admission import AdmissionResponse, QuotaInfo, QuotaResponse
from scan_gate.services.admission import AdmissionGate, Stage
from scan_gate.services.identity import RequestContext

router = APIRouter(tags=["Scans"])


# Handlers are plain ``def``: FastAPI runs them in its threadpool, so the
# blocking store calls never stall the event loop.
@router.post("/scans/admission", response_model=AdmissionResponse)
def admit_scan(
    response: Response,
    gate: AdmissionGate = Depends(get_gate),
    context: RequestContext = Depends(get_request_context),
) -> AdmissionResponse:
    """Decide whether a scan request may proceed to analysis.

    Returns 200 with rate-limit headers when the gate allows, or when the
    absolute quota denies (``allowed=false`` with ``QUOTA_EXHAUSTED``,
    ``DEVICE_BLOCKED`` or ``USER_BLOCKED``).

    Raises:
        SuspiciousActivityError: 403 when the abuse pre-filter matched.
        RateLimitExceededError: 429 when the window allowance is used up.
    """
    decision = gate.evaluate(context)
    headers = decision.rate_limit_headers() if settings.rate_limit.include_headers else {}

    if decision.stage is Stage.ABUSE_CHECK:
        raise SuspiciousActivityError(
            code="SUSPICIOUS_ACTIVITY",
            message="Request blocked due to suspicious activity",
        )

    if decision.stage is Stage.RATE_CHECK and decision.rate is not None:
        raise RateLimitExceededError(
            code="RATE_LIMIT_EXCEEDED",
            message="Too many requests. Please try again later.",
            details={
                "retry_after": decision.rate.retry_after_seconds or 0,
                "upgrade": decision.upgrade_suggested,
                "limit": decision.rate.limit,
                "reset_at": decision.rate.reset_at,
                "tier": decision.tier.tier.value if decision.tier else "",
            },
            headers=headers or None,
        )

    response.headers.update(headers)
    return AdmissionResponse.from_decision(decision)


@router.post(
    "/scans/consume",
    response_model=QuotaResponse,
    dependencies=[Depends(verify_api_key)],
)
def consume_scan(
    gate: AdmissionGate = Depends(get_gate),
    context: RequestContext = Depends(get_request_context),
) -> QuotaResponse:
    """Charge one scan to the ledger after the analysis succeeded.

    Called by the analysis service, never by end-user clients, so it requires
    the service ``X-API-Key``. The end user is identified by the forwarded
    bearer token and fingerprint headers as on admission.
    """
    identity, tier, status = gate.consume(context)
    return QuotaResponse(
        identity=identity.kind.value,
        authenticated=identity.is_authenticated,
        tier=tier.tier.value,
        quota=QuotaInfo.from_status(status),
    )


@router.get("/scans/quota", response_model=QuotaResponse)
def read_quota(
    gate: AdmissionGate = Depends(get_gate),
    context: RequestContext = Depends(get_request_context),
) -> QuotaResponse:
    identity, tier, status = gate.quota(context)
    return QuotaResponse(
        identity=identity.kind.value,
        authenticated=identity.is_authenticated,
        tier=tier.tier.value,
        quota=QuotaInfo.from_status(status),
    )
