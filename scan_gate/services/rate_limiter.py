"""Per-identity, per-tier fixed-window rate limiting.

The persistent store is the source of truth. Only when its check-and-increment
raises DependencyError does the limiter degrade, in order, to:

1. ``local_fallback``: the in-process counter with the same window/limit
   semantics (state lost on restart, per-worker in multi-process deployments);
2. ``fail_open``: allow unconditionally (when ``RATE_LIMIT_FALLBACK=allow``).

A normal "over limit" answer from the store is decisive and never falls back.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Literal

from scan_gate.adapters.audit.base import Severity
from scan_gate.adapters.rate_limit.base import AbstractRateLimitStore, RateLimitResult, window_bounds
from scan_gate.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from scan_gate.core.logging import hash_identifier
from scan_gate.services.audit import AuditLog
from scan_gate.services.identity import ResolvedIdentity
from scan_gate.services.policy import Outcome, PolicyStep, allow, deny, first_decisive
from scan_gate.services.tiers import ResolvedTier, Tier

logger = logging.getLogger(__name__)

FallbackMode = Literal["local", "allow"]


@dataclass(frozen=True)
class RateCheck:
    result: RateLimitResult
    source: str
    upgrade_suggested: bool = False

    @property
    def allowed(self) -> bool:
        return self.result.allowed


def counter_key(identity: ResolvedIdentity, tier: Tier) -> str:
    return f"{tier.value}:{identity.key}"


def _as_outcome(result: RateLimitResult) -> Outcome[RateLimitResult]:
    if result.allowed:
        return allow(result)
    return deny(result, reason="rate_limit_exceeded")


class RateLimiterService:
    def __init__(
        self,
        store: AbstractRateLimitStore,
        fallback: InMemoryFixedWindowRateLimiter,
        audit: AuditLog,
        *,
        fallback_mode: FallbackMode = "local",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._fallback = fallback
        self._audit = audit
        self._fallback_mode = fallback_mode
        self._clock = clock

    def _fail_open(self, limit: int, window_seconds: int) -> Outcome[RateLimitResult]:
        window_start, reset_at = window_bounds(self._clock(), window_seconds)
        return allow(
            RateLimitResult(
                allowed=True,
                limit=limit,
                remaining=limit,
                reset_at=reset_at,
                retry_after_seconds=None,
                window_start=window_start,
            ),
            reason="store_unavailable",
        )

    def check(self, identity: ResolvedIdentity, tier: ResolvedTier) -> RateCheck:
        """Atomically consume one request from the identity's current window."""
        key = counter_key(identity, tier.tier)
        limit = tier.limits.request_limit
        window = tier.limits.window_seconds

        steps: list[PolicyStep[RateLimitResult]] = [
            PolicyStep(
                "store",
                lambda: _as_outcome(self._store.consume(key, limit=limit, window_seconds=window)),
            ),
        ]
        if self._fallback_mode == "local":
            steps.append(
                PolicyStep(
                    "local_fallback",
                    lambda: _as_outcome(self._fallback.consume(key, limit=limit, window_seconds=window)),
                )
            )
        else:
            steps.append(PolicyStep("fail_open", lambda: self._fail_open(limit, window)))

        outcome = first_decisive("rate_limit", steps)
        result: RateLimitResult = outcome.value  # type: ignore[assignment]
        source = outcome.source or "store"

        if result.allowed:
            logger.info(
                "rate_limit.allowed",
                extra={
                    "identity_hash": hash_identifier(identity.key),
                    "tier": tier.tier.value,
                    "limit": result.limit,
                    "remaining": result.remaining,
                    "window_s": window,
                    "source": source,
                },
            )
            return RateCheck(result=result, source=source)

        upgrade = not identity.is_authenticated or tier.tier is Tier.FREE
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "identity_hash": hash_identifier(identity.key),
                "tier": tier.tier.value,
                "limit": result.limit,
                "window_s": window,
                "retry_after_s": result.retry_after_seconds,
                "source": source,
            },
        )
        self._audit.record(
            "rate_limit_exceeded",
            identity=identity.key,
            reason="Rate limit exceeded",
            severity=Severity.HIGH,
            metadata={
                "tier": tier.tier.value,
                "limit": result.limit,
                "window_seconds": window,
                "authenticated": identity.is_authenticated,
                "upgrade_candidate": upgrade,
                "source": source,
            },
        )
        return RateCheck(result=result, source=source, upgrade_suggested=upgrade)

    def current_count(self, identity: ResolvedIdentity, tier: ResolvedTier) -> int:
        """Units consumed in the current window according to the primary store."""
        return self._store.count(counter_key(identity, tier.tier), window_seconds=tier.limits.window_seconds)
