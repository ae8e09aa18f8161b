"""Admission gate wiring for FastAPI routes.

This module wires the stores, process-local state and services into one
AdmissionGate and exposes it to the HTTP layer.

Design goals:
- Minimal coupling: routes depend on ``get_gate`` / ``get_request_context`` only.
- Swap-friendly: the gate lives on ``app.state`` so tests can inject their own.
- Headers are parsed once here into a RequestContext.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from fastapi import Request

from scan_gate.adapters.factory import create_profile_store, create_stores, create_token_verifier
from scan_gate.core.config import Settings
from scan_gate.core.config import settings as default_settings
from scan_gate.services.abuse import AbuseHeuristicEngine
from scan_gate.services.admission import AdmissionGate
from scan_gate.services.audit import AuditLog
from scan_gate.services.fingerprint import DeviceRegistry
from scan_gate.services.identity import IdentityResolver, RequestContext, build_request_context
from scan_gate.services.process_state import ProcessLocalState
from scan_gate.services.quota_ledger import QuotaLedger
from scan_gate.services.rate_limiter import RateLimiterService
from scan_gate.services.tiers import TierResolver, build_tier_table

logger = logging.getLogger(__name__)


def origin_check_enabled(settings: Settings) -> bool:
    mode = settings.abuse.origin_check
    if mode == "auto":
        return settings.is_production
    return mode == "on"


def build_gate(
    settings: Settings | None = None,
    *,
    clock: Callable[[], float] = time.time,
    state: ProcessLocalState | None = None,
) -> AdmissionGate:
    """Assemble an AdmissionGate from settings.

    Args:
        settings: Settings to use (defaults to the global instance).
        clock: Time source shared by every component.
        state: Process-local state; a fresh one is created when omitted.

    Returns:
        AdmissionGate ready to evaluate requests.
    """
    settings = settings or default_settings
    state = state or ProcessLocalState.from_settings(settings, clock=clock)
    stores = create_stores(settings, clock=clock)
    audit = AuditLog(stores.audit_sinks, clock=clock)

    ledger = QuotaLedger(
        stores.quota,
        audit,
        state.fail_open_grants,
        fail_open_allowance=settings.quota.fail_open_allowance,
        scan_cost_cents=settings.quota.scan_cost_cents,
        daily_cost_alert_cents=settings.quota.daily_cost_alert_cents,
        clock=clock,
    )

    abuse = None
    if settings.abuse.enabled:
        abuse = AbuseHeuristicEngine(
            state.flagged_ips,
            audit,
            bot_pattern=settings.abuse.bot_pattern,
            local_origin_markers=settings.abuse.local_origin_markers.split(","),
            check_origin=origin_check_enabled(settings),
        )

    rate_limiter = None
    if settings.rate_limit.enabled:
        rate_limiter = RateLimiterService(
            stores.rate_limit,
            state.rate_limit_fallback,
            audit,
            fallback_mode=settings.rate_limit.fallback,
            clock=clock,
        )

    gate = AdmissionGate(
        identities=IdentityResolver(create_token_verifier(settings.identity)),
        tiers=TierResolver(build_tier_table(settings.tiers), create_profile_store(settings.identity)),
        abuse=abuse,
        registry=DeviceRegistry(
            stores.devices,
            ledger,
            audit,
            state.sharing_flags,
            max_users_per_device=settings.sharing.max_users_per_device,
            max_ips_per_user=settings.sharing.max_ips_per_user,
            ip_window_seconds=settings.sharing.ip_window_seconds,
            clock=clock,
        ),
        rate_limiter=rate_limiter,
        ledger=ledger,
        audit=audit,
        quota_enabled=settings.quota.enabled,
    )

    logger.info(
        "gate.built",
        extra={
            "store_backend": settings.store.backend,
            "abuse_enabled": abuse is not None,
            "origin_check": origin_check_enabled(settings),
            "rate_limit_enabled": rate_limiter is not None,
            "rate_limit_fallback": settings.rate_limit.fallback,
            "quota_enabled": settings.quota.enabled,
        },
    )
    return gate


def get_gate(request: Request) -> AdmissionGate:
    """FastAPI dependency returning the app's gate."""
    return request.app.state.gate


def get_request_context(request: Request) -> RequestContext:
    """FastAPI dependency normalizing request metadata once at the boundary."""
    return build_request_context(
        request.headers,
        client_host=request.client.host if request.client else None,
        trusted_proxy_hops=default_settings.identity.trusted_proxy_hops,
    )
