"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets the environment before any import loads settings, and provides
in-memory gate stacks driven by a fake clock.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"
os.environ.setdefault("APP_ENV", "testing")

# Set default env vars that all tests might need
os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-api-key-123,test-api-key-456")
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("ABUSE_ORIGIN_CHECK", "auto")
# Route tests sit behind one simulated proxy that appends X-Forwarded-For
os.environ.setdefault("IDENTITY_TRUSTED_PROXY_HOPS", "1")
os.environ.setdefault(
    "IDENTITY_STATIC_TOKENS",
    "tok-free=user-free,tok-plus=user-plus,tok-admin=user-admin,tok-new=user-new",
)
os.environ.setdefault("IDENTITY_STATIC_PROFILES", "user-free=free,user-plus=plus,user-admin=admin")

from dataclasses import dataclass
from typing import Any, Callable
from unittest.mock import Mock

import pytest

from scan_gate.adapters.audit.sinks import InMemoryAuditSink
from scan_gate.adapters.devices.base import AbstractDeviceStore
from scan_gate.adapters.devices.in_memory import InMemoryDeviceStore
from scan_gate.adapters.identity.base import AbstractProfileStore, AbstractTokenVerifier, Profile
from scan_gate.adapters.identity.static import StaticProfileStore, StaticTokenVerifier
from scan_gate.adapters.quota.base import AbstractQuotaStore
from scan_gate.adapters.quota.in_memory import InMemoryQuotaStore
from scan_gate.adapters.rate_limit.base import AbstractRateLimitStore
from scan_gate.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from scan_gate.core.config import TierSettings
from scan_gate.core.errors import DependencyError
from scan_gate.services.abuse import AbuseHeuristicEngine
from scan_gate.services.admission import AdmissionGate
from scan_gate.services.audit import AuditLog
from scan_gate.services.fingerprint import DeviceRegistry
from scan_gate.services.identity import IdentityResolver, RequestContext
from scan_gate.services.quota_ledger import FailOpenGrants, QuotaLedger
from scan_gate.services.rate_limiter import RateLimiterService
from scan_gate.services.tiers import TierResolver, build_tier_table
from scan_gate.utils.ttl_set import TTLSet

NOW = 1_700_000_000.0
BOT_PATTERN = r"bot|crawler|spider|scraper|curl|wget|python|axios|fetch|headless"
LOCAL_MARKERS = ["localhost", "127.0.0.1", "10.0.2.2"]

TOKENS = {
    "tok-free": "user-free",
    "tok-plus": "user-plus",
    "tok-admin": "user-admin",
    "tok-new": "user-new",
}
PROFILES = {
    "user-free": Profile(subscription_tier="free"),
    "user-plus": Profile(subscription_tier="plus"),
    "user-admin": Profile(subscription_tier="free", role="admin"),
}


def unavailable(dependency: str = "store") -> DependencyError:
    return DependencyError(code=f"{dependency}_unavailable", message=f"{dependency} is unreachable")


@pytest.fixture
def clock() -> Mock:
    return Mock(return_value=NOW)


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def audit(audit_sink: InMemoryAuditSink, clock: Mock) -> AuditLog:
    return AuditLog([audit_sink], clock=clock)


@pytest.fixture
def make_context() -> Callable[..., RequestContext]:
    """Build a RequestContext for a well-behaved mobile client, with overrides."""

    def _make(**overrides: Any) -> RequestContext:
        values: dict[str, Any] = {
            "bearer_token": None,
            "device_fingerprint": None,
            "ip": "203.0.113.7",
            "user_agent": "ScanApp/2.1 (iPhone; iOS 17.2)",
            "origin": "https://app.example.com",
            "country": "US",
        }
        values.update(overrides)
        return RequestContext(**values)

    return _make


@dataclass
class GateHarness:
    gate: AdmissionGate
    audit: InMemoryAuditSink
    clock: Mock
    rate_store: AbstractRateLimitStore
    fallback: InMemoryFixedWindowRateLimiter
    quota_store: AbstractQuotaStore
    device_store: AbstractDeviceStore
    flagged_ips: TTLSet
    grants: FailOpenGrants


@pytest.fixture
def make_harness(clock: Mock, audit_sink: InMemoryAuditSink) -> Callable[..., GateHarness]:
    """Assemble a full in-memory gate; any store can be replaced by a failing Mock."""

    def _make(
        *,
        rate_store: AbstractRateLimitStore | None = None,
        quota_store: AbstractQuotaStore | None = None,
        device_store: AbstractDeviceStore | None = None,
        verifier: AbstractTokenVerifier | None = None,
        profiles: AbstractProfileStore | None = None,
        tier_settings: TierSettings | None = None,
        check_origin: bool = False,
        fallback_mode: str = "local",
        rate_limit_enabled: bool = True,
        abuse_enabled: bool = True,
        fail_open_allowance: int = 1,
    ) -> GateHarness:
        audit = AuditLog([audit_sink], clock=clock)
        rate_store = rate_store or InMemoryFixedWindowRateLimiter(clock=clock)
        fallback = InMemoryFixedWindowRateLimiter(clock=clock)
        quota_store = quota_store or InMemoryQuotaStore()
        device_store = device_store or InMemoryDeviceStore()
        flagged_ips = TTLSet(ttl_seconds=3600, max_entries=100, clock=clock)
        grants = FailOpenGrants()

        ledger = QuotaLedger(
            quota_store,
            audit,
            grants,
            fail_open_allowance=fail_open_allowance,
            scan_cost_cents=0.2,
            daily_cost_alert_cents=1000.0,
            clock=clock,
        )
        gate = AdmissionGate(
            identities=IdentityResolver(verifier or StaticTokenVerifier(TOKENS)),
            tiers=TierResolver(
                build_tier_table(tier_settings or TierSettings()),
                profiles or StaticProfileStore(PROFILES),
            ),
            abuse=AbuseHeuristicEngine(
                flagged_ips,
                audit,
                bot_pattern=BOT_PATTERN,
                local_origin_markers=LOCAL_MARKERS,
                check_origin=check_origin,
            )
            if abuse_enabled
            else None,
            registry=DeviceRegistry(
                device_store,
                ledger,
                audit,
                TTLSet(ttl_seconds=86400, max_entries=100, clock=clock),
                clock=clock,
            ),
            rate_limiter=RateLimiterService(
                rate_store,
                fallback,
                audit,
                fallback_mode=fallback_mode,  # type: ignore[arg-type]
                clock=clock,
            )
            if rate_limit_enabled
            else None,
            ledger=ledger,
            audit=audit,
        )
        return GateHarness(
            gate=gate,
            audit=audit_sink,
            clock=clock,
            rate_store=rate_store,
            fallback=fallback,
            quota_store=quota_store,
            device_store=device_store,
            flagged_ips=flagged_ips,
            grants=grants,
        )

    return _make
