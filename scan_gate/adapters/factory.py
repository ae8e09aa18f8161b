"""Factory functions selecting store backends from settings."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

from scan_gate.adapters.audit.base import AbstractAuditSink
from scan_gate.adapters.audit.sinks import LoggingAuditSink, RedisStreamAuditSink
from scan_gate.adapters.devices.base import AbstractDeviceStore
from scan_gate.adapters.devices.in_memory import InMemoryDeviceStore
from scan_gate.adapters.devices.redis_store import RedisDeviceStore
from scan_gate.adapters.identity.base import AbstractProfileStore, AbstractTokenVerifier
from scan_gate.adapters.identity.http import HttpProfileStore, HttpTokenVerifier
from scan_gate.adapters.identity.static import StaticProfileStore, StaticTokenVerifier, parse_pairs
from scan_gate.adapters.quota.base import AbstractQuotaStore
from scan_gate.adapters.quota.in_memory import InMemoryQuotaStore
from scan_gate.adapters.quota.redis_store import RedisQuotaStore
from scan_gate.adapters.rate_limit.base import AbstractRateLimitStore
from scan_gate.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from scan_gate.adapters.rate_limit.redis_store import RedisFixedWindowRateLimiter
from scan_gate.adapters.redis_client import get_redis
from scan_gate.core.config import IdentitySettings, Settings
from scan_gate.core.errors import ValidationAppError


@dataclass
class Stores:
    rate_limit: AbstractRateLimitStore
    quota: AbstractQuotaStore
    devices: AbstractDeviceStore
    audit_sinks: list[AbstractAuditSink]


def create_stores(settings: Settings, *, clock: Callable[[], float] = time.time) -> Stores:
    """Build the persistent stores for the configured backend.

    Raises:
        ValidationAppError: If the backend name is not supported.
    """
    backend = settings.store.backend.lower()

    if backend == "memory":
        return Stores(
            rate_limit=InMemoryFixedWindowRateLimiter(
                clock=clock,
                gc_interval_seconds=settings.rate_limit.gc_interval_seconds,
            ),
            quota=InMemoryQuotaStore(),
            devices=InMemoryDeviceStore(),
            audit_sinks=[LoggingAuditSink()],
        )

    if backend == "redis":
        client = get_redis(settings.store)
        namespace = settings.store.namespace
        return Stores(
            rate_limit=RedisFixedWindowRateLimiter(client, namespace=namespace, clock=clock),
            quota=RedisQuotaStore(client, namespace=namespace),
            devices=RedisDeviceStore(client, namespace=namespace),
            audit_sinks=[
                LoggingAuditSink(),
                RedisStreamAuditSink(
                    client,
                    namespace=namespace,
                    maxlen=settings.store.audit_stream_maxlen,
                ),
            ],
        )

    raise ValidationAppError(
        code="store_unknown_backend",
        message=f"Unknown store backend: '{backend}'. Supported backends: memory, redis",
    )


def create_token_verifier(identity_settings: IdentitySettings) -> AbstractTokenVerifier:
    """HTTP verifier when a verification URL is configured, static tokens otherwise."""
    if identity_settings.auth_verify_url:
        return HttpTokenVerifier(
            identity_settings.auth_verify_url,
            timeout_seconds=identity_settings.http_timeout_seconds,
        )
    return StaticTokenVerifier(parse_pairs(identity_settings.static_tokens))


def create_profile_store(identity_settings: IdentitySettings) -> AbstractProfileStore:
    if identity_settings.profile_store_url:
        return HttpProfileStore(
            identity_settings.profile_store_url,
            timeout_seconds=identity_settings.http_timeout_seconds,
        )
    return StaticProfileStore.from_tier_pairs(identity_settings.static_profiles)
