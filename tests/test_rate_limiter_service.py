"""Tests for the rate limiter service: atomicity, fallback order and auditing."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import Mock

import pytest

from scan_gate.adapters.rate_limit.base import AbstractRateLimitStore
from scan_gate.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from scan_gate.services.identity import IdentityKind, ResolvedIdentity
from scan_gate.services.rate_limiter import RateLimiterService, counter_key
from scan_gate.services.tiers import ResolvedTier, Tier, TierLimits

from conftest import unavailable

ANON = ResolvedIdentity(key="ip:198.51.100.4|abc", kind=IdentityKind.IP, is_authenticated=False, ip="198.51.100.4")
USER = ResolvedIdentity(key="user:u1", kind=IdentityKind.USER, is_authenticated=True, user_id="u1")


def tier(name: Tier, limit: int, window: int = 60) -> ResolvedTier:
    return ResolvedTier(name, TierLimits(request_limit=limit, window_seconds=window, scan_allowance=None), "test")


@pytest.fixture
def service(clock, audit) -> RateLimiterService:
    return RateLimiterService(
        InMemoryFixedWindowRateLimiter(clock=clock),
        InMemoryFixedWindowRateLimiter(clock=clock),
        audit,
        clock=clock,
    )


class TestConcurrency:
    @pytest.mark.parametrize("requests,limit", [(20, 5), (50, 1), (8, 7)])
    def test_exactly_limit_requests_succeed(self, service, requests: int, limit: int) -> None:
        barrier = threading.Barrier(requests)

        def attempt() -> bool:
            barrier.wait()
            return service.check(ANON, tier(Tier.ANONYMOUS, limit)).allowed

        with ThreadPoolExecutor(max_workers=requests) as pool:
            outcomes = list(pool.map(lambda _: attempt(), range(requests)))

        assert outcomes.count(True) == limit
        assert outcomes.count(False) == requests - limit
        assert service.current_count(ANON, tier(Tier.ANONYMOUS, limit)) == limit


class TestKeys:
    def test_counter_key_includes_tier(self) -> None:
        assert counter_key(USER, Tier.PRO) == "pro:user:u1"

    def test_tiers_do_not_share_counters(self, service) -> None:
        assert service.check(USER, tier(Tier.FREE, 1)).allowed is True
        assert service.check(USER, tier(Tier.FREE, 1)).allowed is False
        # upgrading mid-window starts a fresh counter for the new tier
        assert service.check(USER, tier(Tier.PLUS, 1)).allowed is True


class TestFallback:
    def test_store_answer_is_decisive(self, clock, audit) -> None:
        store = InMemoryFixedWindowRateLimiter(clock=clock)
        fallback = Mock(spec=InMemoryFixedWindowRateLimiter)
        service = RateLimiterService(store, fallback, audit, clock=clock)

        service.check(ANON, tier(Tier.ANONYMOUS, 1))
        denied = service.check(ANON, tier(Tier.ANONYMOUS, 1))

        assert denied.allowed is False
        assert denied.source == "store"
        fallback.consume.assert_not_called()

    def test_store_error_uses_local_counter(self, clock, audit) -> None:
        store = Mock(spec=AbstractRateLimitStore)
        store.consume.side_effect = unavailable("rate_limit")
        service = RateLimiterService(store, InMemoryFixedWindowRateLimiter(clock=clock), audit, clock=clock)

        first = service.check(ANON, tier(Tier.ANONYMOUS, 1))
        second = service.check(ANON, tier(Tier.ANONYMOUS, 1))

        assert first.allowed is True
        assert first.source == "local_fallback"
        assert second.allowed is False
        assert second.source == "local_fallback"

    def test_store_error_in_allow_mode(self, clock, audit) -> None:
        store = Mock(spec=AbstractRateLimitStore)
        store.consume.side_effect = unavailable("rate_limit")
        service = RateLimiterService(
            store,
            InMemoryFixedWindowRateLimiter(clock=clock),
            audit,
            fallback_mode="allow",
            clock=clock,
        )

        check = service.check(ANON, tier(Tier.ANONYMOUS, 1, window=60))

        assert check.allowed is True
        assert check.source == "fail_open"
        assert check.result.remaining == 1
        assert check.result.reset_at % 60 == 0

    def test_programming_errors_are_not_swallowed(self, clock, audit) -> None:
        store = Mock(spec=AbstractRateLimitStore)
        store.consume.side_effect = RuntimeError("bug")
        service = RateLimiterService(store, InMemoryFixedWindowRateLimiter(clock=clock), audit, clock=clock)

        with pytest.raises(RuntimeError):
            service.check(ANON, tier(Tier.ANONYMOUS, 1))


class TestDenyAudit:
    def test_upgrade_hint_for_free_users(self, service, audit_sink) -> None:
        service.check(USER, tier(Tier.FREE, 1))
        denied = service.check(USER, tier(Tier.FREE, 1))

        assert denied.upgrade_suggested is True
        event = audit_sink.of_type("rate_limit_exceeded")[0]
        assert event.identity == "user:u1"
        assert event.metadata["authenticated"] is True

    def test_no_upgrade_hint_for_paid_users(self, service, audit_sink) -> None:
        service.check(USER, tier(Tier.PRO, 1))
        denied = service.check(USER, tier(Tier.PRO, 1))

        assert denied.upgrade_suggested is False
        assert audit_sink.of_type("rate_limit_exceeded")[0].metadata["upgrade_candidate"] is False

    def test_allowed_requests_are_not_audited(self, service, audit_sink) -> None:
        service.check(USER, tier(Tier.FREE, 5))
        assert audit_sink.events == []
