"""Tests for the server-side device registry and sharing detection."""

from __future__ import annotations

from unittest.mock import Mock

import pytest

from scan_gate.adapters.devices.base import AbstractDeviceStore
from scan_gate.adapters.devices.in_memory import InMemoryDeviceStore
from scan_gate.adapters.quota.in_memory import InMemoryQuotaStore
from scan_gate.services.fingerprint import DeviceRegistry
from scan_gate.services.identity import IdentityKind, ResolvedIdentity
from scan_gate.services.quota_ledger import FailOpenGrants, QuotaLedger
from scan_gate.utils.ttl_set import TTLSet

from conftest import unavailable

FP = "device-shared-01"


def user(user_id: str, fingerprint: str | None = FP) -> ResolvedIdentity:
    return ResolvedIdentity(
        key=f"user:{user_id}",
        kind=IdentityKind.USER,
        is_authenticated=True,
        user_id=user_id,
        fingerprint=fingerprint,
    )


@pytest.fixture
def quota_store() -> InMemoryQuotaStore:
    return InMemoryQuotaStore()


@pytest.fixture
def make_registry(clock, audit, quota_store):
    def _make(store: AbstractDeviceStore | None = None, **kwargs) -> DeviceRegistry:
        ledger = QuotaLedger(quota_store, audit, FailOpenGrants(), clock=clock)
        return DeviceRegistry(
            store or InMemoryDeviceStore(),
            ledger,
            audit,
            TTLSet(ttl_seconds=86400, max_entries=100, clock=clock),
            clock=clock,
            **kwargs,
        )

    return _make


class TestObserve:
    def test_first_contact_creates_record(self, make_registry, make_context, clock) -> None:
        registry = make_registry()
        anon = ResolvedIdentity(key=f"device:{FP}", kind=IdentityKind.DEVICE, is_authenticated=False, fingerprint=FP)

        registry.observe(make_context(device_fingerprint=FP), anon)

        record = registry.get(FP)
        assert record.first_seen == clock.return_value
        assert record.user_ids == frozenset()
        assert record.user_agents == frozenset({"ScanApp/2.1 (iPhone; iOS 17.2)"})

    def test_later_contact_updates_last_seen_and_users(self, make_registry, make_context, clock) -> None:
        registry = make_registry()
        registry.observe(make_context(), user("u1"))
        first_seen = clock.return_value

        clock.return_value += 60
        registry.observe(make_context(), user("u2"))

        record = registry.get(FP)
        assert record.first_seen == first_seen
        assert record.last_seen == first_seen + 60
        assert record.user_ids == frozenset({"u1", "u2"})

    def test_shared_device_flag_is_raised_once(self, make_registry, make_context, audit_sink) -> None:
        registry = make_registry(max_users_per_device=2)

        reports = [registry.observe(make_context(), user(f"u{i}")) for i in range(5)]

        assert [r.shared_device for r in reports] == [False, False, True, True, True]
        events = audit_sink.of_type("account_sharing")
        assert len(events) == 1
        assert events[0].identity == f"device:{FP}"
        assert events[0].metadata == {"user_count": 3, "threshold": 2}

    def test_multi_ip_user_flag(self, make_registry, make_context, audit_sink) -> None:
        registry = make_registry(max_ips_per_user=2)

        for n in range(3):
            report = registry.observe(make_context(ip=f"198.51.100.{n}"), user("u1", fingerprint=None))

        assert report.multi_ip_user is True
        assert report.user_ip_count == 3
        assert report.flagged is True
        assert audit_sink.of_type("account_sharing")[0].identity == "user:u1"

    def test_ips_outside_window_are_forgotten(self, make_registry, make_context, clock) -> None:
        registry = make_registry(max_ips_per_user=2, ip_window_seconds=3600)

        registry.observe(make_context(ip="198.51.100.1"), user("u1", fingerprint=None))
        registry.observe(make_context(ip="198.51.100.2"), user("u1", fingerprint=None))
        clock.return_value += 7200
        report = registry.observe(make_context(ip="198.51.100.3"), user("u1", fingerprint=None))

        assert report.user_ip_count == 1
        assert report.multi_ip_user is False

    def test_sharing_never_denies_or_blocks(self, make_registry, make_context, quota_store) -> None:
        registry = make_registry(max_users_per_device=1)
        for i in range(3):
            registry.observe(make_context(), user(f"u{i}"))

        assert registry.get(FP).is_blocked is False
        assert quota_store.get(f"device:{FP}") is None

    def test_store_outage_is_best_effort(self, make_registry, make_context) -> None:
        store = Mock(spec=AbstractDeviceStore)
        store.touch.side_effect = unavailable("devices")

        report = make_registry(store).observe(make_context(), user("u1"))

        assert report.flagged is False


class TestBlocking:
    def test_block_device_blocks_its_ledger_entry(self, make_registry, quota_store, audit_sink) -> None:
        registry = make_registry()

        record = registry.set_blocked(FP, True, actor="operator")

        assert record.is_blocked is True
        assert quota_store.get(f"device:{FP}").is_blocked is True
        assert audit_sink.of_type("ledger_blocked")[0].identity == f"device:{FP}"

    def test_unblock_device(self, make_registry, quota_store) -> None:
        registry = make_registry()
        registry.set_blocked(FP, True)
        registry.set_blocked(FP, False)

        assert registry.get(FP).is_blocked is False
        assert quota_store.get(f"device:{FP}").is_blocked is False

    def test_block_store_error_propagates(self, make_registry) -> None:
        store = Mock(spec=AbstractDeviceStore)
        store.set_blocked.side_effect = unavailable("devices")

        with pytest.raises(Exception, match="devices is unreachable"):
            make_registry(store).set_blocked(FP, True)
