"""Tests for the absolute quota ledger."""

from __future__ import annotations

from unittest.mock import Mock

import pytest

from scan_gate.adapters.audit.base import Severity
from scan_gate.adapters.quota.base import AbstractQuotaStore, LedgerEntry
from scan_gate.adapters.quota.in_memory import InMemoryQuotaStore
from scan_gate.core.errors import DependencyError
from scan_gate.services.quota_ledger import (
    UNLIMITED,
    FailOpenGrants,
    QuotaLedger,
    QuotaReason,
    status_from_entry,
)

from conftest import unavailable


@pytest.fixture
def store() -> InMemoryQuotaStore:
    return InMemoryQuotaStore()


@pytest.fixture
def ledger(store, audit, clock) -> QuotaLedger:
    return QuotaLedger(store, audit, FailOpenGrants(), scan_cost_cents=0.2, daily_cost_alert_cents=1.0, clock=clock)


class TestCheck:
    def test_fresh_key_reports_full_allowance_without_creating_entry(self, ledger, store) -> None:
        first = ledger.check("device:D1", 3)
        second = ledger.check("device:D1", 3)

        assert first == second
        assert first.can_scan is True
        assert first.remaining_scans == 3
        assert first.reason is QuotaReason.OK
        assert store.get("device:D1") is None

    def test_unlimited_allowance(self, ledger) -> None:
        status = ledger.check("user:u1", None)
        assert status.can_scan is True
        assert status.remaining_scans == UNLIMITED
        assert status.reason is QuotaReason.UNLIMITED

    def test_block_dominates_remaining(self, ledger) -> None:
        ledger.set_blocked("device:D1", True)

        status = ledger.check("device:D1", 3)

        assert status.can_scan is False
        assert status.is_blocked is True
        assert status.reason is QuotaReason.BLOCKED

    def test_user_block_has_its_own_reason(self, ledger) -> None:
        ledger.set_blocked("user:u1", True)

        status = ledger.check("user:u1", 3)

        assert status.is_blocked is True
        assert status.reason is QuotaReason.USER_BLOCKED

    def test_unblock_restores_remaining(self, ledger) -> None:
        ledger.consume("device:D1", 3)
        ledger.set_blocked("device:D1", True)
        ledger.set_blocked("device:D1", False)

        assert ledger.check("device:D1", 3).remaining_scans == 2


class TestConsume:
    @pytest.mark.parametrize("consumes", [0, 1, 2, 3, 4, 7])
    def test_remaining_is_monotonic(self, ledger, consumes: int) -> None:
        for _ in range(consumes):
            ledger.consume("device:D1", 3)

        status = ledger.check("device:D1", 3)

        assert status.remaining_scans == max(0, 3 - consumes)
        assert status.can_scan is (consumes < 3)
        assert status.scan_count == consumes

    def test_exhaustion_reason_and_audit(self, ledger, audit_sink) -> None:
        for _ in range(3):
            ledger.consume("device:D1", 3)

        assert ledger.check("device:D1", 3).reason is QuotaReason.EXHAUSTED
        events = audit_sink.of_type("quota_exhausted")
        assert len(events) == 1
        assert events[0].severity is Severity.LOW

    def test_double_admitted_last_scan_is_over_counted(self, ledger, audit_sink) -> None:
        ledger.consume("device:D1", 3)
        ledger.consume("device:D1", 3)

        # two requests both admitted while one scan remained
        assert ledger.check("device:D1", 3).remaining_scans == 1
        assert ledger.check("device:D1", 3).remaining_scans == 1
        ledger.consume("device:D1", 3)
        status = ledger.consume("device:D1", 3)

        assert status.scan_count == 4
        assert status.remaining_scans == 0
        assert status.reason is QuotaReason.EXHAUSTED
        assert len(audit_sink.of_type("quota_exhausted")) == 1

    def test_records_last_scan_time(self, ledger, clock) -> None:
        clock.return_value = 1_700_000_500.0
        status = ledger.consume("user:u1", 3)
        assert status.last_scan_at == 1_700_000_500.0


class TestCostTracking:
    def test_threshold_alert_fires_once_per_crossing(self, ledger, audit_sink) -> None:
        # 0.2 cents per scan, 1.0 cent threshold: crossed on the 5th scan
        for _ in range(8):
            ledger.consume("user:u1", None)

        alerts = audit_sink.of_type("cost_threshold")
        assert len(alerts) == 1
        assert alerts[0].severity is Severity.CRITICAL
        assert alerts[0].metadata["day"] == "2023-11-14"

    def test_cost_store_error_does_not_fail_consume(self, audit, clock) -> None:
        store = Mock(spec=AbstractQuotaStore)
        store.increment.return_value = LedgerEntry(key="user:u1", scan_count=1, last_scan_at=clock())
        store.add_daily_cost.side_effect = unavailable("quota")
        ledger = QuotaLedger(store, audit, FailOpenGrants(), scan_cost_cents=0.2, clock=clock)

        status = ledger.consume("user:u1", 3)

        assert status.remaining_scans == 2

    def test_zero_cost_skips_tracking(self, audit, clock) -> None:
        store = Mock(spec=AbstractQuotaStore)
        store.increment.return_value = LedgerEntry(key="k", scan_count=1)
        ledger = QuotaLedger(store, audit, FailOpenGrants(), scan_cost_cents=0.0, clock=clock)

        ledger.consume("k", 3)

        store.add_daily_cost.assert_not_called()


class TestFailOpen:
    @pytest.fixture
    def failing_store(self) -> Mock:
        store = Mock(spec=AbstractQuotaStore)
        store.get.side_effect = unavailable("quota")
        store.increment.side_effect = unavailable("quota")
        return store

    def test_outage_grants_configured_allowance(self, failing_store, audit, clock) -> None:
        ledger = QuotaLedger(failing_store, audit, FailOpenGrants(), fail_open_allowance=1, clock=clock)

        before = ledger.check("device:D1", 3)
        after_consume = ledger.consume("device:D1", 3)
        after = ledger.check("device:D1", 3)

        assert before.can_scan is True
        assert before.remaining_scans == 1
        assert before.degraded is True
        assert after_consume.remaining_scans == 0
        assert after.can_scan is False
        assert after.reason is QuotaReason.FAIL_OPEN_EXHAUSTED

    def test_grants_are_per_key(self, failing_store, audit, clock) -> None:
        ledger = QuotaLedger(failing_store, audit, FailOpenGrants(), clock=clock)
        ledger.consume("device:D1", 3)

        assert ledger.check("device:D2", 3).can_scan is True

    def test_unlimited_tier_stays_unlimited_during_outage(self, failing_store, audit, clock) -> None:
        ledger = QuotaLedger(failing_store, audit, FailOpenGrants(), clock=clock)
        ledger.consume("user:u1", None)

        status = ledger.check("user:u1", None)
        assert status.can_scan is True
        assert status.remaining_scans == UNLIMITED
        assert status.degraded is True

    def test_recovery_forgets_grants(self, audit, clock) -> None:
        grants = FailOpenGrants()
        store = InMemoryQuotaStore()
        grants.record("device:D1")
        ledger = QuotaLedger(store, audit, grants, clock=clock)

        ledger.check("device:D1", 3)

        assert grants.used("device:D1") == 0

    def test_zero_allowance_fails_closed(self, failing_store, audit, clock) -> None:
        ledger = QuotaLedger(failing_store, audit, FailOpenGrants(), fail_open_allowance=0, clock=clock)
        assert ledger.check("device:D1", 3).can_scan is False


class TestSetBlocked:
    def test_block_and_unblock_are_audited(self, ledger, audit_sink) -> None:
        ledger.set_blocked("user:u1", True, actor="operator")
        ledger.set_blocked("user:u1", False, actor="operator")

        assert [e.event_type for e in audit_sink.events] == ["ledger_blocked", "ledger_unblocked"]
        assert audit_sink.events[0].metadata["actor"] == "operator"

    def test_store_error_propagates(self, audit, clock) -> None:
        store = Mock(spec=AbstractQuotaStore)
        store.set_blocked.side_effect = unavailable("quota")
        ledger = QuotaLedger(store, audit, FailOpenGrants(), clock=clock)

        with pytest.raises(DependencyError) as exc_info:
            ledger.set_blocked("user:u1", True)
        assert exc_info.value.code == "quota_unavailable"


def test_status_from_entry_without_entry() -> None:
    status = status_from_entry(None, 3)
    assert status.remaining_scans == 3
    assert status.scan_count == 0
    assert status.is_blocked is False
