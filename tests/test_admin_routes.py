"""HTTP tests for the operator endpoints."""

from __future__ import annotations

from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from scan_gate.adapters.devices.base import AbstractDeviceStore
from scan_gate.core.app_factory import create_app

from conftest import unavailable

FP = "device_0123456789abcdef"
OPERATOR = {"X-API-Key": "test-api-key-123"}
MOBILE = {
    "User-Agent": "ScanApp/2.1 (iPhone; iOS 17.2)",
    "Origin": "https://app.example.com",
    "X-Forwarded-For": "203.0.113.7",
}


@pytest.fixture
def harness(make_harness):
    return make_harness()


@pytest.fixture
def client(harness) -> TestClient:
    return TestClient(create_app(gate=harness.gate))


class TestOperatorAuth:
    def test_missing_key_is_rejected(self, client) -> None:
        response = client.get(f"/v1/admin/devices/{FP}")
        assert response.status_code == 403

    def test_wrong_key_is_rejected(self, client) -> None:
        response = client.post(f"/v1/admin/devices/{FP}/block", headers={"X-API-Key": "nope"})
        assert response.status_code == 403


class TestDevices:
    def test_unknown_device_is_404(self, client) -> None:
        response = client.get(f"/v1/admin/devices/{FP}", headers=OPERATOR)
        assert response.status_code == 404

    def test_malformed_fingerprint_is_400(self, client) -> None:
        response = client.get("/v1/admin/devices/short", headers=OPERATOR)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "invalid_fingerprint"

    def test_observed_device_is_listed(self, client) -> None:
        client.post("/v1/scans/admission", headers={**MOBILE, "X-Device-Fingerprint": FP})

        response = client.get(f"/v1/admin/devices/{FP}", headers=OPERATOR)

        assert response.status_code == 200
        body = response.json()
        assert body["fingerprint"] == FP
        assert body["ip_count"] == 1
        assert body["user_count"] == 0
        assert body["is_blocked"] is False

    def test_blocked_device_is_denied_admission(self, client, harness) -> None:
        response = client.post(f"/v1/admin/devices/{FP}/block", headers=OPERATOR)
        assert response.status_code == 200
        assert response.json()["is_blocked"] is True

        admission = client.post("/v1/scans/admission", headers={**MOBILE, "X-Device-Fingerprint": FP})

        body = admission.json()
        assert admission.status_code == 200
        assert body["allowed"] is False
        assert body["code"] == "DEVICE_BLOCKED"
        assert body["upgrade"] is False
        assert body["quota"]["is_blocked"] is True
        assert harness.audit.of_type("ledger_blocked")[0].metadata["actor"] == "operator"

    def test_unblock_restores_admission(self, client) -> None:
        client.post(f"/v1/admin/devices/{FP}/block", headers=OPERATOR)
        client.post(f"/v1/admin/devices/{FP}/unblock", headers=OPERATOR)

        admission = client.post("/v1/scans/admission", headers={**MOBILE, "X-Device-Fingerprint": FP})

        assert admission.json()["allowed"] is True

    def test_store_outage_is_503(self, make_harness) -> None:
        store = Mock(spec=AbstractDeviceStore)
        store.set_blocked.side_effect = unavailable("devices")
        client = TestClient(create_app(gate=make_harness(device_store=store).gate))

        response = client.post(f"/v1/admin/devices/{FP}/block", headers=OPERATOR)

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "devices_unavailable"


class TestUsers:
    def test_blocked_user_is_denied_admission(self, client) -> None:
        response = client.post("/v1/admin/users/user-plus/block", headers=OPERATOR)

        assert response.status_code == 200
        assert response.json() == {"key": "user:user-plus", "scan_count": 0, "is_blocked": True, "last_scan_at": None}

        admission = client.post("/v1/scans/admission", headers={**MOBILE, "Authorization": "Bearer tok-plus"})
        assert admission.json()["code"] == "USER_BLOCKED"

    def test_user_block_holds_with_fingerprint_header(self, client) -> None:
        client.post("/v1/admin/users/user-plus/block", headers=OPERATOR)

        admission = client.post(
            "/v1/scans/admission",
            headers={**MOBILE, "Authorization": "Bearer tok-plus", "X-Device-Fingerprint": FP},
        )

        body = admission.json()
        assert body["allowed"] is False
        assert body["code"] == "USER_BLOCKED"
        assert body["quota"]["is_blocked"] is True

    def test_unblock_user(self, client) -> None:
        client.post("/v1/admin/users/user-plus/block", headers=OPERATOR)

        response = client.post("/v1/admin/users/user-plus/unblock", headers=OPERATOR)

        assert response.json()["is_blocked"] is False
        admission = client.post("/v1/scans/admission", headers={**MOBILE, "Authorization": "Bearer tok-plus"})
        assert admission.json()["allowed"] is True
