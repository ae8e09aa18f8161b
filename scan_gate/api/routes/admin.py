"""Operator endpoints: inspect and block devices, block user ledgers.

All routes require ``X-API-Key``. Store outages surface as 503 here: an
operator action must never be silently dropped.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from scan_gate.core.auth import verify_api_key
from scan_gate.core.gate import get_gate
from scan_gate.schemas.devices import DeviceResponse, LedgerResponse
from scan_gate.services.admission import AdmissionGate
from scan_gate.services.identity import validate_fingerprint

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    dependencies=[Depends(verify_api_key)],
)


@router.get("/devices/{fingerprint}", response_model=DeviceResponse)
def get_device(fingerprint: str, gate: AdmissionGate = Depends(get_gate)) -> DeviceResponse:
    record = gate.registry.get(validate_fingerprint(fingerprint))
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown device")
    return DeviceResponse.from_record(record)


@router.post("/devices/{fingerprint}/block", response_model=DeviceResponse)
def block_device(fingerprint: str, gate: AdmissionGate = Depends(get_gate)) -> DeviceResponse:
    """Block a device; its quota ledger entry is blocked with it."""
    record = gate.registry.set_blocked(validate_fingerprint(fingerprint), True, actor="operator")
    return DeviceResponse.from_record(record)


@router.post("/devices/{fingerprint}/unblock", response_model=DeviceResponse)
def unblock_device(fingerprint: str, gate: AdmissionGate = Depends(get_gate)) -> DeviceResponse:
    record = gate.registry.set_blocked(validate_fingerprint(fingerprint), False, actor="operator")
    return DeviceResponse.from_record(record)


@router.post("/users/{user_id}/block", response_model=LedgerResponse)
def block_user(user_id: str, gate: AdmissionGate = Depends(get_gate)) -> LedgerResponse:
    entry = gate.ledger.set_blocked(f"user:{user_id}", True, actor="operator")
    return LedgerResponse.from_entry(entry)


@router.post("/users/{user_id}/unblock", response_model=LedgerResponse)
def unblock_user(user_id: str, gate: AdmissionGate = Depends(get_gate)) -> LedgerResponse:
    entry = gate.ledger.set_blocked(f"user:{user_id}", False, actor="operator")
    return LedgerResponse.from_entry(entry)
