"""Pydantic schemas for the operator endpoints."""

from pydantic import BaseModel, Field

from scan_gate.adapters.devices.base import DeviceRecord
from scan_gate.adapters.quota.base import LedgerEntry


class DeviceResponse(BaseModel):
    """Registry view of one device fingerprint."""

    fingerprint: str
    first_seen: float = Field(..., description="UNIX time of first contact.")
    last_seen: float = Field(..., description="UNIX time of the latest contact.")
    user_count: int = Field(..., description="Distinct accounts ever seen on this device.")
    ip_count: int = Field(..., description="Distinct IP addresses ever seen for this device.")
    user_agent_count: int
    is_blocked: bool

    @classmethod
    def from_record(cls, record: DeviceRecord) -> "DeviceResponse":
        return cls(
            fingerprint=record.fingerprint,
            first_seen=record.first_seen,
            last_seen=record.last_seen,
            user_count=len(record.user_ids),
            ip_count=len(record.ip_addresses),
            user_agent_count=len(record.user_agents),
            is_blocked=record.is_blocked,
        )


class LedgerResponse(BaseModel):
    key: str = Field(..., description="Ledger key (device:<fingerprint> or user:<id>).")
    scan_count: int
    is_blocked: bool
    last_scan_at: float | None = None

    @classmethod
    def from_entry(cls, entry: LedgerEntry) -> "LedgerResponse":
        return cls(
            key=entry.key,
            scan_count=entry.scan_count,
            is_blocked=entry.is_blocked,
            last_scan_at=entry.last_scan_at,
        )
