"""Audit sink interfaces and the append-only event record."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class AuditEvent:
    """Write-once record of a denial, abuse flag or threshold breach.

    Attributes:
        event_type: Machine-readable kind (e.g. ``rate_limit_exceeded``).
        identity: Resolved identity key the event concerns.
        reason: Short human-readable cause.
        severity: Alerting severity.
        timestamp: UNIX time the event was produced.
        metadata: Extra structured context (tier, limit, authenticated, ...).
    """

    event_type: str
    identity: str | None
    reason: str
    severity: Severity
    timestamp: float
    metadata: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "identity": self.identity,
            "reason": self.reason,
            "severity": self.severity.value,
            "timestamp": self.timestamp,
            "metadata": dict(self.metadata),
        }


class AbstractAuditSink(ABC):
    """Append-only destination for audit events. No read path."""

    @abstractmethod
    def write(self, event: AuditEvent) -> None:
        """Persist one event. May raise; callers treat writes as best-effort."""
        raise NotImplementedError
