"""Concrete audit sinks: structured log, Redis stream and in-memory buffer."""

from __future__ import annotations

import json
import logging
import threading

import redis

from scan_gate.adapters.audit.base import AbstractAuditSink, AuditEvent, Severity
from scan_gate.adapters.redis_client import store_errors
from scan_gate.core.logging import hash_identifier

_LEVELS = {
    Severity.LOW: logging.INFO,
    Severity.MEDIUM: logging.WARNING,
    Severity.HIGH: logging.WARNING,
    Severity.CRITICAL: logging.ERROR,
}


class LoggingAuditSink(AbstractAuditSink):
    """Emit each event on the ``scan_gate.audit`` logger.

    Identities are hashed so the operational log never carries raw
    fingerprints, user ids or IPs.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("scan_gate.audit")

    def write(self, event: AuditEvent) -> None:
        self._logger.log(
            _LEVELS[event.severity],
            f"audit.{event.event_type}",
            extra={
                "audit_reason": event.reason,
                "severity": event.severity.value,
                "identity_hash": hash_identifier(event.identity),
                "event_ts": event.timestamp,
                "audit_metadata": event.metadata,
            },
        )


class RedisStreamAuditSink(AbstractAuditSink):
    """Append events to a capped Redis stream consumed by dashboards/alerting."""

    def __init__(self, client: redis.Redis, *, namespace: str, maxlen: int) -> None:
        self._client = client
        self._stream = f"{namespace}:audit"
        self._maxlen = maxlen

    def write(self, event: AuditEvent) -> None:
        fields = {
            "event_type": event.event_type,
            "identity": event.identity or "",
            "reason": event.reason,
            "severity": event.severity.value,
            "timestamp": repr(event.timestamp),
            "metadata": json.dumps(event.metadata, default=str),
        }
        with store_errors("audit", "xadd"):
            self._client.xadd(self._stream, fields, maxlen=self._maxlen, approximate=True)


class InMemoryAuditSink(AbstractAuditSink):
    """Keep events in a list; used by the memory backend and tests."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        with self._lock:
            return list(self._events)

    def of_type(self, event_type: str) -> list[AuditEvent]:
        return [e for e in self.events if e.event_type == event_type]

    def write(self, event: AuditEvent) -> None:
        with self._lock:
            self._events.append(event)
