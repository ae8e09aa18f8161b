"""Best-effort append-only audit log.

Every deny decision and every ledger mutation of interest is recorded here.
A failing sink is logged and skipped: an audit write never blocks or reverses
an admission decision that has already been made.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Sequence

from scan_gate.adapters.audit.base import AbstractAuditSink, AuditEvent, Severity

logger = logging.getLogger(__name__)


class AuditLog:
    def __init__(
        self,
        sinks: Sequence[AbstractAuditSink],
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._sinks = list(sinks)
        self._clock = clock

    def record(
        self,
        event_type: str,
        *,
        identity: str | None,
        reason: str,
        severity: Severity,
        metadata: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """Build an event and hand it to every sink.

        Returns:
            The event, whether or not every sink accepted it.
        """
        event = AuditEvent(
            event_type=event_type,
            identity=identity,
            reason=reason,
            severity=severity,
            timestamp=self._clock(),
            metadata=dict(metadata or {}),
        )

        for sink in self._sinks:
            try:
                sink.write(event)
            except Exception as exc:  # noqa: BLE001 - audit writes are best-effort
                logger.error(
                    "audit.write_failed",
                    extra={
                        "sink": type(sink).__name__,
                        "event_type": event_type,
                        "error_type": type(exc).__name__,
                    },
                )
        return event
