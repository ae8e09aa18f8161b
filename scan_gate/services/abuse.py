"""Cheap abuse pre-filter evaluated before any stateful limiter work.

Rules run in order and the first match wins:

1. the client IP is in this process's short-term flag set
2. the user-agent is absent or empty
3. the user-agent carries an automation signature (bot, crawler, headless tool)
4. the origin is absent or a local-development value (when the origin rule is on)

The engine never calls an external store. The flag set is process-local: in a
multi-worker deployment each worker only knows the IPs it flagged itself.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from scan_gate.adapters.audit.base import Severity
from scan_gate.core.logging import hash_identifier
from scan_gate.services.audit import AuditLog
from scan_gate.services.identity import RequestContext, ResolvedIdentity
from scan_gate.utils.ttl_set import TTLSet

logger = logging.getLogger(__name__)


class AbuseRule(str, Enum):
    FLAGGED_IP = "flagged_ip"
    MISSING_USER_AGENT = "missing_user_agent"
    BOT_USER_AGENT = "bot_user_agent"
    SUSPICIOUS_ORIGIN = "suspicious_origin"


_REASONS = {
    AbuseRule.FLAGGED_IP: "Previously flagged IP",
    AbuseRule.MISSING_USER_AGENT: "Missing user agent",
    AbuseRule.BOT_USER_AGENT: "Bot-like user agent",
    AbuseRule.SUSPICIOUS_ORIGIN: "Suspicious origin",
}


@dataclass(frozen=True)
class AbuseVerdict:
    suspicious: bool
    rule: AbuseRule | None = None

    @property
    def reason(self) -> str | None:
        return _REASONS[self.rule] if self.rule else None


CLEAN = AbuseVerdict(suspicious=False)


class AbuseHeuristicEngine:
    def __init__(
        self,
        flagged_ips: TTLSet,
        audit: AuditLog,
        *,
        bot_pattern: str,
        local_origin_markers: Iterable[str],
        check_origin: bool,
    ) -> None:
        self._flagged_ips = flagged_ips
        self._audit = audit
        self._bot_re = re.compile(bot_pattern, re.IGNORECASE)
        self._local_markers = tuple(m.strip().lower() for m in local_origin_markers if m.strip())
        self._check_origin = check_origin

    def _is_local_origin(self, origin: str) -> bool:
        lowered = origin.lower()
        return any(marker in lowered for marker in self._local_markers)

    def evaluate(self, context: RequestContext) -> AbuseVerdict:
        """Classify a request without side effects."""
        if context.ip and context.ip in self._flagged_ips:
            return AbuseVerdict(True, AbuseRule.FLAGGED_IP)

        user_agent = (context.user_agent or "").strip()
        if not user_agent or user_agent.lower() == "unknown":
            return AbuseVerdict(True, AbuseRule.MISSING_USER_AGENT)

        if self._bot_re.search(user_agent):
            return AbuseVerdict(True, AbuseRule.BOT_USER_AGENT)

        if self._check_origin:
            origin = (context.origin or "").strip()
            if not origin or origin.lower() == "unknown" or self._is_local_origin(origin):
                return AbuseVerdict(True, AbuseRule.SUSPICIOUS_ORIGIN)

        return CLEAN

    def screen(self, context: RequestContext, identity: ResolvedIdentity) -> AbuseVerdict:
        """Evaluate and, on a match, flag the IP and write an audit event."""
        verdict = self.evaluate(context)
        if not verdict.suspicious:
            return verdict

        if context.ip:
            self._flagged_ips.add(context.ip)

        logger.warning(
            "abuse.flagged",
            extra={
                "rule": verdict.rule.value if verdict.rule else None,
                "identity_hash": hash_identifier(identity.key),
                "ip_hash": hash_identifier(context.ip),
            },
        )
        self._audit.record(
            "suspicious_request",
            identity=identity.key,
            reason=verdict.reason or "suspicious",
            severity=Severity.MEDIUM,
            metadata={
                "rule": verdict.rule.value if verdict.rule else None,
                "ip": context.ip,
                "user_agent": context.user_agent,
                "device_fingerprint_present": context.device_fingerprint is not None,
            },
        )
        return verdict
