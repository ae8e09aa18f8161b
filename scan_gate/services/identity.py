"""Request normalization and identity resolution.

Raw headers are parsed exactly once into a RequestContext at the HTTP
boundary; every downstream component consumes that value instead of headers.

Identity priority is fixed: ``user:<id>`` > ``device:<fingerprint>`` >
``ip:<ip>|<agent-hash>``. Missing or invalid credentials are not errors:
anonymous access is a supported tier.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Mapping

from scan_gate.adapters.identity.base import AbstractTokenVerifier
from scan_gate.core.errors import DependencyError, InvalidFingerprintError
from scan_gate.core.logging import hash_identifier

logger = logging.getLogger(__name__)

FINGERPRINT_HEADERS = ("x-device-fingerprint", "x-device-id")
_FINGERPRINT_RE = re.compile(r"^[A-Za-z0-9_.:\-]{8,128}$")
_IP_HEADERS = ("x-forwarded-for", "cf-connecting-ip", "x-real-ip", "x-client-ip")
_NULL_TOKENS = {"", "null", "undefined"}


@dataclass(frozen=True)
class RequestContext:
    """Normalized request metadata consumed by every gate component."""

    bearer_token: str | None = None
    device_fingerprint: str | None = None
    ip: str | None = None
    user_agent: str | None = None
    origin: str | None = None
    country: str | None = None


def validate_fingerprint(raw: str) -> str:
    """Return the trimmed fingerprint or raise InvalidFingerprintError."""
    value = raw.strip()
    if not _FINGERPRINT_RE.match(value):
        raise InvalidFingerprintError(
            code="invalid_fingerprint",
            message="Device fingerprint header is malformed",
            details={"hint": "8-128 characters of [A-Za-z0-9_.:-]"},
        )
    return value


def _extract_bearer(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    if token.lower() in _NULL_TOKENS:
        return None
    return token


def _extract_ip(headers: Mapping[str, str], client_host: str | None, trusted_proxy_hops: int) -> str | None:
    if trusted_proxy_hops > 0:
        for name in _IP_HEADERS:
            value = headers.get(name)
            if not value:
                continue
            hops = [hop.strip() for hop in value.split(",") if hop.strip()]
            if hops:
                # Each trusted proxy appends one hop on the right; anything left
                # of those was written by the client and cannot be trusted.
                return hops[max(len(hops) - trusted_proxy_hops, 0)]
    return client_host or None


def build_request_context(
    headers: Mapping[str, str],
    *,
    client_host: str | None,
    trusted_proxy_hops: int = 0,
) -> RequestContext:
    """Normalize raw request metadata.

    Args:
        headers: Case-insensitive header mapping (lower-case keys expected).
        client_host: Socket peer address, if known.
        trusted_proxy_hops: Number of reverse proxies in front of the app.
            Zero ignores proxy headers and uses the peer address.

    Returns:
        RequestContext. A malformed fingerprint is dropped, not raised.
    """
    fingerprint: str | None = None
    for name in FINGERPRINT_HEADERS:
        raw = headers.get(name)
        if raw:
            try:
                fingerprint = validate_fingerprint(raw)
            except InvalidFingerprintError:
                logger.info(
                    "identity.fingerprint_rejected",
                    extra={"header": name, "length": len(raw)},
                )
            break

    user_agent = (headers.get("user-agent") or "").strip() or None
    origin = (headers.get("origin") or headers.get("referer") or "").strip() or None

    return RequestContext(
        bearer_token=_extract_bearer(headers.get("authorization")),
        device_fingerprint=fingerprint,
        ip=_extract_ip(headers, client_host, trusted_proxy_hops),
        user_agent=user_agent,
        origin=origin,
        country=headers.get("cf-ipcountry") or None,
    )


class IdentityKind(str, Enum):
    USER = "user"
    DEVICE = "device"
    IP = "ip"


@dataclass(frozen=True)
class ResolvedIdentity:
    """The rate-limit key for a request plus what it was derived from."""

    key: str
    kind: IdentityKind
    is_authenticated: bool
    user_id: str | None = None
    fingerprint: str | None = None
    ip: str | None = None

    @property
    def ledger_key(self) -> str:
        """Key for the absolute quota ledger.

        Device-keyed whenever a fingerprint is known, so switching accounts on
        the same device does not reset lifetime scans; otherwise the user, and
        for bare IP identities the identity key itself.
        """
        if self.fingerprint:
            return f"device:{self.fingerprint}"
        if self.user_id:
            return f"user:{self.user_id}"
        return self.key

    @property
    def account_ledger_key(self) -> str | None:
        """The signed-in user's own ledger entry, where operator user blocks live."""
        return f"user:{self.user_id}" if self.user_id else None


def agent_hash(user_agent: str | None) -> str:
    if not user_agent:
        return "none"
    return hashlib.sha256(user_agent.encode("utf-8", errors="ignore")).hexdigest()[:16]


class IdentityResolver:
    """Derive a stable identity: authenticated subject > device > IP+agent."""

    def __init__(self, verifier: AbstractTokenVerifier) -> None:
        self._verifier = verifier

    def _verify(self, token: str) -> str | None:
        try:
            return self._verifier.verify(token)
        except DependencyError:
            logger.warning("identity.verification_unavailable")
            return None

    def resolve(self, context: RequestContext) -> ResolvedIdentity:
        user_id = self._verify(context.bearer_token) if context.bearer_token else None

        if user_id:
            identity = ResolvedIdentity(
                key=f"user:{user_id}",
                kind=IdentityKind.USER,
                is_authenticated=True,
                user_id=user_id,
                fingerprint=context.device_fingerprint,
                ip=context.ip,
            )
        elif context.device_fingerprint:
            identity = ResolvedIdentity(
                key=f"device:{context.device_fingerprint}",
                kind=IdentityKind.DEVICE,
                is_authenticated=False,
                fingerprint=context.device_fingerprint,
                ip=context.ip,
            )
        else:
            identity = ResolvedIdentity(
                key=f"ip:{context.ip or 'unknown'}|{agent_hash(context.user_agent)}",
                kind=IdentityKind.IP,
                is_authenticated=False,
                ip=context.ip,
            )

        logger.debug(
            "identity.resolved",
            extra={
                "identity_kind": identity.kind.value,
                "identity_hash": hash_identifier(identity.key),
                "authenticated": identity.is_authenticated,
                "credential_present": context.bearer_token is not None,
            },
        )
        return identity
