"""HTTP clients for the external auth provider and profile store.

Both are single-attempt, retryless lookups; transport failures and 5xx
responses surface as DependencyError so the caller's fallback policy applies.
"""

from __future__ import annotations

import logging

import httpx

from scan_gate.adapters.identity.base import AbstractProfileStore, AbstractTokenVerifier, Profile
from scan_gate.core.errors import DependencyError

logger = logging.getLogger(__name__)


def _dependency_error(dependency: str, exc: Exception | None = None, status: int | None = None) -> DependencyError:
    logger.warning(
        "identity.dependency_failed",
        extra={
            "dependency": dependency,
            "error_type": type(exc).__name__ if exc else None,
            "status_code": status,
        },
    )
    return DependencyError(
        code=f"{dependency}_unavailable",
        message=f"{dependency} is unreachable",
        details={"dependency": dependency},
    )


class HttpTokenVerifier(AbstractTokenVerifier):
    """Verify a bearer token by asking the auth provider who it belongs to.

    The endpoint must answer ``200 {"id": "<user id>"}`` for valid tokens and
    401/403 for invalid ones.
    """

    def __init__(self, verify_url: str, *, timeout_seconds: float, client: httpx.Client | None = None) -> None:
        self._verify_url = verify_url
        self._client = client or httpx.Client(timeout=timeout_seconds)

    def verify(self, token: str) -> str | None:
        try:
            response = self._client.get(
                self._verify_url,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            raise _dependency_error("auth", exc) from exc

        if response.status_code in (400, 401, 403, 404):
            return None
        if response.status_code >= 300:
            raise _dependency_error("auth", status=response.status_code)

        try:
            payload = response.json()
        except ValueError:
            return None
        user_id = payload.get("id") if isinstance(payload, dict) else None
        return str(user_id) if user_id else None


class HttpProfileStore(AbstractProfileStore):
    """Read ``GET {base_url}/profiles/{user_id}`` -> ``{subscription_tier, role}``."""

    def __init__(self, base_url: str, *, timeout_seconds: float, client: httpx.Client | None = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout_seconds)

    def get_profile(self, user_id: str) -> Profile | None:
        try:
            response = self._client.get(f"{self._base_url}/profiles/{user_id}")
        except httpx.HTTPError as exc:
            raise _dependency_error("profile_store", exc) from exc

        if response.status_code == 404:
            return None
        if response.status_code >= 300:
            raise _dependency_error("profile_store", status=response.status_code)

        try:
            payload = response.json()
        except ValueError as exc:
            raise _dependency_error("profile_store", exc) from exc
        if not isinstance(payload, dict):
            raise _dependency_error("profile_store")

        return Profile(
            subscription_tier=payload.get("subscription_tier"),
            role=payload.get("role"),
        )
