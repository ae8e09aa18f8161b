"""Operator and service API key authentication.

The admin routes (device inspection, device and account blocking) and the
scan consume call made by the analysis service are guarded by a static
``X-API-Key``. Admission and quota reads are not: they identify end users by
bearer token, device fingerprint or IP instead.

Keys come from ``APP_API_KEYS`` (comma separated). Comparison is constant-time
and only a hash prefix of a rejected key is ever logged.
"""

from __future__ import annotations

import hmac
import logging
from typing import Annotated

from fastapi import Header, HTTPException, status

from scan_gate.core.config import settings
from scan_gate.core.errors import AuthenticationAppError
from scan_gate.core.logging import hash_identifier

logger = logging.getLogger(__name__)


def parse_api_keys(keys_string: str | None) -> set[str]:
    """Parse comma-separated API keys into a set.

    Examples:
        >>> sorted(parse_api_keys("key1, key2 , key1"))
        ['key1', 'key2']
        >>> parse_api_keys(None)
        set()
    """
    if not keys_string:
        return set()
    return {key.strip() for key in keys_string.split(",") if key.strip()}


def _matches_any(provided_key: str, valid_keys: set[str]) -> bool:
    provided = provided_key.encode("utf-8")
    # no short-circuit: every configured key is compared
    matched = False
    for key in valid_keys:
        matched |= hmac.compare_digest(provided, key.encode("utf-8"))
    return matched


def validate_api_key(provided_key: str) -> None:
    """Check an operator key against the configured set.

    Raises:
        AuthenticationAppError: Key rejected, or auth required with no keys configured.
    """
    if not settings.app.api_key_required:
        return

    valid_keys = parse_api_keys(settings.app.api_keys)
    if not valid_keys:
        logger.error("operator_auth.not_configured")
        raise AuthenticationAppError(
            code="api_keys_not_configured",
            message="API key authentication is enabled but no valid keys are configured",
            details={"hint": "Set APP_API_KEYS or disable auth with APP_API_KEY_REQUIRED=false"},
        )

    if not _matches_any(provided_key, valid_keys):
        logger.warning(
            "operator_auth.rejected",
            extra={"api_key_hash": hash_identifier(provided_key)},
        )
        raise AuthenticationAppError(
            code="invalid_api_key",
            message="Invalid or missing API key",
        )


async def verify_api_key(
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """FastAPI dependency guarding the operator and service routes.

    Raises:
        HTTPException: 403 when the key is missing or rejected.
    """
    if not settings.app.api_key_required:
        return

    if not x_api_key:
        logger.warning("operator_auth.missing_key")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Missing API key. Provide X-API-Key header.",
        )

    try:
        validate_api_key(x_api_key)
    except AuthenticationAppError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.message) from exc
    logger.info("operator_auth.accepted", extra={"api_key_hash": hash_identifier(x_api_key)})
