"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.

Three families matter to admission:
- PolicyDenyError: a check decided to refuse the request; always reported.
- DependencyError: a store/collaborator was unreachable; consumed by the
  policy combinator and never surfaced to the client.
- InvalidFingerprintError: malformed identity material; treated as absent.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep backward compatibility while encouraging
    consistent shapes across the codebase.
    """

    code: str
    message: str
    hint: str
    http_status: int
    retry_after: int
    reset_at: int
    limit: int
    remaining: int
    tier: str
    upgrade: bool
    dependency: str
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class AuthenticationAppError(AppError):
    """Raised when authentication/authorization fails."""


class InvalidFingerprintError(ValidationAppError):
    """Raised when a device fingerprint header cannot be parsed."""


class DependencyError(AppError):
    """Raised by adapters when a persistent store or collaborator is unreachable."""


class PolicyDenyError(AppError):
    """Raised when an admission check refuses the request."""

    status_code: int = 403
    headers: dict[str, str] | None = None


class SuspiciousActivityError(PolicyDenyError):
    """Abuse pre-filter matched the request."""

    status_code = 403


class RateLimitExceededError(PolicyDenyError):
    """Identity exhausted its window allowance."""

    status_code = 429

    def __init__(
        self,
        code: str,
        message: str,
        details: ErrorDetails | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(code=code, message=message, details=details)
        self.headers = headers
